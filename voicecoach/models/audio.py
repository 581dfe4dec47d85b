"""Audio-related data models."""

from dataclasses import dataclass
from typing import Optional

import numpy as np

BYTES_PER_SAMPLE = 2  # 16-bit PCM


@dataclass(frozen=True)
class AudioFrame:
    """A single captured frame of 16-bit little-endian PCM."""
    data: bytes
    timestamp: float  # Monotonic capture time in seconds
    sequence_number: int
    sample_rate: int = 16000
    channels: int = 1

    @property
    def samples(self) -> np.ndarray:
        return np.frombuffer(self.data, dtype='<i2')

    @property
    def sample_count(self) -> int:
        return len(self.data) // (BYTES_PER_SAMPLE * self.channels)

    @property
    def duration_ms(self) -> float:
        return self.sample_count * 1000.0 / self.sample_rate


@dataclass
class AudioSourceStats:
    """Shared microphone statistics."""
    is_open: bool
    owners: tuple
    sample_rate: int
    frame_samples: int
    total_frames: int
    read_errors: int


@dataclass
class RecordingStats:
    """Recorder buffer statistics."""
    is_recording: bool
    duration_ms: int
    total_samples: int
    buffer_size_bytes: int
    chunk_count: int
    started_at: Optional[float] = None  # Unix time of the current or last session

    @property
    def duration_seconds(self) -> float:
        return self.duration_ms / 1000.0

    @property
    def buffer_size_kb(self) -> float:
        return self.buffer_size_bytes / 1024.0
