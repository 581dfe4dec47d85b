"""Utterance recorder fed by the shared audio source."""

import time
import logging
import threading
from pathlib import Path
from typing import List, Optional, Union

import numpy as np
from pubsub import pub

from .wav import write_wav
from ..errors import ResourceUnavailable
from ..models.audio import AudioFrame, RecordingStats, BYTES_PER_SAMPLE

logger = logging.getLogger(__name__)


class Recorder:
    """Accumulates frames for one utterance, capped at a fixed duration.

    Stopping a recording and clearing its buffer are separate operations:
    after ``stop_recording()`` the samples stay available until
    ``clear_buffer()``.
    """

    OWNER = "recorder"

    def __init__(self, audio_source, sample_rate: int = 16000,
                 max_duration_seconds: float = 30.0):
        """Initialize recorder.

        Args:
            audio_source: Shared AudioSource (or anything with the same
                          acquire/release/topic surface)
            sample_rate: Audio sample rate
            max_duration_seconds: Hard cap on buffered audio
        """
        self.audio_source = audio_source
        self.sample_rate = sample_rate
        self.max_duration_seconds = max_duration_seconds
        self.max_samples = int(sample_rate * max_duration_seconds)
        self.max_buffer_bytes = self.max_samples * BYTES_PER_SAMPLE

        # Chunk list and counter are shared by the frame callback and readers
        self.lock = threading.Lock()
        self.chunks: List[np.ndarray] = []
        self.total_samples = 0
        self.started_at: Optional[float] = None

        # Start, stop and source ownership are serialized by the session lock
        self._session_lock = threading.Lock()
        self._session = 0
        self._holds_source = False

        self.is_recording = False
        self._subscribed = False

        logger.info(f"Recorder initialized: {max_duration_seconds}s cap, "
                    f"{self.max_buffer_bytes} bytes max")

    def start_recording(self) -> bool:
        """Open a new recording session.

        Returns:
            False if already recording or the microphone is unavailable
        """
        with self._session_lock:
            if self.is_recording:
                logger.warning("Already recording, ignoring duplicate start")
                return False

            # A session stopped by the cap may not have released yet; reuse its hold
            if not self._holds_source:
                try:
                    self.audio_source.acquire(self.OWNER)
                except ResourceUnavailable as e:
                    logger.error(f"❌ Cannot start recording: {e}")
                    return False
                self._holds_source = True

            if not self._subscribed:
                pub.subscribe(self.on_audio_frame, self.audio_source.topic)
                self._subscribed = True

            with self.lock:
                self._session += 1
                self.chunks.clear()
                self.total_samples = 0
                self.started_at = time.time()
                self.is_recording = True

        logger.info("✅ Recording STARTED")
        return True

    def stop_recording(self) -> None:
        """Halt capture and release the microphone; buffered samples remain."""
        with self._session_lock:
            with self.lock:
                was_recording = self.is_recording
                self.is_recording = False
                total_samples = self.total_samples
            self._release_source()

        if not was_recording:
            logger.warning("Not recording, ignoring stop call")
            return
        logger.info(f"✅ Recording STOPPED: {total_samples} samples "
                    f"({total_samples / self.sample_rate:.2f}s)")

    def _release_source(self) -> None:
        # Caller holds self._session_lock
        if self._holds_source:
            self._holds_source = False
            self.audio_source.release(self.OWNER)

    def _release_after_cap(self, session: int) -> None:
        with self._session_lock:
            if self._session != session or self.is_recording:
                return
            self._release_source()

    def on_audio_frame(self, event: AudioFrame) -> None:
        """Frame callback; runs on the audio source's capture thread."""
        reached_cap = False
        with self.lock:
            if not self.is_recording:
                return

            samples = event.samples
            remaining = self.max_samples - self.total_samples
            if len(samples) >= remaining:
                samples = samples[:remaining]
                reached_cap = True

            if len(samples):
                self.chunks.append(samples.copy())
                self.total_samples += len(samples)

            if reached_cap:
                self.is_recording = False
            session = self._session

            if self.total_samples % self.sample_rate < len(samples):
                logger.debug(f"📊 Recorded: {self.total_samples // self.sample_rate}s "
                             f"({self.total_samples} samples)")

        if reached_cap:
            logger.warning(f"⚠️ Max recording duration reached ({self.max_duration_seconds}s)")
            self._release_after_cap(session)

    def get_audio_buffer(self) -> bytes:
        """Concatenate all chunks into little-endian 16-bit PCM bytes."""
        with self.lock:
            if not self.chunks:
                logger.debug("Audio buffer is empty")
                return b''
            audio = np.concatenate(self.chunks).astype('<i2', copy=False).tobytes()

        logger.info(f"📦 Audio buffer retrieved: {len(audio)} bytes")
        return audio

    def save_to_wav(self, file_path: Union[str, Path], audio_data: Optional[bytes] = None) -> bool:
        """Write a canonical WAV file of the buffer (or of ``audio_data``).

        Returns:
            True if saved, False when there is nothing to save
        """
        if audio_data is None:
            audio_data = self.get_audio_buffer()

        if not audio_data:
            logger.warning("No audio data to save")
            return False

        write_wav(file_path, audio_data, self.sample_rate)
        return True

    def clear_buffer(self) -> None:
        """Discard all chunks and reset the sample count."""
        with self.lock:
            self.chunks.clear()
            self.total_samples = 0
            logger.debug("🗑️ Audio buffer cleared")

    def get_stats(self) -> RecordingStats:
        with self.lock:
            return RecordingStats(
                is_recording=self.is_recording,
                duration_ms=self.total_samples * 1000 // self.sample_rate,
                total_samples=self.total_samples,
                buffer_size_bytes=self.total_samples * BYTES_PER_SAMPLE,
                chunk_count=len(self.chunks),
                started_at=self.started_at,
            )

    def cleanup(self) -> None:
        """Stop, clear and unsubscribe."""
        with self._session_lock:
            with self.lock:
                self.is_recording = False
            self._release_source()
        self.clear_buffer()
        if self._subscribed:
            pub.unsubscribe(self.on_audio_frame, self.audio_source.topic)
            self._subscribed = False
        logger.info("Recorder cleanup complete")
