"""Shared microphone source with pub/sub fan-out of fixed-size frames."""

import pyaudio
import time
import logging
import threading
from threading import Thread, Event
from typing import Optional, Set

from pubsub import pub

from ..errors import ResourceUnavailable
from ..models.audio import AudioFrame, AudioSourceStats


logger = logging.getLogger(__name__)


class AudioSource:
    """Single owner of the microphone; publishes frames to every subscriber.

    VAD and Recorder never open the device themselves. Each one acquires the
    source under its own owner name; the stream is opened on the first acquire
    and closed when the last owner releases it.
    """

    def __init__(
        self,
        topic: str = "audio.frame",
        sample_rate: int = 16000,
        frame_ms: int = 10,
        channels: int = 1,
        format: int = pyaudio.paInt16,
    ):
        """Initialize audio source with specified parameters.

        Args:
            topic: Pub/sub topic frames are published on
            sample_rate: Audio sample rate (16kHz mono capture contract)
            frame_ms: Frame length in milliseconds
            channels: Number of audio channels (1 for mono)
            format: Audio format (16-bit signed int)
        """
        self.topic = topic
        self.sample_rate = sample_rate
        self.frame_ms = frame_ms
        self.frame_samples = sample_rate * frame_ms // 1000
        self.channels = channels
        self.format = format

        self.lock = threading.RLock()
        self.owners: Set[str] = set()

        # Capture thread management; each thread gets its own stop event
        self.capture_thread: Optional[Thread] = None
        self.stop_event: Optional[Event] = None

        # Statistics tracking
        self.total_frames = 0
        self.read_errors = 0

        # PyAudio instance
        self.pyaudio_instance: Optional[pyaudio.PyAudio] = None
        self.stream: Optional[pyaudio.Stream] = None

    @property
    def is_open(self) -> bool:
        return self.stream is not None

    def acquire(self, owner: str) -> None:
        """Register an owner, opening the microphone if this is the first one.

        Raises:
            ResourceUnavailable: if the device cannot be opened
        """
        with self.lock:
            if owner in self.owners:
                logger.debug(f"Audio source already held by {owner}")
                return

            if not self.owners:
                pyaudio_instance, stream = self.__open_audio_stream()
                self.pyaudio_instance = pyaudio_instance
                self.stream = stream
                self.stop_event = Event()
                self.capture_thread = Thread(
                    target=self._capture_continuously,
                    args=(pyaudio_instance, stream, self.stop_event),
                    daemon=True,
                )
                self.capture_thread.name = "AudioSourceThread"
                self.capture_thread.start()

            self.owners.add(owner)
            logger.info(f"Audio source acquired by {owner} (owners: {sorted(self.owners)})")

    def release(self, owner: str) -> None:
        """Drop an owner; the last release closes the microphone."""
        with self.lock:
            if owner not in self.owners:
                logger.debug(f"Audio source not held by {owner}, ignoring release")
                return

            self.owners.discard(owner)
            logger.info(f"Audio source released by {owner} (owners: {sorted(self.owners)})")
            if self.owners:
                return

            if self.stop_event:
                self.stop_event.set()
            thread = self.capture_thread
            self.capture_thread = None
            self.stop_event = None
            self.stream = None
            self.pyaudio_instance = None

        # Owners may release from inside a frame callback; never join ourselves
        if thread and thread is not threading.current_thread() and thread.is_alive():
            thread.join(timeout=2.0)
            if thread.is_alive():
                logger.warning("Audio capture thread did not stop cleanly")

    def __open_audio_stream(self):
        pyaudio_instance = None
        try:
            pyaudio_instance = pyaudio.PyAudio()
            stream = pyaudio_instance.open(
                format=self.format,
                channels=self.channels,
                rate=self.sample_rate,
                input=True,
                frames_per_buffer=self.frame_samples,
                stream_callback=None
            )
        except Exception as e:
            logger.error(f"❌ Failed to open microphone: {e}")
            if pyaudio_instance:
                pyaudio_instance.terminate()
            raise ResourceUnavailable(f"Microphone unavailable: {e}") from e

        logger.info(f"Audio stream opened: {self.sample_rate}Hz, "
                    f"{self.frame_samples} samples/frame ({self.frame_ms}ms)")
        return pyaudio_instance, stream

    def __publish_audio_frame(self, data: bytes) -> None:
        self.total_frames += 1
        frame = AudioFrame(
            data=data,
            timestamp=time.monotonic(),
            sequence_number=self.total_frames,
            sample_rate=self.sample_rate,
            channels=self.channels,
        )
        try:
            pub.sendMessage(self.topic, event=frame)
        except Exception as e:
            logger.error(f"Audio frame subscriber failed: {e}", exc_info=True)

    def _capture_continuously(self, pyaudio_instance: pyaudio.PyAudio,
                              stream: pyaudio.Stream, stop_event: Event) -> None:
        """Internal method: continuous capture loop in background thread."""
        logger.info("🎤 Audio capture loop started")
        try:
            while not stop_event.is_set():
                try:
                    data = stream.read(self.frame_samples, exception_on_overflow=False)
                except OSError as e:
                    self.read_errors += 1
                    logger.error(f"Error reading audio frame: {e}")
                    time.sleep(0.1)
                    continue
                if data and not stop_event.is_set():
                    self.__publish_audio_frame(data)
        finally:
            # Clean up audio resources
            try:
                stream.stop_stream()
                stream.close()
            except OSError as e:
                logger.warning(f"Error closing audio stream: {e}")
            pyaudio_instance.terminate()
            logger.info(f"🛑 Audio capture loop stopped. Total frames: {self.total_frames}")

    def get_stats(self) -> AudioSourceStats:
        with self.lock:
            return AudioSourceStats(
                is_open=self.is_open,
                owners=tuple(sorted(self.owners)),
                sample_rate=self.sample_rate,
                frame_samples=self.frame_samples,
                total_frames=self.total_frames,
                read_errors=self.read_errors,
            )

    def close(self) -> None:
        """Release every owner and stop capturing."""
        for owner in list(self.owners):
            self.release(owner)
