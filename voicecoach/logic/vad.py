"""Energy-based voice activity detection with silence hysteresis."""

import time
import logging
import threading
from typing import Optional

import numpy as np
from pubsub import pub

from ..models.audio import AudioFrame

logger = logging.getLogger(__name__)


def calculate_rms(samples: np.ndarray) -> float:
    """Root mean square of a frame of 16-bit samples; 0.0 for an empty frame."""
    if len(samples) == 0:
        return 0.0
    values = samples.astype(np.float64)
    return float(np.sqrt(np.mean(values * values)))


class VoiceActivityDetector:
    """Publishes Speaking/Silent transitions derived from frame energy.

    Speaking is reported on the first frame above ``rms_threshold``. Silent is
    reported only once ``silence_timeout_ms`` of continuous sub-threshold
    frames have passed since the last loud frame, so brief dips inside a
    word do not flip the state.

    Transitions are published on ``topic`` as ``speaking`` and ``timestamp``
    (monotonic seconds). Only the current value is kept; late listeners read
    ``is_speaking`` instead of replaying history.
    """

    OWNER = "vad"

    def __init__(self, audio_source, topic: str = "vad.state",
                 rms_threshold: float = 2000.0, silence_timeout_ms: int = 500):
        self.audio_source = audio_source
        self.topic = topic
        self.rms_threshold = rms_threshold
        self.silence_timeout_ms = silence_timeout_ms

        self.lock = threading.RLock()
        self._speaking = False
        self._last_speech_ms: Optional[int] = None
        self._active = False
        self._subscribed = False

        # Manual override (no working microphone, automated runs)
        self._simulating = False
        self._simulation_timer: Optional[threading.Timer] = None

        self.frames_processed = 0

    @property
    def is_speaking(self) -> bool:
        return self._speaking

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def is_simulating(self) -> bool:
        return self._simulating

    @property
    def threshold(self) -> float:
        return self.rms_threshold

    @property
    def last_speech_timestamp(self) -> Optional[float]:
        """Monotonic time (seconds) of the last above-threshold frame."""
        if self._last_speech_ms is None:
            return None
        return self._last_speech_ms / 1000.0

    def start(self) -> None:
        """Acquire the microphone and begin detection.

        Raises:
            ResourceUnavailable: if the audio source cannot be opened; the
                detector stays stopped
        """
        if self._active:
            logger.warning("VAD already started, ignoring duplicate start call")
            return

        self.audio_source.acquire(self.OWNER)

        if not self._subscribed:
            pub.subscribe(self.on_audio_frame, self.audio_source.topic)
            self._subscribed = True

        with self.lock:
            self._active = True
        logger.info(f"✅ VAD started (RMS threshold: {self.rms_threshold}, "
                    f"silence timeout: {self.silence_timeout_ms}ms)")

    def stop(self) -> None:
        """Release the microphone; a Speaking state is reset to Silent."""
        if not self._active:
            logger.warning("VAD not started, ignoring stop call")
            return

        logger.info("Stopping VAD...")
        with self.lock:
            self._active = False
            self._cancel_simulation()
            self._last_speech_ms = None
            if self._speaking:
                self._publish(False, None)

        self.audio_source.release(self.OWNER)
        logger.info("✅ VAD stopped")

    def on_audio_frame(self, event: AudioFrame) -> None:
        """Frame callback; runs on the audio source's capture thread."""
        if not self._active:
            return
        self.process_samples(event.samples, event.timestamp)

    def process_samples(self, samples: np.ndarray, timestamp: float) -> Optional[bool]:
        """Apply one frame to the detector.

        Args:
            samples: 16-bit PCM samples of the frame
            timestamp: Monotonic capture time in seconds

        Returns:
            The new state if this frame caused a transition, else None
        """
        rms = calculate_rms(samples)
        now_ms = int(round(timestamp * 1000))

        with self.lock:
            self.frames_processed += 1
            if self._simulating:
                return None

            if self.frames_processed % 20 == 0:
                indicator = "🗣️ SPEAKING" if self._speaking else "🤫 SILENT"
                logger.debug(f"RMS: {rms:.0f} | Threshold: {self.rms_threshold} | {indicator}")

            if rms > self.rms_threshold:
                self._last_speech_ms = now_ms
                if not self._speaking:
                    logger.info(f"🎙️ SPEECH STARTED (RMS: {rms:.0f})")
                    self._publish(True, timestamp)
                    return True
                return None

            if self._speaking and self._last_speech_ms is not None:
                silence_ms = now_ms - self._last_speech_ms
                if silence_ms > self.silence_timeout_ms:
                    logger.info(f"🔇 SPEECH ENDED (silent for {silence_ms}ms)")
                    self._publish(False, timestamp)
                    return False
            return None

    def simulate_speaking(self, duration_ms: int = 2000) -> None:
        """Force Speaking for ``duration_ms``, then revert to Silent.

        Measured energy is ignored while the override is active.
        """
        with self.lock:
            self._cancel_simulation()
            logger.info(f"🎭 SIMULATING USER SPEAKING ({duration_ms}ms)")
            self._simulating = True
            if not self._speaking:
                self._publish(True, None)
            self._simulation_timer = threading.Timer(duration_ms / 1000.0, self._end_simulation)
            self._simulation_timer.daemon = True
            self._simulation_timer.start()

    def _end_simulation(self) -> None:
        with self.lock:
            if not self._simulating:
                return
            self._last_speech_ms = None
            if self._speaking:
                self._publish(False, None)
            self._simulation_timer = None
            self._simulating = False
            logger.info("🎭 SIMULATION ENDED")

    def _cancel_simulation(self) -> None:
        if self._simulation_timer:
            self._simulation_timer.cancel()
            self._simulation_timer = None
        self._simulating = False

    def _publish(self, speaking: bool, timestamp: Optional[float]) -> None:
        # Called with self.lock held so transitions go out in order
        self._speaking = speaking
        if timestamp is None:
            timestamp = time.monotonic()
        pub.sendMessage(self.topic, speaking=speaking, timestamp=timestamp)

    def cleanup(self) -> None:
        if self._active:
            self.stop()
        if self._subscribed:
            pub.unsubscribe(self.on_audio_frame, self.audio_source.topic)
            self._subscribed = False
        logger.info("VAD cleanup complete")
