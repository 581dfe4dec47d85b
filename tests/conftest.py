"""Pytest configuration and fixtures for VoiceCoach tests."""

import pytest
import time
import uuid
import logging
from types import SimpleNamespace
from unittest.mock import Mock, patch

import numpy as np

from voicecoach.audio.recorder import Recorder
from voicecoach.config import PipelineSettings
from voicecoach.conversation.orchestrator import ConversationOrchestrator
from voicecoach.logic.interrupt import InterruptArbiter
from voicecoach.logic.vad import VoiceActivityDetector
from voicecoach.models.conversation import ConversationState
from tests.fakes import (
    FakeAudioSource,
    FakeClock,
    FakeFeedbackEngine,
    FakeSynthesizer,
    FakeTranscriber,
    StateLog,
    publish_vad,
)


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without hardware or network")
    config.addinivalue_line("markers", "integration: multi-component tests over pub/sub")


# ----------------------------------------------------------------------
# Audio
# ----------------------------------------------------------------------

@pytest.fixture
def mock_pyaudio():
    """Mock PyAudio for testing without actual audio hardware."""
    with patch('pyaudio.PyAudio') as mock_pyaudio_class:
        mock_pyaudio_instance = Mock()
        mock_stream = Mock()

        def read(frames, exception_on_overflow=False):
            time.sleep(0.001)
            return b'\x00' * (frames * 2)  # Silent audio

        mock_stream.read.side_effect = read
        mock_stream.stop_stream.return_value = None
        mock_stream.close.return_value = None

        mock_pyaudio_instance.open.return_value = mock_stream
        mock_pyaudio_instance.terminate.return_value = None

        mock_pyaudio_class.return_value = mock_pyaudio_instance

        yield {
            'class': mock_pyaudio_class,
            'instance': mock_pyaudio_instance,
            'stream': mock_stream
        }

@pytest.fixture
def audio_test_data():
    """Generate various audio test data patterns."""
    def generate_audio(pattern="sine", duration_seconds=1.0, sample_rate=16000, amplitude=0.5):
        samples = int(duration_seconds * sample_rate)

        if pattern == "sine":
            t = np.linspace(0, duration_seconds, samples, False)
            wave_data = amplitude * np.sin(2 * np.pi * 440 * t)
        elif pattern == "noise":
            wave_data = np.random.uniform(-amplitude, amplitude, samples)
        elif pattern == "silence":
            wave_data = np.zeros(samples)
        else:
            raise ValueError(f"Unknown pattern: {pattern}")

        return (wave_data * 32767).astype(np.int16).tobytes()

    return generate_audio


@pytest.fixture
def topics():
    """Unique pub/sub topic names so tests never share listeners."""
    suffix = uuid.uuid4().hex
    return SimpleNamespace(
        audio=f"test_audio_{suffix}",
        vad=f"test_vad_{suffix}",
        conversation=f"test_conversation_{suffix}",
    )


@pytest.fixture
def fake_source(topics):
    return FakeAudioSource(topics.audio)


@pytest.fixture
def wait_for():
    """Poll ``predicate`` until it holds or ``timeout`` expires."""
    def _wait_for(predicate, timeout=3.0, interval=0.01):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(interval)
        return predicate()
    return _wait_for


# ----------------------------------------------------------------------
# Assembled pipeline
# ----------------------------------------------------------------------

@pytest.fixture
def make_pipeline(topics):
    """Build a full orchestrator over a fake audio source and fake collaborators."""
    built = []

    def _make(transcriber=None, feedback_engine=None, synthesizer=None, clock=None,
              source=None, **settings_overrides):
        settings_kwargs = dict(
            audio_topic=topics.audio,
            vad_topic=topics.vad,
            conversation_topic=topics.conversation,
            silence_nudge_timeout_ms=60000,
            tts_init_timeout_ms=200,
        )
        settings_kwargs.update(settings_overrides)
        settings = PipelineSettings(**settings_kwargs)

        source = source or FakeAudioSource(topics.audio)
        vad = VoiceActivityDetector(source, topic=topics.vad,
                                    rms_threshold=settings.rms_threshold,
                                    silence_timeout_ms=settings.silence_timeout_ms)
        recorder = Recorder(source, sample_rate=settings.sample_rate,
                            max_duration_seconds=settings.max_recording_seconds)
        arbiter = InterruptArbiter(topics.vad)
        orchestrator = ConversationOrchestrator(
            vad, recorder, arbiter,
            transcriber or FakeTranscriber(),
            feedback_engine or FakeFeedbackEngine(),
            synthesizer or FakeSynthesizer(),
            settings=settings,
            clock=clock or FakeClock(),
        )
        pipeline = SimpleNamespace(
            source=source,
            vad=vad,
            recorder=recorder,
            arbiter=arbiter,
            transcriber=orchestrator.transcriber,
            feedback_engine=orchestrator.feedback_engine,
            synthesizer=orchestrator.synthesizer,
            orchestrator=orchestrator,
            settings=settings,
            topics=topics,
            state_log=StateLog(topics.conversation),
        )
        built.append(pipeline)
        return pipeline

    yield _make

    for pipeline in built:
        pipeline.orchestrator.cleanup()



@pytest.fixture
def drive_utterance(wait_for):
    """User speaks: Speaking, a few recorded frames, then Silent."""
    def _drive(pipeline, frames=10, level=500):
        publish_vad(pipeline.topics.vad, True)
        assert wait_for(lambda: pipeline.orchestrator.state is ConversationState.RECORDING)
        for _ in range(frames):
            # Below the VAD threshold so only the recorder reacts
            pipeline.source.emit_level(level)
        publish_vad(pipeline.topics.vad, False)

    return _drive
