"""Unit tests for Recorder."""

import pytest
import time
import threading

import numpy as np

from voicecoach.audio.recorder import Recorder
from voicecoach.audio.wav import WAV_HEADER_SIZE, read_wav_data
from tests.fakes import FakeAudioSource, make_samples


@pytest.fixture
def recorder(fake_source):
    recorder = Recorder(fake_source)
    yield recorder
    recorder.cleanup()


@pytest.mark.unit
class TestRecorder:

    def test_initialization(self, recorder):
        assert recorder.is_recording is False
        assert recorder.max_samples == 16000 * 30
        assert recorder.max_buffer_bytes == 16000 * 30 * 2
        assert recorder.get_audio_buffer() == b''

    def test_start_acquires_source(self, recorder, fake_source):
        assert recorder.start_recording() is True

        assert recorder.is_recording is True
        assert "recorder" in fake_source.owners

    def test_start_twice_fails(self, recorder):
        assert recorder.start_recording() is True
        assert recorder.start_recording() is False

    def test_start_without_microphone_fails(self, topics):
        recorder = Recorder(FakeAudioSource(topics.audio, fail=True))

        assert recorder.start_recording() is False
        assert recorder.is_recording is False

    def test_frames_concatenate_in_order(self, recorder, fake_source):
        recorder.start_recording()
        fake_source.emit(np.arange(0, 160, dtype=np.int16))
        fake_source.emit(np.arange(160, 320, dtype=np.int16))

        buffer = recorder.get_audio_buffer()

        assert buffer == np.arange(0, 320, dtype='<i2').tobytes()

    def test_frames_ignored_when_not_recording(self, recorder, fake_source):
        recorder.start_recording()
        recorder.stop_recording()

        fake_source.emit_level(1000)

        assert recorder.get_stats().total_samples == 0

    def test_stop_keeps_buffer_until_cleared(self, recorder, fake_source):
        recorder.start_recording()
        fake_source.emit_level(1000)
        recorder.stop_recording()

        assert recorder.is_recording is False
        assert "recorder" not in fake_source.owners
        assert len(recorder.get_audio_buffer()) == 320

        recorder.clear_buffer()

        assert recorder.get_audio_buffer() == b''
        assert recorder.get_stats().total_samples == 0

    def test_stop_when_not_recording_is_noop(self, recorder, fake_source):
        recorder.stop_recording()
        assert fake_source.owners == set()

    def test_restart_starts_fresh_session(self, recorder, fake_source):
        recorder.start_recording()
        fake_source.emit_level(1000)
        recorder.stop_recording()

        recorder.start_recording()
        fake_source.emit_level(1000, count=80)

        assert len(recorder.get_audio_buffer()) == 160

    def test_thirty_one_seconds_auto_stops_at_cap(self, recorder, fake_source):
        """31 s of continuous speech yields exactly 30 s of samples."""
        recorder.start_recording()

        # 100ms frames
        for _ in range(310):
            fake_source.emit_level(3000, count=1600)

        buffer = recorder.get_audio_buffer()
        assert len(buffer) == 16000 * 30 * 2
        assert recorder.is_recording is False
        assert "recorder" not in fake_source.owners

    def test_partial_frame_truncated_at_cap(self, topics):
        source = FakeAudioSource(topics.audio)
        recorder = Recorder(source, max_duration_seconds=0.05)  # 800 samples
        recorder.start_recording()

        for _ in range(4):
            source.emit_level(1000, count=300)

        stats = recorder.get_stats()
        assert stats.total_samples == 800
        assert stats.buffer_size_bytes == 1600
        assert stats.is_recording is False
        recorder.cleanup()

    def test_concurrent_readers_and_capture(self, recorder, fake_source):
        recorder.start_recording()
        errors = []

        def read_loop():
            try:
                for _ in range(200):
                    buffer = recorder.get_audio_buffer()
                    assert len(buffer) % 2 == 0
            except AssertionError as e:
                errors.append(e)

        reader = threading.Thread(target=read_loop)
        reader.start()
        for _ in range(200):
            fake_source.emit_level(1000)
        reader.join()

        assert errors == []
        assert recorder.get_stats().total_samples == 200 * 160

    def test_save_to_wav(self, recorder, fake_source, tmp_path):
        recorder.start_recording()
        fake_source.emit(make_samples(1234))
        recorder.stop_recording()

        path = tmp_path / "take.wav"
        assert recorder.save_to_wav(path) is True

        data = path.read_bytes()
        assert len(data) == WAV_HEADER_SIZE + 320
        assert read_wav_data(data) == make_samples(1234).astype('<i2').tobytes()

    def test_save_empty_buffer_returns_false(self, recorder, tmp_path):
        path = tmp_path / "empty.wav"
        assert recorder.save_to_wav(path) is False
        assert not path.exists()

    def test_stats(self, recorder, fake_source):
        recorder.start_recording()
        for _ in range(100):
            fake_source.emit_level(1000)

        stats = recorder.get_stats()
        assert stats.is_recording is True
        assert stats.total_samples == 16000
        assert stats.duration_ms == 1000
        assert stats.duration_seconds == 1.0
        assert stats.chunk_count == 100

    def test_stats_report_session_start(self, recorder):
        assert recorder.get_stats().started_at is None

        before = time.time()
        recorder.start_recording()

        started_at = recorder.get_stats().started_at
        assert before <= started_at <= time.time()


class GatedReleaseSource(FakeAudioSource):
    """Blocks the first release until the test lets it through."""

    def __init__(self, topic):
        super().__init__(topic)
        self.releasing = threading.Event()
        self.proceed = threading.Event()
        self._gate = True

    def release(self, owner):
        if self._gate:
            self._gate = False
            self.releasing.set()
            self.proceed.wait(2.0)
        super().release(owner)


@pytest.mark.unit
def test_restart_during_cap_release_keeps_ownership(topics):
    """A session started while the capped one is releasing still holds the source."""
    source = GatedReleaseSource(topics.audio)
    recorder = Recorder(source, sample_rate=1600, max_duration_seconds=0.1)  # 160 samples
    try:
        recorder.start_recording()
        capture = threading.Thread(target=source.emit_level, args=(500,))
        capture.start()
        assert source.releasing.wait(2.0)
        assert recorder.is_recording is False

        results = []
        restart = threading.Thread(target=lambda: results.append(recorder.start_recording()))
        restart.start()
        time.sleep(0.05)
        source.proceed.set()
        capture.join(2.0)
        restart.join(2.0)

        assert results == [True]
        assert recorder.is_recording is True
        assert "recorder" in source.owners

        recorder.stop_recording()
        assert "recorder" not in source.owners
    finally:
        source.proceed.set()
        recorder.cleanup()
