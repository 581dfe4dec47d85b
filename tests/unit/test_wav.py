"""Unit tests for WAV header encoding."""

import pytest
import struct
import wave

from voicecoach.audio.wav import (
    WAV_HEADER_SIZE,
    build_wav_header,
    encode_wav,
    read_wav_data,
    write_wav,
)


@pytest.mark.unit
class TestWavHeader:

    def test_header_fields(self):
        header = build_wav_header(3200)

        assert len(header) == WAV_HEADER_SIZE
        assert header[0:4] == b'RIFF'
        assert struct.unpack('<I', header[4:8])[0] == 36 + 3200
        assert header[8:12] == b'WAVE'
        assert header[12:16] == b'fmt '
        assert struct.unpack('<I', header[16:20])[0] == 16
        assert struct.unpack('<H', header[20:22])[0] == 1   # PCM
        assert struct.unpack('<H', header[22:24])[0] == 1   # mono
        assert struct.unpack('<I', header[24:28])[0] == 16000
        assert struct.unpack('<I', header[28:32])[0] == 32000  # byte rate
        assert struct.unpack('<H', header[32:34])[0] == 2   # block align
        assert struct.unpack('<H', header[34:36])[0] == 16
        assert header[36:40] == b'data'
        assert struct.unpack('<I', header[40:44])[0] == 3200

    def test_empty_payload(self):
        header = build_wav_header(0)
        assert struct.unpack('<I', header[4:8])[0] == 36
        assert struct.unpack('<I', header[40:44])[0] == 0

    def test_written_file_round_trips(self, tmp_path, audio_test_data):
        payload = audio_test_data("noise", duration_seconds=0.25)
        path = tmp_path / "utterance.wav"

        written = write_wav(path, payload)

        data = path.read_bytes()
        assert written == len(data) == WAV_HEADER_SIZE + len(payload)
        assert struct.unpack('<I', data[4:8])[0] == 36 + len(payload)
        assert struct.unpack('<I', data[40:44])[0] == len(payload)
        assert read_wav_data(data) == payload

    def test_written_file_matches_encoded_bytes(self, tmp_path):
        payload = b'\x10\x00\xf0\xff' * 400
        path = tmp_path / "take.wav"

        write_wav(path, payload)

        assert path.read_bytes() == encode_wav(payload)

    def test_readable_by_wave_module(self, tmp_path, audio_test_data):
        payload = audio_test_data("sine", duration_seconds=0.1)
        path = tmp_path / "sine.wav"
        write_wav(path, payload)

        with wave.open(str(path), 'rb') as wf:
            assert wf.getnchannels() == 1
            assert wf.getsampwidth() == 2
            assert wf.getframerate() == 16000
            assert wf.readframes(wf.getnframes()) == payload

    def test_read_skips_extra_chunks(self):
        payload = b'\x01\x02\x03\x04'
        extra = b'LIST' + struct.pack('<I', 3) + b'abc' + b'\x00'
        wav = encode_wav(payload)
        # Insert an odd-sized chunk between fmt and data
        wav = wav[:36] + extra + wav[36:]

        assert read_wav_data(wav) == payload

    @pytest.mark.parametrize("data", [b'', b'RIFF', b'RIFX' + b'\x00' * 40])
    def test_read_rejects_non_wav(self, data):
        with pytest.raises(ValueError):
            read_wav_data(data)

    def test_read_rejects_missing_data_chunk(self):
        header = build_wav_header(0)[:36]
        with pytest.raises(ValueError):
            read_wav_data(header)
