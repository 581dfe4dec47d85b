"""Audio capture, recording and WAV encoding module."""

from .source import AudioSource
from .recorder import Recorder
from .wav import build_wav_header, encode_wav, write_wav, read_wav_data, WAV_HEADER_SIZE

__all__ = [
    'AudioSource',
    'Recorder',
    'build_wav_header',
    'encode_wav',
    'write_wav',
    'read_wav_data',
    'WAV_HEADER_SIZE',
]
