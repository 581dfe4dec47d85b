"""Canonical 44-byte RIFF/WAVE header for 16 kHz mono 16-bit PCM."""

import wave
import struct
import logging
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)

WAV_HEADER_SIZE = 44
PCM_FORMAT = 1

# RIFF size, fmt subchunk (PCM), data size; all little-endian
_HEADER = struct.Struct('<4sI4s4sIHHIIHH4sI')


def build_wav_header(data_size: int, sample_rate: int = 16000,
                     channels: int = 1, bits_per_sample: int = 16) -> bytes:
    """Build the 44-byte header for a PCM payload of ``data_size`` bytes."""
    block_align = channels * bits_per_sample // 8
    byte_rate = sample_rate * block_align
    return _HEADER.pack(
        b'RIFF',
        36 + data_size,
        b'WAVE',
        b'fmt ',
        16,  # Subchunk1Size for PCM
        PCM_FORMAT,
        channels,
        sample_rate,
        byte_rate,
        block_align,
        bits_per_sample,
        b'data',
        data_size,
    )


def encode_wav(pcm: bytes, sample_rate: int = 16000, channels: int = 1,
               bits_per_sample: int = 16) -> bytes:
    return build_wav_header(len(pcm), sample_rate, channels, bits_per_sample) + pcm


def write_wav(file_path: Union[str, Path], pcm: bytes, sample_rate: int = 16000) -> int:
    """Write a mono 16-bit PCM WAV file; returns bytes written."""
    with wave.open(str(file_path), 'wb') as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)

    size = WAV_HEADER_SIZE + len(pcm)
    logger.info(f"WAV file saved: {file_path} ({size} bytes)")
    return size


def read_wav_data(wav: bytes) -> bytes:
    """Return the data chunk payload of a WAV byte string.

    Walks the RIFF chunks so headers with extra chunks are accepted too.

    Raises:
        ValueError: if ``wav`` is not a RIFF/WAVE stream with a data chunk
    """
    if len(wav) < 12 or wav[0:4] != b'RIFF' or wav[8:12] != b'WAVE':
        raise ValueError("Not a RIFF/WAVE stream")

    offset = 12
    while offset + 8 <= len(wav):
        chunk_id = wav[offset:offset + 4]
        chunk_size = struct.unpack_from('<I', wav, offset + 4)[0]
        body = offset + 8
        if chunk_id == b'data':
            return wav[body:body + chunk_size]
        # Chunks are word aligned
        offset = body + chunk_size + (chunk_size & 1)

    raise ValueError("WAV stream has no data chunk")
