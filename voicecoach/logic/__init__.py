"""Signal logic: voice activity detection and barge-in arbitration."""

from .vad import VoiceActivityDetector, calculate_rms
from .interrupt import InterruptArbiter, BargeInChannel

__all__ = [
    'VoiceActivityDetector',
    'calculate_rms',
    'InterruptArbiter',
    'BargeInChannel',
]
