"""Event models for the pub/sub signal pipeline."""

from dataclasses import dataclass


@dataclass(frozen=True)
class BargeInEvent:
    """User started speaking while the AI was speaking."""
    timestamp: int  # Unix time in milliseconds
    sequence_number: int
