"""Conversation turn-taking: orchestrator, history and nudges."""

from .orchestrator import ConversationOrchestrator, ControlEvent, EventKind
from .history import ConversationHistory
from .nudges import (
    FILLER_PREFIXES,
    SILENCE_NUDGES,
    FILLER_NUDGES,
    FillerDetector,
    is_filler_utterance,
)

__all__ = [
    "ConversationOrchestrator",
    "ControlEvent",
    "EventKind",
    "ConversationHistory",
    "FILLER_PREFIXES",
    "SILENCE_NUDGES",
    "FILLER_NUDGES",
    "FillerDetector",
    "is_filler_utterance",
]
