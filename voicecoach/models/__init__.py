"""Data models for the VoiceCoach application."""

from .audio import AudioFrame, AudioSourceStats, RecordingStats, BYTES_PER_SAMPLE
from .events import BargeInEvent
from .feedback import Feedback, FeedbackLevel, FeedbackPayload, feedback_level
from .conversation import ConversationState, ConversationTurn, ConversationStats

__all__ = [
    "AudioFrame",
    "AudioSourceStats",
    "RecordingStats",
    "BYTES_PER_SAMPLE",
    "BargeInEvent",
    "Feedback",
    "FeedbackLevel",
    "FeedbackPayload",
    "feedback_level",
    "ConversationState",
    "ConversationTurn",
    "ConversationStats",
]
