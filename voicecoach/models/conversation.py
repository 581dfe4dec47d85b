"""Conversation state and turn models."""

import itertools
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .feedback import Feedback

_turn_ids = itertools.count(1)


class ConversationState(Enum):
    """Turn-taking states owned by the orchestrator."""
    IDLE = "idle"
    LISTENING = "listening"
    RECORDING = "recording"
    PROCESSING = "processing"
    AI_SPEAKING = "ai_speaking"
    ERROR = "error"


def _next_turn_id() -> str:
    return f"turn_{next(_turn_ids)}"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class ConversationTurn:
    """One completed utterance -> feedback exchange."""
    user_transcript: str
    feedback: Feedback
    duration_ms: int = 0
    id: str = field(default_factory=_next_turn_id)
    timestamp: int = field(default_factory=_now_ms)  # Unix time in milliseconds

    def summary(self) -> str:
        return f"{self.user_transcript} -> {self.feedback.overall_score}"

    def is_improvement_over(self, previous: Optional["ConversationTurn"]) -> bool:
        if previous is None:
            return False
        return self.feedback.overall_score > previous.feedback.overall_score


@dataclass
class ConversationStats:
    """Aggregate statistics over the conversation history."""
    total_turns: int
    average_pronunciation_score: int
    average_grammar_score: int
    average_fluency_score: int
    total_duration_ms: int
    current_state: ConversationState
    barge_ins_handled: int = 0
    total_barge_ins: int = 0

    @property
    def total_duration_seconds(self) -> int:
        return self.total_duration_ms // 1000

    @property
    def average_overall_score(self) -> int:
        return (self.average_pronunciation_score
                + self.average_grammar_score
                + self.average_fluency_score) // 3
