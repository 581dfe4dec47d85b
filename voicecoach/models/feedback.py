"""Pronunciation feedback models and payload parsing."""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from ..errors import FeedbackMalformed

logger = logging.getLogger(__name__)

FALLBACK_MESSAGE = "Keep practicing! Every conversation helps you improve."
FALLBACK_CORRECTION = "Focus on speaking clearly and at a steady pace"
FALLBACK_EXAMPLE = "The quick brown fox jumps over the lazy dog."


class FeedbackLevel(Enum):
    """Coarse grade used for display."""
    EXCELLENT = "excellent"    # 90-100
    GOOD = "good"              # 75-89
    FAIR = "fair"              # 60-74
    NEEDS_WORK = "needs_work"  # 0-59


def feedback_level(score: int) -> FeedbackLevel:
    if score >= 90:
        return FeedbackLevel.EXCELLENT
    if score >= 75:
        return FeedbackLevel.GOOD
    if score >= 60:
        return FeedbackLevel.FAIR
    return FeedbackLevel.NEEDS_WORK


class FeedbackPayload(BaseModel):
    """Wire schema of the JSON object produced by the feedback engine."""
    transcript: str
    pronunciationScore: int = Field(strict=True, ge=0, le=100)
    grammarScore: int = Field(strict=True, ge=0, le=100)
    fluencyScore: int = Field(strict=True, ge=0, le=100)
    feedback: str
    corrections: List[str]
    exampleSentence: str

    @field_validator('transcript', 'feedback')
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value


@dataclass(frozen=True)
class Feedback:
    """Structured feedback for one user utterance."""
    transcript: str
    pronunciation_score: int
    grammar_score: int
    fluency_score: int
    message: str
    corrections: Tuple[str, ...] = field(default_factory=tuple)
    example_sentence: str = ""

    @property
    def overall_score(self) -> int:
        return (self.pronunciation_score + self.grammar_score + self.fluency_score) // 3

    @property
    def level(self) -> FeedbackLevel:
        return feedback_level(self.overall_score)

    def is_valid(self) -> bool:
        """Scores in [0, 100] and non-blank transcript and message."""
        scores = (self.pronunciation_score, self.grammar_score, self.fluency_score)
        return (all(0 <= s <= 100 for s in scores)
                and bool(self.transcript.strip())
                and bool(self.message.strip()))

    def is_passing_grade(self, threshold: int = 70) -> bool:
        return (self.pronunciation_score >= threshold
                and self.grammar_score >= threshold
                and self.fluency_score >= threshold)

    def _scores_by_area(self) -> Dict[str, int]:
        return {
            "Pronunciation": self.pronunciation_score,
            "Grammar": self.grammar_score,
            "Fluency": self.fluency_score,
        }

    def weakest_area(self) -> str:
        scores = self._scores_by_area()
        return min(scores, key=scores.get)

    def strongest_area(self) -> str:
        scores = self._scores_by_area()
        return max(scores, key=scores.get)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "transcript": self.transcript,
            "pronunciationScore": self.pronunciation_score,
            "grammarScore": self.grammar_score,
            "fluencyScore": self.fluency_score,
            "feedback": self.message,
            "corrections": list(self.corrections),
            "exampleSentence": self.example_sentence,
        }

    @classmethod
    def fallback(cls, transcript: str = "") -> "Feedback":
        """Canned feedback used when the engine's payload is unusable."""
        return cls(
            transcript=transcript,
            pronunciation_score=75,
            grammar_score=75,
            fluency_score=75,
            message=FALLBACK_MESSAGE,
            corrections=(FALLBACK_CORRECTION,),
            example_sentence=FALLBACK_EXAMPLE,
        )

    @classmethod
    def empty(cls) -> "Feedback":
        return cls(transcript="", pronunciation_score=0, grammar_score=0,
                   fluency_score=0, message="")

    @classmethod
    def from_payload(cls, payload: Union[str, bytes, Dict[str, Any]]) -> "Feedback":
        """Parse an engine payload.

        Accepts a dict or raw LLM text; Markdown code fences are stripped and,
        failing a direct parse, the outermost JSON object is extracted.

        Raises:
            FeedbackMalformed: if the payload is not valid feedback JSON or a
                score is out of range.
        """
        if isinstance(payload, (str, bytes)):
            payload = _decode_json_object(payload)

        try:
            parsed = FeedbackPayload.model_validate(payload)
        except ValidationError as e:
            raise FeedbackMalformed(f"Invalid feedback payload: {e}") from e

        return cls(
            transcript=parsed.transcript,
            pronunciation_score=parsed.pronunciationScore,
            grammar_score=parsed.grammarScore,
            fluency_score=parsed.fluencyScore,
            message=parsed.feedback,
            corrections=tuple(parsed.corrections),
            example_sentence=parsed.exampleSentence,
        )


def _clean_json_text(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[len("```json"):]
    elif cleaned.startswith("```"):
        cleaned = cleaned[len("```"):]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-len("```")]
    return cleaned.strip()


def _extract_json_object(text: str) -> Optional[str]:
    start = text.find('{')
    end = text.rfind('}')
    if start >= 0 and end > start:
        return text[start:end + 1]
    return None


def _decode_json_object(raw: Union[str, bytes]) -> Any:
    if isinstance(raw, bytes):
        raw = raw.decode('utf-8', errors='replace')

    cleaned = _clean_json_text(raw)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        logger.debug("Feedback payload is not plain JSON, attempting recovery")

    extracted = _extract_json_object(cleaned)
    if extracted is None:
        raise FeedbackMalformed("No JSON object found in feedback payload")
    try:
        return json.loads(extracted)
    except json.JSONDecodeError as e:
        raise FeedbackMalformed(f"Extracted JSON failed to parse: {e}") from e
