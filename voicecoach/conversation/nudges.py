"""Silence nudges and filler-word interruption."""

import time
import logging
from typing import Callable, Optional, Sequence

logger = logging.getLogger(__name__)

FILLER_PREFIXES = ("um", "uh", "ah", "hm", "hmm", "mmm", "er", "aaa")

SILENCE_NUDGES = (
    "Are you going to speak or just stand there?",
    "I haven't got all day, you know.",
    "Cat got your tongue?",
    "Well? I'm waiting.",
    "Silence is boring. Say something.",
    "Hello? Is anyone home?",
    "You stopped. Why?",
    "Don't leave me hanging like this.",
    "Speak up, I'm getting old here.",
    "Did you forget how to speak?",
    "Tick tock...",
    "Are we done here?",
    "Say something interesting, please.",
    "I'm getting impatient.",
    "Do you need a script? Just talk.",
)

FILLER_NUDGES = (
    "Stuck? Spit it out!",
    "No 'umms', just speak.",
    "Don't hesitate.",
    "Come on, say it.",
    "You're stalling. Focus.",
    "Less 'ummm', more words.",
)


def _is_filler_token(token: str, prefixes: Sequence[str]) -> bool:
    return any(token.startswith(prefix) for prefix in prefixes)


def is_filler_utterance(text: str, prefixes: Sequence[str] = FILLER_PREFIXES) -> bool:
    """True if the utterance trails off into, or consists only of, filler words.

    The last token is tested; when there is more than one token, an utterance
    made entirely of fillers matches as well.
    """
    tokens = text.lower().split()
    if not tokens:
        return False
    if _is_filler_token(tokens[-1], prefixes):
        return True
    return len(tokens) > 1 and all(_is_filler_token(t, prefixes) for t in tokens)


class FillerDetector:
    """Rate-limited filler detection over partial transcripts.

    ``check`` returns True at most once per cooldown window no matter how
    many filler partials arrive inside it.
    """

    def __init__(self, cooldown_ms: int = 5000,
                 clock: Callable[[], float] = time.monotonic,
                 prefixes: Sequence[str] = FILLER_PREFIXES):
        self.cooldown_ms = cooldown_ms
        self.clock = clock
        self.prefixes = tuple(prefixes)
        self._last_triggered: Optional[float] = None

    def check(self, text: str) -> bool:
        if not is_filler_utterance(text, self.prefixes):
            return False

        now = self.clock()
        if self._last_triggered is not None:
            elapsed_ms = (now - self._last_triggered) * 1000
            if elapsed_ms < self.cooldown_ms:
                logger.debug(f"Filler '{text}' ignored, cooldown ({elapsed_ms:.0f}ms elapsed)")
                return False

        self._last_triggered = now
        logger.info(f"😤 Filler detected: '{text}'")
        return True

    def reset(self) -> None:
        self._last_triggered = None
