"""Append-only in-memory conversation history."""

import logging
import threading
from typing import Iterator, List, Optional

from ..models.conversation import ConversationTurn

logger = logging.getLogger(__name__)


class ConversationHistory:
    """Ordered list of completed turns; grows only by append, reset only by clear."""

    def __init__(self):
        self.lock = threading.Lock()
        self._turns: List[ConversationTurn] = []

    def append(self, turn: ConversationTurn) -> None:
        with self.lock:
            self._turns.append(turn)
            count = len(self._turns)
        logger.info(f"📝 Turn {turn.id} added to history ({count} total)")

    def clear(self) -> None:
        with self.lock:
            self._turns.clear()
        logger.info("History cleared")

    def turns(self) -> List[ConversationTurn]:
        """Snapshot copy of all turns."""
        with self.lock:
            return list(self._turns)

    def last(self) -> Optional[ConversationTurn]:
        with self.lock:
            return self._turns[-1] if self._turns else None

    def __len__(self) -> int:
        with self.lock:
            return len(self._turns)

    def __iter__(self) -> Iterator[ConversationTurn]:
        return iter(self.turns())
