"""Barge-in arbitration between AI speech and user speech."""

import time
import logging
import threading
from collections import deque
from typing import Any, Dict, Optional

from pubsub import pub

from ..models.events import BargeInEvent

logger = logging.getLogger(__name__)


class BargeInChannel:
    """Bounded channel of capacity 1; a new event replaces an undelivered one.

    Consumers learn that a barge-in happened, not how many. The arbiter's
    counter is the authority for totals.
    """

    def __init__(self):
        self._events = deque(maxlen=1)
        self._condition = threading.Condition()
        self.dropped = 0

    def put(self, event: BargeInEvent) -> None:
        with self._condition:
            if self._events:
                self.dropped += 1
                logger.debug(f"Barge-in #{self._events[0].sequence_number} superseded "
                             f"by #{event.sequence_number}")
            self._events.append(event)
            self._condition.notify_all()

    def get(self, timeout: Optional[float] = None) -> Optional[BargeInEvent]:
        """Block until an event is available; None on timeout."""
        with self._condition:
            if not self._condition.wait_for(lambda: bool(self._events), timeout=timeout):
                return None
            return self._events.popleft()

    def get_nowait(self) -> Optional[BargeInEvent]:
        with self._condition:
            if self._events:
                return self._events.popleft()
            return None

    def clear(self) -> None:
        with self._condition:
            self._events.clear()

    @property
    def pending(self) -> bool:
        with self._condition:
            return bool(self._events)


class InterruptArbiter:
    """Raises a barge-in when the user starts speaking over the AI.

    The AI-speaking flag is written from two places (the orchestrator and the
    synthesizer's completion callback) and read from the VAD listener, so all
    access goes through one lock.
    """

    def __init__(self, vad_topic: str = "vad.state", channel: Optional[BargeInChannel] = None):
        self.vad_topic = vad_topic
        self.channel = channel or BargeInChannel()

        self.lock = threading.Lock()
        self._ai_speaking = False
        self._barge_in_count = 0
        # Event sequence numbers keep increasing across count resets
        self._sequence = 0

        pub.subscribe(self.on_vad_state, self.vad_topic)
        self._subscribed = True
        logger.info(f"InterruptArbiter listening on '{vad_topic}'")

    @property
    def is_ai_speaking(self) -> bool:
        with self.lock:
            return self._ai_speaking

    @property
    def barge_in_count(self) -> int:
        """Conflicts detected since the last reset (never coalesced)."""
        with self.lock:
            return self._barge_in_count

    def start_ai_speech(self) -> None:
        with self.lock:
            self._ai_speaking = True
        logger.debug("🤖 AI speech started")

    def stop_ai_speech(self) -> None:
        """Clear the AI-speaking flag; a no-op when already clear."""
        with self.lock:
            if not self._ai_speaking:
                return
            self._ai_speaking = False
        logger.debug("🤖 AI speech stopped")

    def on_vad_state(self, speaking: bool, timestamp: float) -> None:
        """VAD transition listener."""
        if not speaking:
            return

        with self.lock:
            if not self._ai_speaking:
                return
            # Clear first so the same AI utterance cannot raise a second conflict
            self._ai_speaking = False
            self._barge_in_count += 1
            self._sequence += 1
            event = BargeInEvent(
                timestamp=int(time.time() * 1000),
                sequence_number=self._sequence,
            )
            self.channel.put(event)

        logger.info(f"⚡ BARGE-IN #{event.sequence_number}: user spoke over AI")

    def reset_barge_in_count(self) -> None:
        with self.lock:
            self._barge_in_count = 0
        logger.debug("Barge-in count reset")

    def get_status(self) -> Dict[str, Any]:
        with self.lock:
            return {
                'ai_speaking': self._ai_speaking,
                'barge_in_count': self._barge_in_count,
                'last_sequence': self._sequence,
                'pending_event': self.channel.pending,
                'dropped_events': self.channel.dropped,
            }

    def cleanup(self) -> None:
        self.stop_ai_speech()
        self.channel.clear()
        if self._subscribed:
            pub.unsubscribe(self.on_vad_state, self.vad_topic)
            self._subscribed = False
        logger.info("InterruptArbiter cleanup complete")
