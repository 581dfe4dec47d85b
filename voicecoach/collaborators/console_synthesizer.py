"""Console stand-in for text-to-speech."""

import logging
import threading
from typing import Callable, Optional

from rich.console import Console

from .base import AbstractSynthesizer
from ..errors import SynthesisFailed

logger = logging.getLogger(__name__)


class ConsoleSynthesizer(AbstractSynthesizer):
    """Prints utterances and holds the 'speaking' state for as long as reading
    them aloud would take at ``words_per_minute``."""

    def __init__(self, words_per_minute: int = 160, console: Optional[Console] = None):
        self.words_per_minute = words_per_minute
        self.console = console or Console()
        self.lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._ready = False

    @property
    def is_speaking(self) -> bool:
        with self.lock:
            return self._timer is not None

    def initialize(self, on_ready: Callable[[], None],
                   on_error: Callable[[Exception], None]) -> None:
        self._ready = True
        on_ready()

    def speaking_time(self, text: str) -> float:
        words = max(1, len(text.split()))
        return words * 60.0 / self.words_per_minute

    def speak(self, text: str,
              on_start: Callable[[], None],
              on_done: Callable[[], None],
              on_error: Callable[[Exception], None]) -> None:
        if not self._ready:
            raise SynthesisFailed("Synthesizer not initialized")

        self.stop()
        timer = threading.Timer(self.speaking_time(text), self._finish, args=(on_done,))
        timer.daemon = True
        with self.lock:
            self._timer = timer

        on_start()
        self.console.print(f"[bold cyan]🤖 {text}[/bold cyan]")
        timer.start()

    def _finish(self, on_done: Callable[[], None]) -> None:
        with self.lock:
            if self._timer is not threading.current_thread():
                return
            self._timer = None
        on_done()

    def stop(self) -> None:
        with self.lock:
            timer = self._timer
            self._timer = None
        if timer is not None:
            timer.cancel()
            self.console.print("[dim]🤖 (cut off)[/dim]")

    def shutdown(self) -> None:
        self.stop()
        self._ready = False
