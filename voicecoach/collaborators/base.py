"""Abstract base classes for the external speech and feedback collaborators."""

from abc import ABC, abstractmethod
from typing import Callable, Optional
import logging

from ..models.feedback import Feedback

logger = logging.getLogger(__name__)

PartialCallback = Callable[[str], None]


class AbstractTranscriber(ABC):
    """Speech-to-text backend."""

    def __init__(self, language: str = "en-US"):
        self.language = language

    @abstractmethod
    def initialize(self) -> bool:
        """Initialize backend resources and verify configuration.

        Returns:
            True if initialization successful, False otherwise
        """
        pass

    @abstractmethod
    def transcribe(self, audio_bytes: bytes, on_partial: Optional[PartialCallback] = None) -> str:
        """Transcribe a WAV byte stream.

        Args:
            audio_bytes: WAV bytes (44-byte header plus 16 kHz mono PCM)
            on_partial: Called with the text recognized so far, before the
                        final result is returned

        Returns:
            The final transcript; empty when no speech was recognized

        Raises:
            TranscriptionFailed: if the backend call fails
        """
        pass

    def cancel(self) -> None:
        """Abandon the in-flight call; its result will be discarded."""
        pass

    def cleanup(self) -> None:
        pass


class AbstractFeedbackEngine(ABC):
    """Produces pronunciation/grammar feedback for a transcript."""

    @abstractmethod
    def initialize(self) -> bool:
        pass

    @abstractmethod
    def generate(self, transcript: str) -> Feedback:
        """Generate feedback for ``transcript``.

        Raises:
            FeedbackUnavailable: transport or generation failure
            FeedbackMalformed: the engine answered with unusable output
        """
        pass

    def cancel(self) -> None:
        pass

    def cleanup(self) -> None:
        pass


class AbstractSynthesizer(ABC):
    """Text-to-speech output with immediate cutoff."""

    @abstractmethod
    def initialize(self, on_ready: Callable[[], None],
                   on_error: Callable[[Exception], None]) -> None:
        """Begin engine startup; exactly one of the callbacks fires when done."""
        pass

    @abstractmethod
    def speak(self, text: str,
              on_start: Callable[[], None],
              on_done: Callable[[], None],
              on_error: Callable[[Exception], None]) -> None:
        """Start speaking ``text`` without blocking.

        Raises:
            SynthesisFailed: if the utterance cannot be started
        """
        pass

    @abstractmethod
    def stop(self) -> None:
        """Cut off current speech; safe to call when not speaking.

        A stopped utterance does not fire ``on_done``.
        """
        pass

    def shutdown(self) -> None:
        pass
