"""External collaborators: transcription, feedback and speech synthesis."""

from .base import AbstractTranscriber, AbstractFeedbackEngine, AbstractSynthesizer
from .google_transcriber import GoogleSpeechTranscriber
from .chatgpt_feedback import ChatGPTFeedbackEngine
from .console_synthesizer import ConsoleSynthesizer

__all__ = [
    "AbstractTranscriber",
    "AbstractFeedbackEngine",
    "AbstractSynthesizer",
    "GoogleSpeechTranscriber",
    "ChatGPTFeedbackEngine",
    "ConsoleSynthesizer",
]
