"""Google Speech-to-Text transcriber."""

import time
import logging
import threading
from typing import Optional

from google.cloud import speech
from google.api_core import exceptions as gax_exceptions
from google.oauth2 import service_account

from .base import AbstractTranscriber, PartialCallback
from ..audio.wav import read_wav_data
from ..errors import TranscriptionFailed

logger = logging.getLogger(__name__)


class GoogleSpeechTranscriber(AbstractTranscriber):
    """Google Speech-to-Text API backend for utterance transcription."""

    def __init__(self,
                 credentials_path: Optional[str] = None,
                 sample_rate: int = 16000,
                 language: str = "en-US",
                 use_enhanced: bool = True,
                 enable_automatic_punctuation: bool = True,
                 timeout_seconds: float = 10.0):
        """Initialize Google Speech transcriber.

        Args:
            credentials_path: Path to Google Cloud service account JSON file
            sample_rate: Sample rate of the recorded PCM
            language: Language code (e.g., 'en-US', 'es-ES')
            use_enhanced: Whether to use enhanced model
            enable_automatic_punctuation: Enable automatic punctuation
            timeout_seconds: Per-request deadline
        """
        super().__init__(language)
        self.credentials_path = credentials_path
        if not self.credentials_path:
            raise ValueError("Google credentials path is required - cannot initialize without credentials")
        self.use_enhanced = use_enhanced
        self.enable_automatic_punctuation = enable_automatic_punctuation
        self.timeout_seconds = timeout_seconds
        self.client = None
        self.project_id = None
        self._cancelled = threading.Event()
        self.config = speech.RecognitionConfig(
            encoding=speech.RecognitionConfig.AudioEncoding.LINEAR16,
            sample_rate_hertz=sample_rate,
            language_code=self.language,
            use_enhanced=self.use_enhanced,
            enable_automatic_punctuation=self.enable_automatic_punctuation,
            model="latest_short",
        )

    def initialize(self) -> bool:
        """Initialize Google Speech client and verify credentials."""
        logger.info(f"Loading Google credentials from: {self.credentials_path}")
        credentials = service_account.Credentials.from_service_account_file(self.credentials_path)
        self.client = speech.SpeechClient(credentials=credentials)
        self.project_id = credentials.project_id
        logger.info(f"Using Google Cloud project: {self.project_id}")
        logger.info("Google Speech-to-Text transcriber initialized successfully")
        return True

    def transcribe(self, audio_bytes: bytes, on_partial: Optional[PartialCallback] = None) -> str:
        if self.client is None:
            raise TranscriptionFailed("Transcriber not initialized")
        self._cancelled.clear()

        try:
            pcm = read_wav_data(audio_bytes)
        except ValueError as e:
            raise TranscriptionFailed(f"Unreadable audio: {e}") from e

        start_time = time.time()
        logger.debug(f"Audio size: {len(pcm)} bytes; Language: {self.language}; "
                     f"Enhanced model: {self.use_enhanced}")

        audio = speech.RecognitionAudio(content=pcm)
        try:
            response = self.client.recognize(config=self.config, audio=audio,
                                             timeout=self.timeout_seconds)
        except gax_exceptions.DeadlineExceeded as e:
            logger.error("Google STT recognize deadline exceeded")
            raise TranscriptionFailed(f"Google Speech recognize timeout: {e}") from e
        except gax_exceptions.ServiceUnavailable as e:
            logger.error("Google STT service unavailable")
            raise TranscriptionFailed(f"Google Speech service unavailable: {e}") from e
        except gax_exceptions.GoogleAPICallError as e:
            logger.error(f"Google STT API call error: {e}")
            raise TranscriptionFailed(f"Google Speech API error: {e}") from e

        processing_time = time.time() - start_time
        if not response.results:
            logger.debug("--- NO SPEECH DETECTED ---")
            return ""

        # Each result covers a consecutive segment; report the running text
        segments = []
        for result in response.results:
            if self._cancelled.is_set():
                logger.info("Transcription cancelled, dropping remaining segments")
                return ""
            if not result.alternatives:
                continue
            segments.append(result.alternatives[0].transcript.strip())
            if on_partial:
                on_partial(" ".join(segments))

        transcript = " ".join(s for s in segments if s)
        logger.debug(f"✅ TRANSCRIPTION SUCCESS: '{transcript}' "
                     f"(processing_time: {processing_time:.3f}s)")
        return transcript

    def cancel(self) -> None:
        # The synchronous gRPC call cannot be aborted; its result is ignored
        self._cancelled.set()

    def cleanup(self) -> None:
        self.client = None
