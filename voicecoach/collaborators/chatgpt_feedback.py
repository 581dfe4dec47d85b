"""ChatGPT feedback engine for spoken-English practice."""

import asyncio
import logging
import threading
from typing import Optional

import aiohttp

from .base import AbstractFeedbackEngine
from ..errors import FeedbackUnavailable
from ..models.feedback import Feedback

logger = logging.getLogger(__name__)

FEEDBACK_PROMPT = """You are an English speaking coach. The learner said:

"{transcript}"

Reply with only a JSON object with these keys:
transcript (the learner's words), pronunciationScore, grammarScore and
fluencyScore (integers 0-100), feedback (one or two spoken sentences),
corrections (list of strings, may be empty), exampleSentence (a better
way to say it)."""


class ChatGPTFeedbackEngine(AbstractFeedbackEngine):
    """Sends the transcript to the chat completions API and parses the reply.

    ``generate`` runs on a worker thread with its own event loop; ``cancel``
    may be called from any other thread and aborts the HTTP request.
    """

    def __init__(self, api_key: str, model: str = "gpt-4o-mini",
                 temperature: float = 0.3, timeout_seconds: float = 20.0):
        """Initialize ChatGPT feedback engine.

        Args:
            api_key: OpenAI API key
            model: ChatGPT model to use
            temperature: Temperature for response generation (0.0 to 1.0)
            timeout_seconds: Total request timeout
        """
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.timeout_seconds = timeout_seconds
        self.base_url = "https://api.openai.com/v1/chat/completions"

        self._lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._task: Optional[asyncio.Task] = None

        logger.info(f"ChatGPTFeedbackEngine initialized with model: {model}")

    def initialize(self) -> bool:
        if not self.api_key:
            logger.error("❌ No OpenAI API key configured")
            return False
        return True

    def generate(self, transcript: str) -> Feedback:
        loop = asyncio.new_event_loop()
        try:
            task = loop.create_task(self.send_prompt(FEEDBACK_PROMPT.format(transcript=transcript)))
            with self._lock:
                self._loop = loop
                self._task = task
            try:
                content = loop.run_until_complete(task)
            except asyncio.CancelledError as e:
                raise FeedbackUnavailable("Feedback request cancelled") from e
        finally:
            with self._lock:
                self._loop = None
                self._task = None
            loop.close()

        return Feedback.from_payload(content)

    async def send_prompt(self, prompt: str, max_tokens: int = 800) -> str:
        """Send a prompt to ChatGPT and get the response text.

        Raises:
            FeedbackUnavailable: on transport errors, timeouts or non-200 replies
        """
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

        data = {
            "model": self.model,
            "messages": [
                {
                    "role": "user",
                    "content": prompt
                }
            ],
            "temperature": self.temperature,
            "max_tokens": max_tokens
        }

        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.base_url, headers=headers, json=data) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        raise FeedbackUnavailable(f"ChatGPT API error: {response.status} - {error_text}")

                    result = await response.json()
        except aiohttp.ClientError as e:
            raise FeedbackUnavailable(f"ChatGPT request failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise FeedbackUnavailable(f"ChatGPT request timed out after {self.timeout_seconds}s") from e

        try:
            return result["choices"][0]["message"]["content"].strip()
        except (KeyError, IndexError, TypeError) as e:
            raise FeedbackUnavailable(f"Unexpected ChatGPT response shape: {e}") from e

    def cancel(self) -> None:
        with self._lock:
            if self._loop is not None and self._task is not None:
                logger.info("Cancelling feedback request")
                self._loop.call_soon_threadsafe(self._task.cancel)
