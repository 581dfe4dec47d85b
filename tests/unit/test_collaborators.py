"""Unit tests for the shipped transcriber, feedback engine and synthesizer adapters."""

import io
import json
import time
import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from google.api_core import exceptions as gax_exceptions
from rich.console import Console

from voicecoach.audio.wav import encode_wav
from voicecoach.collaborators.chatgpt_feedback import ChatGPTFeedbackEngine
from voicecoach.collaborators.console_synthesizer import ConsoleSynthesizer
from voicecoach.collaborators.google_transcriber import GoogleSpeechTranscriber
from voicecoach.errors import FeedbackMalformed, FeedbackUnavailable, SynthesisFailed, TranscriptionFailed


def _recognize_response(*texts):
    results = [SimpleNamespace(alternatives=[SimpleNamespace(transcript=t)]) for t in texts]
    return SimpleNamespace(results=results)


@pytest.fixture
def transcriber():
    transcriber = GoogleSpeechTranscriber(credentials_path="/nonexistent/key.json")
    transcriber.client = MagicMock()
    return transcriber


@pytest.mark.unit
class TestGoogleSpeechTranscriber:

    def test_credentials_required(self):
        with pytest.raises(ValueError):
            GoogleSpeechTranscriber(credentials_path=None)

    def test_wav_header_stripped(self, transcriber):
        pcm = b'\x01\x00' * 800
        transcriber.client.recognize.return_value = _recognize_response("hello")

        assert transcriber.transcribe(encode_wav(pcm)) == "hello"

        audio = transcriber.client.recognize.call_args.kwargs['audio']
        assert audio.content == pcm

    def test_segments_reported_as_partials(self, transcriber):
        transcriber.client.recognize.return_value = _recognize_response("I went", " to the store ")
        partials = []

        transcript = transcriber.transcribe(encode_wav(b'\x00\x00' * 160), on_partial=partials.append)

        assert transcript == "I went to the store"
        assert partials == ["I went", "I went to the store"]

    def test_no_results_is_empty(self, transcriber):
        transcriber.client.recognize.return_value = _recognize_response()
        assert transcriber.transcribe(encode_wav(b'\x00\x00' * 160)) == ""

    @pytest.mark.parametrize("error", [
        gax_exceptions.DeadlineExceeded("too slow"),
        gax_exceptions.ServiceUnavailable("down"),
        gax_exceptions.InvalidArgument("bad audio"),
    ])
    def test_api_errors_become_transcription_failed(self, transcriber, error):
        transcriber.client.recognize.side_effect = error

        with pytest.raises(TranscriptionFailed):
            transcriber.transcribe(encode_wav(b'\x00\x00' * 160))

    def test_not_initialized(self):
        transcriber = GoogleSpeechTranscriber(credentials_path="/nonexistent/key.json")
        with pytest.raises(TranscriptionFailed):
            transcriber.transcribe(encode_wav(b''))

    def test_unreadable_audio(self, transcriber):
        with pytest.raises(TranscriptionFailed):
            transcriber.transcribe(b'not a wav file at all, clearly not a wav file')


@pytest.mark.unit
class TestChatGPTFeedbackEngine:

    def test_initialize_requires_key(self):
        assert ChatGPTFeedbackEngine(api_key="").initialize() is False
        assert ChatGPTFeedbackEngine(api_key="sk-test").initialize() is True

    def test_generate_parses_reply(self):
        engine = ChatGPTFeedbackEngine(api_key="sk-test")
        reply = json.dumps({
            "transcript": "I goed home",
            "pronunciationScore": 85,
            "grammarScore": 55,
            "fluencyScore": 80,
            "feedback": "Say 'went' instead of 'goed'.",
            "corrections": ["goed -> went"],
            "exampleSentence": "I went home.",
        })
        prompts = []

        async def send_prompt(prompt):
            prompts.append(prompt)
            return f"```json\n{reply}\n```"

        engine.send_prompt = send_prompt

        feedback = engine.generate("I goed home")

        assert feedback.grammar_score == 55
        assert '"I goed home"' in prompts[0]

    def test_malformed_reply(self):
        engine = ChatGPTFeedbackEngine(api_key="sk-test")

        async def send_prompt(prompt):
            return "I'm sorry, I can't help with that."

        engine.send_prompt = send_prompt

        with pytest.raises(FeedbackMalformed):
            engine.generate("hello")

    def test_transport_failure_propagates(self):
        engine = ChatGPTFeedbackEngine(api_key="sk-test")

        async def send_prompt(prompt):
            raise FeedbackUnavailable("ChatGPT API error: 503")

        engine.send_prompt = send_prompt

        with pytest.raises(FeedbackUnavailable):
            engine.generate("hello")

    def test_cancel_aborts_request(self):
        engine = ChatGPTFeedbackEngine(api_key="sk-test")
        started = threading.Event()

        async def send_prompt(prompt):
            started.set()
            await asyncio.sleep(10)

        engine.send_prompt = send_prompt

        with ThreadPoolExecutor(max_workers=1) as executor:
            future = executor.submit(engine.generate, "hello")
            assert started.wait(2.0)
            engine.cancel()

            with pytest.raises(FeedbackUnavailable):
                future.result(timeout=2.0)

    def test_cancel_without_request_is_noop(self):
        ChatGPTFeedbackEngine(api_key="sk-test").cancel()


@pytest.fixture
def console_output():
    return io.StringIO()


@pytest.fixture
def synthesizer(console_output):
    synthesizer = ConsoleSynthesizer(words_per_minute=6000,
                                     console=Console(file=console_output, force_terminal=False))
    synthesizer.initialize(lambda: None, lambda error: None)
    yield synthesizer
    synthesizer.shutdown()


@pytest.mark.unit
class TestConsoleSynthesizer:

    def test_speak_completes(self, synthesizer, console_output):
        done = threading.Event()
        started = []

        synthesizer.speak("Cat got your tongue?", lambda: started.append(True), done.set, lambda e: None)

        assert started == [True]
        assert done.wait(2.0)
        assert "Cat got your tongue?" in console_output.getvalue()
        assert synthesizer.is_speaking is False

    def test_stop_cuts_off_without_completion(self, console_output):
        synthesizer = ConsoleSynthesizer(words_per_minute=60,
                                         console=Console(file=console_output, force_terminal=False))
        synthesizer.initialize(lambda: None, lambda error: None)
        done = threading.Event()

        synthesizer.speak("one two three four five", lambda: None, done.set, lambda e: None)
        assert synthesizer.is_speaking is True
        synthesizer.stop()

        assert done.wait(0.2) is False
        assert synthesizer.is_speaking is False
        assert "cut off" in console_output.getvalue()

    def test_new_utterance_replaces_current(self, console_output):
        synthesizer = ConsoleSynthesizer(words_per_minute=60,
                                         console=Console(file=console_output, force_terminal=False))
        synthesizer.initialize(lambda: None, lambda error: None)
        first_done = threading.Event()

        synthesizer.speak("a long sentence here", lambda: None, first_done.set, lambda e: None)
        synthesizer.speak("short", lambda: None, lambda: None, lambda e: None)
        time.sleep(0.1)

        assert first_done.is_set() is False
        synthesizer.shutdown()

    def test_speak_before_initialize(self):
        synthesizer = ConsoleSynthesizer(console=Console(file=io.StringIO()))
        with pytest.raises(SynthesisFailed):
            synthesizer.speak("hi", lambda: None, lambda: None, lambda e: None)

    def test_speaking_time(self):
        synthesizer = ConsoleSynthesizer(words_per_minute=120)
        assert synthesizer.speaking_time("one two three") == pytest.approx(1.5)
        assert synthesizer.speaking_time("") == pytest.approx(0.5)
