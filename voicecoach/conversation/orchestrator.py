"""Turn-taking state machine tying VAD, recorder, barge-in and collaborators together."""

import queue
import random
import time
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from pubsub import pub

from .history import ConversationHistory
from .nudges import FILLER_NUDGES, SILENCE_NUDGES, FillerDetector
from ..audio.wav import encode_wav
from ..config import PipelineSettings
from ..errors import (
    FeedbackMalformed,
    FeedbackUnavailable,
    InitializationError,
    InitTimeout,
    SynthesisFailed,
    TranscriptionFailed,
)
from ..models.conversation import ConversationState, ConversationStats, ConversationTurn
from ..models.feedback import Feedback

logger = logging.getLogger(__name__)


class EventKind(Enum):
    VAD_SPEAKING = "vad_speaking"
    VAD_SILENT = "vad_silent"
    BARGE_IN = "barge_in"
    PARTIAL_TRANSCRIPT = "partial_transcript"
    TRANSCRIPT_READY = "transcript_ready"
    TRANSCRIPT_FAILED = "transcript_failed"
    FEEDBACK_READY = "feedback_ready"
    FEEDBACK_FAILED = "feedback_failed"
    SPEECH_DONE = "speech_done"
    SPEECH_FAILED = "speech_failed"
    SILENCE_TIMEOUT = "silence_timeout"
    STOP = "stop"


@dataclass(frozen=True)
class ControlEvent:
    """One item on the orchestrator's intake queue."""
    kind: EventKind
    token: Optional[int] = None
    payload: Any = None


class ConversationOrchestrator:
    """Finite-state machine for one practice conversation.

    Every input (VAD transitions, barge-ins, collaborator results, timer
    firings) is posted to a single queue and applied by one control thread,
    so transitions never interleave. Asynchronous results carry the token
    that was current when the work started; a result whose token has since
    been superseded is dropped.
    """

    def __init__(self, vad, recorder, arbiter, transcriber, feedback_engine, synthesizer,
                 settings: Optional[PipelineSettings] = None,
                 clock: Callable[[], float] = time.monotonic,
                 rng: Optional[random.Random] = None):
        """Initialize orchestrator.

        Args:
            vad: VoiceActivityDetector publishing on ``settings.vad_topic``
            recorder: Recorder sharing the VAD's audio source
            arbiter: InterruptArbiter subscribed to the same VAD topic
            transcriber: AbstractTranscriber implementation
            feedback_engine: AbstractFeedbackEngine implementation
            synthesizer: AbstractSynthesizer implementation
            settings: Pipeline thresholds and topics
            clock: Monotonic clock in seconds (cooldowns, turn durations)
            rng: Random source for nudge selection
        """
        self.vad = vad
        self.recorder = recorder
        self.arbiter = arbiter
        self.transcriber = transcriber
        self.feedback_engine = feedback_engine
        self.synthesizer = synthesizer
        self.settings = settings or PipelineSettings()
        self.clock = clock
        self.rng = rng or random.Random()

        self.history = ConversationHistory()
        self.filler_detector = FillerDetector(self.settings.nudge_cooldown_ms, clock)

        self._state = ConversationState.IDLE
        self._active = False
        self._subscribed = False
        self.error_message: Optional[str] = None
        self.current_transcript = ""
        self.current_feedback: Optional[Feedback] = None

        self._queue: "queue.Queue[ControlEvent]" = queue.Queue()
        self._control_thread: Optional[threading.Thread] = None
        self._pump_thread: Optional[threading.Thread] = None
        self._pump_stop = threading.Event()

        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="VoiceCoachWorker")
        self._work_future: Optional[Future] = None

        # Tokens only ever increase, across sessions too
        self._work_token = 0
        self._speech_token = 0
        self._timer_token = 0

        self._silence_timer: Optional[threading.Timer] = None
        self._last_nudge_at: Optional[float] = None
        self._turn_started_at: Optional[float] = None
        self._skip_barge_in_utterance = False
        self._barge_ins_handled = 0

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConversationState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._active

    def initialize(self) -> bool:
        """Initialize collaborators; waits for the synthesizer to report ready.

        Raises:
            InitializationError: if a collaborator reports failure
            InitTimeout: if the synthesizer is not ready in time
        """
        logger.info("🔧 Initializing conversation orchestrator...")

        if not self.transcriber.initialize():
            raise InitializationError("Transcriber initialization failed")
        if not self.feedback_engine.initialize():
            raise InitializationError("Feedback engine initialization failed")

        ready = threading.Event()
        errors = []

        def on_ready():
            ready.set()

        def on_error(error: Exception):
            errors.append(error)
            ready.set()

        self.synthesizer.initialize(on_ready, on_error)

        timeout_s = self.settings.tts_init_timeout_ms / 1000.0
        if not ready.wait(timeout_s):
            raise InitTimeout(f"Synthesizer not ready after {timeout_s:.1f}s")
        if errors:
            raise InitializationError(f"Synthesizer initialization failed: {errors[0]}") from errors[0]

        logger.info("✅ Conversation orchestrator initialized")
        return True

    def start(self) -> bool:
        """Begin a session: acquire the VAD and enter Listening.

        Returns:
            False if a session is already running or the orchestrator is in
            Error (call ``stop()`` first)

        Raises:
            ResourceUnavailable: if the microphone cannot be acquired
        """
        if self._active:
            logger.warning("⚠️ Conversation already active")
            return False
        if self._state is ConversationState.ERROR:
            logger.warning("⚠️ Conversation is in error state, call stop() before starting again")
            return False

        logger.info("🎬 Starting conversation session...")
        self.vad.start()

        if not self._subscribed:
            pub.subscribe(self.on_vad_state, self.settings.vad_topic)
            self._subscribed = True

        self._queue = queue.Queue()
        self.arbiter.channel.clear()
        self.arbiter.stop_ai_speech()
        self.arbiter.reset_barge_in_count()
        self._barge_ins_handled = 0
        self._skip_barge_in_utterance = False
        self.error_message = None
        self._active = True

        self._set_state(ConversationState.LISTENING)
        self._arm_silence_timer()

        self._control_thread = threading.Thread(target=self._control_loop, daemon=True)
        self._control_thread.name = "ConversationControlThread"
        self._control_thread.start()

        self._pump_stop = threading.Event()
        self._pump_thread = threading.Thread(target=self._pump_barge_ins,
                                             args=(self._pump_stop,), daemon=True)
        self._pump_thread.name = "BargeInPumpThread"
        self._pump_thread.start()

        logger.info("✅ Conversation started - Listening for user speech")
        return True

    def stop(self) -> None:
        """Cancel everything, release recorder and VAD, and return to Idle."""
        if not self._active:
            logger.warning("⚠️ Conversation not active")
            return

        logger.info("🛑 Stopping conversation session...")
        self._post(ControlEvent(EventKind.STOP))

        thread = self._control_thread
        if thread and thread is not threading.current_thread():
            thread.join(timeout=5.0)
            if thread.is_alive():
                logger.warning("Conversation control thread did not stop cleanly")
        self._control_thread = None

        self._pump_stop.set()
        if self._pump_thread:
            self._pump_thread.join(timeout=2.0)
            self._pump_thread = None

        logger.info("✅ Conversation session stopped")

    def on_vad_state(self, speaking: bool, timestamp: float) -> None:
        """VAD transition listener; runs on the audio capture thread."""
        if not self._active:
            return
        kind = EventKind.VAD_SPEAKING if speaking else EventKind.VAD_SILENT
        self._post(ControlEvent(kind, payload=timestamp))

    def submit_partial_transcript(self, text: str) -> None:
        """Feed a partial transcript from an external streaming recognizer."""
        if self._active:
            self._post(ControlEvent(EventKind.PARTIAL_TRANSCRIPT, payload=text))

    def clear_history(self) -> None:
        self.history.clear()
        self.current_feedback = None
        self.current_transcript = ""
        logger.info("🗑️ Conversation history cleared")

    def get_stats(self) -> ConversationStats:
        turns = self.history.turns()
        count = len(turns)

        def average(attribute: str) -> int:
            if not count:
                return 0
            return int(sum(getattr(t.feedback, attribute) for t in turns) / count)

        return ConversationStats(
            total_turns=count,
            average_pronunciation_score=average('pronunciation_score'),
            average_grammar_score=average('grammar_score'),
            average_fluency_score=average('fluency_score'),
            total_duration_ms=sum(t.duration_ms for t in turns),
            current_state=self._state,
            barge_ins_handled=self._barge_ins_handled,
            total_barge_ins=self.arbiter.barge_in_count,
        )

    def cleanup(self) -> None:
        logger.info("🧹 Cleaning up conversation orchestrator...")
        if self._active:
            self.stop()
        self._executor.shutdown(wait=False, cancel_futures=True)
        if self._subscribed:
            pub.unsubscribe(self.on_vad_state, self.settings.vad_topic)
            self._subscribed = False
        self.synthesizer.shutdown()
        self.transcriber.cleanup()
        self.feedback_engine.cleanup()
        self.recorder.cleanup()
        self.vad.cleanup()
        self.arbiter.cleanup()
        logger.info("✅ Cleanup complete")

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    def _post(self, event: ControlEvent) -> None:
        self._queue.put(event)

    def _pump_barge_ins(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            event = self.arbiter.channel.get(timeout=0.1)
            if event is not None:
                self._post(ControlEvent(EventKind.BARGE_IN, payload=event))

    def _control_loop(self) -> None:
        logger.debug("Control loop started")
        event_queue = self._queue
        handlers = {
            EventKind.VAD_SPEAKING: self._on_user_started_speaking,
            EventKind.VAD_SILENT: self._on_user_stopped_speaking,
            EventKind.BARGE_IN: self._on_barge_in,
            EventKind.PARTIAL_TRANSCRIPT: self._on_partial_transcript,
            EventKind.TRANSCRIPT_READY: self._on_transcript_ready,
            EventKind.TRANSCRIPT_FAILED: self._on_transcript_failed,
            EventKind.FEEDBACK_READY: self._on_feedback_ready,
            EventKind.FEEDBACK_FAILED: self._on_feedback_failed,
            EventKind.SPEECH_DONE: self._on_speech_done,
            EventKind.SPEECH_FAILED: self._on_speech_done,
            EventKind.SILENCE_TIMEOUT: self._on_silence_timeout,
        }

        while True:
            event = event_queue.get()
            if event.kind is EventKind.STOP:
                self._on_stop()
                break

            if self._state in (ConversationState.IDLE, ConversationState.ERROR):
                logger.debug(f"Ignoring {event.kind.value} in {self._state.value}")
                continue

            try:
                handlers[event.kind](event)
            except Exception as e:
                logger.error(f"❌ Error handling {event.kind.value}: {e}", exc_info=True)
                self._enter_error(str(e))

        logger.debug("Control loop stopped")

    # ------------------------------------------------------------------
    # Handlers (control thread only)
    # ------------------------------------------------------------------

    def _on_user_started_speaking(self, event: ControlEvent) -> None:
        if self._skip_barge_in_utterance:
            self._skip_barge_in_utterance = False
            logger.debug("Ignoring speech start that caused a barge-in")
            return
        if self._state is not ConversationState.LISTENING:
            return

        logger.info("🗣️ User started speaking - Recording...")
        self._cancel_silence_timer()
        if not self.recorder.start_recording():
            self._enter_error("Unable to start recording")
            return
        self._turn_started_at = self.clock()
        self._set_state(ConversationState.RECORDING)

    def _on_user_stopped_speaking(self, event: ControlEvent) -> None:
        self._skip_barge_in_utterance = False
        if self._state is not ConversationState.RECORDING:
            return

        logger.info("🔇 User stopped speaking - Processing...")
        if self.recorder.is_recording:
            self.recorder.stop_recording()
        audio = self.recorder.get_audio_buffer()
        self._set_state(ConversationState.PROCESSING)

        if not audio:
            logger.warning("⚠️ No audio data captured")
            self._return_to_listening()
            return

        self._work_token += 1
        wav = encode_wav(audio, self.settings.sample_rate, self.settings.channels)
        self._work_future = self._executor.submit(self._run_transcription, self._work_token, wav)

    def _on_partial_transcript(self, event: ControlEvent) -> None:
        if event.token is not None and event.token != self._work_token:
            return
        if self._state not in (ConversationState.RECORDING, ConversationState.PROCESSING):
            return
        if not self.filler_detector.check(event.payload):
            return

        logger.info("🤖 Barging in on filler")
        self._cancel_work()
        self._discard_recording()
        self._speak(self.rng.choice(FILLER_NUDGES))

    def _on_transcript_ready(self, event: ControlEvent) -> None:
        if event.token != self._work_token or self._state is not ConversationState.PROCESSING:
            logger.debug("Discarding stale transcript")
            return

        transcript = event.payload
        self.current_transcript = transcript
        logger.info(f"✅ Transcribed: \"{transcript}\"")

        if not transcript.strip():
            logger.warning("⚠️ Empty transcript - returning to listening")
            self._discard_recording()
            self._return_to_listening()
            return

        logger.info("🤖 Generating feedback...")
        self._work_future = self._executor.submit(self._run_feedback, event.token, transcript)

    def _on_transcript_failed(self, event: ControlEvent) -> None:
        if event.token != self._work_token or self._state is not ConversationState.PROCESSING:
            return
        self._enter_error(f"Transcription failed: {event.payload}")

    def _on_feedback_ready(self, event: ControlEvent) -> None:
        if event.token != self._work_token or self._state is not ConversationState.PROCESSING:
            logger.debug("Discarding stale feedback")
            return

        feedback: Feedback = event.payload
        self.current_feedback = feedback
        logger.info(f"✅ Feedback - Scores: P={feedback.pronunciation_score}, "
                    f"G={feedback.grammar_score}, F={feedback.fluency_score}")

        duration_ms = 0
        if self._turn_started_at is not None:
            duration_ms = int((self.clock() - self._turn_started_at) * 1000)
        self.history.append(ConversationTurn(
            user_transcript=self.current_transcript,
            feedback=feedback,
            duration_ms=duration_ms,
        ))

        self._work_future = None
        self.recorder.clear_buffer()
        self._speak(feedback.message)

    def _on_feedback_failed(self, event: ControlEvent) -> None:
        if event.token != self._work_token or self._state is not ConversationState.PROCESSING:
            return
        self._enter_error(f"Failed to generate feedback: {event.payload}")

    def _on_speech_done(self, event: ControlEvent) -> None:
        if event.token != self._speech_token or self._state is not ConversationState.AI_SPEAKING:
            return
        if event.kind is EventKind.SPEECH_FAILED:
            logger.error(f"❌ Speech error: {event.payload}")
        else:
            logger.info("✅ AI finished speaking - Returning to listening")
        self.arbiter.stop_ai_speech()
        self._return_to_listening()

    def _on_silence_timeout(self, event: ControlEvent) -> None:
        if event.token != self._timer_token or self._state is not ConversationState.LISTENING:
            return

        now = self.clock()
        if self._last_nudge_at is not None:
            elapsed_ms = (now - self._last_nudge_at) * 1000
            if elapsed_ms < self.settings.nudge_cooldown_ms:
                logger.debug(f"Nudge cooldown active ({elapsed_ms:.0f}ms), re-arming")
                self._arm_silence_timer()
                return

        logger.info(f"⏳ User silent for {self.settings.silence_nudge_timeout_ms}ms - Nudging")
        self._last_nudge_at = now
        self._speak(self.rng.choice(SILENCE_NUDGES))

    def _on_barge_in(self, event: ControlEvent) -> None:
        logger.info(f"🚨 BARGE-IN #{event.payload.sequence_number} - Handling...")
        self._barge_ins_handled += 1
        self._speech_token += 1
        self.synthesizer.stop()
        self.arbiter.stop_ai_speech()
        self._cancel_work()
        self._discard_recording()
        # The utterance that caused the barge-in is not recorded
        self._skip_barge_in_utterance = True
        self._return_to_listening()
        logger.info("✅ Barge-in handled - Ready for new input")

    def _on_stop(self) -> None:
        self._active = False
        self._cancel_silence_timer()
        self._cancel_work()
        self._speech_token += 1
        self.synthesizer.stop()
        self.arbiter.stop_ai_speech()
        if self.recorder.is_recording:
            self.recorder.stop_recording()
        self.recorder.clear_buffer()
        if self.vad.is_active:
            self.vad.stop()
        self._set_state(ConversationState.IDLE)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _set_state(self, new_state: ConversationState) -> None:
        previous = self._state
        if previous is new_state:
            return
        self._state = new_state
        logger.info(f"State: {previous.value} -> {new_state.value}")
        try:
            pub.sendMessage(self.settings.conversation_topic, state=new_state, previous=previous)
        except Exception as e:
            logger.error(f"State subscriber failed: {e}", exc_info=True)

    def _return_to_listening(self) -> None:
        self._set_state(ConversationState.LISTENING)
        self._arm_silence_timer()

    def _enter_error(self, message: str) -> None:
        logger.error(f"❌ {message}")
        self._cancel_silence_timer()
        self._cancel_work()
        self._speech_token += 1
        self.synthesizer.stop()
        self.arbiter.stop_ai_speech()
        self._discard_recording()
        self.error_message = message
        self._set_state(ConversationState.ERROR)

    def _speak(self, text: str) -> None:
        self._cancel_silence_timer()
        self._speech_token += 1
        token = self._speech_token
        self._set_state(ConversationState.AI_SPEAKING)
        self.arbiter.start_ai_speech()
        logger.info(f"🤖 Speaking: \"{text}\"")

        def on_start():
            logger.debug("🔊 Speech started")

        def on_done():
            if token == self._speech_token:
                self.arbiter.stop_ai_speech()
            self._post(ControlEvent(EventKind.SPEECH_DONE, token))

        def on_error(error: Exception):
            if token == self._speech_token:
                self.arbiter.stop_ai_speech()
            self._post(ControlEvent(EventKind.SPEECH_FAILED, token, error))

        try:
            self.synthesizer.speak(text, on_start, on_done, on_error)
        except SynthesisFailed as e:
            logger.error(f"❌ Speech could not start: {e}")
            self.arbiter.stop_ai_speech()
            self._return_to_listening()

    def _arm_silence_timer(self) -> None:
        self._cancel_silence_timer()
        token = self._timer_token
        timer = threading.Timer(self.settings.silence_nudge_timeout_ms / 1000.0,
                                self._post, args=(ControlEvent(EventKind.SILENCE_TIMEOUT, token),))
        timer.daemon = True
        self._silence_timer = timer
        timer.start()

    def _cancel_silence_timer(self) -> None:
        self._timer_token += 1
        if self._silence_timer:
            self._silence_timer.cancel()
            self._silence_timer = None

    def _cancel_work(self) -> None:
        self._work_token += 1
        future = self._work_future
        self._work_future = None
        if future is not None and not future.done():
            logger.info("⏹️ Cancelling in-flight transcription/feedback")
            future.cancel()
            self.transcriber.cancel()
            self.feedback_engine.cancel()

    def _discard_recording(self) -> None:
        if self.recorder.is_recording:
            self.recorder.stop_recording()
        self.recorder.clear_buffer()

    # ------------------------------------------------------------------
    # Worker jobs (executor threads)
    # ------------------------------------------------------------------

    def _run_transcription(self, token: int, wav: bytes) -> None:
        def on_partial(text: str):
            self._post(ControlEvent(EventKind.PARTIAL_TRANSCRIPT, token, text))

        try:
            transcript = self.transcriber.transcribe(wav, on_partial=on_partial)
        except TranscriptionFailed as e:
            self._post(ControlEvent(EventKind.TRANSCRIPT_FAILED, token, e))
            return
        except Exception as e:
            logger.error(f"❌ Unexpected transcriber error: {e}", exc_info=True)
            self._post(ControlEvent(EventKind.TRANSCRIPT_FAILED, token, e))
            return
        self._post(ControlEvent(EventKind.TRANSCRIPT_READY, token, transcript or ""))

    def _run_feedback(self, token: int, transcript: str) -> None:
        try:
            feedback = self.feedback_engine.generate(transcript)
        except FeedbackMalformed as e:
            logger.warning(f"⚠️ Invalid feedback - using fallback ({e})")
            feedback = Feedback.fallback(transcript)
        except FeedbackUnavailable as e:
            self._post(ControlEvent(EventKind.FEEDBACK_FAILED, token, e))
            return
        except Exception as e:
            logger.error(f"❌ Unexpected feedback engine error: {e}", exc_info=True)
            self._post(ControlEvent(EventKind.FEEDBACK_FAILED, token, e))
            return

        if feedback is None or not feedback.is_valid():
            logger.warning("⚠️ Invalid feedback - using fallback")
            feedback = Feedback.fallback(transcript)
        self._post(ControlEvent(EventKind.FEEDBACK_READY, token, feedback))
