"""Main application entry point for VoiceCoach."""

import sys
import time
import argparse
import logging
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table

from voicecoach.audio.source import AudioSource
from voicecoach.audio.recorder import Recorder
from voicecoach.collaborators.chatgpt_feedback import ChatGPTFeedbackEngine
from voicecoach.collaborators.console_synthesizer import ConsoleSynthesizer
from voicecoach.collaborators.google_transcriber import GoogleSpeechTranscriber
from voicecoach.conversation.orchestrator import ConversationOrchestrator
from voicecoach.logic.interrupt import InterruptArbiter
from voicecoach.logic.vad import VoiceActivityDetector
from voicecoach.models.conversation import ConversationState

from .config import VoiceCoachConfig, PipelineSettings

logger = logging.getLogger(__name__)


class Server:

    def __init__(self, config_path: Optional[str], log_level: Optional[str] = None):
        # Load configuration
        self.config = VoiceCoachConfig(config_path)
        # Set up logging (command line overrides config)
        setup_logging(self.config, log_level or self.config.get('logging.level', 'INFO'))
        self.settings = PipelineSettings.from_config(self.config)
        self.console = Console()
        self.orchestrator: Optional[ConversationOrchestrator] = None

    def init(self):
        logger.info("Initializing services...")
        settings = self.settings
        logger.info(f"Audio settings: {settings.sample_rate}Hz, {settings.frame_samples} samples/frame, "
                    f"{settings.channels} channels")

        self.audio_source = AudioSource(
            topic=settings.audio_topic,
            sample_rate=settings.sample_rate,
            frame_ms=settings.frame_ms,
            channels=settings.channels,
        )
        self.vad = VoiceActivityDetector(
            self.audio_source,
            topic=settings.vad_topic,
            rms_threshold=settings.rms_threshold,
            silence_timeout_ms=settings.silence_timeout_ms,
        )
        self.recorder = Recorder(
            self.audio_source,
            sample_rate=settings.sample_rate,
            max_duration_seconds=settings.max_recording_seconds,
        )
        self.arbiter = InterruptArbiter(settings.vad_topic)

        transcriber = GoogleSpeechTranscriber(
            credentials_path=self.config.get_google_credentials_path(),
            sample_rate=settings.sample_rate,
            language=self.config.get('transcription.language', 'en-US'),
            use_enhanced=self.config.get('transcription.use_enhanced_model', True),
            enable_automatic_punctuation=self.config.get('transcription.enable_automatic_punctuation', True),
            timeout_seconds=self.config.get('transcription.timeout_seconds', 10.0),
        )
        feedback_engine = ChatGPTFeedbackEngine(
            api_key=self.config.get_openai_api_key(),
            model=self.config.get('feedback.model', 'gpt-4o-mini'),
            temperature=self.config.get('feedback.temperature', 0.3),
            timeout_seconds=self.config.get('feedback.timeout_seconds', 20.0),
        )
        synthesizer = ConsoleSynthesizer(
            words_per_minute=self.config.get('synthesis.words_per_minute', 160),
            console=self.console,
        )

        self.orchestrator = ConversationOrchestrator(
            self.vad, self.recorder, self.arbiter,
            transcriber, feedback_engine, synthesizer,
            settings=settings,
        )
        self.orchestrator.initialize()

    def run(self, duration: int, simulate_speech_ms: Optional[int] = None):
        try:
            self.orchestrator.start()
            if simulate_speech_ms:
                self.vad.simulate_speaking(simulate_speech_ms)

            deadline = time.monotonic() + duration if duration else None
            while deadline is None or time.monotonic() < deadline:
                if self.orchestrator.state is ConversationState.ERROR:
                    self.console.print(f"[red]❌ {self.orchestrator.error_message}[/red]")
                    break
                time.sleep(0.5)
        except Exception as e:
            logger.error(f"Error in run: {e}", exc_info=True)
            raise
        finally:
            self.cleanup()

    def cleanup(self):
        if self.orchestrator is None:
            return
        self.orchestrator.stop()
        self.print_history()
        self.orchestrator.cleanup()
        self.audio_source.close()
        self.orchestrator = None

    def print_history(self):
        turns = self.orchestrator.history.turns()
        stats = self.orchestrator.get_stats()

        table = Table(title=f"Conversation ({stats.total_turns} turns)")
        table.add_column("#", style="dim")
        table.add_column("You said")
        table.add_column("P", justify="right")
        table.add_column("G", justify="right")
        table.add_column("F", justify="right")
        table.add_column("Feedback")

        for index, turn in enumerate(turns, 1):
            feedback = turn.feedback
            table.add_row(
                str(index),
                turn.user_transcript,
                str(feedback.pronunciation_score),
                str(feedback.grammar_score),
                str(feedback.fluency_score),
                feedback.message,
            )

        self.console.print(table)
        if turns:
            self.console.print(f"Average score: {stats.average_overall_score} | "
                               f"Barge-ins: {stats.barge_ins_handled}/{stats.total_barge_ins} | "
                               f"Speaking time: {stats.total_duration_seconds}s")


def setup_logging(config, level: str = "INFO") -> None:
    """Set up logging configuration from YAML config."""
    log_file_path = config.get('logging.file_path', 'data/logs/voicecoach.log')
    console_output = config.get('logging.console_output', True)

    # Create logs directory if it doesn't exist
    log_dir = Path(log_file_path).parent
    log_dir.mkdir(parents=True, exist_ok=True)

    handlers = []

    # File handler - always write to file
    file_handler = logging.FileHandler(log_file_path)
    file_handler.setLevel(logging.DEBUG)
    file_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    )
    file_handler.setFormatter(file_formatter)
    handlers.append(file_handler)

    # Console handler - only if enabled in config
    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.WARNING)  # Only show warnings and above on console
        console_formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        console_handler.setFormatter(console_formatter)
        handlers.append(console_handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    logger = logging.getLogger(__name__)
    logger.info("=" * 50)
    logger.info("VoiceCoach application starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("=" * 50)


def main() -> None:
    """Main entry point for VoiceCoach application."""
    parser = argparse.ArgumentParser(
        description="VoiceCoach - interruptible spoken-English practice",
        epilog="Speak after the prompt; talk over the coach to interrupt it. Ctrl+C to quit."
    )

    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration YAML file (default: built-in settings)"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (default: from config, else INFO)"
    )

    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Session length in seconds (default: 0, run until interrupted)"
    )

    parser.add_argument(
        "--simulate-speech",
        type=int,
        metavar="MS",
        help="Force the voice detector to report speech for MS milliseconds at start"
    )

    parser.add_argument(
        "--version",
        action="version",
        version="VoiceCoach v0.1.0"
    )

    args = parser.parse_args()

    server = None
    try:
        server = Server(args.config, args.log_level)
        server.init()
        server.run(args.duration, args.simulate_speech)
    except KeyboardInterrupt:
        if server:
            server.cleanup()
        print("\n👋 Goodbye!")
    except Exception as e:
        print(f"❌ Error: {e}")
        logging.error(f"Application error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
