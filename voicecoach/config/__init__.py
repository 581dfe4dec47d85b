"""Simple YAML configuration loader for VoiceCoach."""

import copy
import os
import yaml
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Any, Optional
import logging

logger = logging.getLogger(__name__)


DEFAULT_CONFIG: Dict[str, Any] = {
    'audio': {
        'sample_rate': 16000,
        'channels': 1,
        'frame_ms': 10,
        'topic': 'audio.frame',
    },
    'vad': {
        'rms_threshold': 2000.0,
        'silence_timeout_ms': 500,
        'topic': 'vad.state',
    },
    'recording': {
        'max_duration_seconds': 30,
    },
    'conversation': {
        'silence_nudge_timeout_ms': 5000,
        'nudge_cooldown_ms': 5000,
        'tts_init_timeout_ms': 5000,
        'topic': 'conversation.state',
    },
    'transcription': {
        'language': 'en-US',
        'use_enhanced_model': True,
        'enable_automatic_punctuation': True,
        'timeout_seconds': 10.0,
    },
    'feedback': {
        'model': 'gpt-4o-mini',
        'temperature': 0.3,
        'timeout_seconds': 20.0,
    },
    'synthesis': {
        'words_per_minute': 160,
    },
    'logging': {
        'level': 'INFO',
        'file_path': 'data/logs/voicecoach.log',
        'console_output': True,
    },
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class VoiceCoachConfig:
    """VoiceCoach configuration loader."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to YAML config file. If None, the built-in
                        defaults are used.
        """
        if config_path is None:
            self.config_file = None
            logger.info("No configuration file given, using defaults")
            self.config = copy.deepcopy(DEFAULT_CONFIG)
            return

        self.config_file = Path(config_path)

        if not self.config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_file}")

        logger.info(f"Loading configuration from: {self.config_file}")
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load and parse YAML configuration file."""
        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}") from e

        if not config:
            raise ValueError("Configuration file is empty")
        if not isinstance(config, dict):
            raise ValueError("Configuration file must contain a mapping")

        config = _deep_merge(DEFAULT_CONFIG, config)

        # Resolve relative paths
        self._resolve_paths(config)

        logger.info("Configuration loaded successfully")
        return config

    def _resolve_paths(self, config: Dict[str, Any]) -> None:
        """Resolve relative paths in configuration relative to config file location."""
        config_dir = self.config_file.parent

        # Resolve Google credentials path
        creds_path = config.get('transcription', {}).get('credentials_path')
        if creds_path and not os.path.isabs(creds_path):
            config['transcription']['credentials_path'] = str(config_dir / creds_path)

        # Resolve log file path
        log_path = config.get('logging', {}).get('file_path')
        if log_path and not os.path.isabs(log_path):
            config['logging']['file_path'] = str(config_dir / log_path)

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'vad.rms_threshold').

        Args:
            key_path: Dot-separated key path (e.g., 'conversation.nudge_cooldown_ms')
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key_path.split('.')
        value = self.config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def set(self, key_path: str, value: Any) -> None:
        """Set configuration value using dot notation.

        Args:
            key_path: Dot-separated path to config value (e.g., 'vad.rms_threshold')
            value: Value to set
        """
        keys = key_path.split('.')
        config_dict = self.config

        # Navigate to the parent dictionary
        for key in keys[:-1]:
            if key not in config_dict:
                config_dict[key] = {}
            config_dict = config_dict[key]

        # Set the final value
        config_dict[keys[-1]] = value
        logger.debug(f"Configuration key '{key_path}' set to: {value}")

    def get_google_credentials_path(self) -> str:
        """Get Google credentials path - CRASHES if not found."""
        creds_path = self.get('transcription.credentials_path')
        if not creds_path:
            raise ValueError("Google credentials path not configured (transcription.credentials_path)")

        creds_file = Path(creds_path)
        if not creds_file.exists():
            raise FileNotFoundError(f"Google credentials file not found: {creds_path}")

        return str(creds_file.absolute())

    def get_openai_api_key(self) -> str:
        """Get the feedback engine API key from config or OPENAI_API_KEY."""
        api_key = self.get('feedback.api_key') or os.environ.get('OPENAI_API_KEY')
        if not api_key:
            raise ValueError("OpenAI API key not configured (feedback.api_key or OPENAI_API_KEY)")
        return api_key


@dataclass(frozen=True)
class PipelineSettings:
    """Typed view of the signal-to-state pipeline thresholds."""
    sample_rate: int = 16000
    channels: int = 1
    frame_ms: int = 10
    audio_topic: str = 'audio.frame'
    rms_threshold: float = 2000.0
    silence_timeout_ms: int = 500
    vad_topic: str = 'vad.state'
    max_recording_seconds: float = 30.0
    silence_nudge_timeout_ms: int = 5000
    nudge_cooldown_ms: int = 5000
    tts_init_timeout_ms: int = 5000
    conversation_topic: str = 'conversation.state'

    @property
    def frame_samples(self) -> int:
        return self.sample_rate * self.frame_ms // 1000

    @classmethod
    def from_config(cls, config: VoiceCoachConfig) -> "PipelineSettings":
        return cls(
            sample_rate=int(config.get('audio.sample_rate', 16000)),
            channels=int(config.get('audio.channels', 1)),
            frame_ms=int(config.get('audio.frame_ms', 10)),
            audio_topic=config.get('audio.topic', 'audio.frame'),
            rms_threshold=float(config.get('vad.rms_threshold', 2000.0)),
            silence_timeout_ms=int(config.get('vad.silence_timeout_ms', 500)),
            vad_topic=config.get('vad.topic', 'vad.state'),
            max_recording_seconds=float(config.get('recording.max_duration_seconds', 30)),
            silence_nudge_timeout_ms=int(config.get('conversation.silence_nudge_timeout_ms', 5000)),
            nudge_cooldown_ms=int(config.get('conversation.nudge_cooldown_ms', 5000)),
            tts_init_timeout_ms=int(config.get('conversation.tts_init_timeout_ms', 5000)),
            conversation_topic=config.get('conversation.topic', 'conversation.state'),
        )
