"""VoiceCoach - interruptible voice turn-taking for spoken-language practice."""

__version__ = "0.1.0"
