"""Error taxonomy for the VoiceCoach pipeline."""


class VoiceCoachError(Exception):
    """Base class for all pipeline errors."""


class ResourceUnavailable(VoiceCoachError):
    """Microphone could not be acquired (permission missing, device busy)."""


class TranscriptionFailed(VoiceCoachError):
    """Speech-to-text call failed."""


class FeedbackUnavailable(VoiceCoachError):
    """Feedback engine could not be reached or failed to generate."""


class FeedbackMalformed(VoiceCoachError):
    """Feedback payload could not be parsed or was out of range.

    Recovered locally with fallback feedback, never surfaced to the user.
    """


class SynthesisFailed(VoiceCoachError):
    """Text-to-speech failed for one utterance."""


class InitializationError(VoiceCoachError):
    """A collaborator failed to initialize."""


class InitTimeout(InitializationError):
    """A collaborator did not become ready within the allowed time."""
