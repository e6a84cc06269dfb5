"""Exceptions raised by the voice orchestrator and its controllers."""

from typing import Any, Dict, Optional


class VoiceSessionError(Exception):
    """Base exception for voice session operations."""

    default_code = "VOICE_SESSION_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        provider: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.provider = provider
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "error": self.code,
            "message": self.message,
            "provider": self.provider,
            "details": self.details,
        }


class PermissionDeniedError(VoiceSessionError):
    """Microphone access was refused."""

    default_code = "PERMISSION_DENIED"


class RecognizerUnavailableError(VoiceSessionError):
    """The on-device recognizer could not be started or failed mid-session."""

    default_code = "RECOGNIZER_UNAVAILABLE"


class TranscriptionFailedError(VoiceSessionError):
    """Both the primary recognizer and the fallback transcription failed."""

    default_code = "TRANSCRIPTION_FAILED"


class InferenceFailedError(VoiceSessionError):
    """The inference backend returned an error."""

    default_code = "INFERENCE_FAILED"


class InferenceTimeoutError(InferenceFailedError):
    """Inference exceeded its configured bound."""

    default_code = "INFERENCE_TIMEOUT"


class SynthesisFailedError(VoiceSessionError):
    """A synthesis backend failed to play an utterance."""

    default_code = "SYNTHESIS_FAILED"


class SynthesisTimeoutError(SynthesisFailedError):
    """Synthesis never signalled completion within the hard cap."""

    default_code = "SYNTHESIS_TIMEOUT"
