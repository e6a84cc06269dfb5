"""
Voice Orchestrator

Runs a spoken, turn-taking conversation between a person and a generative
text responder.

Features:
- Speech capture with silence finalization and cloud transcription fallback
- Streaming inference spoken sentence by sentence
- Barge-in: user speech interrupts the assistant
- Language profiles for South African locales
- Process-wide response cache for repeated questions
"""

from .cache import ResponseCache, get_response_cache
from .config import SessionConfig, Settings, get_settings
from .exceptions import (
    InferenceFailedError,
    InferenceTimeoutError,
    PermissionDeniedError,
    RecognizerUnavailableError,
    SynthesisFailedError,
    SynthesisTimeoutError,
    TranscriptionFailedError,
    VoiceSessionError,
)
from .language import LanguageProfileResolver
from .logging import configure_logging
from .models import (
    CancellationToken,
    EventType,
    LanguageProfile,
    SessionEvent,
    SessionSnapshot,
    SessionStatus,
)
from .pipeline import SessionOrchestrator, create_orchestrator

__version__ = "1.0.0"

__all__ = [
    # Cache
    "ResponseCache",
    "get_response_cache",
    # Config
    "SessionConfig",
    "Settings",
    "get_settings",
    "configure_logging",
    # Errors
    "VoiceSessionError",
    "PermissionDeniedError",
    "RecognizerUnavailableError",
    "TranscriptionFailedError",
    "InferenceFailedError",
    "InferenceTimeoutError",
    "SynthesisFailedError",
    "SynthesisTimeoutError",
    # Models
    "CancellationToken",
    "EventType",
    "LanguageProfile",
    "LanguageProfileResolver",
    "SessionEvent",
    "SessionSnapshot",
    "SessionStatus",
    # Orchestration
    "SessionOrchestrator",
    "create_orchestrator",
]
