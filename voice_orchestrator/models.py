"""
Data models for the voice orchestrator.

Session status, language profiles, host-facing snapshots and events, and the
per-session cancellation token.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class SessionStatus(str, Enum):
    """Status of a voice session."""

    IDLE = "idle"
    LISTENING = "listening"
    TRANSCRIBING = "transcribing"
    THINKING = "thinking"
    SPEAKING = "speaking"
    ERROR = "error"


class EventType(str, Enum):
    """Types of events emitted to the host application."""

    STATE_CHANGED = "state_changed"
    PARTIAL_TRANSCRIPT = "partial_transcript"
    FINAL_TRANSCRIPT = "final_transcript"
    UNIT_DISPATCHED = "unit_dispatched"
    REPLY_COMPLETED = "reply_completed"
    BARGE_IN = "barge_in"
    ERROR = "error"


@dataclass(frozen=True)
class LanguageProfile:
    """Resolved recognizer locale, synthesis voice and prompt for one language."""

    tag: str
    recognizer_locale: str
    synthesis_voice_id: str
    prompt_template: str
    display_name: str = ""


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view of a session handed to the host application."""

    session_id: str
    status: SessionStatus
    partial_transcript: str
    final_transcript: str
    partial_reply: str
    final_reply: str  # As generated, markup included; spoken form is in reply_completed
    error_message: Optional[str]
    language_profile: LanguageProfile


@dataclass
class SessionEvent:
    """An event emitted by the session orchestrator."""

    event_type: EventType
    session_id: str
    data: Dict[str, Any] = field(default_factory=dict)
    turn_id: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class SessionMetrics:
    """Counters collected over the lifetime of a session."""

    total_turns: int = 0
    completed_turns: int = 0
    cache_hits: int = 0
    interruptions: int = 0
    dropped_transcripts: int = 0
    duplicate_finals: int = 0
    inference_errors: int = 0
    transcription_errors: int = 0
    last_first_unit_latency_ms: Optional[float] = None


class CancellationToken:
    """
    Shared flag telling in-flight operations to abort instead of completing.

    Owned by one session orchestrator; read by its capture and synthesis
    controllers before any externally observable action.
    """

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        """Set the flag."""
        self._cancelled = True

    def reset(self) -> None:
        """Clear the flag."""
        self._cancelled = False

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self._cancelled})"
