"""Session state machine."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import structlog

from ..models import SessionStatus

logger = structlog.get_logger()


class TurnEvent(str, Enum):
    """Events that trigger status transitions."""

    LISTENING_STARTED = "listening_started"
    LISTENING_STOPPED = "listening_stopped"
    TRANSCRIPT_FINAL = "transcript_final"
    INFERENCE_STARTED = "inference_started"
    SPEECH_STARTED = "speech_started"
    REPLY_COMPLETED = "reply_completed"
    BARGE_IN = "barge_in"
    CANCELLED = "cancelled"
    ERROR = "error"


@dataclass
class StateTransition:
    """Represents a status transition."""
    from_state: SessionStatus
    to_state: SessionStatus
    event: TurnEvent
    timestamp: float = field(default_factory=time.time)
    metadata: Dict[str, Any] = field(default_factory=dict)


class SessionStateMachine:
    """
    Validates and records status transitions for one session.

    ``idle -> listening -> transcribing -> thinking -> speaking -> idle``;
    ``error`` is reachable from every status and cancellation returns any
    status to ``idle``.
    """

    TRANSITIONS: Dict[SessionStatus, Dict[TurnEvent, SessionStatus]] = {
        SessionStatus.IDLE: {
            TurnEvent.LISTENING_STARTED: SessionStatus.LISTENING,
        },
        SessionStatus.LISTENING: {
            TurnEvent.TRANSCRIPT_FINAL: SessionStatus.TRANSCRIBING,
            TurnEvent.LISTENING_STOPPED: SessionStatus.IDLE,
        },
        SessionStatus.TRANSCRIBING: {
            TurnEvent.INFERENCE_STARTED: SessionStatus.THINKING,
        },
        SessionStatus.THINKING: {
            TurnEvent.SPEECH_STARTED: SessionStatus.SPEAKING,
            TurnEvent.REPLY_COMPLETED: SessionStatus.IDLE,
        },
        SessionStatus.SPEAKING: {
            TurnEvent.REPLY_COMPLETED: SessionStatus.IDLE,
            TurnEvent.BARGE_IN: SessionStatus.LISTENING,
        },
        SessionStatus.ERROR: {
            TurnEvent.LISTENING_STARTED: SessionStatus.LISTENING,
        },
    }

    # Events valid from any status
    GLOBAL_TRANSITIONS: Dict[TurnEvent, SessionStatus] = {
        TurnEvent.ERROR: SessionStatus.ERROR,
        TurnEvent.CANCELLED: SessionStatus.IDLE,
    }

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        self.state = SessionStatus.IDLE
        self.history: List[StateTransition] = []
        self._on_state_change: List[Callable[[StateTransition], None]] = []
        self.logger = logger.bind(component="state_machine", session_id=session_id)

    def on_state_change(self, callback: Callable[[StateTransition], None]) -> None:
        """Register callback for status changes."""
        self._on_state_change.append(callback)

    def get_next_state(self, event: TurnEvent) -> Optional[SessionStatus]:
        """Get the next status for an event, or None if invalid."""
        if event in self.GLOBAL_TRANSITIONS:
            return self.GLOBAL_TRANSITIONS[event]
        return self.TRANSITIONS.get(self.state, {}).get(event)

    def can_transition(self, event: TurnEvent) -> bool:
        return self.get_next_state(event) is not None

    def handle_event(self, event: TurnEvent, **metadata: Any) -> bool:
        """
        Perform the transition for ``event`` if it is valid.

        Returns True if the status changed.
        """
        next_state = self.get_next_state(event)
        if next_state is None:
            self.logger.debug(
                "Invalid event for current state",
                current_state=self.state.value,
                turn_event=event.value,
            )
            return False
        if next_state == self.state:
            return False

        transition = StateTransition(
            from_state=self.state,
            to_state=next_state,
            event=event,
            metadata=metadata,
        )
        self.state = next_state
        self.history.append(transition)

        self.logger.info(
            "State transition",
            from_state=transition.from_state.value,
            to_state=next_state.value,
            turn_event=event.value,
        )

        for callback in self._on_state_change:
            try:
                callback(transition)
            except Exception as e:
                self.logger.error("State change callback error", error=str(e))
        return True
