"""Turn pipeline: capture, synthesis, barge-in and the session orchestrator."""

from .capture import CaptureMode, SpeechBuffer, SpeechCaptureController
from .interrupt import BargeInConfig, BargeInDetector, BargeInEvent
from .orchestrator import SessionOrchestrator, create_orchestrator
from .state import SessionStateMachine, StateTransition, TurnEvent
from .synthesis import SpeakOutcome, SpeechSynthesisController

__all__ = [
    "CaptureMode",
    "SpeechBuffer",
    "SpeechCaptureController",
    "BargeInConfig",
    "BargeInDetector",
    "BargeInEvent",
    "SessionOrchestrator",
    "create_orchestrator",
    "SessionStateMachine",
    "StateTransition",
    "TurnEvent",
    "SpeakOutcome",
    "SpeechSynthesisController",
]
