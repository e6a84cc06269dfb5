"""Unit tests for the session state machine."""

import pytest
from structlog.testing import capture_logs

from voice_orchestrator.models import SessionStatus
from voice_orchestrator.pipeline.state import SessionStateMachine, TurnEvent


@pytest.fixture
def machine():
    return SessionStateMachine("session-1")


def test_initial_state(machine):
    assert machine.state == SessionStatus.IDLE
    assert machine.history == []


def test_full_turn(machine):
    """Test the happy path through one conversational turn."""
    events = [
        TurnEvent.LISTENING_STARTED,
        TurnEvent.TRANSCRIPT_FINAL,
        TurnEvent.INFERENCE_STARTED,
        TurnEvent.SPEECH_STARTED,
        TurnEvent.REPLY_COMPLETED,
    ]
    for event in events:
        assert machine.handle_event(event)

    assert machine.state == SessionStatus.IDLE
    assert [t.to_state for t in machine.history] == [
        SessionStatus.LISTENING,
        SessionStatus.TRANSCRIBING,
        SessionStatus.THINKING,
        SessionStatus.SPEAKING,
        SessionStatus.IDLE,
    ]


def test_reply_without_speech(machine):
    for event in (
        TurnEvent.LISTENING_STARTED,
        TurnEvent.TRANSCRIPT_FINAL,
        TurnEvent.INFERENCE_STARTED,
    ):
        machine.handle_event(event)

    assert machine.handle_event(TurnEvent.REPLY_COMPLETED)
    assert machine.state == SessionStatus.IDLE


def test_invalid_event_rejected(machine):
    assert not machine.handle_event(TurnEvent.SPEECH_STARTED)
    assert machine.state == SessionStatus.IDLE
    assert machine.history == []


def test_barge_in_returns_to_listening(machine):
    for event in (
        TurnEvent.LISTENING_STARTED,
        TurnEvent.TRANSCRIPT_FINAL,
        TurnEvent.INFERENCE_STARTED,
        TurnEvent.SPEECH_STARTED,
    ):
        machine.handle_event(event)

    assert machine.handle_event(TurnEvent.BARGE_IN)
    assert machine.state == SessionStatus.LISTENING


@pytest.mark.parametrize(
    "events",
    [
        [],
        [TurnEvent.LISTENING_STARTED],
        [TurnEvent.LISTENING_STARTED, TurnEvent.TRANSCRIPT_FINAL, TurnEvent.INFERENCE_STARTED],
    ],
)
def test_error_reachable_from_any_state(machine, events):
    for event in events:
        machine.handle_event(event)

    assert machine.handle_event(TurnEvent.ERROR, message="boom")
    assert machine.state == SessionStatus.ERROR
    assert machine.history[-1].metadata == {"message": "boom"}


def test_error_recovers_by_listening(machine):
    machine.handle_event(TurnEvent.ERROR)

    assert machine.handle_event(TurnEvent.LISTENING_STARTED)
    assert machine.state == SessionStatus.LISTENING


def test_cancel_from_idle_is_not_a_change(machine):
    assert machine.can_transition(TurnEvent.CANCELLED)
    assert not machine.handle_event(TurnEvent.CANCELLED)
    assert machine.history == []


def test_callbacks_run_and_errors_are_contained(machine):
    seen = []

    def broken(transition):
        raise RuntimeError("callback failed")

    machine.on_state_change(broken)
    machine.on_state_change(seen.append)

    assert machine.handle_event(TurnEvent.LISTENING_STARTED)
    assert len(seen) == 1
    assert seen[0].from_state == SessionStatus.IDLE
    assert seen[0].event == TurnEvent.LISTENING_STARTED


def test_get_next_state(machine):
    assert machine.get_next_state(TurnEvent.LISTENING_STARTED) == SessionStatus.LISTENING
    assert machine.get_next_state(TurnEvent.BARGE_IN) is None


def test_transitions_are_logged():
    with capture_logs() as logs:
        machine = SessionStateMachine("session-2")
        machine.handle_event(TurnEvent.LISTENING_STARTED)
        machine.handle_event(TurnEvent.SPEECH_STARTED)

    transition = next(log for log in logs if log["event"] == "State transition")
    assert transition["turn_event"] == "listening_started"
    assert transition["to_state"] == "listening"

    rejected = next(log for log in logs if log["event"] == "Invalid event for current state")
    assert rejected["turn_event"] == "speech_started"
    assert rejected["current_state"] == "listening"
