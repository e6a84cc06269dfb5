"""Unit tests for barge-in detection."""

from unittest.mock import patch

from voice_orchestrator.pipeline.interrupt import BargeInConfig, BargeInDetector


def test_no_barge_in_while_silent():
    detector = BargeInDetector()
    assert detector.check("hello") is None


def test_barge_in_while_speaking():
    detector = BargeInDetector()
    detector.agent_started_speaking()

    event = detector.check("  wait  ")

    assert event is not None
    assert event.transcript == "wait"
    assert event.agent_speech_ms >= 0


def test_short_partial_ignored():
    detector = BargeInDetector(BargeInConfig(min_chars=2))
    detector.agent_started_speaking()

    assert detector.check("a") is None
    assert detector.check(" ") is None


def test_disabled():
    detector = BargeInDetector(BargeInConfig(enabled=False))
    detector.agent_started_speaking()

    assert detector.check("stop please") is None


def test_grace_window():
    detector = BargeInDetector(BargeInConfig(grace_ms=500))
    with patch("voice_orchestrator.pipeline.interrupt.time") as mock_time:
        mock_time.monotonic.return_value = 100.0
        mock_time.time.return_value = 0.0
        detector.agent_started_speaking()

        mock_time.monotonic.return_value = 100.2
        assert detector.check("stop") is None

        mock_time.monotonic.return_value = 101.0
        event = detector.check("stop")

    assert event is not None
    assert event.agent_speech_ms == 1000


def test_stopped_speaking():
    detector = BargeInDetector()
    detector.agent_started_speaking()
    detector.agent_stopped_speaking()

    assert not detector.is_agent_speaking
    assert detector.check("hello") is None
