"""Unit tests for settings, session config, errors and logging setup."""

import pytest
import structlog
from pydantic import ValidationError

from voice_orchestrator.config import SessionConfig, Settings
from voice_orchestrator.exceptions import (
    InferenceFailedError,
    InferenceTimeoutError,
    PermissionDeniedError,
    SynthesisFailedError,
    SynthesisTimeoutError,
    VoiceSessionError,
)
from voice_orchestrator.logging import configure_logging
from voice_orchestrator.models import CancellationToken


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("SILENCE_TIMEOUT_MS", raising=False)
        monkeypatch.delenv("DEFAULT_LANGUAGE", raising=False)
        settings = Settings(_env_file=None)

        assert settings.silence_timeout_ms == 475
        assert settings.default_language == "en-ZA"
        assert settings.min_unit_chars == 30
        assert settings.max_unit_chars == 220

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("SILENCE_TIMEOUT_MS", "800")
        monkeypatch.setenv("BARGE_IN_ENABLED", "false")
        settings = Settings(_env_file=None)

        assert settings.silence_timeout_ms == 800
        assert settings.barge_in_enabled is False

    def test_log_level_lowercased(self):
        assert Settings(_env_file=None, log_level="DEBUG").log_level == "debug"

    def test_out_of_range_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, silence_timeout_ms=5)


class TestSessionConfig:
    """Tests for SessionConfig."""

    def test_from_settings(self):
        settings = Settings(_env_file=None, silence_timeout_ms=600, min_transcript_tokens=3)
        config = SessionConfig.from_settings(settings)

        assert config.silence_timeout_ms == 600
        assert config.min_transcript_tokens == 3
        assert config.forced_language is None
        assert config.session_id

    def test_overrides_win(self):
        settings = Settings(_env_file=None)
        config = SessionConfig.from_settings(
            settings, forced_language="af-ZA", inference_timeout_s=1.5
        )

        assert config.forced_language == "af-ZA"
        assert config.inference_timeout_s == 1.5

    def test_unique_session_ids(self):
        assert SessionConfig().session_id != SessionConfig().session_id


class TestExceptions:
    """Tests for the error hierarchy."""

    def test_default_codes(self):
        assert PermissionDeniedError("no").code == "PERMISSION_DENIED"
        assert InferenceTimeoutError("slow").code == "INFERENCE_TIMEOUT"
        assert SynthesisTimeoutError("slow").code == "SYNTHESIS_TIMEOUT"

    def test_hierarchy(self):
        assert issubclass(InferenceTimeoutError, InferenceFailedError)
        assert issubclass(SynthesisTimeoutError, SynthesisFailedError)
        assert issubclass(PermissionDeniedError, VoiceSessionError)

    def test_to_dict(self):
        error = InferenceFailedError(
            "API error: 500", provider="groq", details={"status": 500}
        )

        assert error.to_dict() == {
            "error": "INFERENCE_FAILED",
            "message": "API error: 500",
            "provider": "groq",
            "details": {"status": 500},
        }
        assert str(error) == "API error: 500"


def test_cancellation_token():
    token = CancellationToken()
    assert not token.is_cancelled

    token.cancel()
    assert token.is_cancelled
    assert "cancelled=True" in repr(token)

    token.reset()
    assert not token.is_cancelled


class TestConfigureLogging:
    """Tests for configure_logging."""

    @pytest.fixture(autouse=True)
    def _reset_structlog(self):
        yield
        structlog.reset_defaults()

    def test_console_renderer(self):
        configure_logging(Settings(_env_file=None, log_format="console"))

        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)

    def test_json_renderer(self):
        configure_logging(Settings(_env_file=None, log_format="json"))

        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)
