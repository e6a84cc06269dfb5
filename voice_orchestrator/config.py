"""
Configuration for the Voice Orchestrator.

This module defines the process-wide settings (loaded from the environment)
and the per-session configuration derived from them.
"""

import uuid
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service settings
    service_name: str = "voice-orchestrator"
    log_level: str = "info"
    log_format: Literal["json", "console"] = "console"

    # Capture settings
    silence_timeout_ms: int = Field(default=475, ge=50, le=10000)
    recognizer_stop_timeout_s: float = Field(default=2.0, gt=0)
    fallback_audio_dir: Optional[str] = None  # None -> system temp dir
    fallback_audio_format: str = "wav"
    fallback_transcription_url: str = "http://localhost:8082/transcribe"
    fallback_transcription_timeout_s: float = Field(default=30.0, gt=0)

    # Turn policy
    min_transcript_tokens: int = Field(default=2, ge=1)
    barge_in_enabled: bool = True
    barge_in_min_chars: int = Field(default=2, ge=1)
    barge_in_grace_ms: int = Field(default=0, ge=0)  # Ignore partials right after speech starts

    # Speakable unit detection
    min_unit_chars: int = Field(default=30, ge=1)
    max_unit_chars: int = Field(default=220, ge=20)

    # Timeouts
    inference_timeout_s: float = Field(default=60.0, gt=0)
    synthesis_timeout_s: float = Field(default=30.0, gt=0)

    # Language settings
    default_language: str = "en-ZA"
    preferred_language: Optional[str] = None
    ui_locale: Optional[str] = None
    assistant_name: str = "Dash"

    # Response cache
    cache_ttl_s: float = Field(default=3600.0, gt=0)
    cache_max_entries: int = Field(default=1000, ge=1)

    # Inference HTTP adapter (OpenAI-compatible)
    inference_base_url: str = "https://api.groq.com/openai/v1"
    inference_api_key: str = Field(default="", description="Inference API key")
    inference_model: str = "llama-3.1-70b-versatile"

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        return value.lower()


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


@dataclass
class SessionConfig:
    """Configuration for one conversation session."""

    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    # Language
    forced_language: Optional[str] = None

    # Timing
    silence_timeout_ms: int = 475
    recognizer_stop_timeout_s: float = 2.0
    inference_timeout_s: float = 60.0
    synthesis_timeout_s: float = 30.0

    # Turn policy
    min_transcript_tokens: int = 2
    barge_in_enabled: bool = True
    barge_in_min_chars: int = 2
    barge_in_grace_ms: int = 0

    # Speakable units
    min_unit_chars: int = 30
    max_unit_chars: int = 220

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        **overrides,
    ) -> "SessionConfig":
        """Build a session config from application settings."""
        settings = settings or get_settings()
        values = {
            "silence_timeout_ms": settings.silence_timeout_ms,
            "recognizer_stop_timeout_s": settings.recognizer_stop_timeout_s,
            "inference_timeout_s": settings.inference_timeout_s,
            "synthesis_timeout_s": settings.synthesis_timeout_s,
            "min_transcript_tokens": settings.min_transcript_tokens,
            "barge_in_enabled": settings.barge_in_enabled,
            "barge_in_min_chars": settings.barge_in_min_chars,
            "barge_in_grace_ms": settings.barge_in_grace_ms,
            "min_unit_chars": settings.min_unit_chars,
            "max_unit_chars": settings.max_unit_chars,
        }
        values.update(overrides)
        return cls(**values)
