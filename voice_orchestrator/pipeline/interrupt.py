"""Barge-in detection while the assistant is speaking."""

import time
from dataclasses import dataclass
from typing import Optional

import structlog

logger = structlog.get_logger()


@dataclass
class BargeInConfig:
    """Configuration for barge-in detection."""

    enabled: bool = True

    # Minimum partial transcript length that counts as the user taking over
    min_chars: int = 2

    # Ignore partials this soon after playback started (echo of our own voice)
    grace_ms: int = 0


@dataclass
class BargeInEvent:
    """A detected barge-in."""
    transcript: str
    timestamp: float
    agent_speech_ms: int


class BargeInDetector:
    """Decides whether user speech during assistant playback is a barge-in."""

    def __init__(self, config: Optional[BargeInConfig] = None) -> None:
        self.config = config or BargeInConfig()
        self._is_agent_speaking = False
        self._agent_speech_start = 0.0
        self.logger = logger.bind(component="barge_in_detector")

    @property
    def is_agent_speaking(self) -> bool:
        return self._is_agent_speaking

    def agent_started_speaking(self) -> None:
        """Called when the first unit of a reply is dispatched."""
        if not self._is_agent_speaking:
            self._is_agent_speaking = True
            self._agent_speech_start = time.monotonic()
            self.logger.debug("Agent started speaking")

    def agent_stopped_speaking(self) -> None:
        self._is_agent_speaking = False

    def check(self, transcript: str) -> Optional[BargeInEvent]:
        """Return a BargeInEvent if ``transcript`` should interrupt playback."""
        if not self.config.enabled or not self._is_agent_speaking:
            return None

        text = (transcript or "").strip()
        if len(text) < self.config.min_chars:
            return None

        elapsed_ms = int((time.monotonic() - self._agent_speech_start) * 1000)
        if elapsed_ms < self.config.grace_ms:
            self.logger.debug("Partial inside grace window ignored", elapsed_ms=elapsed_ms)
            return None

        self.logger.info("Barge-in detected", transcript=text, agent_speech_ms=elapsed_ms)
        return BargeInEvent(
            transcript=text,
            timestamp=time.time(),
            agent_speech_ms=elapsed_ms,
        )
