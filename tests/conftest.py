"""Shared pytest fixtures for testing."""

import asyncio
from typing import Callable, Optional

import pytest

from voice_orchestrator.adapters.mock import (
    MockAudioRecorder,
    MockInferenceBackend,
    MockPermissionProvider,
    MockRecognizer,
    MockSynthesisBackend,
    MockTranscriptionService,
)
from voice_orchestrator.cache import ResponseCache
from voice_orchestrator.config import SessionConfig, Settings
from voice_orchestrator.models import SessionStatus
from voice_orchestrator.pipeline import SessionOrchestrator


# =============================================================================
# Settings Fixtures
# =============================================================================


@pytest.fixture
def audio_dir(tmp_path):
    """Directory that receives fallback recordings."""
    path = tmp_path / "audio"
    path.mkdir()
    return path


@pytest.fixture
def settings(audio_dir) -> Settings:
    """Settings isolated from the environment."""
    return Settings(
        _env_file=None,
        fallback_audio_dir=str(audio_dir),
        default_language="en-ZA",
        preferred_language=None,
        ui_locale=None,
    )


# =============================================================================
# Adapter Fixtures
# =============================================================================


@pytest.fixture
def recognizer():
    return MockRecognizer()


@pytest.fixture
def recorder():
    return MockAudioRecorder()


@pytest.fixture
def permissions():
    return MockPermissionProvider()


@pytest.fixture
def transcription():
    return MockTranscriptionService(transcript="book a slot", detected_language="en")


@pytest.fixture
def synthesis():
    return MockSynthesisBackend(name="primary")


@pytest.fixture
def device_synthesis():
    return MockSynthesisBackend(name="device")


@pytest.fixture
def cache():
    """A fresh cache per test instead of the process-wide one."""
    return ResponseCache(ttl_s=60, max_entries=100)


# =============================================================================
# Orchestrator Fixtures
# =============================================================================


@pytest.fixture
def make_orchestrator(
    settings,
    recognizer,
    recorder,
    permissions,
    transcription,
    synthesis,
    device_synthesis,
    cache,
) -> Callable[..., SessionOrchestrator]:
    """Build an orchestrator around the mock adapters."""

    def _make(
        inference: Optional[MockInferenceBackend] = None,
        **config_overrides,
    ) -> SessionOrchestrator:
        return SessionOrchestrator(
            recognizer=recognizer,
            recorder=recorder,
            transcription=transcription,
            permissions=permissions,
            inference=inference or MockInferenceBackend(chunks=["Okay."]),
            synthesis=synthesis,
            device_synthesis=device_synthesis,
            cache=cache,
            config=SessionConfig.from_settings(settings, **config_overrides),
            settings=settings,
        )

    return _make


@pytest.fixture
def wait_for_status():
    """Return a coroutine function that polls until the session reaches a status."""

    async def _wait(orchestrator: SessionOrchestrator, *statuses: SessionStatus, timeout: float = 2.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while orchestrator.status not in statuses:
            if loop.time() > deadline:
                raise AssertionError(
                    f"Status {orchestrator.status.value} never became "
                    f"{[s.value for s in statuses]}"
                )
            await asyncio.sleep(0.005)

    return _wait
