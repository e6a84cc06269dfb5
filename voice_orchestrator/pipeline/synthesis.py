"""Speech synthesis with device fallback, hard timeout and abort."""

import asyncio
from contextlib import aclosing
from enum import Enum
from typing import List, Optional, Tuple

import structlog

from ..adapters.base import PlaybackEvent, SynthesisBackend
from ..exceptions import SynthesisFailedError, SynthesisTimeoutError
from ..models import CancellationToken, LanguageProfile

logger = structlog.get_logger()


class SpeakOutcome(str, Enum):
    """How a call to ``speak`` ended."""

    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"


class SpeechSynthesisController:
    """
    Plays one unit of reply text at a time.

    The primary backend speaks with the profile's synthesis voice. If it
    fails or times out, the device backend retries with the recognizer locale
    as its voice. When both fail the unit is skipped silently.
    """

    def __init__(
        self,
        primary: SynthesisBackend,
        token: CancellationToken,
        fallback: Optional[SynthesisBackend] = None,
        timeout_s: float = 30.0,
        session_id: Optional[str] = None,
    ) -> None:
        self.primary = primary
        self.fallback = fallback
        self.token = token
        self.timeout_s = timeout_s

        self._active_backend: Optional[SynthesisBackend] = None
        self._stop_event: Optional[asyncio.Event] = None

        # Statistics
        self.units_spoken = 0
        self.units_failed = 0
        self.fallbacks_used = 0

        self.logger = logger.bind(component="speech_synthesis", session_id=session_id)

    @property
    def is_speaking(self) -> bool:
        return self._active_backend is not None

    async def speak(self, text: str, profile: LanguageProfile) -> SpeakOutcome:
        """Play ``text`` and return once playback finished or was aborted."""
        text = (text or "").strip()
        if not text:
            return SpeakOutcome.COMPLETED

        candidates: List[Tuple[SynthesisBackend, str]] = [
            (self.primary, profile.synthesis_voice_id)
        ]
        if self.fallback is not None:
            candidates.append((self.fallback, profile.recognizer_locale))

        for index, (backend, voice_id) in enumerate(candidates):
            if self.token.is_cancelled:
                return SpeakOutcome.ABORTED
            if index > 0:
                self.fallbacks_used += 1
                self.logger.warning("Falling back to device speech", voice=voice_id)
            try:
                outcome = await self._play(backend, text, voice_id)
            except SynthesisFailedError as e:
                self.logger.warning(
                    "Synthesis failed",
                    backend=backend.name,
                    code=e.code,
                    error=e.message,
                )
                continue
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.warning("Synthesis failed", backend=backend.name, error=str(e))
                continue

            if outcome == SpeakOutcome.COMPLETED:
                self.units_spoken += 1
            return outcome

        self.units_failed += 1
        self.logger.error("All synthesis backends failed, reply stays text-only")
        return SpeakOutcome.FAILED

    async def stop(self) -> None:
        """Abort the current utterance, if any."""
        if self._stop_event is not None:
            self._stop_event.set()
        backend = self._active_backend or self.primary
        try:
            await backend.stop()
        except Exception as e:
            self.logger.warning("Synthesis stop failed", backend=backend.name, error=str(e))

    async def _play(self, backend: SynthesisBackend, text: str, voice_id: str) -> SpeakOutcome:
        stop_event = asyncio.Event()
        self._stop_event = stop_event
        self._active_backend = backend

        play = asyncio.create_task(self._consume(backend, text, voice_id))
        stopper = asyncio.create_task(stop_event.wait())
        try:
            done, _ = await asyncio.wait(
                {play, stopper},
                timeout=self.timeout_s,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if stop_event.is_set():
                await self._halt(backend, play)
                return SpeakOutcome.ABORTED
            if play in done:
                return play.result()

            await self._halt(backend, play)
            raise SynthesisTimeoutError(
                f"Playback did not finish within {self.timeout_s}s",
                provider=backend.name,
            )
        except asyncio.CancelledError:
            await self._halt(backend, play)
            raise
        finally:
            stopper.cancel()
            self._stop_event = None
            self._active_backend = None

    async def _consume(self, backend: SynthesisBackend, text: str, voice_id: str) -> SpeakOutcome:
        async with aclosing(backend.speak(text, voice_id)) as events:
            async for event in events:
                if event == PlaybackEvent.STARTED:
                    if self.token.is_cancelled:
                        self.logger.debug("Cancelled as playback started, halting")
                        await backend.stop()
                        return SpeakOutcome.ABORTED
                elif event == PlaybackEvent.DONE:
                    return SpeakOutcome.COMPLETED
        return SpeakOutcome.COMPLETED

    async def _halt(self, backend: SynthesisBackend, play: asyncio.Task) -> None:
        try:
            await backend.stop()
        except Exception as e:
            self.logger.warning("Synthesis stop failed", backend=backend.name, error=str(e))
        if not play.done():
            play.cancel()
        await asyncio.gather(play, return_exceptions=True)
