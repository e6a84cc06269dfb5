"""
Session Orchestrator - Core Turn-Taking Logic.

Sequences capture, inference and synthesis for one spoken conversation:
finals go to the response cache or the streaming inference backend, the reply
is cut into speakable units as it streams in and each unit is spoken in order
while inference continues. User speech during playback aborts the reply
(barge-in) and returns the session to listening.
"""

import asyncio
import inspect
import time
import uuid
from contextlib import aclosing
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

import structlog

from ..adapters.base import (
    AudioRecorder,
    InferenceBackend,
    PermissionProvider,
    Recognizer,
    SynthesisBackend,
    TranscriptionService,
)
from ..adapters.http import HttpTranscriptionService, OpenAICompatibleInference
from ..cache import ResponseCache, get_response_cache
from ..config import SessionConfig, Settings, get_settings
from ..exceptions import (
    InferenceFailedError,
    InferenceTimeoutError,
    PermissionDeniedError,
    TranscriptionFailedError,
    VoiceSessionError,
)
from ..language import LanguageProfileResolver
from ..models import (
    CancellationToken,
    EventType,
    LanguageProfile,
    SessionEvent,
    SessionMetrics,
    SessionSnapshot,
    SessionStatus,
)
from ..text import SpeakableUnitScanner
from .capture import SpeechCaptureController
from .interrupt import BargeInConfig, BargeInDetector
from .state import SessionStateMachine, TurnEvent
from .synthesis import SpeakOutcome, SpeechSynthesisController

logger = structlog.get_logger()

EventHandler = Callable[[SessionEvent], Union[None, Awaitable[None]]]


class SessionOrchestrator:
    """
    Runs one voice conversation.

    Host-facing surface: ``snapshot()``, ``start_listening()``,
    ``stop_listening()``, ``cancel_all()``, ``close()``, event handlers for
    the completed reply and other notifications, and ``get_statistics()``.

    All mutable turn state lives on the instance; sessions share nothing but
    the process-wide response cache.
    """

    def __init__(
        self,
        recognizer: Recognizer,
        recorder: AudioRecorder,
        transcription: TranscriptionService,
        permissions: PermissionProvider,
        inference: InferenceBackend,
        synthesis: SynthesisBackend,
        device_synthesis: Optional[SynthesisBackend] = None,
        cache: Optional[ResponseCache] = None,
        config: Optional[SessionConfig] = None,
        settings: Optional[Settings] = None,
        resolver: Optional[LanguageProfileResolver] = None,
    ):
        self.settings = settings or get_settings()
        self.config = config or SessionConfig.from_settings(self.settings)
        self._session_id = self.config.session_id

        self.inference = inference
        self.cache = cache if cache is not None else get_response_cache()
        self.resolver = resolver or LanguageProfileResolver(self.settings)

        self.token = CancellationToken()
        self.state_machine = SessionStateMachine(self._session_id)

        self.capture = SpeechCaptureController(
            recognizer=recognizer,
            recorder=recorder,
            transcription=transcription,
            permissions=permissions,
            token=self.token,
            on_partial=self._on_partial,
            on_final=self._on_final,
            on_error=self._on_capture_error,
            silence_timeout_ms=self.config.silence_timeout_ms,
            recognizer_stop_timeout_s=self.config.recognizer_stop_timeout_s,
            audio_dir=self.settings.fallback_audio_dir,
            audio_format=self.settings.fallback_audio_format,
            session_id=self._session_id,
        )
        self.synthesis = SpeechSynthesisController(
            primary=synthesis,
            token=self.token,
            fallback=device_synthesis,
            timeout_s=self.config.synthesis_timeout_s,
            session_id=self._session_id,
        )
        self.barge_in = BargeInDetector(
            BargeInConfig(
                enabled=self.config.barge_in_enabled,
                min_chars=self.config.barge_in_min_chars,
                grace_ms=self.config.barge_in_grace_ms,
            )
        )
        self.scanner = SpeakableUnitScanner(
            min_chars=self.config.min_unit_chars,
            max_chars=self.config.max_unit_chars,
        )

        # Session state
        self._partial_transcript = ""
        self._final_transcript = ""
        self._partial_reply = ""
        self._final_reply = ""
        self._error_message: Optional[str] = None
        self._detected_language: Optional[str] = None
        self._profile = self.resolver.resolve(forced=self.config.forced_language)

        # Current turn
        self._inference_in_flight = False
        self._turn_task: Optional[asyncio.Task] = None
        self._turn_id: Optional[str] = None
        self._turn_started_at: Optional[float] = None
        self._units_dispatched = 0
        self._interrupting = False
        self._closed = False

        self._metrics = SessionMetrics()
        self._event_handlers: List[EventHandler] = []

        self.logger = logger.bind(component="session_orchestrator", session_id=self._session_id)

    # =========================================================================
    # Host surface
    # =========================================================================

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def status(self) -> SessionStatus:
        return self.state_machine.state

    @property
    def language_profile(self) -> LanguageProfile:
        return self._profile

    @property
    def metrics(self) -> SessionMetrics:
        return self._metrics

    def snapshot(self) -> SessionSnapshot:
        """Read-only view of the session."""
        return SessionSnapshot(
            session_id=self._session_id,
            status=self.status,
            partial_transcript=self._partial_transcript,
            final_transcript=self._final_transcript,
            partial_reply=self._partial_reply,
            final_reply=self._final_reply,
            error_message=self._error_message,
            language_profile=self._profile,
        )

    def add_event_handler(self, handler: EventHandler) -> None:
        """Add an event handler (plain function or coroutine function)."""
        self._event_handlers.append(handler)

    def remove_event_handler(self, handler: EventHandler) -> None:
        if handler in self._event_handlers:
            self._event_handlers.remove(handler)

    def set_language(self, tag: Optional[str]) -> LanguageProfile:
        """Force a language for the rest of the session, or clear it with None."""
        self.config.forced_language = tag
        return self._resolve_profile()

    async def start_listening(self) -> None:
        """Start a listening cycle. Only valid from ``idle`` or ``error``."""
        if self._closed:
            self.logger.warning("Session closed, start_listening ignored")
            return
        if self.status not in (SessionStatus.IDLE, SessionStatus.ERROR):
            self.logger.debug("Session busy, start_listening ignored", status=self.status.value)
            return

        self._error_message = None
        self._partial_transcript = ""
        self._partial_reply = ""
        self.token.reset()
        self._resolve_profile()

        await self._transition(TurnEvent.LISTENING_STARTED)
        try:
            await self.capture.start(self._profile.recognizer_locale)
        except VoiceSessionError as e:
            await self._fail(e)
        except Exception as e:
            self.logger.error("Capture failed to start", error=str(e))
            await self._fail(TranscriptionFailedError(f"Capture failed to start: {e}"))

    async def stop_listening(self) -> None:
        """
        Stop capturing.

        In fallback mode the recording is transcribed and processed as a
        final transcript; while speaking this only ends barge-in monitoring.
        """
        if self.status == SessionStatus.SPEAKING:
            await self.capture.stop(discard=True)
            return

        await self.capture.stop()
        if self.status == SessionStatus.LISTENING:
            # A dropped transcript may have re-armed capture
            await self.capture.stop(discard=True)
            await self._transition(TurnEvent.LISTENING_STOPPED)

    async def cancel_all(self) -> None:
        """
        Abort inference, synthesis and capture and return to ``idle``.

        Idempotent: calling it again, or when already idle, does nothing.
        """
        if (
            self.status == SessionStatus.IDLE
            and self._turn_task is None
            and not self.capture.is_active
            and not self.synthesis.is_speaking
        ):
            return

        self.logger.info("Cancelling session activity", status=self.status.value)
        self.token.cancel()

        await self._abort_turn()
        await self.capture.stop(discard=True)

        self._reset_reply_state()
        self._partial_transcript = ""
        self._error_message = None
        self.barge_in.agent_stopped_speaking()

        await self._transition(TurnEvent.CANCELLED)

    async def close(self) -> None:
        """Tear the session down."""
        await self.cancel_all()
        self._closed = True
        self.logger.info("Session closed")

    # =========================================================================
    # Events
    # =========================================================================

    async def _emit_event(
        self,
        event_type: EventType,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        event = SessionEvent(
            event_type=event_type,
            session_id=self._session_id,
            data=data or {},
            turn_id=self._turn_id,
        )
        for handler in list(self._event_handlers):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.logger.error("Event handler error", event_type=event_type.value, error=str(e))

    async def _transition(self, event: TurnEvent, **metadata: Any) -> bool:
        previous = self.status
        if not self.state_machine.handle_event(event, **metadata):
            return False
        await self._emit_event(
            EventType.STATE_CHANGED,
            {"from": previous.value, "to": self.status.value, "event": event.value},
        )
        return True

    async def _fail(self, error: VoiceSessionError) -> None:
        self._error_message = error.message
        if isinstance(error, InferenceFailedError):
            self._metrics.inference_errors += 1
        elif isinstance(error, TranscriptionFailedError):
            self._metrics.transcription_errors += 1

        log = self.logger.warning if isinstance(error, PermissionDeniedError) else self.logger.error
        log("Session error", code=error.code, error=error.message)

        await self._transition(TurnEvent.ERROR, code=error.code)
        await self._emit_event(EventType.ERROR, error.to_dict())

    # =========================================================================
    # Transcripts
    # =========================================================================

    async def _on_partial(self, text: str) -> None:
        self._partial_transcript = text
        await self._emit_event(EventType.PARTIAL_TRANSCRIPT, {"text": text})

        if self.status == SessionStatus.SPEAKING and self.barge_in.check(text):
            await self._barge_in(text)

    async def _on_final(self, text: str, detected_language: Optional[str] = None) -> None:
        if detected_language:
            self._detected_language = detected_language
            self._resolve_profile()

        if len(text.split()) < self.config.min_transcript_tokens:
            self._metrics.dropped_transcripts += 1
            self.logger.debug("Transcript too short, treated as noise", transcript=text)
            await self._rearm_capture()
            return

        if self._inference_in_flight and self.status == SessionStatus.SPEAKING:
            if self.config.barge_in_enabled:
                await self._barge_in(text)

        if self._inference_in_flight:
            self._metrics.duplicate_finals += 1
            self.logger.debug("Inference already in flight, duplicate final dropped", transcript=text)
            return

        if self.status != SessionStatus.LISTENING:
            self.logger.debug("Final transcript outside listening ignored", status=self.status.value)
            return

        self._final_transcript = text
        self._partial_transcript = ""
        self._reset_reply_state()
        self._inference_in_flight = True
        self._turn_id = str(uuid.uuid4())
        self._turn_started_at = time.perf_counter()
        self._metrics.total_turns += 1

        await self._emit_event(
            EventType.FINAL_TRANSCRIPT,
            {"text": text, "detected_language": detected_language},
        )
        await self._transition(TurnEvent.TRANSCRIPT_FINAL)
        await self._transition(TurnEvent.INFERENCE_STARTED)

        self._turn_task = asyncio.create_task(self._run_turn(text))

    async def _on_capture_error(self, error: VoiceSessionError) -> None:
        if self.status in (SessionStatus.LISTENING, SessionStatus.TRANSCRIBING):
            await self._fail(error)
        else:
            self.logger.warning("Capture error outside listening", code=error.code, error=error.message)

    async def _rearm_capture(self) -> None:
        """Keep listening after a dropped transcript if capture has stopped."""
        if self.capture.is_active:
            return
        if self.status == SessionStatus.LISTENING:
            try:
                await self.capture.start(self._profile.recognizer_locale)
            except VoiceSessionError as e:
                await self._fail(e)
        elif self.status == SessionStatus.SPEAKING:
            await self._start_barge_in_monitor()

    # =========================================================================
    # Turn
    # =========================================================================

    async def _run_turn(self, utterance: str) -> None:
        units: asyncio.Queue = asyncio.Queue()
        speaker = asyncio.create_task(self._speak_units(units))
        self.scanner.reset()

        try:
            cached = self.cache.get(utterance, language=self._profile.tag)
            if cached is not None:
                self._metrics.cache_hits += 1
                self.logger.info("Response cache hit", utterance=utterance)
                reply, do_not_speak = cached, False
            else:
                reply, do_not_speak = await self._run_inference(utterance, units)

            if self.token.is_cancelled:
                return

            # The scanner's text is the reply minus dropped stream fragments
            remaining = self.scanner.finish(reply or None)
            reply = self.scanner.raw_text.strip()
            spoken_text = "" if do_not_speak else self.scanner.text
            if cached is None and reply and not do_not_speak:
                self.cache.put(utterance, reply, language=self._profile.tag)

            if do_not_speak:
                self.logger.info("Reply marked do-not-speak, skipping synthesis")
                speaker.cancel()
                await self.synthesis.stop()
            else:
                await self._dispatch(remaining, units)
                units.put_nowait(None)
                await speaker

            if self.token.is_cancelled:
                return

            self._final_reply = reply
            self._partial_reply = ""
            await self.capture.stop(discard=True)

            if reply:
                self._metrics.completed_turns += 1
                await self._emit_event(
                    EventType.REPLY_COMPLETED,
                    {
                        "utterance": utterance,
                        "text": reply,
                        "spoken_text": spoken_text,
                        "spoken": not do_not_speak,
                        "cached": cached is not None,
                        "language": self._profile.tag,
                    },
                )
            else:
                self.logger.info("Empty reply, nothing to speak")
            await self._transition(TurnEvent.REPLY_COMPLETED)

        except asyncio.CancelledError:
            raise
        except VoiceSessionError as e:
            await self._abort_speech(speaker)
            await self._fail(e)
        except Exception as e:
            self.logger.exception("Turn failed")
            await self._abort_speech(speaker)
            await self._fail(InferenceFailedError(f"Inference failed: {e}"))
        finally:
            if not speaker.done():
                speaker.cancel()
                await asyncio.gather(speaker, return_exceptions=True)
            self._inference_in_flight = False
            self.barge_in.agent_stopped_speaking()
            if self._turn_task is asyncio.current_task():
                self._turn_task = None

    async def _run_inference(self, utterance: str, units: asyncio.Queue) -> Tuple[str, bool]:
        try:
            return await asyncio.wait_for(
                self._stream_inference(utterance, units),
                timeout=self.config.inference_timeout_s,
            )
        except asyncio.TimeoutError as e:
            raise InferenceTimeoutError(
                f"Inference did not complete within {self.config.inference_timeout_s}s",
                provider=self.inference.name,
            ) from e

    async def _stream_inference(self, utterance: str, units: asyncio.Queue) -> Tuple[str, bool]:
        final_text: Optional[str] = None
        do_not_speak = False

        async with aclosing(
            self.inference.stream_reply(utterance, system_prompt=self._profile.prompt_template)
        ) as stream:
            async for chunk in stream:
                if self.token.is_cancelled:
                    break
                if chunk.is_complete:
                    final_text = chunk.text
                    do_not_speak = chunk.do_not_speak
                    break

                new_units = self.scanner.append(chunk.text)
                self._partial_reply = self.scanner.raw_text
                await self._dispatch(new_units, units)

        return (final_text or self.scanner.raw_text), do_not_speak

    async def _dispatch(self, new_units: List[str], units: asyncio.Queue) -> None:
        for unit in new_units:
            if self.token.is_cancelled:
                return
            if self._units_dispatched == 0:
                if self._turn_started_at is not None:
                    self._metrics.last_first_unit_latency_ms = round(
                        (time.perf_counter() - self._turn_started_at) * 1000, 2
                    )
                await self._transition(TurnEvent.SPEECH_STARTED)
                self.barge_in.agent_started_speaking()
                await self._start_barge_in_monitor()

            self._units_dispatched += 1
            units.put_nowait(unit)
            await self._emit_event(
                EventType.UNIT_DISPATCHED,
                {"text": unit, "index": self._units_dispatched - 1},
            )

    async def _speak_units(self, units: asyncio.Queue) -> None:
        while True:
            unit = await units.get()
            if unit is None or self.token.is_cancelled:
                return
            outcome = await self.synthesis.speak(unit, self._profile)
            if outcome == SpeakOutcome.ABORTED:
                return

    async def _start_barge_in_monitor(self) -> None:
        if not self.config.barge_in_enabled or self.capture.is_active:
            return
        try:
            await self.capture.start(self._profile.recognizer_locale, allow_fallback=False)
        except VoiceSessionError as e:
            self.logger.warning("Barge-in monitoring unavailable", code=e.code, error=e.message)

    # =========================================================================
    # Interruption
    # =========================================================================

    async def _barge_in(self, transcript: str) -> None:
        """Abort the reply being spoken and go back to listening."""
        if self._interrupting:
            return
        self._interrupting = True
        try:
            self._metrics.interruptions += 1
            self.logger.info("Barge-in, aborting reply", transcript=transcript)

            self.token.cancel()
            await self._abort_turn()
            self._reset_reply_state()
            self.barge_in.agent_stopped_speaking()
            # Abort is confirmed at this point; late callbacks see a fresh token
            self.token.reset()

            await self._transition(TurnEvent.BARGE_IN)
            await self._emit_event(EventType.BARGE_IN, {"transcript": transcript})
        finally:
            self._interrupting = False

    async def _abort_turn(self) -> None:
        task, self._turn_task = self._turn_task, None
        await self.synthesis.stop()
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._inference_in_flight = False

    async def _abort_speech(self, speaker: asyncio.Task) -> None:
        if not speaker.done():
            speaker.cancel()
            await asyncio.gather(speaker, return_exceptions=True)
        await self.synthesis.stop()
        await self.capture.stop(discard=True)

    def _reset_reply_state(self) -> None:
        self.scanner.reset()
        self._partial_reply = ""
        self._units_dispatched = 0

    # =========================================================================
    # Language
    # =========================================================================

    def _resolve_profile(self) -> LanguageProfile:
        profile = self.resolver.resolve(
            forced=self.config.forced_language,
            detected=self._detected_language,
        )
        if profile != self._profile:
            self.logger.info("Language profile changed", old=self._profile.tag, new=profile.tag)
            self._profile = profile
        return self._profile

    # =========================================================================
    # Statistics and Monitoring
    # =========================================================================

    def get_statistics(self) -> Dict[str, Any]:
        """Get session statistics."""
        return {
            "session_id": self._session_id,
            "status": self.status.value,
            "language": self._profile.tag,
            "turns": {
                "total": self._metrics.total_turns,
                "completed": self._metrics.completed_turns,
                "cache_hits": self._metrics.cache_hits,
                "dropped_transcripts": self._metrics.dropped_transcripts,
                "duplicate_finals": self._metrics.duplicate_finals,
            },
            "interruptions": self._metrics.interruptions,
            "errors": {
                "inference_errors": self._metrics.inference_errors,
                "transcription_errors": self._metrics.transcription_errors,
                "synthesis_failures": self.synthesis.units_failed,
            },
            "synthesis": {
                "units_spoken": self.synthesis.units_spoken,
                "fallbacks_used": self.synthesis.fallbacks_used,
            },
            "last_first_unit_latency_ms": self._metrics.last_first_unit_latency_ms,
        }


def create_orchestrator(
    recognizer: Recognizer,
    recorder: AudioRecorder,
    permissions: PermissionProvider,
    synthesis: SynthesisBackend,
    device_synthesis: Optional[SynthesisBackend] = None,
    inference: Optional[InferenceBackend] = None,
    transcription: Optional[TranscriptionService] = None,
    forced_language: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> SessionOrchestrator:
    """
    Create an orchestrator wired to the HTTP inference and transcription
    adapters unless other backends are given.
    """
    settings = settings or get_settings()
    return SessionOrchestrator(
        recognizer=recognizer,
        recorder=recorder,
        transcription=transcription or HttpTranscriptionService.from_settings(settings),
        permissions=permissions,
        inference=inference or OpenAICompatibleInference.from_settings(settings),
        synthesis=synthesis,
        device_synthesis=device_synthesis,
        config=SessionConfig.from_settings(settings, forced_language=forced_language),
        settings=settings,
    )
