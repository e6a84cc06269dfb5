"""
Speech capture.

Runs the on-device recognizer with interim results and promotes the last
partial to a final transcript after a short silence. When the recognizer
cannot start, or fails mid-session, raw audio is recorded to a temporary file
instead and sent to the fallback transcription service when capture stops.
Both paths deliver finals through the same callback.
"""

import asyncio
import os
import tempfile
from contextlib import aclosing
from enum import Enum
from typing import Awaitable, Callable, Optional

import structlog

from ..adapters.base import (
    AudioRecorder,
    PermissionProvider,
    Recognizer,
    TranscriptionRequest,
    TranscriptionResponse,
    TranscriptionService,
)
from ..exceptions import (
    PermissionDeniedError,
    TranscriptionFailedError,
    VoiceSessionError,
)
from ..models import CancellationToken

logger = structlog.get_logger()

PartialCallback = Callable[[str], Awaitable[None]]
FinalCallback = Callable[[str, Optional[str]], Awaitable[None]]
ErrorCallback = Callable[[VoiceSessionError], Awaitable[None]]


class CaptureMode(str, Enum):
    """Which capture path is active."""

    IDLE = "idle"
    PRIMARY = "primary"
    FALLBACK = "fallback"


class SpeechBuffer:
    """
    A fallback audio recording and its temporary file.

    The file exists from ``open()`` until ``close()``; ``close()`` is safe to
    call any number of times.
    """

    def __init__(
        self,
        recorder: AudioRecorder,
        directory: Optional[str] = None,
        audio_format: str = "wav",
    ) -> None:
        self.recorder = recorder
        self.directory = directory
        self.audio_format = audio_format
        self.path: Optional[str] = None
        self._recording = False

    async def open(self) -> None:
        fd, path = tempfile.mkstemp(
            prefix="voice-capture-",
            suffix=f".{self.audio_format}",
            dir=self.directory,
        )
        os.close(fd)
        self.path = path
        try:
            await self.recorder.start(path)
        except BaseException:
            self.close()
            raise
        self._recording = True

    async def stop_recording(self) -> None:
        if self._recording:
            self._recording = False
            await self.recorder.stop()

    async def read(self) -> bytes:
        """Stop recording and return the captured audio."""
        await self.stop_recording()
        if not self.path:
            return b""
        with open(self.path, "rb") as f:
            return f.read()

    def close(self) -> None:
        path, self.path = self.path, None
        if path and os.path.exists(path):
            try:
                os.unlink(path)
            except OSError as e:
                logger.warning("Failed to delete capture file", path=path, error=str(e))


class SpeechCaptureController:
    """Owns the listening lifecycle for one session."""

    def __init__(
        self,
        recognizer: Recognizer,
        recorder: AudioRecorder,
        transcription: TranscriptionService,
        permissions: PermissionProvider,
        token: CancellationToken,
        on_partial: PartialCallback,
        on_final: FinalCallback,
        on_error: Optional[ErrorCallback] = None,
        silence_timeout_ms: int = 475,
        recognizer_stop_timeout_s: float = 2.0,
        audio_dir: Optional[str] = None,
        audio_format: str = "wav",
        session_id: Optional[str] = None,
    ) -> None:
        self.recognizer = recognizer
        self.recorder = recorder
        self.transcription = transcription
        self.permissions = permissions
        self.token = token
        self.on_partial = on_partial
        self.on_final = on_final
        self.on_error = on_error
        self.silence_timeout_ms = silence_timeout_ms
        self.recognizer_stop_timeout_s = recognizer_stop_timeout_s
        self.audio_dir = audio_dir
        self.audio_format = audio_format

        self._mode = CaptureMode.IDLE
        self._locale = ""
        self._last_partial = ""
        self._buffer: Optional[SpeechBuffer] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._silence_task: Optional[asyncio.Task] = None

        self.logger = logger.bind(component="speech_capture", session_id=session_id)

    @property
    def mode(self) -> CaptureMode:
        return self._mode

    @property
    def is_active(self) -> bool:
        return self._mode != CaptureMode.IDLE

    @property
    def buffer_path(self) -> Optional[str]:
        return self._buffer.path if self._buffer else None

    @property
    def has_pending_timer(self) -> bool:
        return self._silence_task is not None and not self._silence_task.done()

    # =========================================================================
    # Start / stop
    # =========================================================================

    async def start(self, locale: str, allow_fallback: bool = True) -> None:
        """
        Start capturing speech.

        With ``allow_fallback=False`` a recognizer failure leaves capture
        inactive instead of recording audio.

        Raises:
            PermissionDeniedError: microphone access was refused
            TranscriptionFailedError: neither the recognizer nor the fallback
                recording could be started
        """
        if self.is_active:
            return

        if not await self.permissions.request_microphone():
            raise PermissionDeniedError("Microphone access was denied")

        self._locale = locale
        self._last_partial = ""

        try:
            await self.recognizer.start(locale, interim_results=True)
        except Exception as e:
            if not allow_fallback:
                self.logger.debug("Recognizer unavailable, capture not started", error=str(e))
                return
            self.logger.warning(
                "Primary recognizer unavailable, recording for fallback",
                error=str(e),
            )
            await self._open_fallback()
            return

        self._mode = CaptureMode.PRIMARY
        self._reader_task = asyncio.create_task(self._read_events())
        self.logger.debug("Capture started", locale=locale)

    async def stop(self, discard: bool = False) -> None:
        """
        Stop whichever path is active and delete any temporary audio.

        In fallback mode the recording is transcribed and delivered as a final
        unless ``discard`` is set or the session was cancelled.
        """
        mode = self._mode
        if mode == CaptureMode.IDLE:
            return
        self._mode = CaptureMode.IDLE

        self._cancel_silence_timer()
        buffer, self._buffer = self._buffer, None
        reader, self._reader_task = self._reader_task, None
        response: Optional[TranscriptionResponse] = None

        try:
            if mode == CaptureMode.PRIMARY:
                await self._stop_recognizer()
            await self._join_reader(reader)

            if buffer is not None:
                if discard or self.token.is_cancelled:
                    await buffer.stop_recording()
                else:
                    response = await self._transcribe(buffer)
        finally:
            if buffer is not None:
                buffer.close()

        self.logger.debug("Capture stopped", mode=mode.value, discard=discard)

        if response is not None:
            await self._deliver_final(response.transcript, response.detected_language)

    # =========================================================================
    # Primary path
    # =========================================================================

    async def _read_events(self) -> None:
        try:
            async with aclosing(self.recognizer.events()) as events:
                async for event in events:
                    if event.is_error:
                        await self._switch_to_fallback(event.error)
                        return
                    if event.is_final:
                        await self._finalize(event.transcript)
                    else:
                        await self._handle_partial(event.transcript)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error("Recognizer stream failed", error=str(e))
            await self._switch_to_fallback(str(e))

    async def _handle_partial(self, transcript: str) -> None:
        text = (transcript or "").strip()
        if not text or self._mode != CaptureMode.PRIMARY:
            return
        self._last_partial = text
        self._restart_silence_timer()

        if self.token.is_cancelled:
            return
        await self.on_partial(text)

    async def _finalize(self, transcript: Optional[str] = None) -> None:
        """Promote ``transcript`` (or the last partial) to final and stop."""
        if self._mode != CaptureMode.PRIMARY:
            return
        text = (transcript or "").strip() or self._last_partial
        await self.stop()
        await self._deliver_final(text, None)

    def _restart_silence_timer(self) -> None:
        self._cancel_silence_timer()
        self._silence_task = asyncio.create_task(self._silence_timeout())

    def _cancel_silence_timer(self) -> None:
        task, self._silence_task = self._silence_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _silence_timeout(self) -> None:
        await asyncio.sleep(self.silence_timeout_ms / 1000)
        self._silence_task = None
        self.logger.debug("Silence timeout, finalizing", transcript=self._last_partial)
        await self._finalize()

    async def _stop_recognizer(self) -> None:
        try:
            await asyncio.wait_for(
                self.recognizer.stop(),
                timeout=self.recognizer_stop_timeout_s,
            )
        except asyncio.TimeoutError:
            self.logger.warning("Recognizer stop timed out")
        except Exception as e:
            self.logger.warning("Recognizer stop failed", error=str(e))

    async def _join_reader(self, reader: Optional[asyncio.Task]) -> None:
        if reader is None or reader is asyncio.current_task() or reader.done():
            return
        done, _ = await asyncio.wait({reader}, timeout=self.recognizer_stop_timeout_s)
        if not done:
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)

    # =========================================================================
    # Fallback path
    # =========================================================================

    async def _open_fallback(self) -> None:
        buffer = SpeechBuffer(self.recorder, self.audio_dir, self.audio_format)
        try:
            await buffer.open()
        except Exception as e:
            self.logger.error("Fallback recording failed to start", error=str(e))
            raise TranscriptionFailedError(
                "Speech recognition and audio recording are unavailable",
                details={"error": str(e)},
            ) from e
        self._buffer = buffer
        self._mode = CaptureMode.FALLBACK
        self.logger.info("Recording audio for fallback transcription", path=buffer.path)

    async def _switch_to_fallback(self, reason: Optional[str]) -> None:
        if self._mode != CaptureMode.PRIMARY:
            return
        self.logger.warning("Recognizer failed mid-session, switching to fallback", error=reason)
        self._cancel_silence_timer()
        await self._stop_recognizer()
        try:
            await self._open_fallback()
        except TranscriptionFailedError as e:
            self._mode = CaptureMode.IDLE
            await self._report_error(e)

    async def _transcribe(self, buffer: SpeechBuffer) -> Optional[TranscriptionResponse]:
        try:
            audio = await buffer.read()
            if not audio:
                self.logger.info("No audio captured for fallback")
                return None
            return await self.transcription.transcribe(
                TranscriptionRequest(
                    audio=audio,
                    locale=self._locale,
                    audio_format=self.audio_format,
                )
            )
        except Exception as e:
            self.logger.error("Fallback transcription failed", error=str(e))
            if isinstance(e, TranscriptionFailedError):
                error = e
            else:
                error = TranscriptionFailedError(
                    f"Fallback transcription failed: {e}",
                    details={"error": str(e)},
                )
            await self._report_error(error)
            return None

    # =========================================================================
    # Delivery
    # =========================================================================

    async def _deliver_final(self, transcript: str, detected_language: Optional[str]) -> None:
        text = (transcript or "").strip()
        if not text:
            return
        if self.token.is_cancelled:
            self.logger.debug("Session cancelled, final transcript dropped")
            return
        await self.on_final(text, detected_language)

    async def _report_error(self, error: VoiceSessionError) -> None:
        if self.on_error is not None:
            await self.on_error(error)
