"""
Scripted in-memory adapters.

Used by the test suite and by the CLI simulator. Each mock records what it was
asked to do so callers can assert on it afterwards.
"""

import asyncio
from typing import AsyncIterator, List, Optional, Sequence

import structlog

from ..exceptions import (
    InferenceFailedError,
    RecognizerUnavailableError,
    SynthesisFailedError,
    TranscriptionFailedError,
)
from .base import (
    AudioRecorder,
    InferenceBackend,
    InferenceChunk,
    PermissionProvider,
    PlaybackEvent,
    RecognitionEvent,
    Recognizer,
    SynthesisBackend,
    TranscriptionRequest,
    TranscriptionResponse,
    TranscriptionService,
)

logger = structlog.get_logger()


class MockRecognizer(Recognizer):
    """
    Recognizer driven by the caller.

    ``emit_partial``/``emit_final`` push an event and return once the consumer
    has finished handling it, which keeps tests deterministic.
    """

    def __init__(self, fail_on_start: bool = False) -> None:
        self.fail_on_start = fail_on_start
        self.is_running = False
        self.start_calls: List[str] = []
        self.stop_calls = 0
        self._queue: Optional[asyncio.Queue] = None
        self.logger = logger.bind(adapter="mock_recognizer")

    @property
    def name(self) -> str:
        return "mock"

    async def start(self, locale: str, interim_results: bool = True) -> None:
        self.start_calls.append(locale)
        if self.fail_on_start:
            raise RecognizerUnavailableError(
                "Speech recognition not available", provider=self.name
            )
        self._queue = asyncio.Queue()
        self.is_running = True
        self.logger.debug("Recognizer started", locale=locale)

    async def stop(self) -> None:
        self.stop_calls += 1
        if self.is_running:
            self.is_running = False
            self._queue.put_nowait(None)

    async def events(self) -> AsyncIterator[RecognitionEvent]:
        queue = self._queue
        if queue is None:
            return
        while True:
            item = await queue.get()
            if item is None:
                return
            event, handled = item
            try:
                yield event
            finally:
                handled.set()

    async def emit_partial(self, text: str) -> None:
        await self._emit(RecognitionEvent(transcript=text, is_final=False))

    async def emit_final(self, text: str) -> None:
        await self._emit(RecognitionEvent(transcript=text, is_final=True))

    async def emit_error(self, message: str = "network") -> None:
        await self._emit(RecognitionEvent(error=message))

    async def _emit(self, event: RecognitionEvent) -> None:
        if not self.is_running:
            self.logger.debug("Recognizer not running, event dropped")
            return
        handled = asyncio.Event()
        self._queue.put_nowait((event, handled))
        await handled.wait()


class MockPermissionProvider(PermissionProvider):
    """Grants or refuses microphone access as configured."""

    def __init__(self, granted: bool = True) -> None:
        self.granted = granted
        self.requests = 0

    async def request_microphone(self) -> bool:
        self.requests += 1
        return self.granted


class MockAudioRecorder(AudioRecorder):
    """Writes fixed bytes to the target file when recording stops."""

    def __init__(self, audio: bytes = b"RIFF-mock-audio") -> None:
        self.audio = audio
        self.paths: List[str] = []
        self.is_recording = False
        self._path: Optional[str] = None

    async def start(self, path: str) -> None:
        self.paths.append(path)
        self._path = path
        self.is_recording = True

    async def stop(self) -> None:
        if self.is_recording and self._path:
            with open(self._path, "wb") as f:
                f.write(self.audio)
        self.is_recording = False


class MockTranscriptionService(TranscriptionService):
    """Returns a fixed transcript for any audio."""

    def __init__(
        self,
        transcript: str = "",
        detected_language: Optional[str] = None,
        fail: bool = False,
    ) -> None:
        self.transcript = transcript
        self.detected_language = detected_language
        self.fail = fail
        self.requests: List[TranscriptionRequest] = []

    async def transcribe(self, request: TranscriptionRequest) -> TranscriptionResponse:
        self.requests.append(request)
        if self.fail:
            raise TranscriptionFailedError("Transcription service error", provider="mock")
        return TranscriptionResponse(
            transcript=self.transcript,
            detected_language=self.detected_language,
        )


class MockInferenceBackend(InferenceBackend):
    """
    Streams scripted chunks.

    With ``hang=True`` the stream never completes until the consuming task is
    cancelled; ``error`` makes the stream raise after the scripted chunks.
    """

    def __init__(
        self,
        chunks: Optional[Sequence[str]] = None,
        final_text: Optional[str] = None,
        do_not_speak: bool = False,
        chunk_delay_s: float = 0.0,
        hang: bool = False,
        error: Optional[Exception] = None,
    ) -> None:
        self.chunks = list(chunks or [])
        self.final_text = final_text
        self.do_not_speak = do_not_speak
        self.chunk_delay_s = chunk_delay_s
        self.hang = hang
        self.error = error
        self.calls: List[str] = []
        self.system_prompts: List[Optional[str]] = []
        self.active = 0
        self.max_active = 0
        self.cancelled = 0
        self.logger = logger.bind(adapter="mock_inference")

    @property
    def name(self) -> str:
        return "mock"

    async def stream_reply(
        self,
        text: str,
        system_prompt: Optional[str] = None,
    ) -> AsyncIterator[InferenceChunk]:
        self.calls.append(text)
        self.system_prompts.append(system_prompt)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            for chunk in self.chunks:
                await asyncio.sleep(self.chunk_delay_s)
                yield InferenceChunk(text=chunk)

            if self.error is not None:
                raise self.error
            if self.hang:
                await asyncio.Event().wait()

            full = self.final_text if self.final_text is not None else "".join(self.chunks)
            yield InferenceChunk(
                text=full,
                is_complete=True,
                do_not_speak=self.do_not_speak,
            )
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        finally:
            self.active -= 1


class FailingInferenceBackend(MockInferenceBackend):
    """Inference backend that always fails."""

    def __init__(self, message: str = "Backend unavailable") -> None:
        super().__init__(error=InferenceFailedError(message, provider="mock"))


class MockSynthesisBackend(SynthesisBackend):
    """
    Records spoken text and simulates playback.

    With ``hold=True`` playback lasts until ``stop()`` or ``release()``.
    """

    def __init__(
        self,
        name: str = "mock",
        duration_s: float = 0.0,
        hold: bool = False,
        fail: bool = False,
        never_finish: bool = False,
    ) -> None:
        self._name = name
        self.duration_s = duration_s
        self.hold = hold
        self.fail = fail
        self.never_finish = never_finish
        self.spoken: List[str] = []
        self.voices: List[str] = []
        self.completed: List[str] = []
        self.stop_calls = 0
        self.started = asyncio.Event()
        self._stopped = asyncio.Event()
        self._released = asyncio.Event()

    @property
    def name(self) -> str:
        return self._name

    async def speak(self, text: str, voice_id: str) -> AsyncIterator[PlaybackEvent]:
        if self.fail:
            raise SynthesisFailedError("Synthesis backend error", provider=self.name)

        self._stopped = asyncio.Event()
        self.spoken.append(text)
        self.voices.append(voice_id)
        self.started.set()
        yield PlaybackEvent.STARTED

        if self.never_finish:
            await asyncio.Event().wait()
        if self.hold:
            stop_wait = asyncio.ensure_future(self._stopped.wait())
            release_wait = asyncio.ensure_future(self._released.wait())
            try:
                await asyncio.wait(
                    {stop_wait, release_wait},
                    return_when=asyncio.FIRST_COMPLETED,
                )
            finally:
                stop_wait.cancel()
                release_wait.cancel()
        elif self.duration_s:
            await asyncio.sleep(self.duration_s)

        if self._stopped.is_set():
            return
        yield PlaybackEvent.PROGRESS
        self.completed.append(text)
        yield PlaybackEvent.DONE

    async def stop(self) -> None:
        self.stop_calls += 1
        self._stopped.set()

    def release(self) -> None:
        """Let held playback finish normally."""
        self._released.set()
