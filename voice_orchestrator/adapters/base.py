"""Base interfaces for the external collaborators of a voice session."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Optional


# =============================================================================
# Speech recognition
# =============================================================================


@dataclass
class RecognitionEvent:
    """An event from the recognizer stream."""
    transcript: str = ""
    is_final: bool = False
    error: Optional[str] = None  # Set when the recognizer failed mid-session

    @property
    def is_error(self) -> bool:
        return self.error is not None


class Recognizer(ABC):
    """On-device speech recognizer."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the recognizer name."""
        pass

    @abstractmethod
    async def start(self, locale: str, interim_results: bool = True) -> None:
        """
        Start recognition.

        Raises:
            RecognizerUnavailableError (or any exception) if the engine
            cannot be started.
        """
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop recognition."""
        pass

    @abstractmethod
    def events(self) -> AsyncIterator[RecognitionEvent]:
        """
        Stream recognition events until the recognizer stops.

        Yields:
            RecognitionEvent objects in arrival order
        """
        pass


class PermissionProvider(ABC):
    """Grants or refuses microphone access."""

    @abstractmethod
    async def request_microphone(self) -> bool:
        """Return True if microphone access is granted."""
        pass


class AudioRecorder(ABC):
    """Records raw microphone audio to a file for fallback transcription."""

    @abstractmethod
    async def start(self, path: str) -> None:
        """Start recording into ``path``."""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop recording and flush the file."""
        pass


# =============================================================================
# Fallback transcription
# =============================================================================


@dataclass
class TranscriptionRequest:
    """Audio submitted to the fallback transcription service."""
    audio: bytes
    locale: str
    audio_format: str = "wav"


@dataclass
class TranscriptionResponse:
    """Result from the fallback transcription service."""
    transcript: str
    detected_language: Optional[str] = None


class TranscriptionService(ABC):
    """Cloud transcription used when the recognizer is unavailable."""

    @abstractmethod
    async def transcribe(self, request: TranscriptionRequest) -> TranscriptionResponse:
        """Transcribe recorded audio."""
        pass

    async def close(self) -> None:
        """Clean up resources."""
        pass


# =============================================================================
# Inference
# =============================================================================


@dataclass
class InferenceChunk:
    """A piece of a streamed reply."""
    text: str = ""
    is_complete: bool = False  # True on the last chunk; text holds the full reply
    do_not_speak: bool = False


class InferenceBackend(ABC):
    """Generative text responder with streaming output."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the backend name."""
        pass

    @abstractmethod
    def stream_reply(
        self,
        text: str,
        system_prompt: Optional[str] = None,
    ) -> AsyncIterator[InferenceChunk]:
        """
        Stream a reply to one user utterance.

        Zero or more partial chunks may be yielded, optionally followed by a
        chunk with ``is_complete=True`` carrying the full reply. Aborting is
        done by cancelling the consuming task.
        """
        pass

    async def close(self) -> None:
        """Clean up resources."""
        pass


# =============================================================================
# Synthesis
# =============================================================================


class PlaybackEvent(str, Enum):
    """Lifecycle events of one synthesized utterance."""
    STARTED = "started"
    PROGRESS = "progress"
    DONE = "done"


class SynthesisBackend(ABC):
    """Speech synthesis engine that plays audio."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the backend name."""
        pass

    @abstractmethod
    def speak(self, text: str, voice_id: str) -> AsyncIterator[PlaybackEvent]:
        """
        Play ``text`` with ``voice_id``.

        Yields STARTED, any PROGRESS events, then DONE once playback has
        audibly finished. Raises on failure.
        """
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop any playback immediately."""
        pass
