"""Adapters for the recognizer, transcription, inference and synthesis backends."""

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
from .http import HttpTranscriptionService, OpenAICompatibleInference
from .mock import (
    FailingInferenceBackend,
    MockAudioRecorder,
    MockInferenceBackend,
    MockPermissionProvider,
    MockRecognizer,
    MockSynthesisBackend,
    MockTranscriptionService,
)

__all__ = [
    "AudioRecorder",
    "InferenceBackend",
    "InferenceChunk",
    "PermissionProvider",
    "PlaybackEvent",
    "RecognitionEvent",
    "Recognizer",
    "SynthesisBackend",
    "TranscriptionRequest",
    "TranscriptionResponse",
    "TranscriptionService",
    "HttpTranscriptionService",
    "OpenAICompatibleInference",
    "FailingInferenceBackend",
    "MockAudioRecorder",
    "MockInferenceBackend",
    "MockPermissionProvider",
    "MockRecognizer",
    "MockSynthesisBackend",
    "MockTranscriptionService",
]
