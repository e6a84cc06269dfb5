"""HTTP adapters for the fallback transcription service and streaming inference."""

import base64
import json
import time
from typing import Any, AsyncIterator, Dict, Optional

import httpx
import structlog

from ..config import Settings, get_settings
from ..exceptions import InferenceFailedError, TranscriptionFailedError
from .base import (
    InferenceBackend,
    InferenceChunk,
    TranscriptionRequest,
    TranscriptionResponse,
    TranscriptionService,
)

logger = structlog.get_logger()


class HttpTranscriptionService(TranscriptionService):
    """
    Cloud transcription proxy.

    Request: ``{"audio": <base64>, "language": <locale>, "format": <fmt>}``
    Response: ``{"transcript": str, "detected_language": str | null}``
    """

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.api_key = api_key
        self._client = client
        self._owns_client = client is None
        self.logger = logger.bind(adapter="http_transcription")

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "HttpTranscriptionService":
        settings = settings or get_settings()
        return cls(
            url=settings.fallback_transcription_url,
            timeout=settings.fallback_transcription_timeout_s,
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.AsyncClient(headers=headers, timeout=self.timeout)
        return self._client

    async def transcribe(self, request: TranscriptionRequest) -> TranscriptionResponse:
        payload = {
            "audio": base64.b64encode(request.audio).decode("ascii"),
            "language": request.locale,
            "format": request.audio_format,
        }
        start_time = time.perf_counter()

        try:
            response = await self._get_client().post(self.url, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            self.logger.error(
                "Transcription request failed",
                status=e.response.status_code,
                error=str(e),
            )
            raise TranscriptionFailedError(
                f"Transcription service returned {e.response.status_code}",
                provider="http",
                details={"status": e.response.status_code},
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            self.logger.error("Transcription request failed", error=str(e))
            raise TranscriptionFailedError(
                f"Transcription service error: {e}", provider="http"
            ) from e

        self.logger.debug(
            "Transcription complete",
            latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
            bytes=len(request.audio),
        )
        return TranscriptionResponse(
            transcript=(data.get("transcript") or "").strip(),
            detected_language=data.get("detected_language"),
        )

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None


class OpenAICompatibleInference(InferenceBackend):
    """
    Streaming chat-completions client for OpenAI-compatible APIs.

    Parses server-sent ``data:`` lines until ``[DONE]`` and finishes with a
    complete chunk carrying the full reply. Cancelling the consuming task
    closes the underlying response.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "llama-3.1-70b-versatile",
        base_url: str = "https://api.groq.com/openai/v1",
        timeout: float = 60.0,
        temperature: float = 0.7,
        max_tokens: int = 500,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = client
        self._owns_client = client is None

        # Statistics
        self._total_requests = 0
        self._total_latency = 0.0

    @property
    def name(self) -> str:
        return "openai_compatible"

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "OpenAICompatibleInference":
        settings = settings or get_settings()
        return cls(
            api_key=settings.inference_api_key,
            model=settings.inference_model,
            base_url=settings.inference_base_url,
            timeout=settings.inference_timeout_s,
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )
        return self._client

    async def stream_reply(
        self,
        text: str,
        system_prompt: Optional[str] = None,
    ) -> AsyncIterator[InferenceChunk]:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": text})

        request_body: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "stream": True,
        }

        self._total_requests += 1
        start_time = time.perf_counter()
        parts = []

        try:
            async with self._get_client().stream(
                "POST",
                "/chat/completions",
                json=request_body,
            ) as response:
                response.raise_for_status()

                async for line in response.aiter_lines():
                    if not line or not line.startswith("data: "):
                        continue

                    data = line[6:]
                    if data == "[DONE]":
                        break

                    try:
                        chunk = json.loads(data)
                        delta = chunk["choices"][0].get("delta", {})
                    except (json.JSONDecodeError, KeyError, IndexError):
                        continue

                    content = delta.get("content") or ""
                    if content:
                        parts.append(content)
                        yield InferenceChunk(text=content)

        except httpx.HTTPStatusError as e:
            logger.error(
                "inference_stream_error",
                status=e.response.status_code,
                error=str(e),
            )
            raise InferenceFailedError(
                f"Inference backend returned {e.response.status_code}",
                provider=self.name,
                details={"status": e.response.status_code},
            ) from e
        except httpx.HTTPError as e:
            logger.error("inference_stream_error", error=str(e))
            raise InferenceFailedError(
                f"Inference backend error: {e}", provider=self.name
            ) from e

        latency_ms = (time.perf_counter() - start_time) * 1000
        self._total_latency += latency_ms
        logger.debug(
            "inference_stream_complete",
            model=self.model,
            latency_ms=round(latency_ms, 2),
        )
        yield InferenceChunk(text="".join(parts), is_complete=True)

    def get_statistics(self) -> Dict[str, Any]:
        """Get adapter statistics."""
        return {
            "name": self.name,
            "model": self.model,
            "total_requests": self._total_requests,
            "average_latency_ms": round(
                self._total_latency / max(1, self._total_requests), 2
            ),
        }

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
