"""Embedding provider client (OpenAI-compatible `/embeddings` endpoint)."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

import requests

from ..crawler.constants import (
    DEFAULT_EMBEDDING_API_URL,
    DEFAULT_EMBEDDING_MODEL,
    DEFAULT_EMBEDDING_TIMEOUT_SECONDS,
)


LOGGER = logging.getLogger(__name__)

TOO_LONG_MARKERS = ("context_length_exceeded", "maximum context length", "too long")


class EmbeddingProviderError(RuntimeError):
    """Network, timeout, HTTP or payload failure from the embedding provider."""


class EmbeddingInputTooLong(EmbeddingProviderError):
    """The provider rejected the input as exceeding its context window."""


@dataclass(slots=True)
class EmbeddingResponse:
    vector: list[float]
    model: str
    usage: dict[str, Any] = field(default_factory=dict)
    duration_ms: int | None = None

    @property
    def dim(self) -> int:
        return len(self.vector)


class EmbeddingProvider(Protocol):
    name: str
    model: str

    def embed(self, text: str) -> EmbeddingResponse:
        ...


def _error_message(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return (response.text or "")[:500]
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            code = error.get("code") or error.get("type") or ""
            message = error.get("message") or ""
            return f"{code}: {message}".strip(": ")
        if error:
            return str(error)
    return str(payload)[:500]


class OpenAIEmbeddingProvider:
    """POST `{"model", "input"}` to `{base_url}/embeddings` with a bearer key."""

    name = "openai"

    def __init__(
        self,
        *,
        api_key: str,
        model: str = DEFAULT_EMBEDDING_MODEL,
        base_url: str = DEFAULT_EMBEDDING_API_URL,
        timeout_seconds: float = DEFAULT_EMBEDDING_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._session = session or requests.Session()

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/embeddings"

    def embed(self, text: str) -> EmbeddingResponse:
        started = time.perf_counter()
        try:
            response = self._session.post(
                self.endpoint,
                json={"model": self.model, "input": text},
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise EmbeddingProviderError(f"{exc.__class__.__name__}: {exc}") from exc

        duration_ms = int((time.perf_counter() - started) * 1000)

        if response.status_code >= 400:
            message = _error_message(response)
            if response.status_code == 400 and any(marker in message.lower() for marker in TOO_LONG_MARKERS):
                raise EmbeddingInputTooLong(message)
            raise EmbeddingProviderError(f"HTTP {response.status_code}: {message}")

        try:
            payload = response.json()
            vector = payload["data"][0]["embedding"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise EmbeddingProviderError(f"Malformed embedding response: {exc}") from exc

        if not vector:
            raise EmbeddingProviderError("Empty embedding vector")

        return EmbeddingResponse(
            vector=[float(value) for value in vector],
            model=str(payload.get("model") or self.model),
            usage=dict(payload.get("usage") or {}),
            duration_ms=duration_ms,
        )

    def close(self) -> None:
        self._session.close()


__all__ = [
    "EmbeddingInputTooLong",
    "EmbeddingProvider",
    "EmbeddingProviderError",
    "EmbeddingResponse",
    "OpenAIEmbeddingProvider",
]
