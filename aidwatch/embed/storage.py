"""Vector-store write contract and the RedisJSON implementation.

One JSON document per resource, keyed `{prefix}:{id}`, holding the structured
fields, a JSON-encoded metadata string and a float32 `embedding` list. Every
write replaces the whole document so the stored vector never lags behind the
relational `text_hash`.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol, Sequence

import numpy as np
import redis


LOGGER = logging.getLogger(__name__)

EMBEDDING_FIELD = "embedding"


class VectorStore(Protocol):
    def write(self, key: str, document: Mapping[str, Any]) -> None:
        ...


def to_float32_list(vector: Sequence[float] | np.ndarray, dim: int | None = None) -> list[float]:
    """Round-trip through float32 and validate a 1-D shape."""

    array = np.asarray(vector, dtype=np.float32)
    if array.ndim != 1:
        raise ValueError(f"embedding must be 1D, got shape {array.shape}")
    if array.shape[0] == 0:
        raise ValueError("embedding cannot be empty")
    if dim is not None and array.shape[0] != dim:
        raise ValueError(f"embedding dim mismatch: got {array.shape[0]}, expected {dim}")
    if not np.all(np.isfinite(array)):
        raise ValueError("embedding contains non-finite values")
    return [float(value) for value in array.tolist()]


def vector_key(prefix: str, resource_id: int, content_version: int | None = None) -> str:
    """`{prefix}:{id}` for the current record, `{prefix}:{id}:v{n}` for history."""

    key = f"{prefix}:{resource_id}"
    if content_version is None:
        return key
    return f"{key}:v{content_version}"


class RedisJSONVectorStore:
    """Full-replace writes through RedisJSON (`JSON.SET key $ doc`)."""

    def __init__(self, client: redis.Redis) -> None:
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisJSONVectorStore":
        return cls(redis.Redis.from_url(url))

    def write(self, key: str, document: Mapping[str, Any]) -> None:
        self.client.json().set(key, "$", dict(document))
        LOGGER.debug("vector write: key=%s fields=%s", key, len(document))

    def close(self) -> None:
        self.client.close()


__all__ = [
    "EMBEDDING_FIELD",
    "RedisJSONVectorStore",
    "VectorStore",
    "to_float32_list",
    "vector_key",
]
