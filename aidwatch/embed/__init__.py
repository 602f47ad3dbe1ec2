"""Embedding helpers: document assembly, provider client and vector store."""

from .document import (
    CHARS_PER_TOKEN,
    EmbeddingDocument,
    build_embedding_document,
    document_blocks,
    estimate_tokens,
)
from .provider import (
    EmbeddingInputTooLong,
    EmbeddingProvider,
    EmbeddingProviderError,
    EmbeddingResponse,
    OpenAIEmbeddingProvider,
)
from .storage import RedisJSONVectorStore, VectorStore, to_float32_list, vector_key

__all__ = [
    "CHARS_PER_TOKEN",
    "EmbeddingDocument",
    "EmbeddingInputTooLong",
    "EmbeddingProvider",
    "EmbeddingProviderError",
    "EmbeddingResponse",
    "OpenAIEmbeddingProvider",
    "RedisJSONVectorStore",
    "VectorStore",
    "build_embedding_document",
    "document_blocks",
    "estimate_tokens",
    "to_float32_list",
    "vector_key",
]
