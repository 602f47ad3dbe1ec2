"""Explicit container for every client a pipeline run needs.

Built once at start-up and passed by reference to each stage. Tests build
their own context with fake clients instead of patching module globals.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

import requests

from ..embed.provider import EmbeddingProvider, OpenAIEmbeddingProvider
from ..embed.storage import RedisJSONVectorStore, VectorStore
from .config import ConfigError, PipelineConfig
from .fetcher import Fetcher
from .parsers.fields import FieldExtractor
from .parsers.last_update import LastUpdateResolver, build_resolver
from .robots import RobotsGate
from .storage import ResourceStore


LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class PipelineContext:
    config: PipelineConfig
    store: ResourceStore
    fetcher: Fetcher
    robots: RobotsGate
    resolver: LastUpdateResolver
    extractor: FieldExtractor
    embedder: EmbeddingProvider | None = None
    vector_store: VectorStore | None = None

    def close(self) -> None:
        self.fetcher.close()
        for client in (self.embedder, self.vector_store):
            close = getattr(client, "close", None)
            if callable(close):
                close()
        self.store.dispose()


def build_context(
    config: PipelineConfig,
    *,
    store: ResourceStore | None = None,
    session_factory: Callable[[], requests.Session] | None = None,
    embedder: EmbeddingProvider | None = None,
    vector_store: VectorStore | None = None,
) -> PipelineContext:
    """Construct real clients from config; any client may be passed in instead."""

    if store is None:
        if not config.database_url:
            raise ConfigError("database_url is required")
        store = ResourceStore(config.database_url)

    fetcher = Fetcher(
        user_agent=config.user_agent,
        timeout_seconds=config.timeout_seconds,
        retries=config.retries,
        retry_backoff_seconds=config.retry_backoff_seconds,
        session_factory=session_factory,
    )
    robots = RobotsGate(
        user_agent=config.user_agent,
        timeout_seconds=config.timeout_seconds,
        session=session_factory() if session_factory is not None else None,
    )
    resolver = build_resolver(
        fetcher,
        ajax_enabled=config.ajax_fallback_enabled,
        ajax_base_url=config.ajax_base_url,
        timeout_seconds=config.timeout_seconds,
        html_features=config.html_features,
    )
    extractor = FieldExtractor(name=config.extractor_name, html_features=config.html_features)

    if embedder is None and config.embedder_enabled and config.embedding_api_key:
        embedder = OpenAIEmbeddingProvider(
            api_key=config.embedding_api_key,
            model=config.embedding_model,
            base_url=config.embedding_api_url,
            timeout_seconds=config.embedding_timeout_seconds,
        )
    if vector_store is None and config.embedder_enabled and config.redis_url:
        vector_store = RedisJSONVectorStore.from_url(config.redis_url)

    LOGGER.info(
        "Context ready: resolver=%s extractor=%s embedder=%s vector_store=%s",
        resolver.strategy_names,
        extractor.name,
        getattr(embedder, "name", None),
        type(vector_store).__name__ if vector_store is not None else None,
    )
    return PipelineContext(
        config=config,
        store=store,
        fetcher=fetcher,
        robots=robots,
        resolver=resolver,
        extractor=extractor,
        embedder=embedder,
        vector_store=vector_store,
    )


__all__ = ["PipelineContext", "build_context"]
