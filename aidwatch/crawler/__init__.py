"""Crawler package: config, shared types, storage and network clients.

Stages, the pipeline and the scheduler live in submodules
(`aidwatch.crawler.pipeline`, `aidwatch.crawler.stages`) and are imported
from there.
"""

from .config import ConfigError, PipelineConfig, config_from_env, load_config, save_config
from .fetcher import Fetcher
from .pool import TaskOutcome, map_pool
from .robots import RobotsGate
from .storage import CrawlAudit, EmbedAudit, Resource, ResourceStore, ScrapeAudit
from .types import (
    AuditKind,
    CrawlOutcome,
    CrawlResult,
    EmbedResult,
    FetchResult,
    LastUpdateSignal,
    PageUpdateSource,
    RunSummary,
    ScrapeFields,
    ScrapeResult,
    StrategyResult,
)

__all__ = [
    "AuditKind",
    "ConfigError",
    "CrawlAudit",
    "CrawlOutcome",
    "CrawlResult",
    "EmbedAudit",
    "EmbedResult",
    "FetchResult",
    "Fetcher",
    "LastUpdateSignal",
    "PageUpdateSource",
    "PipelineConfig",
    "Resource",
    "ResourceStore",
    "RobotsGate",
    "RunSummary",
    "ScrapeAudit",
    "ScrapeFields",
    "ScrapeResult",
    "StrategyResult",
    "TaskOutcome",
    "config_from_env",
    "load_config",
    "map_pool",
    "save_config",
]
