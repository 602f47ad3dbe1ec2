"""Typed pipeline configuration with JSON/YAML/env load helpers."""

from __future__ import annotations

import json
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping

import yaml  # type: ignore

from .constants import (
    DEFAULT_AJAX_BASE_URL,
    DEFAULT_AJAX_FALLBACK_ENABLED,
    DEFAULT_BATCH_LIMIT,
    DEFAULT_CRAWL_AUDIT_ENABLED,
    DEFAULT_CRAWL_CONCURRENCY,
    DEFAULT_CRAWLER_ENABLED,
    DEFAULT_DRY_RUN,
    DEFAULT_EMBED_AUDIT_ENABLED,
    DEFAULT_EMBED_BACKLOG,
    DEFAULT_EMBED_CONCURRENCY,
    DEFAULT_EMBEDDER_ENABLED,
    DEFAULT_EMBEDDING_API_URL,
    DEFAULT_EMBEDDING_BUDGET_SHRINK,
    DEFAULT_EMBEDDING_MAX_ATTEMPTS,
    DEFAULT_EMBEDDING_MODEL,
    DEFAULT_EMBEDDING_TIMEOUT_SECONDS,
    DEFAULT_EMBEDDING_TOKEN_BUDGET,
    DEFAULT_EXTRACTOR_NAME,
    DEFAULT_HTML_FEATURES,
    DEFAULT_KEEP_HISTORY,
    DEFAULT_MAX_AGE_HOURS,
    DEFAULT_NORMALIZE_HTML,
    DEFAULT_REINDEX_STRATEGY,
    DEFAULT_RESPECT_ROBOTS,
    DEFAULT_RETRIES,
    DEFAULT_RETRY_BACKOFF_SECONDS,
    DEFAULT_SCRAPE_AUDIT_ENABLED,
    DEFAULT_SCRAPE_CONCURRENCY,
    DEFAULT_SCRAPE_MIN_TEXT_LEN,
    DEFAULT_SCRAPE_SOFT_CHANGED,
    DEFAULT_SCRAPER_ENABLED,
    DEFAULT_TIMEOUT_SECONDS,
    DEFAULT_USER_AGENT,
    DEFAULT_VECTOR_PREFIX,
    JSON_INDENT,
    REINDEX_STRATEGIES,
    SUPPORTED_CONFIG_SUFFIXES,
)


class ConfigError(ValueError):
    """Raised when configuration is invalid or incomplete."""


_TRUE_STRINGS = {"1", "true", "on", "yes"}
_FALSE_STRINGS = {"0", "false", "off", "no"}


def _as_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ConfigError(f"Invalid bool for '{key}': {value!r}")


def _as_int(value: Any, key: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid int for '{key}': {value!r}") from exc


def _as_float(value: Any, key: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid float for '{key}': {value!r}") from exc


def _as_optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


@dataclass(slots=True)
class PipelineConfig:
    """Top-level configuration used by the orchestrator and every stage."""

    database_url: str | None = None

    crawler_enabled: bool = DEFAULT_CRAWLER_ENABLED
    scraper_enabled: bool = DEFAULT_SCRAPER_ENABLED
    embedder_enabled: bool = DEFAULT_EMBEDDER_ENABLED
    cron: str | None = None

    crawl_concurrency: int = DEFAULT_CRAWL_CONCURRENCY
    scrape_concurrency: int = DEFAULT_SCRAPE_CONCURRENCY
    embed_concurrency: int = DEFAULT_EMBED_CONCURRENCY

    user_agent: str = DEFAULT_USER_AGENT
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    retries: int = DEFAULT_RETRIES
    retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS
    respect_robots: bool = DEFAULT_RESPECT_ROBOTS

    max_age_hours: float = DEFAULT_MAX_AGE_HOURS
    batch_limit: int = DEFAULT_BATCH_LIMIT
    reindex_strategy: str = DEFAULT_REINDEX_STRATEGY

    normalize_html: bool = DEFAULT_NORMALIZE_HTML
    scrape_soft_changed: bool = DEFAULT_SCRAPE_SOFT_CHANGED
    scrape_min_text_len: int = DEFAULT_SCRAPE_MIN_TEXT_LEN
    html_features: str = DEFAULT_HTML_FEATURES
    extractor_name: str = DEFAULT_EXTRACTOR_NAME
    ajax_fallback_enabled: bool = DEFAULT_AJAX_FALLBACK_ENABLED
    ajax_base_url: str = DEFAULT_AJAX_BASE_URL

    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    embedding_api_url: str = DEFAULT_EMBEDDING_API_URL
    embedding_api_key: str | None = None
    embedding_token_budget: int = DEFAULT_EMBEDDING_TOKEN_BUDGET
    embedding_budget_shrink: float = DEFAULT_EMBEDDING_BUDGET_SHRINK
    embedding_max_attempts: int = DEFAULT_EMBEDDING_MAX_ATTEMPTS
    embedding_timeout_seconds: float = DEFAULT_EMBEDDING_TIMEOUT_SECONDS
    embed_backlog: bool = DEFAULT_EMBED_BACKLOG

    redis_url: str | None = None
    vector_prefix: str = DEFAULT_VECTOR_PREFIX
    keep_history: bool = DEFAULT_KEEP_HISTORY

    crawl_audit_enabled: bool = DEFAULT_CRAWL_AUDIT_ENABLED
    scrape_audit_enabled: bool = DEFAULT_SCRAPE_AUDIT_ENABLED
    embed_audit_enabled: bool = DEFAULT_EMBED_AUDIT_ENABLED

    dry_run: bool = DEFAULT_DRY_RUN

    def __post_init__(self) -> None:
        self.cron = _as_optional_str(self.cron)
        self.reindex_strategy = str(self.reindex_strategy).strip().lower()

        if self.crawl_concurrency <= 0:
            raise ConfigError("crawl_concurrency must be > 0")
        if self.scrape_concurrency <= 0:
            raise ConfigError("scrape_concurrency must be > 0")
        if self.embed_concurrency <= 0:
            raise ConfigError("embed_concurrency must be > 0")
        if self.timeout_seconds <= 0:
            raise ConfigError("timeout_seconds must be > 0")
        if self.retries < 0:
            raise ConfigError("retries must be >= 0")
        if self.retry_backoff_seconds < 0:
            raise ConfigError("retry_backoff_seconds must be >= 0")
        if self.max_age_hours < 0:
            raise ConfigError("max_age_hours must be >= 0")
        if self.batch_limit <= 0:
            raise ConfigError("batch_limit must be > 0")
        if self.reindex_strategy not in REINDEX_STRATEGIES:
            raise ConfigError(
                f"reindex_strategy must be one of {REINDEX_STRATEGIES}, got {self.reindex_strategy!r}"
            )
        if self.scrape_min_text_len < 0:
            raise ConfigError("scrape_min_text_len must be >= 0")
        if self.embedding_token_budget <= 0:
            raise ConfigError("embedding_token_budget must be > 0")
        if not 0 < self.embedding_budget_shrink < 1:
            raise ConfigError("embedding_budget_shrink must be in (0, 1)")
        if self.embedding_max_attempts <= 0:
            raise ConfigError("embedding_max_attempts must be > 0")
        if self.embedding_timeout_seconds <= 0:
            raise ConfigError("embedding_timeout_seconds must be > 0")
        if not self.vector_prefix.strip():
            raise ConfigError("vector_prefix cannot be empty")

    @property
    def max_age_seconds(self) -> float:
        return self.max_age_hours * 3600.0

    def validate_runtime(self) -> None:
        """Fail fast on missing credentials/URLs before any stage runs."""

        missing: list[str] = []
        if not self.database_url:
            missing.append("database_url (DATABASE_URL)")
        if self.embedder_enabled and not self.dry_run:
            if not self.embedding_api_key:
                missing.append("embedding_api_key (OPENAI_API_KEY)")
            if not self.redis_url:
                missing.append("redis_url (REDIS_URL)")
        if missing:
            raise ConfigError("Missing required configuration: " + ", ".join(missing))

    def to_dict(self, *, redact_secrets: bool = True) -> dict[str, Any]:
        """Serialize config for logs and reproducibility."""

        payload = {item.name: getattr(self, item.name) for item in fields(self)}
        if redact_secrets and payload.get("embedding_api_key"):
            payload["embedding_api_key"] = "***"
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PipelineConfig":
        """Build config from a parsed dictionary, ignoring nothing silently."""

        known = {item.name: item for item in fields(cls)}
        unknown = sorted(set(payload) - set(known))
        if unknown:
            raise ConfigError(f"Unknown config keys: {unknown}")

        kwargs: dict[str, Any] = {}
        for key, value in payload.items():
            default = known[key].default
            if value is None:
                kwargs[key] = None
            elif isinstance(default, bool):
                kwargs[key] = _as_bool(value, key)
            elif isinstance(default, int):
                kwargs[key] = _as_int(value, key)
            elif isinstance(default, float):
                kwargs[key] = _as_float(value, key)
            else:
                kwargs[key] = str(value)
        return cls(**kwargs)


# Environment variable -> (config key, converter applied to the raw string).
ENV_KEYS: dict[str, tuple[str, Any]] = {
    "DATABASE_URL": ("database_url", str),
    "CRAWLER_ENABLED": ("crawler_enabled", str),
    "SCRAPER_ENABLED": ("scraper_enabled", str),
    "EMBEDDER_ENABLED": ("embedder_enabled", str),
    "CRAWLER_CRON": ("cron", str),
    "CRAWLER_MAX_CONCURRENCY": ("crawl_concurrency", str),
    "SCRAPER_MAX_CONCURRENCY": ("scrape_concurrency", str),
    "EMBEDDER_MAX_CONCURRENCY": ("embed_concurrency", str),
    "CRAWLER_OBEY_ROBOTS": ("respect_robots", str),
    "CRAWLER_USER_AGENT": ("user_agent", str),
    "CRAWLER_TIMEOUT_MS": ("timeout_seconds", lambda raw: float(raw) / 1000.0),
    "CRAWLER_RETRY": ("retries", str),
    "CRAWLER_BACKOFF_MS": ("retry_backoff_seconds", lambda raw: float(raw) / 1000.0),
    "CRAWLER_MAX_AGE_HOURS": ("max_age_hours", str),
    "CRAWLER_BATCH_LIMIT": ("batch_limit", str),
    "REINDEX_STRATEGY": ("reindex_strategy", str),
    "SCRAPER_MIN_TEXT_LEN": ("scrape_min_text_len", str),
    "SCRAPER_NORMALIZE_HTML": ("normalize_html", str),
    "SCRAPER_SOFT_CHANGED": ("scrape_soft_changed", str),
    "EMBEDDING_MODEL": ("embedding_model", str),
    "EMBEDDING_API_URL": ("embedding_api_url", str),
    "OPENAI_API_KEY": ("embedding_api_key", str),
    "EMBEDDING_TOKEN_BUDGET": ("embedding_token_budget", str),
    "REDIS_URL": ("redis_url", str),
    "EMBEDDER_REDIS_PREFIX": ("vector_prefix", str),
    "EMBEDDER_KEEP_HISTORY": ("keep_history", str),
    "CRAWL_AUDIT_ENABLED": ("crawl_audit_enabled", str),
    "SCRAPE_AUDIT_ENABLED": ("scrape_audit_enabled", str),
    "EMBED_AUDIT_ENABLED": ("embed_audit_enabled", str),
    "CRAWLER_DRY_RUN": ("dry_run", str),
}


def env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    """Collect config overrides from environment variables (empty values ignored)."""

    overrides: dict[str, Any] = {}
    for env_key, (config_key, convert) in ENV_KEYS.items():
        raw = environ.get(env_key)
        if raw is None or not raw.strip():
            continue
        try:
            overrides[config_key] = convert(raw.strip())
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid value for {env_key}: {raw!r}") from exc
    return overrides


def config_from_env(environ: Mapping[str, str], base: Mapping[str, Any] | None = None) -> PipelineConfig:
    """Build config from an optional base mapping overlaid with environment values."""

    payload: dict[str, Any] = dict(base or {})
    payload.update(env_overrides(environ))
    return PipelineConfig.from_dict(payload)


def _load_yaml(path: Path) -> dict[str, Any]:
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"YAML config at {path} must be a mapping at top level")
    return data


def load_config_payload(path: str | Path) -> dict[str, Any]:
    """Read a JSON/YAML config file into a plain mapping."""

    config_path = Path(path)
    suffix = config_path.suffix.lower()
    if suffix not in SUPPORTED_CONFIG_SUFFIXES:
        raise ConfigError(
            f"Unsupported config suffix '{suffix}'. Supported: {SUPPORTED_CONFIG_SUFFIXES}"
        )

    if suffix == ".json":
        payload = json.loads(config_path.read_text(encoding="utf-8"))
    else:
        payload = _load_yaml(config_path)

    if not isinstance(payload, dict):
        raise ConfigError(f"Config at {config_path} must be a mapping")
    return payload


def load_config(path: str | Path) -> PipelineConfig:
    """Load PipelineConfig from JSON/YAML path."""

    return PipelineConfig.from_dict(load_config_payload(path))


def save_config(config: PipelineConfig, path: str | Path) -> None:
    """Save PipelineConfig as JSON or YAML based on file extension (secrets redacted)."""

    out_path = Path(path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    suffix = out_path.suffix.lower()
    payload = config.to_dict()

    if suffix == ".json":
        out_path.write_text(
            json.dumps(payload, indent=JSON_INDENT, sort_keys=True) + "\n",
            encoding="utf-8",
        )
        return

    if suffix in {".yaml", ".yml"}:
        out_path.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")
        return

    raise ConfigError(
        f"Unsupported config suffix '{suffix}'. Supported: {SUPPORTED_CONFIG_SUFFIXES}"
    )


__all__ = [
    "ConfigError",
    "ENV_KEYS",
    "PipelineConfig",
    "config_from_env",
    "env_overrides",
    "load_config",
    "load_config_payload",
    "save_config",
]
