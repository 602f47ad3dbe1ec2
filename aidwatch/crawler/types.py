"""Core type definitions for the refresh pipeline.

This module is intentionally dependency-light so other crawler modules can import
shared records without introducing cycles.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, TypeVar


JSONPrimitive = str | int | float | bool | None
JSONValue = JSONPrimitive | list["JSONValue"] | dict[str, "JSONValue"]
JSONDict = dict[str, JSONValue]

T = TypeVar("T")


class CrawlOutcome(str, Enum):
    """Result of one crawl attempt, also stored on the resource row."""

    UNCHANGED = "UNCHANGED"
    SOFT_CHANGED = "SOFT_CHANGED"
    CHANGED = "CHANGED"
    GONE = "GONE"
    BLOCKED = "BLOCKED"
    ERROR = "ERROR"


class PageUpdateSource(str, Enum):
    """Where the page-level "last updated" signal came from."""

    VISIBLE = "visible"
    JSONLD_META = "jsonld/meta"
    SCRIPT = "script"
    AJAX = "ajax"
    NONE = "none"


class AuditKind(str, Enum):
    CRAWL = "crawl"
    SCRAPE = "scrape"
    EMBED = "embed"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Return `value` as an aware UTC datetime (naive values are assumed UTC)."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat_utc(value: datetime | None) -> str | None:
    resolved = as_utc(value)
    if resolved is None:
        return None
    return resolved.isoformat(timespec="seconds").replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class StrategyResult(Generic[T]):
    """Uniform result for ordered fallback strategies."""

    success: bool
    value: T | None = None
    reason: str | None = None

    @classmethod
    def hit(cls, value: T) -> "StrategyResult[T]":
        return cls(success=True, value=value)

    @classmethod
    def miss(cls, reason: str) -> "StrategyResult[T]":
        return cls(success=False, value=None, reason=reason)


@dataclass(frozen=True, slots=True)
class LastUpdateSignal:
    """Page-level "content last changed" signal.

    `iso` is None when the text could not be parsed into a date.
    """

    text: str | None = None
    iso: datetime | None = None
    source: PageUpdateSource = PageUpdateSource.NONE

    @property
    def found(self) -> bool:
        return self.source != PageUpdateSource.NONE

    def to_json(self) -> JSONDict:
        return {
            "text": self.text,
            "iso": isoformat_utc(self.iso),
            "source": self.source.value,
        }


@dataclass(slots=True)
class FetchResult:
    """Result of attempting to download one URL."""

    requested_url: str
    final_url: str | None
    status_code: int | None
    content_type: str | None = None
    body: bytes | None = None
    encoding: str | None = None
    etag: str | None = None
    last_modified: str | None = None
    elapsed_ms: int | None = None
    attempts: int = 1
    error: str | None = None

    @property
    def ok(self) -> bool:
        return (
            self.error is None
            and self.status_code is not None
            and 200 <= self.status_code < 300
            and self.body is not None
        )

    @property
    def content_length(self) -> int | None:
        return None if self.body is None else len(self.body)

    @property
    def text(self) -> str:
        if self.body is None:
            return ""
        try:
            return self.body.decode(self.encoding or "utf-8", errors="replace")
        except LookupError:
            return self.body.decode("utf-8", errors="replace")


@dataclass(frozen=True, slots=True)
class ScrapeFields:
    """Structured sections extracted from one resource page."""

    name: str = ""
    status: str = ""
    description: str = ""
    eligibility: str = ""
    documentation: str = ""
    regulation: str = ""
    outcomes: str = ""
    other: str = ""
    categories: tuple[str, ...] = ()

    def identity_blocks(self) -> list[str]:
        return [self.name, self.status]

    def content_blocks(self) -> list[str]:
        """Blocks in canonical order for the text hash."""

        return [
            *self.identity_blocks(),
            self.description,
            self.eligibility,
            self.documentation,
            self.regulation,
            self.outcomes,
            self.other,
        ]

    def to_json(self) -> JSONDict:
        return {
            "name": self.name,
            "status": self.status,
            "description": self.description,
            "eligibility": self.eligibility,
            "documentation": self.documentation,
            "regulation": self.regulation,
            "outcomes": self.outcomes,
            "other": self.other,
            "categories": list(self.categories),
        }


@dataclass(slots=True)
class CrawlResult:
    """Outcome of CrawlStage for one resource."""

    resource_id: int
    outcome: CrawlOutcome
    status_code: int | None = None
    etag: str | None = None
    http_last_modified: str | None = None
    page_update: LastUpdateSignal = field(default_factory=LastUpdateSignal)
    raw_hash: str | None = None
    content_bytes: int | None = None
    duration_ms: int | None = None
    decision: str | None = None
    html: str | None = None
    error: str | None = None

    @property
    def has_html(self) -> bool:
        return bool(self.html)

    def to_json(self) -> JSONDict:
        return {
            "resource_id": self.resource_id,
            "outcome": self.outcome.value,
            "status_code": self.status_code,
            "etag": self.etag,
            "http_last_modified": self.http_last_modified,
            "page_update": self.page_update.to_json(),
            "raw_hash": self.raw_hash,
            "content_bytes": self.content_bytes,
            "duration_ms": self.duration_ms,
            "decision": self.decision,
            "has_html": self.has_html,
            "error": self.error,
        }


@dataclass(slots=True)
class ScrapeResult:
    """Outcome of ScrapeStage for one resource."""

    resource_id: int
    ok: bool
    changed: bool = False
    text_hash: str | None = None
    text_len: int | None = None
    content_version: int | None = None
    fields: ScrapeFields | None = None
    text: str | None = None
    error: str | None = None

    def to_json(self) -> JSONDict:
        return {
            "resource_id": self.resource_id,
            "ok": self.ok,
            "changed": self.changed,
            "text_hash": self.text_hash,
            "text_len": self.text_len,
            "content_version": self.content_version,
            "fields": None if self.fields is None else self.fields.to_json(),
            "error": self.error,
        }


@dataclass(slots=True)
class EmbedResult:
    """Outcome of EmbedStage for one resource."""

    resource_id: int
    ok: bool
    skipped: bool = False
    dims: int | None = None
    clipped: bool = False
    token_budget: int | None = None
    attempts: int = 0
    store_key: str | None = None
    error: str | None = None

    def to_json(self) -> JSONDict:
        return {
            "resource_id": self.resource_id,
            "ok": self.ok,
            "skipped": self.skipped,
            "dims": self.dims,
            "clipped": self.clipped,
            "token_budget": self.token_budget,
            "attempts": self.attempts,
            "store_key": self.store_key,
            "error": self.error,
        }


# Closed, versioned metadata blobs. Bump `schema_version` when a field changes.


@dataclass(frozen=True, slots=True)
class CrawlAuditNotes:
    page_update_source: str | None = None
    decision: str | None = None
    attempts: int | None = None
    robots: str | None = None
    schema_version: int = 1

    def to_json(self) -> JSONDict:
        return {
            "schema_version": self.schema_version,
            "page_update_source": self.page_update_source,
            "decision": self.decision,
            "attempts": self.attempts,
            "robots": self.robots,
        }


@dataclass(frozen=True, slots=True)
class ScrapeAuditMeta:
    changed: bool | None = None
    reason: str | None = None
    finders: dict[str, str] = field(default_factory=dict)
    content_version: int | None = None
    schema_version: int = 1

    def to_json(self) -> JSONDict:
        return {
            "schema_version": self.schema_version,
            "changed": self.changed,
            "reason": self.reason,
            "finders": dict(self.finders),
            "content_version": self.content_version,
        }


@dataclass(frozen=True, slots=True)
class EmbedAuditMeta:
    ok: bool
    clipped: bool = False
    token_budget: int | None = None
    tokens_estimated: int | None = None
    attempts: int = 0
    wrote_history: bool = False
    dry_run: bool = False
    schema_version: int = 1

    def to_json(self) -> JSONDict:
        return {
            "schema_version": self.schema_version,
            "ok": self.ok,
            "clipped": self.clipped,
            "token_budget": self.token_budget,
            "tokens_estimated": self.tokens_estimated,
            "attempts": self.attempts,
            "wrote_history": self.wrote_history,
            "dry_run": self.dry_run,
        }


@dataclass(frozen=True, slots=True)
class VectorMetadata:
    """Metadata blob stored (JSON-encoded) beside each vector."""

    content_version: int
    text_hash: str | None
    page_last_updated_at: str | None
    clipped: bool
    token_budget: int
    model: str
    categories: tuple[str, ...] = ()
    schema_version: int = 1

    def to_json(self) -> JSONDict:
        return {
            "schema_version": self.schema_version,
            "content_version": self.content_version,
            "text_hash": self.text_hash,
            "page_last_updated_at": self.page_last_updated_at,
            "clipped": self.clipped,
            "token_budget": self.token_budget,
            "model": self.model,
            "categories": list(self.categories),
        }


@dataclass(slots=True)
class RunSummary:
    """Counts returned by one orchestrator run."""

    candidates: int = 0
    crawled: int = 0
    changed: int = 0
    soft_changed: int = 0
    unchanged: int = 0
    gone: int = 0
    blocked: int = 0
    crawl_errors: int = 0
    scraped: int = 0
    scrape_changed: int = 0
    scrape_errors: int = 0
    embedded: int = 0
    embed_skipped: int = 0
    embed_errors: int = 0
    cancelled: bool = False
    dry_run: bool = False
    skipped_reason: str | None = None
    started_at: datetime = field(default_factory=utc_now)
    finished_at: datetime | None = None

    @property
    def errored(self) -> int:
        return self.crawl_errors + self.scrape_errors + self.embed_errors

    @property
    def duration_seconds(self) -> float | None:
        if self.finished_at is None:
            return None
        return round((self.finished_at - self.started_at).total_seconds(), 3)

    def record_crawl(self, outcome: CrawlOutcome) -> None:
        self.crawled += 1
        if outcome == CrawlOutcome.CHANGED:
            self.changed += 1
        elif outcome == CrawlOutcome.SOFT_CHANGED:
            self.soft_changed += 1
        elif outcome == CrawlOutcome.UNCHANGED:
            self.unchanged += 1
        elif outcome == CrawlOutcome.GONE:
            self.gone += 1
        elif outcome == CrawlOutcome.BLOCKED:
            self.blocked += 1
        else:
            self.crawl_errors += 1

    def finish(self) -> None:
        self.finished_at = utc_now()

    def to_json(self) -> dict[str, Any]:
        return {
            "candidates": self.candidates,
            "crawled": self.crawled,
            "changed": self.changed,
            "soft_changed": self.soft_changed,
            "unchanged": self.unchanged,
            "gone": self.gone,
            "blocked": self.blocked,
            "crawl_errors": self.crawl_errors,
            "scraped": self.scraped,
            "scrape_changed": self.scrape_changed,
            "scrape_errors": self.scrape_errors,
            "embedded": self.embedded,
            "embed_skipped": self.embed_skipped,
            "embed_errors": self.embed_errors,
            "errored": self.errored,
            "cancelled": self.cancelled,
            "dry_run": self.dry_run,
            "skipped_reason": self.skipped_reason,
            "started_at": isoformat_utc(self.started_at),
            "finished_at": isoformat_utc(self.finished_at),
            "duration_seconds": self.duration_seconds,
        }


__all__ = [
    "AuditKind",
    "CrawlAuditNotes",
    "CrawlOutcome",
    "CrawlResult",
    "EmbedAuditMeta",
    "EmbedResult",
    "FetchResult",
    "JSONDict",
    "JSONPrimitive",
    "JSONValue",
    "LastUpdateSignal",
    "PageUpdateSource",
    "RunSummary",
    "ScrapeAuditMeta",
    "ScrapeFields",
    "ScrapeResult",
    "StrategyResult",
    "VectorMetadata",
    "as_utc",
    "isoformat_utc",
    "utc_now",
]
