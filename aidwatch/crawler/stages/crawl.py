"""CrawlStage: conditional fetch plus page-level change detection."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ..context import PipelineContext
from ..parsers.dates import parse_localized_date
from ..parsers.html import fold_text, normalize_html, sha256_hex
from ..parsers.last_update import LABEL_PREFIX_RE
from ..storage import CrawlAudit, Resource
from ..types import (
    CrawlAuditNotes,
    CrawlOutcome,
    CrawlResult,
    FetchResult,
    LastUpdateSignal,
    as_utc,
    utc_now,
)


LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ChangeDecision:
    outcome: CrawlOutcome
    reason: str


def _stored_page_date(resource: Resource) -> datetime | None:
    """Stored page timestamp, falling back to parsing the stored text."""

    stored = as_utc(resource.page_last_updated_at)
    if stored is not None:
        return stored
    if resource.page_last_updated_text:
        return parse_localized_date(LABEL_PREFIX_RE.sub("", fold_text(resource.page_last_updated_text)))
    return None


def _hash_decision(resource: Resource, raw_hash: str, reason: str) -> ChangeDecision:
    if resource.raw_hash and resource.raw_hash == raw_hash:
        return ChangeDecision(CrawlOutcome.UNCHANGED, f"{reason}:hash_equal")
    return ChangeDecision(CrawlOutcome.CHANGED, f"{reason}:hash_differs")


def _not_later_decision(resource: Resource, raw_hash: str, reason: str) -> ChangeDecision:
    if resource.raw_hash and resource.raw_hash != raw_hash:
        return ChangeDecision(CrawlOutcome.SOFT_CHANGED, f"{reason}:hash_differs")
    return ChangeDecision(CrawlOutcome.UNCHANGED, reason)


def decide_change(resource: Resource, signal: LastUpdateSignal, raw_hash: str) -> ChangeDecision:
    """Reconcile the page's own date with the stored state and the raw hash.

    Priority:
    1. new and stored page dates: strictly later wins as CHANGED; otherwise a
       differing raw hash is SOFT_CHANGED and an equal one UNCHANGED.
    2. stored text only and it cannot be parsed: folded text comparison.
    3. new page date with nothing stored (first observation): raw hash, so an
       initial ingest does not fan out into spurious re-scrapes.
    4. no page signal: raw hash.
    """

    stored_at = _stored_page_date(resource)
    page_at = as_utc(signal.iso)

    if page_at is not None and stored_at is not None:
        if page_at > stored_at:
            return ChangeDecision(CrawlOutcome.CHANGED, "page_date_later")
        return _not_later_decision(resource, raw_hash, "page_date_not_later")

    if signal.text and resource.page_last_updated_text and stored_at is None:
        if fold_text(signal.text) != fold_text(resource.page_last_updated_text):
            return ChangeDecision(CrawlOutcome.CHANGED, "page_text_differs")
        return _not_later_decision(resource, raw_hash, "page_text_equal")

    if page_at is not None:
        return _hash_decision(resource, raw_hash, "first_page_date")

    return _hash_decision(resource, raw_hash, "no_page_signal")


def _page_fields_patch(resource: Resource, signal: LastUpdateSignal) -> dict[str, Any]:
    """Page-derived columns to persist: never null, never older than stored."""

    if not signal.found:
        return {}
    stored_at = _stored_page_date(resource)
    page_at = as_utc(signal.iso)
    if page_at is not None and stored_at is not None and page_at < stored_at:
        return {}
    if page_at is None and stored_at is not None:
        # Stored text and timestamp are only replaced together.
        return {}

    patch: dict[str, Any] = {}
    if page_at is not None:
        patch["page_last_updated_at"] = page_at
    if signal.text:
        patch["page_last_updated_text"] = signal.text
    return patch


class CrawlStage:
    """Fetch one resource and classify what changed since the last crawl."""

    def __init__(self, context: PipelineContext) -> None:
        self.context = context
        self.config = context.config

    @property
    def writes_enabled(self) -> bool:
        return not self.config.dry_run

    def crawl_one(self, resource: Resource) -> CrawlResult:
        started = time.perf_counter()
        try:
            return self._crawl(resource, started)
        except Exception as exc:
            LOGGER.exception("crawl: unexpected failure resource_id=%s", resource.id)
            error = f"{exc.__class__.__name__}: {exc}"
            duration_ms = int((time.perf_counter() - started) * 1000)
            self._record_failure(resource, error, status_code=None, duration_ms=duration_ms)
            return CrawlResult(
                resource_id=resource.id,
                outcome=CrawlOutcome.ERROR,
                duration_ms=duration_ms,
                error=error,
            )

    def _crawl(self, resource: Resource, started: float) -> CrawlResult:
        url = (resource.url or "").strip()
        if not url:
            self._record_failure(resource, "missing url", status_code=None, duration_ms=0)
            return CrawlResult(resource_id=resource.id, outcome=CrawlOutcome.ERROR, error="missing url")

        if self.config.respect_robots and not self.context.robots.allowed(url):
            LOGGER.info("crawl gate: resource_id=%s outcome=BLOCKED reason=robots_disallow url=%s", resource.id, url)
            now = utc_now()
            self._update(resource, {"last_crawled_at": now, "last_crawl_outcome": CrawlOutcome.BLOCKED.value})
            self._audit(
                resource,
                CrawlOutcome.BLOCKED,
                notes=CrawlAuditNotes(robots="disallow", decision="robots_disallow"),
            )
            return CrawlResult(resource_id=resource.id, outcome=CrawlOutcome.BLOCKED, decision="robots_disallow")

        headers: dict[str, str] = {}
        if resource.etag:
            headers["If-None-Match"] = resource.etag
        if resource.http_last_modified:
            headers["If-Modified-Since"] = resource.http_last_modified

        fetched = self.context.fetcher.fetch(
            url,
            headers=headers,
            retries=self.config.retries,
            backoff_seconds=self.config.retry_backoff_seconds,
        )
        duration_ms = int((time.perf_counter() - started) * 1000)

        if fetched.status_code == 304 and fetched.error is None:
            return self._not_modified(resource, fetched, duration_ms)
        if fetched.status_code in {404, 410} and fetched.error is None:
            return self._gone(resource, fetched, duration_ms)
        if fetched.ok:
            return self._fetched(resource, url, fetched, started)

        error = f"fetch error: {fetched.error}" if fetched.error else f"HTTP {fetched.status_code}"
        LOGGER.warning(
            "crawl gate: resource_id=%s outcome=ERROR attempts=%s reason=%s",
            resource.id,
            fetched.attempts,
            error,
        )
        self._record_failure(
            resource,
            error,
            status_code=fetched.status_code,
            duration_ms=duration_ms,
            attempts=fetched.attempts,
        )
        return CrawlResult(
            resource_id=resource.id,
            outcome=CrawlOutcome.ERROR,
            status_code=fetched.status_code,
            duration_ms=duration_ms,
            error=error,
        )

    def _not_modified(self, resource: Resource, fetched: FetchResult, duration_ms: int) -> CrawlResult:
        etag = fetched.etag or resource.etag
        last_modified = fetched.last_modified or resource.http_last_modified
        self._update(
            resource,
            {
                "etag": etag,
                "http_last_modified": last_modified,
                "last_crawled_at": utc_now(),
                "last_crawl_outcome": CrawlOutcome.UNCHANGED.value,
                "last_error": None,
            },
        )
        self._audit(
            resource,
            CrawlOutcome.UNCHANGED,
            http_status=304,
            duration_ms=duration_ms,
            etag=etag,
            http_last_modified=last_modified,
            notes=CrawlAuditNotes(decision="http_304", attempts=fetched.attempts),
        )
        return CrawlResult(
            resource_id=resource.id,
            outcome=CrawlOutcome.UNCHANGED,
            status_code=304,
            etag=etag,
            http_last_modified=last_modified,
            duration_ms=duration_ms,
            decision="http_304",
        )

    def _gone(self, resource: Resource, fetched: FetchResult, duration_ms: int) -> CrawlResult:
        LOGGER.info("crawl gate: resource_id=%s outcome=GONE status=%s", resource.id, fetched.status_code)
        self._update(
            resource,
            {
                "last_crawled_at": utc_now(),
                "last_crawl_outcome": CrawlOutcome.GONE.value,
                "last_error": None,
            },
        )
        self._audit(
            resource,
            CrawlOutcome.GONE,
            http_status=fetched.status_code,
            duration_ms=duration_ms,
            notes=CrawlAuditNotes(decision=f"http_{fetched.status_code}", attempts=fetched.attempts),
        )
        return CrawlResult(
            resource_id=resource.id,
            outcome=CrawlOutcome.GONE,
            status_code=fetched.status_code,
            duration_ms=duration_ms,
            decision=f"http_{fetched.status_code}",
        )

    def _fetched(self, resource: Resource, url: str, fetched: FetchResult, started: float) -> CrawlResult:
        html = fetched.text
        base = normalize_html(html) if self.config.normalize_html else html
        raw_hash = sha256_hex(base)

        signal = self.context.resolver.resolve(html, fetched.final_url or url)
        decision = decide_change(resource, signal, raw_hash)
        duration_ms = int((time.perf_counter() - started) * 1000)

        patch: dict[str, Any] = {
            "etag": fetched.etag,
            "http_last_modified": fetched.last_modified,
            "content_bytes": fetched.content_length,
            "raw_hash": raw_hash,
            "last_crawled_at": utc_now(),
            "last_crawl_outcome": decision.outcome.value,
            "last_error": None,
        }
        patch.update(_page_fields_patch(resource, signal))
        self._update(resource, patch)
        self._audit(
            resource,
            decision.outcome,
            http_status=fetched.status_code,
            duration_ms=duration_ms,
            etag=fetched.etag,
            http_last_modified=fetched.last_modified,
            raw_hash=raw_hash,
            content_bytes=fetched.content_length,
            page_last_updated_at=as_utc(signal.iso),
            page_last_updated_text=signal.text,
            notes=CrawlAuditNotes(
                page_update_source=signal.source.value,
                decision=decision.reason,
                attempts=fetched.attempts,
            ),
        )

        forward_html = decision.outcome == CrawlOutcome.CHANGED or (
            decision.outcome == CrawlOutcome.SOFT_CHANGED and self.config.scrape_soft_changed
        )
        LOGGER.info(
            "crawl gate: resource_id=%s outcome=%s source=%s decision=%s forward_html=%s",
            resource.id,
            decision.outcome.value,
            signal.source.value,
            decision.reason,
            forward_html,
        )
        return CrawlResult(
            resource_id=resource.id,
            outcome=decision.outcome,
            status_code=fetched.status_code,
            etag=fetched.etag,
            http_last_modified=fetched.last_modified,
            page_update=signal,
            raw_hash=raw_hash,
            content_bytes=fetched.content_length,
            duration_ms=duration_ms,
            decision=decision.reason,
            html=html if forward_html else None,
        )

    def _record_failure(
        self,
        resource: Resource,
        error: str,
        *,
        status_code: int | None,
        duration_ms: int | None,
        attempts: int | None = None,
    ) -> None:
        try:
            self._update(
                resource,
                {
                    "last_crawled_at": utc_now(),
                    "last_crawl_outcome": CrawlOutcome.ERROR.value,
                    "last_error": error,
                },
            )
            self._audit(
                resource,
                CrawlOutcome.ERROR,
                http_status=status_code,
                duration_ms=duration_ms,
                error=error,
                notes=CrawlAuditNotes(attempts=attempts),
            )
        except Exception:
            LOGGER.exception("crawl: failed to record error resource_id=%s", resource.id)

    def _update(self, resource: Resource, patch: dict[str, Any]) -> None:
        if self.writes_enabled and resource.id is not None:
            self.context.store.update(resource.id, patch)

    def _audit(self, resource: Resource, outcome: CrawlOutcome, *, notes: CrawlAuditNotes, **values: Any) -> None:
        if not self.writes_enabled or not self.config.crawl_audit_enabled or resource.id is None:
            return
        self.context.store.add_audit(
            CrawlAudit(
                resource_id=resource.id,
                url=resource.url,
                ts=utc_now(),
                outcome=outcome.value,
                notes=notes.to_json(),
                **values,
            )
        )


__all__ = ["ChangeDecision", "CrawlStage", "decide_change"]
