"""ScrapeStage: extract structured fields and gate on the canonical text hash."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from ..context import PipelineContext
from ..parsers.html import normalize_text, sha256_hex
from ..storage import Resource, ScrapeAudit
from ..types import ScrapeAuditMeta, ScrapeFields, ScrapeResult, utc_now


LOGGER = logging.getLogger(__name__)

TEXT_TOO_SHORT = "text_too_short"
CANONICAL_SEPARATOR = "\n\n"


def canonical_text(fields: ScrapeFields) -> str:
    """Concatenate non-empty blocks in canonical order, whitespace-normalised."""

    return normalize_text(CANONICAL_SEPARATOR.join(block for block in fields.content_blocks() if block))


def _with_identity_fallback(fields: ScrapeFields, resource: Resource) -> ScrapeFields:
    return replace(
        fields,
        name=fields.name or normalize_text(resource.name),
        status=fields.status or normalize_text(resource.status),
    )


def content_patch(fields: ScrapeFields, resource: Resource) -> dict[str, Any]:
    """New content columns; an empty extraction keeps the stored value."""

    patch: dict[str, Any] = {}
    for column in ("name", "status", "description", "eligibility", "documentation", "regulation", "outcomes", "other"):
        value = getattr(fields, column)
        patch[column] = value if value else getattr(resource, column)
    patch["categories"] = list(fields.categories) if fields.categories else resource.categories
    return patch


class ScrapeStage:
    """Deterministic given the same HTML, so no retries happen here."""

    def __init__(self, context: PipelineContext) -> None:
        self.context = context
        self.config = context.config

    @property
    def writes_enabled(self) -> bool:
        return not self.config.dry_run

    def scrape_one(self, resource: Resource, html: str) -> ScrapeResult:
        try:
            return self._scrape(resource, html)
        except Exception as exc:
            LOGGER.exception("scrape: failed resource_id=%s", resource.id)
            error = f"{exc.__class__.__name__}: {exc}"
            try:
                self._update(
                    resource,
                    {"last_scraped_at": utc_now(), "last_scrape_ok": False, "last_error": error},
                )
                self._audit(resource, ok=False, error=error, meta=ScrapeAuditMeta(reason="exception"))
            except Exception:
                LOGGER.exception("scrape: failed to record error resource_id=%s", resource.id)
            return ScrapeResult(resource_id=resource.id, ok=False, error=error)

    def _scrape(self, resource: Resource, html: str) -> ScrapeResult:
        extraction = self.context.extractor.extract(html)
        fields = _with_identity_fallback(extraction.fields, resource)
        text = canonical_text(fields)
        text_len = len(text)

        if text_len < self.config.scrape_min_text_len:
            LOGGER.info(
                "scrape gate: resource_id=%s ok=False reason=%s text_len=%s min=%s",
                resource.id,
                TEXT_TOO_SHORT,
                text_len,
                self.config.scrape_min_text_len,
            )
            self._audit(
                resource,
                ok=False,
                text_len=text_len,
                error=TEXT_TOO_SHORT,
                meta=ScrapeAuditMeta(changed=False, reason=TEXT_TOO_SHORT, finders=extraction.finders_used),
            )
            return ScrapeResult(
                resource_id=resource.id,
                ok=False,
                text_len=text_len,
                fields=fields,
                text=text,
                error=TEXT_TOO_SHORT,
            )

        text_hash = sha256_hex(text)
        changed = resource.text_hash is None or resource.text_hash != text_hash
        now = utc_now()
        content_version = resource.content_version

        if changed:
            patch = content_patch(fields, resource)
            patch.update(last_scraped_at=now, last_scrape_ok=True, last_error=None)
            if self.writes_enabled:
                content_version = self.context.store.apply_text_change(
                    resource.id,
                    text_hash=text_hash,
                    field_patch=patch,
                    now=now,
                )
                if content_version is None:
                    # Another writer stored the same hash first.
                    changed = False
                    content_version = resource.content_version
                    self._update(resource, {"last_scraped_at": now, "last_scrape_ok": True, "last_error": None})
            else:
                content_version = (resource.content_version or 0) + 1
        else:
            self._update(resource, {"last_scraped_at": now, "last_scrape_ok": True, "last_error": None})

        reason = "text_hash_changed" if changed else "text_hash_equal"
        LOGGER.info(
            "scrape gate: resource_id=%s ok=True changed=%s reason=%s text_len=%s content_version=%s",
            resource.id,
            changed,
            reason,
            text_len,
            content_version,
        )
        self._audit(
            resource,
            ok=True,
            text_hash=text_hash,
            text_len=text_len,
            meta=ScrapeAuditMeta(
                changed=changed,
                reason=reason,
                finders=extraction.finders_used,
                content_version=content_version,
            ),
        )
        return ScrapeResult(
            resource_id=resource.id,
            ok=True,
            changed=changed,
            text_hash=text_hash,
            text_len=text_len,
            content_version=content_version,
            fields=fields,
            text=text,
        )

    def _update(self, resource: Resource, patch: dict[str, Any]) -> None:
        if self.writes_enabled and resource.id is not None:
            self.context.store.update(resource.id, patch)

    def _audit(self, resource: Resource, *, ok: bool, meta: ScrapeAuditMeta, **values: Any) -> None:
        if not self.writes_enabled or not self.config.scrape_audit_enabled or resource.id is None:
            return
        self.context.store.add_audit(
            ScrapeAudit(
                resource_id=resource.id,
                url=resource.url,
                ts=utc_now(),
                ok=ok,
                extractor=self.context.extractor.name,
                meta=meta.to_json(),
                **values,
            )
        )


__all__ = ["CANONICAL_SEPARATOR", "ScrapeStage", "TEXT_TOO_SHORT", "canonical_text", "content_patch"]
