"""Orchestrator: select candidates, then crawl, scrape and embed in pools.

Each stage only forwards what actually changed:

* crawl forwards HTML for `CHANGED` (and `SOFT_CHANGED` when configured),
* scrape forwards resources whose canonical text hash moved,
* embed receives those plus, optionally, the backlog of resources whose
  current text was never embedded successfully.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from datetime import timedelta
from typing import Any

from ..embed.document import build_embedding_document
from .context import PipelineContext
from .pool import TaskOutcome, map_pool
from .stages.crawl import CrawlStage
from .stages.embed import EmbedStage
from .stages.scrape import ScrapeStage, content_patch
from .storage import Resource, copy_resource
from .types import CrawlOutcome, CrawlResult, RunSummary, ScrapeResult


LOGGER = logging.getLogger(__name__)


def _crawl_skip_reason(result: CrawlResult) -> str:
    if result.outcome == CrawlOutcome.SOFT_CHANGED:
        return "soft_changed_not_forwarded"
    if result.outcome == CrawlOutcome.CHANGED:
        return "no_html"
    return f"outcome_{result.outcome.value.lower()}"


def overlay_scrape(resource: Resource, result: ScrapeResult) -> Resource:
    """Transient resource carrying a scrape result that was not persisted."""

    changes: dict[str, Any] = {}
    if result.fields is not None:
        changes.update(content_patch(result.fields, resource))
    changes["text_hash"] = result.text_hash
    changes["content_version"] = result.content_version
    return copy_resource(resource, **changes)


class Pipeline:
    def __init__(self, context: PipelineContext) -> None:
        self.context = context
        self.config = context.config
        self.crawl_stage = CrawlStage(context)
        self.scrape_stage = ScrapeStage(context)
        self.embed_stage = EmbedStage(context)

    def _reread(self, resource: Resource) -> Resource | None:
        if self.config.dry_run or resource.id is None:
            return resource
        return self.context.store.get(resource.id)

    @staticmethod
    def _cancelled(cancel_event: threading.Event | None, summary: RunSummary) -> bool:
        if cancel_event is not None and cancel_event.is_set():
            summary.cancelled = True
            return True
        return False

    def run_once(self, cancel_event: threading.Event | None = None) -> RunSummary:
        """One crawl -> scrape -> embed pass over the due candidates."""

        config = self.config
        summary = RunSummary(dry_run=config.dry_run)

        if not config.crawler_enabled:
            LOGGER.info("run: skipped reason=crawler_disabled")
            summary.skipped_reason = "crawler_disabled"
            summary.finish()
            return summary

        candidates = self.context.store.select_candidates(
            max_age=timedelta(hours=config.max_age_hours),
            limit=config.batch_limit,
            strategy=config.reindex_strategy,
        )
        summary.candidates = len(candidates)
        LOGGER.info(
            "run: candidates=%s strategy=%s dry_run=%s",
            len(candidates),
            config.reindex_strategy,
            config.dry_run,
        )

        to_scrape = self._crawl_all(candidates, summary, cancel_event)

        to_embed: list[Resource] = []
        if not config.scraper_enabled:
            LOGGER.info("run: scrape stage disabled, %s forwarded item(s) dropped", len(to_scrape))
        elif not self._cancelled(cancel_event, summary):
            to_embed = self._scrape_all(to_scrape, summary, cancel_event)

        if not config.embedder_enabled:
            LOGGER.info("run: embed stage disabled")
        elif not self._cancelled(cancel_event, summary):
            self._embed_all(to_embed, summary, cancel_event)

        summary.finish()
        LOGGER.info("run: finished summary=%s", summary.to_json())
        return summary

    def _crawl_all(
        self,
        candidates: list[Resource],
        summary: RunSummary,
        cancel_event: threading.Event | None,
    ) -> list[tuple[Resource, str]]:
        outcomes = map_pool(
            candidates,
            self.config.crawl_concurrency,
            self.crawl_stage.crawl_one,
            cancel_event=cancel_event,
            desc="crawl",
        )

        forwarded: list[tuple[Resource, str]] = []
        for resource, outcome in zip(candidates, outcomes):
            if outcome.cancelled:
                summary.cancelled = True
                continue
            if not outcome.ok or outcome.value is None:
                summary.crawl_errors += 1
                LOGGER.warning("scrape skip: resource_id=%s reason=crawl_failed error=%s", resource.id, outcome.error)
                continue

            result = outcome.value
            summary.record_crawl(result.outcome)
            if result.html is None:
                LOGGER.info(
                    "scrape skip: resource_id=%s reason=%s",
                    resource.id,
                    _crawl_skip_reason(result),
                )
                continue
            forwarded.append((resource, result.html))
        return forwarded

    def _scrape_all(
        self,
        items: list[tuple[Resource, str]],
        summary: RunSummary,
        cancel_event: threading.Event | None,
    ) -> list[Resource]:
        def scrape(item: tuple[Resource, str]) -> tuple[Resource, ScrapeResult] | None:
            resource, html = item
            fresh = self._reread(resource)
            if fresh is None:
                LOGGER.warning("scrape skip: resource_id=%s reason=resource_missing", resource.id)
                return None
            return fresh, self.scrape_stage.scrape_one(fresh, html)

        outcomes: list[TaskOutcome[tuple[Resource, ScrapeResult] | None]] = map_pool(
            items,
            self.config.scrape_concurrency,
            scrape,
            cancel_event=cancel_event,
            desc="scrape",
        )

        changed: list[Resource] = []
        for (resource, _html), outcome in zip(items, outcomes):
            if outcome.cancelled:
                summary.cancelled = True
                continue
            if not outcome.ok or outcome.value is None:
                summary.scrape_errors += 1
                continue

            fresh, result = outcome.value
            summary.scraped += 1
            if not result.ok:
                summary.scrape_errors += 1
                LOGGER.info("embed skip: resource_id=%s reason=scrape_failed error=%s", resource.id, result.error)
                continue
            if not result.changed:
                LOGGER.info("embed skip: resource_id=%s reason=text_unchanged", resource.id)
                continue

            summary.scrape_changed += 1
            if self.config.dry_run:
                changed.append(overlay_scrape(fresh, result))
                continue
            reread = self._reread(fresh)
            if reread is not None:
                changed.append(reread)
        return changed

    def _embed_all(
        self,
        changed: list[Resource],
        summary: RunSummary,
        cancel_event: threading.Event | None,
    ) -> None:
        items = list(changed)
        if self.config.embed_backlog:
            seen = [resource.id for resource in items if resource.id is not None]
            backlog = self.context.store.select_pending_embeds(limit=self.config.batch_limit, exclude_ids=seen)
            if backlog:
                LOGGER.info("embed: backlog=%s", len(backlog))
            items.extend(backlog)

        deduped: list[Resource] = []
        seen_ids: set[int] = set()
        for resource in items:
            if resource.id in seen_ids:
                continue
            seen_ids.add(resource.id)
            deduped.append(resource)

        outcomes = map_pool(
            deduped,
            self.config.embed_concurrency,
            self.embed_stage.embed_one,
            cancel_event=cancel_event,
            desc="embed",
        )
        for outcome in outcomes:
            if outcome.cancelled:
                summary.cancelled = True
            elif not outcome.ok or outcome.value is None or not outcome.value.ok:
                summary.embed_errors += 1
            elif outcome.value.skipped:
                summary.embed_skipped += 1
            else:
                summary.embedded += 1

    def inspect_url(self, url: str, *, embed: bool = False) -> dict[str, Any]:
        """Crawl and scrape (and optionally embed) one URL without writing anything."""

        config = dataclasses.replace(self.config, dry_run=True)
        context = dataclasses.replace(self.context, config=config)
        resource = Resource(url=url, content_version=0)

        report: dict[str, Any] = {"url": url, "crawl": None, "scrape": None, "document": None, "embed": None}
        crawl = CrawlStage(context).crawl_one(resource)
        report["crawl"] = crawl.to_json()
        if crawl.html is None:
            return report

        scrape = ScrapeStage(context).scrape_one(resource, crawl.html)
        report["scrape"] = scrape.to_json()
        report["scrape"]["text"] = scrape.text
        if not scrape.ok:
            return report

        scraped = overlay_scrape(resource, scrape)
        page = crawl.page_update
        if page.found:
            scraped = copy_resource(
                scraped,
                page_last_updated_at=page.iso,
                page_last_updated_text=page.text,
            )
        document = build_embedding_document(scraped, config.embedding_token_budget)
        report["document"] = {
            "text": document.text,
            "clipped": document.clipped,
            "token_budget": document.token_budget,
            "tokens_estimated": document.tokens_estimated,
            "blocks_used": document.blocks_used,
        }
        if embed:
            report["embed"] = EmbedStage(context).embed_one(scraped).to_json()
        return report


__all__ = ["Pipeline", "overlay_scrape"]
