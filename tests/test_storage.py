"""Tests for the relational resource store."""

from datetime import timedelta

import pytest

from aidwatch.crawler.storage import CrawlAudit, copy_resource
from aidwatch.crawler.types import AuditKind, utc_now


class TestCandidates:
    def test_never_crawled_first_then_oldest(self, store):
        now = utc_now()
        stale = store.add_resource("https://example.org/stale", last_crawled_at=now - timedelta(hours=30))
        older = store.add_resource("https://example.org/older", last_crawled_at=now - timedelta(hours=48))
        fresh = store.add_resource("https://example.org/fresh", last_crawled_at=now - timedelta(hours=1))
        never = store.add_resource("https://example.org/never")
        store.add_resource(None, name="sin url")
        store.add_resource("", name="url vacia")

        candidates = store.select_candidates(max_age=timedelta(hours=6), limit=10, now=now)

        assert [resource.id for resource in candidates] == [never.id, older.id, stale.id]
        assert fresh.id not in [resource.id for resource in candidates]

    def test_full_strategy_ignores_age_and_respects_limit(self, store):
        now = utc_now()
        ids = [
            store.add_resource(f"https://example.org/{index}", last_crawled_at=now - timedelta(minutes=index)).id
            for index in range(5)
        ]

        candidates = store.select_candidates(max_age=timedelta(hours=6), limit=3, strategy="full", now=now)

        assert len(candidates) == 3
        assert [resource.id for resource in candidates] == [ids[4], ids[3], ids[2]]

    def test_unknown_strategy(self, store):
        with pytest.raises(ValueError):
            store.select_candidates(max_age=timedelta(hours=1), limit=1, strategy="sometimes")


class TestTextChange:
    def test_version_moves_only_with_hash(self, store):
        resource = store.add_resource("https://example.org/a")

        assert store.apply_text_change(resource.id, text_hash="h1", field_patch={"description": "uno"}) == 1
        assert store.apply_text_change(resource.id, text_hash="h1", field_patch={"description": "otro"}) is None
        assert store.apply_text_change(resource.id, text_hash="h2", field_patch={}) == 2

        stored = store.get(resource.id)
        assert stored.text_hash == "h2"
        assert stored.content_version == 2
        assert stored.description == "uno"

    def test_patch_rejects_protected_columns(self, store):
        resource = store.add_resource("https://example.org/a")
        with pytest.raises(ValueError):
            store.update(resource.id, {"text_hash": "sneaky"})
        with pytest.raises(ValueError):
            store.update(resource.id, {"content_version": 9})


def test_pending_embeds(store):
    done = store.add_resource("https://example.org/done", text_hash="a", last_embedded_text_hash="a")
    pending = store.add_resource("https://example.org/pending", text_hash="b", last_embedded_text_hash="old")
    never = store.add_resource("https://example.org/never", text_hash="c")
    store.add_resource("https://example.org/unscraped")

    ids = [resource.id for resource in store.select_pending_embeds(limit=10)]
    assert ids == [pending.id, never.id]
    assert done.id not in ids

    ids = [resource.id for resource in store.select_pending_embeds(limit=10, exclude_ids=[pending.id])]
    assert ids == [never.id]


def test_audits_round_trip(store):
    resource = store.add_resource("https://example.org/a")
    store.add_audit(CrawlAudit(resource_id=resource.id, outcome="CHANGED", notes={"schema_version": 1}))

    audits = store.list_audits(AuditKind.CRAWL, resource.id)
    assert len(audits) == 1
    assert audits[0].notes == {"schema_version": 1}
    assert store.list_audits("scrape") == []


def test_copy_resource_is_detached(store):
    resource = store.add_resource("https://example.org/a", name="Original")
    copy = copy_resource(resource, name="Copia")

    assert copy.name == "Copia"
    assert copy.id == resource.id
    assert store.get(resource.id).name == "Original"
