"""Relational storage for resources and the three append-only audit tables.

`ResourceStore` owns the engine and session factory. Stages never build SQL
themselves; they go through this API so every write is a short per-row
transaction keyed by resource id.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Iterator, Mapping, Sequence

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
    or_,
    select,
    update,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .constants import REINDEX_STRATEGIES
from .types import AuditKind, utc_now


LOGGER = logging.getLogger(__name__)

Base = declarative_base()


class Resource(Base):
    """One monitored aid page: structured content plus pipeline state."""

    __tablename__ = "resources"

    id = Column(Integer, primary_key=True, autoincrement=True)
    url = Column(Text, nullable=True)

    # Structured content.
    name = Column(Text, nullable=True)
    status = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    eligibility = Column(Text, nullable=True)
    documentation = Column(Text, nullable=True)
    regulation = Column(Text, nullable=True)
    outcomes = Column(Text, nullable=True)
    other = Column(Text, nullable=True)
    categories = Column(JSON, nullable=True)

    # HTTP caching headers (never conflated with the page-level signal).
    etag = Column(String(512), nullable=True)
    http_last_modified = Column(String(128), nullable=True)

    # Page-level "last updated" signal.
    page_last_updated_at = Column(DateTime(timezone=True), nullable=True)
    page_last_updated_text = Column(Text, nullable=True)

    content_bytes = Column(Integer, nullable=True)
    raw_hash = Column(String(64), nullable=True)
    text_hash = Column(String(64), nullable=True)
    content_version = Column(Integer, nullable=False, default=0)

    last_crawled_at = Column(DateTime(timezone=True), nullable=True, index=True)
    last_scraped_at = Column(DateTime(timezone=True), nullable=True)
    last_embedded_at = Column(DateTime(timezone=True), nullable=True)
    last_embedded_text_hash = Column(String(64), nullable=True)

    last_crawl_outcome = Column(String(32), nullable=True)
    last_scrape_ok = Column(Boolean, nullable=True)
    last_embed_ok = Column(Boolean, nullable=True)
    last_error = Column(Text, nullable=True)

    updated_at = Column(DateTime(timezone=True), nullable=True, default=utc_now)

    def __repr__(self) -> str:
        return f"<Resource(id={self.id}, url={self.url!r}, content_version={self.content_version})>"


class CrawlAudit(Base):
    __tablename__ = "crawl_audit"

    id = Column(Integer, primary_key=True, autoincrement=True)
    resource_id = Column(Integer, ForeignKey("resources.id"), nullable=False, index=True)
    url = Column(Text, nullable=True)
    ts = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    http_status = Column(Integer, nullable=True)
    duration_ms = Column(Integer, nullable=True)
    etag = Column(String(512), nullable=True)
    http_last_modified = Column(String(128), nullable=True)
    raw_hash = Column(String(64), nullable=True)
    outcome = Column(String(32), nullable=False)
    content_bytes = Column(Integer, nullable=True)
    page_last_updated_at = Column(DateTime(timezone=True), nullable=True)
    page_last_updated_text = Column(Text, nullable=True)
    notes = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)


class ScrapeAudit(Base):
    __tablename__ = "scrape_audit"

    id = Column(Integer, primary_key=True, autoincrement=True)
    resource_id = Column(Integer, ForeignKey("resources.id"), nullable=False, index=True)
    url = Column(Text, nullable=True)
    ts = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    ok = Column(Boolean, nullable=False)
    extractor = Column(String(128), nullable=True)
    text_hash = Column(String(64), nullable=True)
    text_len = Column(Integer, nullable=True)
    meta = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)


class EmbedAudit(Base):
    __tablename__ = "embed_audit"

    id = Column(Integer, primary_key=True, autoincrement=True)
    resource_id = Column(Integer, ForeignKey("resources.id"), nullable=False, index=True)
    ts = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    ok = Column(Boolean, nullable=False)
    provider = Column(String(64), nullable=True)
    model = Column(String(128), nullable=True)
    dim = Column(Integer, nullable=True)
    text_hash = Column(String(64), nullable=True)
    content_version = Column(Integer, nullable=True)
    duration_ms = Column(Integer, nullable=True)
    token_usage = Column(JSON, nullable=True)
    store_key = Column(String(256), nullable=True)
    meta = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)


AUDIT_MODEL_BY_KIND: dict[AuditKind, type] = {
    AuditKind.CRAWL: CrawlAudit,
    AuditKind.SCRAPE: ScrapeAudit,
    AuditKind.EMBED: EmbedAudit,
}

# Columns a stage patch may touch. The URL is owned out-of-band; `text_hash`
# and `content_version` only move together through `apply_text_change`.
PATCHABLE_COLUMNS = frozenset(
    column.name
    for column in Resource.__table__.columns
    if column.name not in {"id", "url", "content_version", "text_hash"}
)

CONTENT_COLUMNS = (
    "name",
    "status",
    "description",
    "eligibility",
    "documentation",
    "regulation",
    "outcomes",
    "other",
    "categories",
)


def copy_resource(resource: Resource, **changes: Any) -> Resource:
    """Return a detached, unsaved copy of `resource` with `changes` applied."""

    values = {column.name: getattr(resource, column.name) for column in Resource.__table__.columns}
    values.update(changes)
    return Resource(**values)


class ResourceStore:
    """Engine + session factory for the pipeline's relational store."""

    def __init__(self, database_url: str, *, echo: bool = False) -> None:
        self.database_url = database_url
        connect_args: dict[str, Any] = {}
        if database_url.startswith("sqlite"):
            # Stage workers share the engine across threads.
            connect_args["check_same_thread"] = False
        self.engine = create_engine(database_url, echo=echo, connect_args=connect_args)
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Yield a session that commits on success and rolls back on error."""

        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine)
        LOGGER.info("Schema ensured on %s", self.engine.url.render_as_string(hide_password=True))

    def dispose(self) -> None:
        self.engine.dispose()

    def add_resource(self, url: str | None, name: str | None = None, **fields: Any) -> Resource:
        """Insert a resource row (used by imports and tests)."""

        with self.session() as session:
            fields.setdefault("content_version", 0)
            resource = Resource(url=url, name=name, **fields)
            session.add(resource)
            session.flush()
            session.refresh(resource)
            return resource

    def get(self, resource_id: int) -> Resource | None:
        with self.session() as session:
            return session.get(Resource, resource_id)

    def select_candidates(
        self,
        *,
        max_age: timedelta,
        limit: int,
        strategy: str = "incremental",
        now: datetime | None = None,
    ) -> list[Resource]:
        """Resources with a URL that are due for a crawl, never-crawled first."""

        if strategy not in REINDEX_STRATEGIES:
            raise ValueError(f"Unknown reindex strategy: {strategy!r}")

        current = now or utc_now()
        stmt = select(Resource).where(Resource.url.is_not(None), Resource.url != "")
        if strategy == "incremental":
            cutoff = current - max_age
            stmt = stmt.where(
                or_(Resource.last_crawled_at.is_(None), Resource.last_crawled_at < cutoff)
            )
        stmt = stmt.order_by(
            Resource.last_crawled_at.is_(None).desc(),
            Resource.last_crawled_at.asc(),
            Resource.id.asc(),
        ).limit(limit)

        with self.session() as session:
            return list(session.scalars(stmt))

    def select_pending_embeds(
        self,
        *,
        limit: int,
        exclude_ids: Sequence[int] = (),
    ) -> list[Resource]:
        """Resources whose current text was never embedded successfully."""

        stmt = select(Resource).where(
            Resource.text_hash.is_not(None),
            or_(
                Resource.last_embedded_text_hash.is_(None),
                Resource.last_embedded_text_hash != Resource.text_hash,
            ),
        )
        if exclude_ids:
            stmt = stmt.where(Resource.id.not_in(list(exclude_ids)))
        stmt = stmt.order_by(Resource.id.asc()).limit(limit)

        with self.session() as session:
            return list(session.scalars(stmt))

    def update(self, resource_id: int, patch: Mapping[str, Any]) -> None:
        """Apply a column patch to one resource row."""

        unknown = sorted(set(patch) - PATCHABLE_COLUMNS)
        if unknown:
            raise ValueError(f"Columns not patchable: {unknown}")

        values = dict(patch)
        values.setdefault("updated_at", utc_now())
        with self.session() as session:
            session.execute(update(Resource).where(Resource.id == resource_id).values(**values))

    def apply_text_change(
        self,
        resource_id: int,
        *,
        text_hash: str,
        field_patch: Mapping[str, Any],
        now: datetime | None = None,
    ) -> int | None:
        """Persist new content iff `text_hash` differs; return the new version.

        The hash comparison and the version increment happen in one UPDATE, so
        two concurrent writers with the same hash cannot both bump the version.
        Returns None when the stored hash already equals `text_hash`.
        """

        unknown = sorted(set(field_patch) - PATCHABLE_COLUMNS)
        if unknown:
            raise ValueError(f"Columns not patchable: {unknown}")

        current = now or utc_now()
        values = dict(field_patch)
        values.update(
            text_hash=text_hash,
            content_version=Resource.content_version + 1,
            updated_at=current,
        )
        stmt = (
            update(Resource)
            .where(
                Resource.id == resource_id,
                or_(Resource.text_hash.is_(None), Resource.text_hash != text_hash),
            )
            .values(**values)
        )

        with self.session() as session:
            result = session.execute(stmt)
            if result.rowcount == 0:
                return None
            return session.scalar(
                select(Resource.content_version).where(Resource.id == resource_id)
            )

    def add_audit(self, row: CrawlAudit | ScrapeAudit | EmbedAudit) -> None:
        with self.session() as session:
            session.add(row)

    def list_audits(self, kind: AuditKind, resource_id: int | None = None) -> list[Any]:
        model = AUDIT_MODEL_BY_KIND[AuditKind(kind)]
        stmt = select(model)
        if resource_id is not None:
            stmt = stmt.where(model.resource_id == resource_id)
        stmt = stmt.order_by(model.id.asc())
        with self.session() as session:
            return list(session.scalars(stmt))


__all__ = [
    "AUDIT_MODEL_BY_KIND",
    "Base",
    "CONTENT_COLUMNS",
    "CrawlAudit",
    "EmbedAudit",
    "PATCHABLE_COLUMNS",
    "Resource",
    "ResourceStore",
    "ScrapeAudit",
    "copy_resource",
]
