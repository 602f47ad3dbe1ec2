"""EmbedStage: budgeted document, provider call, vector upsert, bookkeeping."""

from __future__ import annotations

import json
import logging
from typing import Any

from ...embed.document import EmbeddingDocument, build_embedding_document
from ...embed.provider import EmbeddingInputTooLong, EmbeddingResponse
from ...embed.storage import EMBEDDING_FIELD, to_float32_list, vector_key
from ..context import PipelineContext
from ..storage import EmbedAudit, Resource
from ..types import EmbedAuditMeta, EmbedResult, VectorMetadata, isoformat_utc, utc_now


LOGGER = logging.getLogger(__name__)

NO_TEXT_HASH = "no_text_hash"

VECTOR_FIELDS = (
    "name",
    "url",
    "status",
    "description",
    "eligibility",
    "documentation",
    "regulation",
    "outcomes",
    "other",
)


def build_vector_document(
    resource: Resource,
    vector: list[float],
    document: EmbeddingDocument,
    model: str,
) -> dict[str, Any]:
    """Structured fields, JSON-encoded metadata and the float32 vector."""

    metadata = VectorMetadata(
        content_version=resource.content_version or 0,
        text_hash=resource.text_hash,
        page_last_updated_at=isoformat_utc(resource.page_last_updated_at),
        clipped=document.clipped,
        token_budget=document.token_budget,
        model=model,
        categories=tuple(resource.categories or ()),
    )
    payload: dict[str, Any] = {"id": resource.id}
    for name in VECTOR_FIELDS:
        payload[name] = getattr(resource, name) or ""
    payload["categories"] = list(resource.categories or [])
    payload["metadata"] = json.dumps(metadata.to_json(), ensure_ascii=False)
    payload[EMBEDDING_FIELD] = vector
    return payload


class EmbedStage:
    def __init__(self, context: PipelineContext) -> None:
        self.context = context
        self.config = context.config

    @property
    def writes_enabled(self) -> bool:
        return not self.config.dry_run

    def embed_one(self, resource: Resource) -> EmbedResult:
        if not resource.text_hash:
            LOGGER.info("embed gate: resource_id=%s ok=False reason=%s", resource.id, NO_TEXT_HASH)
            return EmbedResult(resource_id=resource.id, ok=False, error=NO_TEXT_HASH)

        if resource.last_embedded_text_hash == resource.text_hash:
            LOGGER.info("embed gate: resource_id=%s action=skip reason=text_hash_already_embedded", resource.id)
            return EmbedResult(resource_id=resource.id, ok=True, skipped=True)

        try:
            return self._embed(resource)
        except Exception as exc:
            LOGGER.exception("embed: failed resource_id=%s", resource.id)
            error = f"{exc.__class__.__name__}: {exc}"
            try:
                self._update(resource, {"last_embed_ok": False, "last_error": error})
                self._audit(
                    resource,
                    ok=False,
                    error=error,
                    meta=EmbedAuditMeta(ok=False, dry_run=self.config.dry_run),
                )
            except Exception:
                LOGGER.exception("embed: failed to record error resource_id=%s", resource.id)
            return EmbedResult(resource_id=resource.id, ok=False, error=error)

    def _call_provider(self, resource: Resource) -> tuple[EmbeddingResponse, EmbeddingDocument, int]:
        """Shrink the token budget on "input too long" until attempts run out."""

        embedder = self.context.embedder
        if embedder is None:
            raise RuntimeError("embedding provider is not configured")

        budget = self.config.embedding_token_budget
        attempts = 0
        while True:
            attempts += 1
            document = build_embedding_document(resource, budget)
            try:
                return embedder.embed(document.text), document, attempts
            except EmbeddingInputTooLong:
                if attempts >= self.config.embedding_max_attempts:
                    raise
                shrunk = max(1, int(budget * self.config.embedding_budget_shrink))
                LOGGER.warning(
                    "embed: input too long resource_id=%s budget=%s next_budget=%s attempt=%s",
                    resource.id,
                    budget,
                    shrunk,
                    attempts,
                )
                budget = shrunk

    def _embed(self, resource: Resource) -> EmbedResult:
        response, document, attempts = self._call_provider(resource)
        vector = to_float32_list(response.vector)

        key = vector_key(self.config.vector_prefix, resource.id)
        wrote_history = False
        if self.writes_enabled:
            vector_store = self.context.vector_store
            if vector_store is None:
                raise RuntimeError("vector store is not configured")
            payload = build_vector_document(resource, vector, document, response.model)
            vector_store.write(key, payload)
            if self.config.keep_history:
                vector_store.write(vector_key(self.config.vector_prefix, resource.id, resource.content_version), payload)
                wrote_history = True

        self._update(
            resource,
            {
                "last_embedded_at": utc_now(),
                "last_embedded_text_hash": resource.text_hash,
                "last_embed_ok": True,
                "last_error": None,
            },
        )
        self._audit(
            resource,
            ok=True,
            dim=len(vector),
            model=response.model,
            duration_ms=response.duration_ms,
            token_usage=response.usage or None,
            store_key=key,
            meta=EmbedAuditMeta(
                ok=True,
                clipped=document.clipped,
                token_budget=document.token_budget,
                tokens_estimated=document.tokens_estimated,
                attempts=attempts,
                wrote_history=wrote_history,
                dry_run=self.config.dry_run,
            ),
        )
        LOGGER.info(
            "embed gate: resource_id=%s ok=True dims=%s clipped=%s token_budget=%s attempts=%s key=%s",
            resource.id,
            len(vector),
            document.clipped,
            document.token_budget,
            attempts,
            key,
        )
        return EmbedResult(
            resource_id=resource.id,
            ok=True,
            dims=len(vector),
            clipped=document.clipped,
            token_budget=document.token_budget,
            attempts=attempts,
            store_key=key,
        )

    def _update(self, resource: Resource, patch: dict[str, Any]) -> None:
        if self.writes_enabled and resource.id is not None:
            self.context.store.update(resource.id, patch)

    def _audit(self, resource: Resource, *, ok: bool, meta: EmbedAuditMeta, **values: Any) -> None:
        if not self.writes_enabled or not self.config.embed_audit_enabled or resource.id is None:
            return
        embedder = self.context.embedder
        values.setdefault("model", getattr(embedder, "model", None))
        self.context.store.add_audit(
            EmbedAudit(
                resource_id=resource.id,
                ts=utc_now(),
                ok=ok,
                provider=getattr(embedder, "name", None),
                text_hash=resource.text_hash,
                content_version=resource.content_version,
                meta=meta.to_json(),
                **values,
            )
        )


__all__ = ["EmbedStage", "NO_TEXT_HASH", "VECTOR_FIELDS", "build_vector_document"]
