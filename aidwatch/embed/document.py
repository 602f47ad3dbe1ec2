"""Token-budgeted assembly of the text sent to the embedding provider."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable

from ..crawler.parsers.html import fold_text, normalize_text


# Rough chars-per-token ratio for the budget estimate. Replace
# `estimate_tokens` with a real tokenizer to change it everywhere.
CHARS_PER_TOKEN = 4
BLOCK_SEPARATOR = "\n\n"

# (resource attribute, label) in priority order.
DOCUMENT_BLOCKS: tuple[tuple[str, str], ...] = (
    ("name", "Nombre"),
    ("status", "Estado del trámite"),
    ("url", "URL"),
    ("description", "Descripción"),
    ("eligibility", "Dirigido a"),
    ("documentation", "Documentación"),
    ("regulation", "Normativa"),
    ("outcomes", "Resultados"),
    ("other", "Otros"),
    ("page_last_updated_text", "Última actualización"),
)

TokenEstimator = Callable[[str], int]


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


@dataclass(frozen=True, slots=True)
class EmbeddingDocument:
    text: str
    clipped: bool
    token_budget: int
    tokens_estimated: int
    blocks_used: int


def _format_block(label: str, value: Any) -> str:
    text = normalize_text(str(value)) if value is not None else ""
    if not text:
        return ""
    if fold_text(text).startswith(fold_text(label)):
        return text
    return f"{label}: {text}"


def document_blocks(resource: Any) -> list[str]:
    blocks: list[str] = []
    for attribute, label in DOCUMENT_BLOCKS:
        block = _format_block(label, getattr(resource, attribute, None))
        if block:
            blocks.append(block)
    return blocks


def _longest_prefix_within(prefix: str, block: str, budget: int, estimate: TokenEstimator) -> str:
    """Largest `block[:k]` such that `prefix + block[:k]` fits the budget."""

    low, high = 0, len(block)
    while low < high:
        middle = (low + high + 1) // 2
        if estimate(prefix + block[:middle]) <= budget:
            low = middle
        else:
            high = middle - 1
    return block[:low].rstrip()


def build_embedding_document(
    resource: Any,
    budget_tokens: int,
    *,
    estimate: TokenEstimator = estimate_tokens,
) -> EmbeddingDocument:
    """Append blocks while the estimate fits; cut the first overflowing block.

    Nothing is appended after a cut block, and the result is marked clipped.
    """

    if budget_tokens <= 0:
        raise ValueError("budget_tokens must be > 0")

    text = ""
    clipped = False
    used = 0
    for block in document_blocks(resource):
        separator = BLOCK_SEPARATOR if text else ""
        candidate = f"{text}{separator}{block}"
        if estimate(candidate) <= budget_tokens:
            text = candidate
            used += 1
            continue

        clipped = True
        partial = _longest_prefix_within(f"{text}{separator}", block, budget_tokens, estimate)
        if partial:
            text = f"{text}{separator}{partial}"
            used += 1
        break

    return EmbeddingDocument(
        text=text,
        clipped=clipped,
        token_budget=budget_tokens,
        tokens_estimated=estimate(text),
        blocks_used=used,
    )


__all__ = [
    "BLOCK_SEPARATOR",
    "CHARS_PER_TOKEN",
    "DOCUMENT_BLOCKS",
    "EmbeddingDocument",
    "build_embedding_document",
    "document_blocks",
    "estimate_tokens",
]
