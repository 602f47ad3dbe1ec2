"""HTML normalisation, hashing and text helpers shared by every stage."""

from __future__ import annotations

import hashlib
import re
import unicodedata

from bs4 import BeautifulSoup

from ..constants import DEFAULT_HTML_FEATURES


SCRIPT_RE = re.compile(r"<script\b[^>]*>.*?</script\s*>", re.IGNORECASE | re.DOTALL)
STYLE_RE = re.compile(r"<style\b[^>]*>.*?</style\s*>", re.IGNORECASE | re.DOTALL)
COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
WHITESPACE_RE = re.compile(r"\s+")


def normalize_html(html: str) -> str:
    """Strip scripts, styles and comments, then collapse whitespace.

    Used for `raw_hash` so that cache-busting tokens inside scripts or
    whitespace-only reflows do not register as a content change.
    """

    value = str(html or "")
    value = SCRIPT_RE.sub("", value)
    value = STYLE_RE.sub("", value)
    value = COMMENT_RE.sub("", value)
    value = WHITESPACE_RE.sub(" ", value)
    return value.strip()


def sha256_hex(text: str) -> str:
    return hashlib.sha256(str(text).encode("utf-8")).hexdigest()


def normalize_text(text: str | None) -> str:
    """NBSP to space, collapse whitespace runs, trim."""

    value = str(text or "")
    value = value.replace("\x00", " ").replace("\u00a0", " ")
    value = WHITESPACE_RE.sub(" ", value)
    return value.strip()


def fold_text(text: str | None) -> str:
    """Lower-case, strip diacritics and collapse whitespace for label matching."""

    decomposed = unicodedata.normalize("NFD", normalize_text(text))
    stripped = "".join(char for char in decomposed if unicodedata.category(char) != "Mn")
    return stripped.lower()


def parse_html(html: str | bytes, features: str = DEFAULT_HTML_FEATURES) -> BeautifulSoup:
    """Single seam to the HTML parsing library."""

    if isinstance(html, bytes):
        html = html.decode("utf-8", errors="replace")
    return BeautifulSoup(html or "", features)


__all__ = [
    "fold_text",
    "normalize_html",
    "normalize_text",
    "parse_html",
    "sha256_hex",
]
