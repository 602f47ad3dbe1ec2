"""Lenient date parsing for "last updated" strings (Spanish first, then English/ISO)."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime

from .html import fold_text


MONTHS: dict[str, int] = {
    # Spanish.
    "enero": 1,
    "febrero": 2,
    "marzo": 3,
    "abril": 4,
    "mayo": 5,
    "junio": 6,
    "julio": 7,
    "agosto": 8,
    "septiembre": 9,
    "setiembre": 9,
    "octubre": 10,
    "noviembre": 11,
    "diciembre": 12,
    "ene": 1,
    "abr": 4,
    "ago": 8,
    "sept": 9,
    "dic": 12,
    # English.
    "january": 1,
    "february": 2,
    "march": 3,
    "april": 4,
    "may": 5,
    "june": 6,
    "july": 7,
    "august": 8,
    "september": 9,
    "october": 10,
    "november": 11,
    "december": 12,
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}

SPANISH_MONTH_NAMES = (
    "",
    "enero",
    "febrero",
    "marzo",
    "abril",
    "mayo",
    "junio",
    "julio",
    "agosto",
    "septiembre",
    "octubre",
    "noviembre",
    "diciembre",
)

_TIME = r"(?:\s*,?\s+(?:a\s+las\s+)?(\d{1,2}):(\d{2})(?::(\d{2}))?)?"

ISO_RE = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})"
    r"(?:[T ](\d{2}):(\d{2})(?::(\d{2})(?:\.\d+)?)?\s*(z|[+-]\d{2}:?\d{2})?)?",
    re.IGNORECASE,
)
SPANISH_RE = re.compile(r"(\d{1,2})\s+de\s+([a-z]+)\.?,?\s+(?:de\s+|del\s+)?(\d{4})" + _TIME)
ENGLISH_MDY_RE = re.compile(r"\b([a-z]+)\.?\s+(\d{1,2})(?:st|nd|rd|th)?,?\s+(\d{4})" + _TIME)
ENGLISH_DMY_RE = re.compile(r"(\d{1,2})(?:st|nd|rd|th)?\s+([a-z]+)\.?,?\s+(\d{4})" + _TIME)
NUMERIC_DMY_RE = re.compile(r"(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{4})" + _TIME)
RFC2822_RE = re.compile(r"^[a-z]{3},?\s+\d{1,2}\s+[a-z]{3}\s+\d{4}\s+\d{1,2}:\d{2}", re.IGNORECASE)


def _build(year: int, month: int, day: int, hour: str | None, minute: str | None, second: str | None) -> datetime | None:
    try:
        return datetime(
            year,
            month,
            day,
            int(hour or 0),
            int(minute or 0),
            int(second or 0),
            tzinfo=timezone.utc,
        )
    except ValueError:
        return None


def _parse_iso(text: str) -> datetime | None:
    match = ISO_RE.search(text)
    if match is None:
        return None
    year, month, day, hour, minute, second, offset = match.groups()
    parsed = _build(int(year), int(month), int(day), hour, minute, second)
    if parsed is None or not offset or offset.lower() == "z":
        return parsed

    sign = 1 if offset[0] == "+" else -1
    digits = offset[1:].replace(":", "")
    shift_minutes = sign * (int(digits[:2]) * 60 + int(digits[2:]))
    return parsed - timedelta(minutes=shift_minutes)


def _parse_named_month(folded: str) -> datetime | None:
    for pattern, day_group, month_group in (
        (SPANISH_RE, 1, 2),
        (ENGLISH_DMY_RE, 1, 2),
        (ENGLISH_MDY_RE, 2, 1),
    ):
        for match in pattern.finditer(folded):
            month = MONTHS.get(match.group(month_group))
            if month is None:
                continue
            hour, minute, second = match.group(4), match.group(5), match.group(6)
            return _build(int(match.group(3)), month, int(match.group(day_group)), hour, minute, second)
    return None


def _parse_numeric(folded: str) -> datetime | None:
    match = NUMERIC_DMY_RE.search(folded)
    if match is None:
        return None
    day, month, year, hour, minute, second = match.groups()
    return _build(int(year), int(month), int(day), hour, minute, second)


def _parse_rfc2822(text: str) -> datetime | None:
    if not RFC2822_RE.search(text):
        return None
    try:
        parsed = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_localized_date(text: str | None) -> datetime | None:
    """Parse a human or machine date string into an aware UTC datetime.

    Returns None for empty, unrecognised or impossible calendar dates.
    """

    raw = str(text or "").strip()
    if not raw:
        return None

    parsed = _parse_rfc2822(raw)
    if parsed is not None:
        return parsed

    folded = fold_text(raw)
    if ISO_RE.search(folded):
        return _parse_iso(folded)

    parsed = _parse_named_month(folded)
    if parsed is not None:
        return parsed
    return _parse_numeric(folded)


def format_spanish_date(value: datetime) -> str:
    """Render `15 de enero, 2024` (UTC calendar day)."""

    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return f"{value.day} de {SPANISH_MONTH_NAMES[value.month]}, {value.year}"


__all__ = ["MONTHS", "format_spanish_date", "parse_localized_date"]
