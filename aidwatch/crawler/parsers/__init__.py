"""Parser package exports."""

from .dates import format_spanish_date, parse_localized_date
from .fields import ExtractionResult, FieldExtractor, SectionSpec
from .html import fold_text, normalize_html, normalize_text, parse_html, sha256_hex
from .last_update import LastUpdateResolver, build_resolver

__all__ = [
    "ExtractionResult",
    "FieldExtractor",
    "LastUpdateResolver",
    "SectionSpec",
    "build_resolver",
    "fold_text",
    "format_spanish_date",
    "normalize_html",
    "normalize_text",
    "parse_html",
    "parse_localized_date",
    "sha256_hex",
]
