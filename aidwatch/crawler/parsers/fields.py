"""Layout-aware extraction of named sections from a resource page.

Each section is described by a `SectionSpec`. Finders are tried in a fixed
order and the first one that yields non-empty content wins:

1. `ElementIdFinder`: known element ids (`#infoDocu > div:nth-child(1)`),
   then the whole element minus its heading, then extra CSS selectors.
2. `HeadingProximityFinder`: a heading whose folded text matches one of the
   section labels; content is every following sibling up to the next heading
   of equal or higher rank.
3. `IdSubstringFinder`: any element or named anchor whose id contains a hint.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Protocol, Sequence

from bs4 import BeautifulSoup, NavigableString, Tag

from ..constants import DEFAULT_EXTRACTOR_NAME, DEFAULT_HTML_FEATURES
from ..types import ScrapeFields, StrategyResult
from .html import fold_text, normalize_text, parse_html


LOGGER = logging.getLogger(__name__)

HEADING_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6")
LABEL_TAGS = (*HEADING_TAGS, "dt")
NON_CONTENT_TAGS = frozenset({"script", "style", "noscript", "template"})
CATEGORY_SPLIT_RE = re.compile(r"\s*[,;|·]\s*")
TRAILING_PUNCT_RE = re.compile(r"[\s:.\-]+$")


@dataclass(frozen=True, slots=True)
class SectionSpec:
    name: str
    element_ids: tuple[str, ...] = ()
    labels: tuple[str, ...] = ()
    id_hints: tuple[str, ...] = ()
    selectors: tuple[str, ...] = ()


@dataclass(slots=True)
class SectionMatch:
    """Nodes that make up one section's content."""

    nodes: list[Tag | NavigableString]

    @property
    def text(self) -> str:
        parts: list[str] = []
        for node in self.nodes:
            if isinstance(node, Tag):
                parts.append(node.get_text(" "))
            else:
                parts.append(str(node))
        return normalize_text(" ".join(parts))

    def items(self) -> list[str]:
        """List-like content (used for category tags)."""

        values: list[str] = []
        for node in self.nodes:
            if not isinstance(node, Tag):
                continue
            list_items = [node] if node.name == "li" else node.find_all("li")
            for item in list_items:
                text = normalize_text(item.get_text(" "))
                if text and text not in values:
                    values.append(text)
        if values:
            return values
        for piece in CATEGORY_SPLIT_RE.split(self.text):
            piece = piece.strip()
            if piece and piece not in values:
                values.append(piece)
        return values


class SectionFinder(Protocol):
    name: str

    def find_section(self, soup: BeautifulSoup, spec: SectionSpec) -> StrategyResult[SectionMatch]:
        ...


def _heading_rank(tag: Tag) -> int | None:
    if tag.name in HEADING_TAGS:
        return int(tag.name[1])
    return None


def _without_headings(element: Tag) -> list[Tag | NavigableString]:
    return [
        child
        for child in element.children
        if not (isinstance(child, Tag) and child.name in HEADING_TAGS)
    ]


def _match_or_miss(nodes: Sequence[Tag | NavigableString], reason: str) -> StrategyResult[SectionMatch]:
    match = SectionMatch(nodes=list(nodes))
    if match.text:
        return StrategyResult.hit(match)
    return StrategyResult.miss(reason)


class ElementIdFinder:
    name = "element_id"

    def find_section(self, soup: BeautifulSoup, spec: SectionSpec) -> StrategyResult[SectionMatch]:
        for element_id in spec.element_ids:
            first_block = soup.select_one(f"#{element_id} > div:nth-child(1)")
            if first_block is not None:
                result = _match_or_miss([first_block], "empty first block")
                if result.success:
                    return result

            element = soup.find(id=element_id)
            if isinstance(element, Tag):
                result = _match_or_miss(_without_headings(element), "empty element")
                if result.success:
                    return result

        for selector in spec.selectors:
            element = soup.select_one(selector)
            if element is not None:
                result = _match_or_miss([element], "empty selector match")
                if result.success:
                    return result

        return StrategyResult.miss("no known element")


def _label_matches(text: str, labels: Iterable[str]) -> bool:
    folded = TRAILING_PUNCT_RE.sub("", fold_text(text))
    if not folded:
        return False
    for label in labels:
        wanted = fold_text(label)
        if folded == wanted or folded.startswith(wanted + " "):
            return True
    return False


def _collect_following(start: Tag) -> list[Tag | NavigableString]:
    rank = _heading_rank(start)
    nodes: list[Tag | NavigableString] = []
    for sibling in start.next_siblings:
        if isinstance(sibling, Tag):
            if sibling.name in NON_CONTENT_TAGS:
                continue
            if start.name == "dt":
                if sibling.name == "dt":
                    break
            else:
                sibling_rank = _heading_rank(sibling)
                if sibling_rank is not None and rank is not None and sibling_rank <= rank:
                    break
                if sibling.find(list(HEADING_TAGS)) is not None and nodes:
                    break
            nodes.append(sibling)
        elif isinstance(sibling, NavigableString) and str(sibling).strip():
            nodes.append(sibling)
    return nodes


class HeadingProximityFinder:
    name = "heading_proximity"

    def find_section(self, soup: BeautifulSoup, spec: SectionSpec) -> StrategyResult[SectionMatch]:
        if not spec.labels:
            return StrategyResult.miss("no labels")

        for heading in soup.find_all(list(LABEL_TAGS)):
            if not _label_matches(heading.get_text(" "), spec.labels):
                continue

            result = _match_or_miss(_collect_following(heading), "heading without content")
            if result.success:
                return result

            # Heading wrapped in its own container: walk from the wrapper instead.
            parent = heading.parent
            if isinstance(parent, Tag) and parent.name not in {"body", "html", "[document]"}:
                result = _match_or_miss(_collect_following(parent), "wrapped heading without content")
                if result.success:
                    return result

        return StrategyResult.miss("no matching heading")


class IdSubstringFinder:
    name = "id_substring"

    def find_section(self, soup: BeautifulSoup, spec: SectionSpec) -> StrategyResult[SectionMatch]:
        for hint in spec.id_hints:
            wanted = hint.lower()
            for element in soup.find_all(id=True):
                if wanted not in str(element.get("id", "")).lower():
                    continue
                result = _match_or_miss(_without_headings(element), "empty id match")
                if result.success:
                    return result

            for anchor in soup.find_all("a", attrs={"name": True}):
                if wanted not in str(anchor.get("name", "")).lower():
                    continue
                result = _match_or_miss(_collect_following(anchor), "empty anchor match")
                if result.success:
                    return result

        return StrategyResult.miss("no id hint match")


DEFAULT_SECTIONS: tuple[SectionSpec, ...] = (
    SectionSpec(
        name="name",
        element_ids=("infoTitulo",),
        selectors=("h1",),
    ),
    SectionSpec(
        name="status",
        element_ids=("infoEstado",),
        labels=("estado", "estado del tramite", "plazo de presentacion"),
        id_hints=("estado",),
    ),
    SectionSpec(
        name="description",
        element_ids=("infoDescripcion",),
        labels=("descripcion", "en que consiste", "objeto"),
        id_hints=("descripcion",),
    ),
    SectionSpec(
        name="eligibility",
        element_ids=("infoDirigido",),
        labels=("dirigido a", "quien puede solicitarlo", "requisitos", "beneficiarios"),
        id_hints=("dirigido",),
    ),
    SectionSpec(
        name="documentation",
        element_ids=("infoDocu",),
        labels=("documentacion", "documentacion a aportar", "documentacion necesaria"),
        id_hints=("docu",),
    ),
    SectionSpec(
        name="regulation",
        element_ids=("infoNormativa",),
        labels=("normativa", "legislacion", "normativa aplicable"),
        id_hints=("normativa",),
    ),
    SectionSpec(
        name="outcomes",
        element_ids=("infoResultados",),
        labels=("resultados", "resolucion", "que se obtiene"),
        id_hints=("resultado",),
    ),
    SectionSpec(
        name="other",
        element_ids=("infoOtros",),
        labels=("otros datos", "observaciones", "informacion adicional"),
        id_hints=("otros",),
    ),
    SectionSpec(
        name="categories",
        element_ids=("infoTemas",),
        labels=("temas", "categorias"),
        id_hints=("temas",),
    ),
)


def default_finders() -> list[SectionFinder]:
    return [ElementIdFinder(), HeadingProximityFinder(), IdSubstringFinder()]


@dataclass(slots=True)
class ExtractionResult:
    fields: ScrapeFields
    finders_used: dict[str, str] = field(default_factory=dict)


class FieldExtractor:
    """Run every section spec through the finder chain."""

    def __init__(
        self,
        *,
        name: str = DEFAULT_EXTRACTOR_NAME,
        sections: Sequence[SectionSpec] = DEFAULT_SECTIONS,
        finders: Sequence[SectionFinder] | None = None,
        html_features: str = DEFAULT_HTML_FEATURES,
    ) -> None:
        self.name = name
        self.sections = tuple(sections)
        self.finders = list(finders) if finders is not None else default_finders()
        self.html_features = html_features

    def find(self, soup: BeautifulSoup, spec: SectionSpec) -> tuple[SectionMatch | None, str | None]:
        for finder in self.finders:
            result = finder.find_section(soup, spec)
            if result.success and result.value is not None:
                return result.value, finder.name
            LOGGER.debug("fields: section=%s finder=%s miss=%s", spec.name, finder.name, result.reason)
        return None, None

    def extract(self, html: str) -> ExtractionResult:
        soup = parse_html(html, self.html_features)
        values: dict[str, str] = {}
        categories: tuple[str, ...] = ()
        finders_used: dict[str, str] = {}

        for spec in self.sections:
            match, finder_name = self.find(soup, spec)
            if match is None or finder_name is None:
                continue
            finders_used[spec.name] = finder_name
            if spec.name == "categories":
                categories = tuple(match.items())
            else:
                values[spec.name] = match.text

        known = {item for item in ScrapeFields.__dataclass_fields__ if item != "categories"}
        return ExtractionResult(
            fields=ScrapeFields(
                **{key: value for key, value in values.items() if key in known},
                categories=categories,
            ),
            finders_used=finders_used,
        )


__all__ = [
    "DEFAULT_SECTIONS",
    "ElementIdFinder",
    "ExtractionResult",
    "FieldExtractor",
    "HeadingProximityFinder",
    "IdSubstringFinder",
    "SectionFinder",
    "SectionMatch",
    "SectionSpec",
    "default_finders",
]
