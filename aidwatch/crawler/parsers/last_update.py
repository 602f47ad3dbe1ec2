"""Resolve a page's own "last updated" signal through an ordered strategy chain.

Priority (first success wins):
1. visible DOM text (portlet span, `.update-date`, generic label scan)
2. structured metadata (JSON-LD, `<meta>` tags)
3. inline `<script>` literals that inject the date at render time
4. AJAX call to the portal's last-update-date resource (network fallback)

Strategies 1-3 only succeed on a parseable date. The AJAX strategy succeeds
when the payload carries either a text or a parseable date. The resolver
never raises; a miss everywhere is `PageUpdateSource.NONE`.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Iterator, Protocol, Sequence
from urllib.parse import parse_qsl, unquote, urlencode, urljoin, urlsplit

from bs4 import BeautifulSoup

from ..constants import DEFAULT_AJAX_BASE_URL, DEFAULT_HTML_FEATURES, DEFAULT_TIMEOUT_SECONDS
from ..fetcher import Fetcher
from ..types import LastUpdateSignal, PageUpdateSource, StrategyResult
from .dates import format_spanish_date, parse_localized_date
from .html import fold_text, normalize_text, parse_html


LOGGER = logging.getLogger(__name__)

LABEL_RE = re.compile(r"ultima\s+actualizacion|last\s+updated|last\s+modified")
LABEL_PREFIX_RE = re.compile(r"^\s*(?:ultima\s+actualizacion|last\s+updated|last\s+modified)\s*:?\s*")
VISIBLE_DATE_RE = re.compile(
    r"(\d{1,2}\s+de\s+[^\W\d_]+,?\s+(?:de\s+)?\d{4}"
    r"|\d{1,2}[/\-]\d{1,2}[/\-]\d{4}"
    r"|\d{4}-\d{2}-\d{2}"
    r"|[A-Za-z]+\s+\d{1,2},\s+\d{4})",
    re.IGNORECASE,
)
GENERIC_SCAN_TAGS = ("span", "p", "li", "strong", "em", "div", "time")
GENERIC_SCAN_MAX_CHARS = 300

JSONLD_DATE_KEYS = ("dateModified", "dateUpdated")
META_SELECTORS = (
    'meta[property="article:modified_time"]',
    'meta[name="last-modified"]',
    'meta[name="modified"]',
    'meta[itemprop="dateModified"]',
    'meta[property="og:updated_time"]',
)

SCRIPT_SCAN_MAX_CHARS = 200_000
VAR_FECHA_RE = re.compile(r"var\s+fecha\s*=\s*(['\"])(.*?)\1\s*;", re.IGNORECASE)
DATE_SETTER_RE = re.compile(
    r"\$\(\s*[\"']#_lastPublicationDatev2_INSTANCE_[^\"']+_lastUpdateDateText[\"']\s*\)"
    r"\.text\(\s*(['\"])(.*?)\1\s*\)",
    re.IGNORECASE,
)

AJAX_URL_LITERAL_RE = re.compile(r"url:\s*['\"]([^'\"]+?)['\"]", re.IGNORECASE)
AJAX_RESOURCE_RE = re.compile(r"get/last[_-]update[_-]date", re.IGNORECASE)
PORTLET_INSTANCE_RE = re.compile(r"_lastPublicationDatev2_INSTANCE_([A-Za-z0-9]+)_")
SLUG_RE = re.compile(r"/(?:-/)?line/([^/]+)/?$", re.IGNORECASE)
JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)

DEFAULT_PORTLET_INSTANCE = "lastPublicationDatev2_INSTANCE_footerlastPublicationDatev3"
PORTLET_NAMESPACE = "_es_navarra_tramites_visor_web_portlet_TramitesVisorWebPortlet"
AJAX_HEADERS = {
    "Accept": "application/json, text/javascript, */*; q=0.01",
    "X-Requested-With": "XMLHttpRequest",
    "Accept-Language": "es-ES,es;q=0.9",
}


@dataclass(slots=True)
class PageDocument:
    """Parsed page handed to every strategy (parsed once per resolve)."""

    html: str
    soup: BeautifulSoup
    page_url: str | None = None


class LastUpdateStrategy(Protocol):
    name: str

    def find(self, page: PageDocument) -> StrategyResult[LastUpdateSignal]:
        ...


def _strip_label(text: str) -> str:
    return LABEL_PREFIX_RE.sub("", fold_text(text))


def _signal_from_text(text: str, source: PageUpdateSource) -> StrategyResult[LastUpdateSignal]:
    parsed = parse_localized_date(_strip_label(text))
    if parsed is None:
        return StrategyResult.miss(f"unparseable date: {text[:80]!r}")
    return StrategyResult.hit(LastUpdateSignal(text=text, iso=parsed, source=source))


class VisibleTextStrategy:
    """Dates rendered server-side into the visible DOM."""

    name = "visible"

    def _candidates(self, soup: BeautifulSoup) -> Iterator[str]:
        for span in soup.select('span[id*="lastUpdateDateText"]'):
            text = normalize_text(span.get_text(" "))
            if text:
                yield text

        for container in soup.select(".update-date"):
            text = normalize_text(container.get_text(" "))
            if text:
                yield text

        for node in soup.find_all(list(GENERIC_SCAN_TAGS)):
            text = normalize_text(node.get_text(" "))
            if not text or len(text) > GENERIC_SCAN_MAX_CHARS:
                continue
            if not LABEL_RE.search(fold_text(text)):
                continue
            match = VISIBLE_DATE_RE.search(text)
            if match:
                yield f"Última actualización: {match.group(1)}"

    def find(self, page: PageDocument) -> StrategyResult[LastUpdateSignal]:
        last_miss: StrategyResult[LastUpdateSignal] | None = None
        for text in self._candidates(page.soup):
            result = _signal_from_text(text, PageUpdateSource.VISIBLE)
            if result.success:
                return result
            last_miss = result
        return last_miss or StrategyResult.miss("no visible label")


def _iter_jsonld_items(payload: Any) -> Iterator[dict[str, Any]]:
    if isinstance(payload, list):
        for item in payload:
            yield from _iter_jsonld_items(item)
        return
    if not isinstance(payload, dict):
        return
    yield payload
    graph = payload.get("@graph")
    if graph is not None:
        yield from _iter_jsonld_items(graph)


def _jsonld_dates(item: dict[str, Any]) -> Iterator[str]:
    for key in JSONLD_DATE_KEYS:
        value = item.get(key)
        if isinstance(value, str) and value.strip():
            yield value.strip()
    main_entity = item.get("mainEntity")
    entities = main_entity if isinstance(main_entity, list) else [main_entity]
    for entity in entities:
        if isinstance(entity, dict):
            value = entity.get("dateModified")
            if isinstance(value, str) and value.strip():
                yield value.strip()


class StructuredMetadataStrategy:
    """JSON-LD `dateModified`-like fields, then `<meta>` modified-time tags."""

    name = "jsonld/meta"

    def _candidates(self, soup: BeautifulSoup) -> Iterator[str]:
        for script in soup.select('script[type="application/ld+json"]'):
            raw = script.string or script.get_text() or ""
            try:
                payload = json.loads(raw)
            except json.JSONDecodeError:
                continue
            for item in _iter_jsonld_items(payload):
                yield from _jsonld_dates(item)

        for selector in META_SELECTORS:
            for meta in soup.select(selector):
                content = str(meta.get("content") or "").strip()
                if content:
                    yield content

    def find(self, page: PageDocument) -> StrategyResult[LastUpdateSignal]:
        for raw in self._candidates(page.soup):
            parsed = parse_localized_date(raw)
            if parsed is None:
                continue
            text = f"Última actualización: {format_spanish_date(parsed)}"
            return StrategyResult.hit(
                LastUpdateSignal(text=text, iso=parsed, source=PageUpdateSource.JSONLD_META)
            )
        return StrategyResult.miss("no structured date")


class InlineScriptStrategy:
    """`var fecha = '...'` and jQuery `.text('...')` setters in page scripts."""

    name = "script"

    def find(self, page: PageDocument) -> StrategyResult[LastUpdateSignal]:
        for script in page.soup.find_all("script"):
            code = (script.string or script.get_text() or "")[:SCRIPT_SCAN_MAX_CHARS]
            if not code:
                continue
            for pattern in (VAR_FECHA_RE, DATE_SETTER_RE):
                match = pattern.search(code)
                if match and match.group(2).strip():
                    result = _signal_from_text(match.group(2).strip(), PageUpdateSource.SCRIPT)
                    if result.success:
                        return result
        return StrategyResult.miss("no script literal")


def page_slug(page_url: str | None) -> str | None:
    """Procedure slug from `/-/line/<slug>` page URLs, lower-cased."""

    if not page_url:
        return None
    match = SLUG_RE.search(urlsplit(page_url).path)
    if match is None:
        return None
    return _normalize_slug(match.group(1))


def _normalize_slug(value: str | None) -> str | None:
    if not value:
        return None
    return unquote(value).lower().rstrip("-")


def _query_param(url: str, name: str) -> str | None:
    for key, value in parse_qsl(urlsplit(url).query, keep_blank_values=True):
        if key == name:
            return value
    return None


def _query_param_by_suffix(url: str, suffix: str) -> str | None:
    lowered = suffix.lower()
    for key, value in parse_qsl(urlsplit(url).query, keep_blank_values=True):
        if key.lower().endswith(lowered):
            return value
    return None


def find_portlet_instance(html: str) -> str | None:
    match = PORTLET_INSTANCE_RE.search(html or "")
    return f"lastPublicationDatev2_INSTANCE_{match.group(1)}" if match else None


def build_fallback_ajax_url(
    page_url: str | None,
    html: str = "",
    *,
    base_url: str = DEFAULT_AJAX_BASE_URL,
) -> str | None:
    """Deterministic resource URL rebuilt from the page slug and portlet id."""

    slug = page_slug(page_url)
    if not slug:
        return None

    instance = find_portlet_instance(html) or DEFAULT_PORTLET_INSTANCE
    params = [
        ("p_p_id", instance),
        ("p_p_lifecycle", "2"),
        ("p_p_state", "normal"),
        ("p_p_mode", "view"),
        ("p_p_resource_id", "/get/last_update_date"),
        ("p_p_cacheability", "cacheLevelPage"),
        (f"_{instance}_{PORTLET_NAMESPACE}_mvcRenderCommandName", "detalleTramite"),
        (f"_{instance}_{PORTLET_NAMESPACE}_urlTitle", slug),
    ]
    page_back_id = _query_param(page_url or "", "pageBackId")
    if page_back_id:
        params.append((f"_{instance}_pageBackId", page_back_id))
    return f"{base_url}?{urlencode(params)}"


def _score_ajax_candidate(url: str, slug: str | None, page_back_id: str | None) -> int:
    score = 0
    if "tramitesvisorwebportlet" in url.lower():
        score += 2
    if "get/last_update_date" in url.lower() or "p_p_resource_id=%2fget%2flast_update_date" in url.lower():
        score += 1

    url_title = _normalize_slug(_query_param_by_suffix(url, "urlTitle"))
    if slug and url_title and slug == url_title:
        score += 10

    candidate_back_id = _query_param_by_suffix(url, "pageBackId")
    if page_back_id and candidate_back_id and page_back_id == candidate_back_id:
        score += 5

    score += min(3, len(url) // 200)
    return score


def extract_ajax_url(
    html: str,
    page_url: str | None,
    *,
    base_url: str = DEFAULT_AJAX_BASE_URL,
) -> str | None:
    """Best `get/last_update_date` URL from page scripts, else the rebuilt fallback."""

    slug = page_slug(page_url)
    page_back_id = _query_param(page_url or "", "pageBackId")

    best_url: str | None = None
    best_score = -1
    for match in AJAX_URL_LITERAL_RE.finditer(html or ""):
        raw = unquote(match.group(1).replace("&amp;", "&"))
        if not AJAX_RESOURCE_RE.search(raw):
            continue
        absolute = urljoin(page_url or "", raw)
        score = _score_ajax_candidate(absolute, slug, page_back_id)
        if score > best_score:
            best_url, best_score = absolute, score

    if best_url is not None:
        return best_url
    return build_fallback_ajax_url(page_url, html, base_url=base_url)


def parse_ajax_payload(body: str, content_type: str | None) -> dict[str, Any] | None:
    """Decode the portlet response; JSON is sometimes served as text/html."""

    candidates = [body]
    if not (content_type and "json" in content_type.lower()):
        match = JSON_OBJECT_RE.search(body or "")
        if match:
            candidates.append(match.group(0))

    for candidate in candidates:
        try:
            payload = json.loads(candidate)
        except (TypeError, json.JSONDecodeError):
            continue
        if isinstance(payload, dict):
            return payload
    return None


class AjaxStrategy:
    """Secondary GET against the portal's last-update-date resource."""

    name = "ajax"

    def __init__(
        self,
        fetcher: Fetcher,
        *,
        base_url: str = DEFAULT_AJAX_BASE_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.fetcher = fetcher
        self.base_url = base_url
        self.timeout_seconds = timeout_seconds

    def find(self, page: PageDocument) -> StrategyResult[LastUpdateSignal]:
        ajax_url = extract_ajax_url(page.html, page.page_url, base_url=self.base_url)
        if not ajax_url:
            return StrategyResult.miss("no ajax url")

        headers = dict(AJAX_HEADERS)
        if page.page_url:
            headers["Referer"] = page.page_url

        result = self.fetcher.fetch_once(ajax_url, headers=headers, timeout_seconds=self.timeout_seconds)
        if not result.ok:
            return StrategyResult.miss(f"ajax status={result.status_code} error={result.error}")

        payload = parse_ajax_payload(result.text, result.content_type)
        if payload is None:
            return StrategyResult.miss("ajax payload not json")

        raw_date = payload.get("lastUpdateDate") or payload.get("lastUpdateString")
        text = payload.get("lastUpdateString") or payload.get("lastUpdateDate")
        parsed = parse_localized_date(_strip_label(str(raw_date))) if raw_date else None
        if not text and parsed is None:
            return StrategyResult.miss("ajax payload without date")

        return StrategyResult.hit(
            LastUpdateSignal(
                text=str(text) if text else None,
                iso=parsed,
                source=PageUpdateSource.AJAX,
            )
        )


class LastUpdateResolver:
    """Iterate strategies in order and return the first successful signal."""

    def __init__(
        self,
        strategies: Sequence[LastUpdateStrategy],
        *,
        html_features: str = DEFAULT_HTML_FEATURES,
    ) -> None:
        self.strategies = list(strategies)
        self.html_features = html_features

    @property
    def strategy_names(self) -> list[str]:
        return [strategy.name for strategy in self.strategies]

    def resolve(self, html: str, page_url: str | None = None) -> LastUpdateSignal:
        try:
            page = PageDocument(html=html or "", soup=parse_html(html or "", self.html_features), page_url=page_url)
        except Exception:
            LOGGER.exception("last-update: failed to parse html url=%s", page_url)
            return LastUpdateSignal()

        for strategy in self.strategies:
            try:
                result = strategy.find(page)
            except Exception:
                LOGGER.exception("last-update: strategy=%s crashed url=%s", strategy.name, page_url)
                continue
            if result.success and result.value is not None:
                LOGGER.debug("last-update: url=%s source=%s text=%r", page_url, strategy.name, result.value.text)
                return result.value
            LOGGER.debug("last-update: url=%s strategy=%s miss=%s", page_url, strategy.name, result.reason)

        return LastUpdateSignal()


def static_strategies() -> list[LastUpdateStrategy]:
    return [VisibleTextStrategy(), StructuredMetadataStrategy(), InlineScriptStrategy()]


def build_resolver(
    fetcher: Fetcher | None,
    *,
    ajax_enabled: bool = True,
    ajax_base_url: str = DEFAULT_AJAX_BASE_URL,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    html_features: str = DEFAULT_HTML_FEATURES,
) -> LastUpdateResolver:
    """Default chain; AJAX is appended only when enabled and a fetcher exists."""

    strategies = static_strategies()
    if ajax_enabled and fetcher is not None:
        strategies.append(AjaxStrategy(fetcher, base_url=ajax_base_url, timeout_seconds=timeout_seconds))
    return LastUpdateResolver(strategies, html_features=html_features)


__all__ = [
    "AjaxStrategy",
    "InlineScriptStrategy",
    "LastUpdateResolver",
    "LastUpdateStrategy",
    "PageDocument",
    "StructuredMetadataStrategy",
    "VisibleTextStrategy",
    "build_fallback_ajax_url",
    "build_resolver",
    "extract_ajax_url",
    "find_portlet_instance",
    "page_slug",
    "parse_ajax_payload",
    "static_strategies",
]
