"""Tests for the last-update resolver and its strategies."""

import json
from datetime import datetime, timezone
from urllib.parse import parse_qs, urlsplit

from aidwatch.crawler.fetcher import Fetcher
from aidwatch.crawler.parsers.last_update import (
    LastUpdateResolver,
    build_fallback_ajax_url,
    build_resolver,
    extract_ajax_url,
    page_slug,
    parse_ajax_payload,
    static_strategies,
)
from aidwatch.crawler.types import PageUpdateSource, StrategyResult

from conftest import PAGE_URL, FakeResponse


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


JSONLD_CONFLICT = (
    '<script type="application/ld+json">'
    + json.dumps({"@context": "https://schema.org", "@type": "WebPage", "dateModified": "2023-06-01T08:00:00Z"})
    + "</script>"
)


class TestPriority:
    def test_visible_beats_conflicting_jsonld(self):
        html = (
            f"<html><head>{JSONLD_CONFLICT}</head><body>"
            '<span id="_lastPublicationDatev2_INSTANCE_x_lastUpdateDateText">Última actualización: 20 de marzo, 2024</span>'
            "</body></html>"
        )
        signal = LastUpdateResolver(static_strategies()).resolve(html)

        assert signal.source == PageUpdateSource.VISIBLE
        assert signal.iso == utc(2024, 3, 20)
        assert signal.text == "Última actualización: 20 de marzo, 2024"

    def test_jsonld_used_when_nothing_visible(self):
        html = f"<html><head>{JSONLD_CONFLICT}</head><body><p>Sin fecha</p></body></html>"
        signal = LastUpdateResolver(static_strategies()).resolve(html)

        assert signal.source == PageUpdateSource.JSONLD_META
        assert signal.iso == utc(2023, 6, 1, 8)
        assert signal.text == "Última actualización: 1 de junio, 2023"

    def test_jsonld_graph_and_meta_tag(self):
        graph = json.dumps({"@graph": [{"@type": "Organization"}, {"@type": "WebPage", "dateModified": "2024-02-02"}]})
        html = f'<head><script type="application/ld+json">{graph}</script></head>'
        assert LastUpdateResolver(static_strategies()).resolve(html).iso == utc(2024, 2, 2)

        meta = '<head><meta property="article:modified_time" content="2024-05-06T00:00:00+00:00"></head>'
        signal = LastUpdateResolver(static_strategies()).resolve(meta)
        assert signal.source == PageUpdateSource.JSONLD_META
        assert signal.iso == utc(2024, 5, 6)

    def test_inline_script_literal(self):
        html = "<body><script>var fecha = '7 de julio, 2024';</script></body>"
        signal = LastUpdateResolver(static_strategies()).resolve(html)

        assert signal.source == PageUpdateSource.SCRIPT
        assert signal.iso == utc(2024, 7, 7)

    def test_jquery_setter_literal(self):
        html = (
            "<body><script>$(\"#_lastPublicationDatev2_INSTANCE_abc_lastUpdateDateText\")"
            ".text('Última actualización: 9 de mayo, 2024');</script></body>"
        )
        signal = LastUpdateResolver(static_strategies()).resolve(html)
        assert signal.source == PageUpdateSource.SCRIPT
        assert signal.iso == utc(2024, 5, 9)

    def test_generic_label_scan(self):
        html = "<body><div><p>Última actualización 03/04/2024</p></div></body>"
        signal = LastUpdateResolver(static_strategies()).resolve(html)

        assert signal.source == PageUpdateSource.VISIBLE
        assert signal.iso == utc(2024, 4, 3)

    def test_no_signal(self):
        signal = LastUpdateResolver(static_strategies()).resolve("<body><p>Nada</p></body>")
        assert signal.source == PageUpdateSource.NONE
        assert not signal.found

    def test_crashing_strategy_is_skipped(self):
        class Broken:
            name = "broken"

            def find(self, page):
                raise RuntimeError("boom")

        class Always:
            name = "always"

            def find(self, page):
                return StrategyResult.miss("never")

        resolver = LastUpdateResolver([Broken(), Always(), *static_strategies()])
        signal = resolver.resolve("<span class='update-date'>Última actualización: 1 de enero, 2024</span>")
        assert signal.source == PageUpdateSource.VISIBLE


class TestAjaxFallback:
    def test_slug_from_page_url(self):
        assert page_slug(PAGE_URL) == "ayudas-digitalizacion-pymes"
        assert page_slug("https://example.org/other") is None

    def test_fallback_url_uses_slug_and_portlet(self):
        html = '<span id="_lastPublicationDatev2_INSTANCE_Zx9_lastUpdateDateText"></span>'
        url = build_fallback_ajax_url(PAGE_URL + "?pageBackId=77", html, base_url="https://portal/on")

        query = parse_qs(urlsplit(url).query)
        assert url.startswith("https://portal/on?")
        assert query["p_p_id"] == ["lastPublicationDatev2_INSTANCE_Zx9"]
        assert query["p_p_resource_id"] == ["/get/last_update_date"]
        title_key = [key for key in query if key.endswith("_urlTitle")][0]
        assert query[title_key] == ["ayudas-digitalizacion-pymes"]
        assert any(key.endswith("_pageBackId") for key in query)

    def test_extract_prefers_candidate_matching_slug(self):
        html = (
            "url: '/es/tramites/on?p_p_resource_id=%2Fget%2Flast_update_date&_x_urlTitle=otra-ayuda',"
            "url: '/es/tramites/on?p_p_resource_id=%2Fget%2Flast_update_date&_x_urlTitle=ayudas-digitalizacion-pymes',"
        )
        url = extract_ajax_url(html, PAGE_URL)
        assert "ayudas-digitalizacion-pymes" in url
        assert url.startswith("https://www.navarra.es/es/tramites/on?")

    def test_parse_payload_served_as_html(self):
        body = '<pre>{"lastUpdateString": "Última actualización: 2 de abril, 2024"}</pre>'
        assert parse_ajax_payload(body, "text/html")["lastUpdateString"].endswith("2024")
        assert parse_ajax_payload("not json", "application/json") is None

    def test_resolver_calls_ajax_when_static_strategies_miss(self, http):
        ajax_url = build_fallback_ajax_url(PAGE_URL, "")
        http.routes[ajax_url] = FakeResponse(
            200,
            json.dumps({"lastUpdateDate": "2 de abril, 2024", "lastUpdateString": "Última actualización: 2 de abril, 2024"}),
            headers={"Content-Type": "application/json"},
        )
        fetcher = Fetcher(session_factory=http.session_factory, retries=0)
        resolver = build_resolver(fetcher, ajax_enabled=True)

        signal = resolver.resolve("<body><p>Sin fecha visible</p></body>", PAGE_URL)

        assert resolver.strategy_names == ["visible", "jsonld/meta", "script", "ajax"]
        assert signal.source == PageUpdateSource.AJAX
        assert signal.iso == utc(2024, 4, 2)
        assert http.calls_to(ajax_url)[0]["Referer"] == PAGE_URL

    def test_ajax_failure_is_a_miss(self, http):
        fetcher = Fetcher(session_factory=http.session_factory, retries=0)
        resolver = build_resolver(fetcher, ajax_enabled=True)

        signal = resolver.resolve("<body></body>", PAGE_URL)
        assert signal.source == PageUpdateSource.NONE

    def test_ajax_disabled(self):
        resolver = build_resolver(None, ajax_enabled=True)
        assert resolver.strategy_names == ["visible", "jsonld/meta", "script"]
