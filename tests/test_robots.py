"""Tests for the robots.txt gate."""

import requests

from aidwatch.crawler.robots import RobotsGate

from conftest import FakeResponse

ROBOTS_URL = "https://example.org/robots.txt"


def make_gate(http, **kwargs):
    return RobotsGate(user_agent="AidWatch/1.0", timeout_seconds=30.0, session=http.session_factory(), **kwargs)


def test_disallowed_path_is_blocked(http):
    http.routes[ROBOTS_URL] = FakeResponse(200, "User-agent: *\nDisallow: /private\n")
    gate = make_gate(http)

    assert gate.allowed("https://example.org/private/page") is False
    assert gate.allowed("https://example.org/public/page") is True


def test_rules_are_cached_per_host(http):
    http.routes[ROBOTS_URL] = FakeResponse(200, "User-agent: *\nDisallow:\n")
    gate = make_gate(http)

    for path in ("a", "b", "c"):
        assert gate.allowed(f"https://example.org/{path}")
    assert len(http.calls_to(ROBOTS_URL)) == 1

    gate.clear()
    gate.allowed("https://example.org/d")
    assert len(http.calls_to(ROBOTS_URL)) == 2


def test_missing_robots_fails_open(http):
    gate = make_gate(http)
    assert gate.allowed("https://example.org/anything") is True


def test_unreachable_robots_fails_open(http):
    http.routes[ROBOTS_URL] = requests.ConnectionError("connection refused")
    gate = make_gate(http)
    assert gate.allowed("https://example.org/anything") is True


def test_timeout_is_capped():
    gate = RobotsGate(timeout_seconds=60.0)
    assert gate.timeout_seconds == 10.0


def test_non_http_urls_are_allowed(http):
    gate = make_gate(http)
    assert gate.allowed("mailto:info@navarra.es") is True
    assert http.calls == []
