"""robots.txt gate with a per-host, thread-safe cache."""

from __future__ import annotations

import logging
import threading
from urllib.parse import urlsplit
from urllib.robotparser import RobotFileParser

import requests

from .constants import DEFAULT_TIMEOUT_SECONDS, DEFAULT_USER_AGENT, ROBOTS_TIMEOUT_CAP_SECONDS


LOGGER = logging.getLogger(__name__)


class RobotsGate:
    """Answer allow/deny for a URL under the configured user agent.

    Fails open: when robots.txt is missing, unreachable or answers >= 400 every
    URL on that host is allowed.
    """

    def __init__(
        self,
        *,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ) -> None:
        self.user_agent = user_agent
        self.timeout_seconds = min(ROBOTS_TIMEOUT_CAP_SECONDS, timeout_seconds)
        self._session = session

        self._lock = threading.Lock()
        self._cache: dict[str, RobotFileParser | None] = {}

    def allowed(self, url: str) -> bool:
        parsed = urlsplit(url)
        if parsed.scheme.lower() not in {"http", "https"} or not parsed.netloc:
            return True
        host_key = f"{parsed.scheme.lower()}://{parsed.netloc.lower()}"

        with self._lock:
            cached = host_key in self._cache
            parser = self._cache.get(host_key)

        if not cached:
            parser = self._load(host_key)
            with self._lock:
                self._cache.setdefault(host_key, parser)
                parser = self._cache[host_key]

        if parser is None:
            return True

        try:
            return parser.can_fetch(self.user_agent or "*", url)
        except Exception:  # robotparser quirks on odd URLs
            LOGGER.debug("robots can_fetch failed for %s; allowing", url, exc_info=True)
            return True

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def _load(self, host_root: str) -> RobotFileParser | None:
        robots_url = f"{host_root}/robots.txt"
        getter = self._session.get if self._session is not None else requests.get

        try:
            response = getter(
                robots_url,
                headers={"User-Agent": self.user_agent},
                timeout=self.timeout_seconds,
                allow_redirects=True,
            )
        except requests.RequestException as exc:
            LOGGER.info("robots.txt unreachable host=%s error=%s; failing open", host_root, exc)
            return None

        if response.status_code >= 400:
            LOGGER.debug("robots.txt status=%s host=%s; failing open", response.status_code, host_root)
            return None

        parser = RobotFileParser()
        parser.set_url(robots_url)
        parser.parse(response.text.splitlines())
        return parser


__all__ = ["RobotsGate"]
