"""HTTP fetching with thread-local sessions and fixed-backoff retries."""

from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import dataclass
from typing import Callable, Mapping

import requests

from .constants import (
    DEFAULT_RETRIES,
    DEFAULT_RETRY_BACKOFF_SECONDS,
    DEFAULT_TIMEOUT_SECONDS,
    DEFAULT_USER_AGENT,
)
from .types import FetchResult


LOGGER = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({304, 404, 410})
DEFAULT_BODY_ENCODING = "utf-8"
CHARSET_RE = re.compile(r"charset\s*=\s*[\"']?([\w.:-]+)", re.IGNORECASE)


def declared_encoding(content_type: str | None) -> str | None:
    """Charset named in a Content-Type header, if any."""

    match = CHARSET_RE.search(content_type or "")
    return match.group(1) if match else None


@dataclass(frozen=True, slots=True)
class _AttemptConfig:
    attempts: int
    backoff_seconds: float


class Fetcher:
    """Fetch URLs with `requests`.

    Each worker thread gets its own `requests.Session`. A session factory can
    be injected so tests never touch the network.
    """

    def __init__(
        self,
        *,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        retries: int = DEFAULT_RETRIES,
        retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS,
        session_factory: Callable[[], requests.Session] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.user_agent = user_agent
        self.timeout_seconds = timeout_seconds
        self.retries = retries
        self.retry_backoff_seconds = retry_backoff_seconds

        self._session_factory = session_factory or requests.Session
        self._sleep = sleep
        self._thread_local = threading.local()

        self._closed = False
        self._closed_lock = threading.Lock()
        self._sessions: list[requests.Session] = []
        self._sessions_lock = threading.Lock()

    def fetch(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        retries: int | None = None,
        backoff_seconds: float | None = None,
        timeout_seconds: float | None = None,
    ) -> FetchResult:
        """GET `url`, retrying transient failures with a fixed delay."""

        attempt_cfg = _AttemptConfig(
            attempts=max(1, (self.retries if retries is None else retries) + 1),
            backoff_seconds=max(
                0.0,
                self.retry_backoff_seconds if backoff_seconds is None else backoff_seconds,
            ),
        )
        return self._fetch_with_retries(
            url=url,
            headers=headers,
            timeout_seconds=timeout_seconds,
            attempt_cfg=attempt_cfg,
        )

    def fetch_once(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        timeout_seconds: float | None = None,
    ) -> FetchResult:
        """Single GET attempt, no retries."""

        if self._is_closed():
            return self._closed_result(url)
        return self._fetch_once_requests(url, headers=headers, timeout_seconds=timeout_seconds)

    def close(self) -> None:
        with self._closed_lock:
            self._closed = True
        with self._sessions_lock:
            sessions, self._sessions = self._sessions, []
        for session in sessions:
            session.close()

    def __enter__(self) -> "Fetcher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _is_closed(self) -> bool:
        with self._closed_lock:
            return self._closed

    @staticmethod
    def _closed_result(url: str) -> FetchResult:
        return FetchResult(requested_url=url, final_url=None, status_code=None, error="Fetcher is closed")

    def _fetch_with_retries(
        self,
        *,
        url: str,
        headers: Mapping[str, str] | None,
        timeout_seconds: float | None,
        attempt_cfg: _AttemptConfig,
    ) -> FetchResult:
        last_result: FetchResult | None = None

        for attempt in range(1, attempt_cfg.attempts + 1):
            if self._is_closed():
                return self._closed_result(url)

            result = self._fetch_once_requests(url, headers=headers, timeout_seconds=timeout_seconds)
            result.attempts = attempt
            last_result = result

            if self._is_terminal_result(result):
                return result

            LOGGER.debug(
                "fetch retry: url=%s attempt=%s/%s status=%s error=%s",
                url,
                attempt,
                attempt_cfg.attempts,
                result.status_code,
                result.error,
            )
            if attempt < attempt_cfg.attempts and attempt_cfg.backoff_seconds > 0:
                self._sleep(attempt_cfg.backoff_seconds)

        if last_result is None:
            return FetchResult(
                requested_url=url,
                final_url=None,
                status_code=None,
                error="Unknown fetch failure",
            )
        return last_result

    @staticmethod
    def _is_terminal_result(result: FetchResult) -> bool:
        if result.error is not None or result.status_code is None:
            return False
        if 200 <= result.status_code < 300:
            return True
        return result.status_code in TERMINAL_STATUSES

    def _fetch_once_requests(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        timeout_seconds: float | None = None,
    ) -> FetchResult:
        started = time.perf_counter()
        session = self._thread_local_session()

        request_headers = {"User-Agent": self.user_agent}
        if headers:
            request_headers.update(headers)

        try:
            response = session.get(
                url,
                headers=request_headers,
                timeout=timeout_seconds or self.timeout_seconds,
                allow_redirects=True,
            )
            elapsed_ms = int((time.perf_counter() - started) * 1000)
            body = response.content if response.content is not None else b""
            content_type = response.headers.get("Content-Type")
            return FetchResult(
                requested_url=url,
                final_url=response.url or url,
                status_code=response.status_code,
                content_type=content_type,
                body=body,
                encoding=declared_encoding(content_type) or DEFAULT_BODY_ENCODING,
                etag=response.headers.get("ETag"),
                last_modified=response.headers.get("Last-Modified"),
                elapsed_ms=elapsed_ms,
                error=None,
            )
        except requests.RequestException as exc:
            elapsed_ms = int((time.perf_counter() - started) * 1000)
            return FetchResult(
                requested_url=url,
                final_url=None,
                status_code=None,
                elapsed_ms=elapsed_ms,
                error=f"{exc.__class__.__name__}: {exc}",
            )

    def _thread_local_session(self) -> requests.Session:
        session = getattr(self._thread_local, "session", None)
        if session is None:
            session = self._session_factory()
            self._thread_local.session = session
            with self._sessions_lock:
                self._sessions.append(session)
        return session


__all__ = ["DEFAULT_BODY_ENCODING", "Fetcher", "TERMINAL_STATUSES", "declared_encoding"]
