"""Shared fixtures: SQLite store, fake HTTP session, fake embedding clients.

Nothing here touches the network. HTTP is served from a URL -> response
route table; unknown URLs answer 404 so the AJAX fallback and robots.txt
lookups stay quiet unless a test routes them.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

import pytest
from requests.structures import CaseInsensitiveDict

from aidwatch.crawler.config import PipelineConfig
from aidwatch.crawler.context import PipelineContext, build_context
from aidwatch.crawler.storage import ResourceStore
from aidwatch.embed.provider import EmbeddingInputTooLong, EmbeddingResponse


class FakeResponse:
    def __init__(
        self,
        status_code: int = 200,
        body: str | bytes = "",
        headers: dict[str, str] | None = None,
        url: str = "",
        encoding: str | None = "utf-8",
    ) -> None:
        self.status_code = status_code
        self.content = body.encode("utf-8") if isinstance(body, str) else body
        self.headers = CaseInsensitiveDict(headers or {})
        self.url = url
        self.encoding = encoding
        self.apparent_encoding = "utf-8"

    @property
    def text(self) -> str:
        return self.content.decode(self.encoding or "utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.text)


class FakeSession:
    """Stand-in for `requests.Session` driven by a shared route table.

    A route may be a response, an exception to raise, a list consumed one
    item per call (the last item repeats), or a callable taking the request
    headers.
    """

    def __init__(self, routes: dict[str, Any], calls: list[tuple[str, dict[str, str]]]) -> None:
        self.routes = routes
        self.calls = calls
        self.closed = False

    def get(self, url: str, headers: dict[str, str] | None = None, timeout: float | None = None, **_: Any) -> FakeResponse:
        headers = dict(headers or {})
        self.calls.append((url, headers))
        route = self.routes.get(url)
        if route is None:
            return FakeResponse(status_code=404, body="not found", url=url)
        if isinstance(route, list):
            item = route.pop(0) if len(route) > 1 else route[0]
            route = item
        if isinstance(route, Exception):
            raise route
        if callable(route) and not isinstance(route, FakeResponse):
            route = route(headers)
        if not route.url:
            route.url = url
        return route

    def close(self) -> None:
        self.closed = True


@dataclass
class FakeHttp:
    routes: dict[str, Any] = field(default_factory=dict)
    calls: list[tuple[str, dict[str, str]]] = field(default_factory=list)

    def session_factory(self) -> FakeSession:
        return FakeSession(self.routes, self.calls)

    def calls_to(self, url: str) -> list[dict[str, str]]:
        return [headers for called, headers in self.calls if called == url]


class FakeEmbedder:
    name = "fake"

    def __init__(self, dim: int = 8, max_input_chars: int | None = None, error: Exception | None = None) -> None:
        self.model = "fake-embedding"
        self.dim = dim
        self.max_input_chars = max_input_chars
        self.error = error
        self.inputs: list[str] = []
        self._lock = threading.Lock()

    @property
    def calls(self) -> int:
        return len(self.inputs)

    def embed(self, text: str) -> EmbeddingResponse:
        with self._lock:
            self.inputs.append(text)
        if self.error is not None:
            raise self.error
        if self.max_input_chars is not None and len(text) > self.max_input_chars:
            raise EmbeddingInputTooLong("context_length_exceeded: input too long")
        vector = [float(index + 1) / self.dim for index in range(self.dim)]
        return EmbeddingResponse(vector=vector, model=self.model, usage={"prompt_tokens": len(text) // 4}, duration_ms=1)


class MemoryVectorStore:
    def __init__(self) -> None:
        self.documents: dict[str, dict[str, Any]] = {}
        self.writes: list[str] = []

    def write(self, key: str, document: dict[str, Any]) -> None:
        self.writes.append(key)
        self.documents[key] = dict(document)


PAGE_URL = "https://www.navarra.es/es/tramites/on/-/line/ayudas-digitalizacion-pymes"

LONG_DESCRIPTION = (
    "Subvenciones destinadas a pequeñas y medianas empresas de Navarra que "
    "inviertan en la digitalización de sus procesos productivos, comerciales "
    "y de gestión, incluyendo la adquisición de software, la implantación de "
    "soluciones de comercio electrónico y la formación del personal. "
)
LONG_ELIGIBILITY = (
    "Pymes con domicilio fiscal en Navarra, constituidas con anterioridad a la "
    "fecha de publicación de la convocatoria y que se encuentren al corriente "
    "de sus obligaciones tributarias y con la Seguridad Social. "
)


def aid_page(
    *,
    name: str = "Ayudas a la digitalización de pymes",
    status: str = "Abierto",
    description: str = LONG_DESCRIPTION,
    eligibility: str = LONG_ELIGIBILITY,
    documentation: str = "Solicitud telemática y memoria del proyecto.",
    updated: str | None = "15 de enero, 2024",
    extra_head: str = "",
    extra_body: str = "",
    cache_bust: str = "1",
) -> str:
    """Resource page laid out like the portal's procedure viewer."""

    updated_html = (
        f'<p class="update-date"><span id="_lastPublicationDatev2_INSTANCE_abc_lastUpdateDateText">'
        f"Última actualización: {updated}</span></p>"
        if updated
        else ""
    )
    return f"""<html>
<head><title>{name}</title>{extra_head}</head>
<body>
<div id="infoTitulo"><div><h1>{name}</h1></div></div>
<div id="infoEstado"><div>{status}</div></div>
<div id="infoDescripcion"><h2>Descripción</h2><div>{description}</div></div>
<div id="infoDirigido"><h2>Dirigido a</h2><div>{eligibility}</div></div>
<div id="infoDocu"><h2>Documentación</h2><div>{documentation}</div></div>
<div id="infoTemas"><ul><li>Empresa</li><li>Innovación</li></ul></div>
{updated_html}
{extra_body}
<script>var cacheBust = "{cache_bust}";</script>
</body>
</html>"""


@pytest.fixture
def http() -> FakeHttp:
    return FakeHttp()


@pytest.fixture
def store(tmp_path) -> ResourceStore:
    resource_store = ResourceStore(f"sqlite:///{tmp_path / 'aidwatch.db'}")
    resource_store.create_schema()
    yield resource_store
    resource_store.dispose()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def vector_store() -> MemoryVectorStore:
    return MemoryVectorStore()


@pytest.fixture
def make_config(tmp_path) -> Callable[..., PipelineConfig]:
    def factory(**overrides: Any) -> PipelineConfig:
        payload: dict[str, Any] = {
            "database_url": f"sqlite:///{tmp_path / 'aidwatch.db'}",
            "retries": 2,
            "retry_backoff_seconds": 0.0,
            "respect_robots": False,
            "ajax_fallback_enabled": False,
            "scrape_min_text_len": 100,
            "embedding_api_key": "test-key",
            "redis_url": "redis://localhost:6379/0",
        }
        payload.update(overrides)
        return PipelineConfig.from_dict(payload)

    return factory


@pytest.fixture
def make_context(
    store: ResourceStore,
    http: FakeHttp,
    embedder: FakeEmbedder,
    vector_store: MemoryVectorStore,
    make_config: Callable[..., PipelineConfig],
) -> Callable[..., PipelineContext]:
    contexts: list[PipelineContext] = []

    def factory(**overrides: Any) -> PipelineContext:
        context = build_context(
            make_config(**overrides),
            store=store,
            session_factory=http.session_factory,
            embedder=embedder,
            vector_store=vector_store,
        )
        contexts.append(context)
        return context

    yield factory
    for context in contexts:
        context.fetcher.close()
