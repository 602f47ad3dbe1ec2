"""Tests for the OpenAI-compatible embedding client."""

import json

import pytest
import requests

from aidwatch.embed.provider import EmbeddingInputTooLong, EmbeddingProviderError, OpenAIEmbeddingProvider

from conftest import FakeResponse


class PostSession:
    def __init__(self, response):
        self.response = response
        self.requests = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.requests.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        if isinstance(self.response, Exception):
            raise self.response
        return self.response

    def close(self):
        pass


def provider(response):
    session = PostSession(response)
    client = OpenAIEmbeddingProvider(
        api_key="sk-test",
        model="text-embedding-3-small",
        base_url="https://api.example.org/v1/",
        timeout_seconds=5,
        session=session,
    )
    return client, session


def error_body(code, message):
    return json.dumps({"error": {"code": code, "message": message}})


def test_successful_embedding():
    body = json.dumps(
        {"model": "text-embedding-3-small", "data": [{"embedding": [0.5, 1, -2]}], "usage": {"total_tokens": 7}}
    )
    client, session = provider(FakeResponse(200, body))

    response = client.embed("Ayudas a pymes")

    assert response.vector == [0.5, 1.0, -2.0]
    assert response.dim == 3
    assert response.usage == {"total_tokens": 7}
    request = session.requests[0]
    assert request["url"] == "https://api.example.org/v1/embeddings"
    assert request["json"] == {"model": "text-embedding-3-small", "input": "Ayudas a pymes"}
    assert request["headers"]["Authorization"] == "Bearer sk-test"
    assert request["timeout"] == 5


def test_context_length_error_is_too_long():
    client, _ = provider(FakeResponse(400, error_body("context_length_exceeded", "maximum context length is 8192")))
    with pytest.raises(EmbeddingInputTooLong):
        client.embed("x")


def test_other_client_error_is_generic():
    client, _ = provider(FakeResponse(400, error_body("invalid_request_error", "bad model")))
    with pytest.raises(EmbeddingProviderError) as excinfo:
        client.embed("x")
    assert not isinstance(excinfo.value, EmbeddingInputTooLong)
    assert str(excinfo.value) == "HTTP 400: invalid_request_error: bad model"


def test_server_error_with_plain_body():
    client, _ = provider(FakeResponse(502, "Bad Gateway"))
    with pytest.raises(EmbeddingProviderError, match="HTTP 502: Bad Gateway"):
        client.embed("x")


def test_network_error():
    client, _ = provider(requests.ConnectionError("refused"))
    with pytest.raises(EmbeddingProviderError, match="ConnectionError"):
        client.embed("x")


@pytest.mark.parametrize("body", ["not json", json.dumps({"data": []}), json.dumps({"data": [{"embedding": []}]})])
def test_malformed_payload(body):
    client, _ = provider(FakeResponse(200, body))
    with pytest.raises(EmbeddingProviderError):
        client.embed("x")


def test_api_key_required():
    with pytest.raises(ValueError):
        OpenAIEmbeddingProvider(api_key="")
