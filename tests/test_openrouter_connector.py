"""Tests for the OpenRouter chat-completions connector."""

from __future__ import annotations

import json

import httpx
import pytest

from agent_runner.config import ProviderSettings
from agent_runner.models import ChatMessage
from agent_runner.openrouter_connector import CompletionError, OpenRouterConnector
from agent_runner.protocols import CompletionProtocol


@pytest.fixture
def provider(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return ProviderSettings(
        api_key="or-key",
        base_url="https://openrouter.test/api/v1/",
        model="x-ai/grok-4.1-fast",
        http_referer="https://example.org",
        title="Stella",
    )


def _connector(provider, handler) -> OpenRouterConnector:
    return OpenRouterConnector(provider, transport=httpx.MockTransport(handler))


def test_connector_implements_protocol(provider):
    assert isinstance(OpenRouterConnector(provider), CompletionProtocol)


@pytest.mark.asyncio
async def test_complete_sends_history_and_headers(provider):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"choices": [{"message": {"content": "hi there"}}]})

    history = [ChatMessage("system", "be brief"), ChatMessage("user", "hello")]
    reply = await _connector(provider, handler).complete(history)

    assert reply == "hi there"
    request = seen[0]
    assert str(request.url) == "https://openrouter.test/api/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer or-key"
    assert request.headers["HTTP-Referer"] == "https://example.org"
    assert request.headers["X-Title"] == "Stella"
    assert json.loads(request.content) == {
        "model": "x-ai/grok-4.1-fast",
        "messages": [
            {"role": "system", "content": "be brief"},
            {"role": "user", "content": "hello"},
        ],
    }


@pytest.mark.asyncio
async def test_optional_headers_are_omitted(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("OPENROUTER_HTTP_REFERER", raising=False)
    monkeypatch.delenv("OPENROUTER_TITLE", raising=False)
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

    await _connector(ProviderSettings(api_key="k"), handler).complete([ChatMessage("user", "x")])

    assert "HTTP-Referer" not in seen[0].headers
    assert "X-Title" not in seen[0].headers


@pytest.mark.asyncio
async def test_error_status_raises_with_truncated_body(provider):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, text="rate limited " + "x" * 1000)

    with pytest.raises(CompletionError) as exc:
        await _connector(provider, handler).complete([ChatMessage("user", "x")])

    message = str(exc.value)
    assert message.startswith("OpenRouter error 429: rate limited")
    assert len(message) <= len("OpenRouter error 429: ") + 400


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [{"choices": []}, {"choices": [{"message": {"content": ""}}]}, {}],
)
async def test_missing_content_raises(provider, payload):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=payload)

    with pytest.raises(CompletionError, match="no assistant content"):
        await _connector(provider, handler).complete([ChatMessage("user", "x")])
