from __future__ import annotations

import asyncio
import json

import allure
import httpx
import pytest

from brand_monitor.config import ProviderSettings
from brand_monitor.providers.base import (
    CompletionConfig,
    ProviderConnectionError,
    ProviderHTTPError,
    ProviderRateLimitError,
    ProviderResponseError,
    ProviderTimeoutError,
)
from brand_monitor.providers.claude import ClaudeAdapter
from brand_monitor.providers.gemini import GeminiAdapter, grounding_urls
from brand_monitor.providers.openai import OpenAIAdapter
from brand_monitor.providers.perplexity import PerplexityAdapter
from brand_monitor.providers.registry import build_adapters

pytestmark = [
    allure.epic("Providers"),
    allure.feature("Adapters"),
]


def _complete(adapter_type, handler, *, model: str = "test-model", prompt: str = "Best CRM?"):
    async def _run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            adapter = adapter_type(client=client, api_key="secret-key", model=model)
            return await adapter.complete(prompt, CompletionConfig(temperature=0.2, max_tokens=300))

    return asyncio.run(_run())


def test_openai_collects_text_and_url_citations() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(
            200,
            json={
                "output": [
                    {"type": "web_search_call", "status": "completed"},
                    {
                        "type": "message",
                        "content": [
                            {
                                "type": "output_text",
                                "text": "Acme leads the market.",
                                "annotations": [
                                    {"type": "url_citation", "url": "https://acme.io/about"},
                                    {"type": "url_citation", "url": "http://www.w3.org/2000/svg"},
                                    {"type": "url_citation", "url": "https://acme.io/about"},
                                ],
                            },
                        ],
                    },
                ],
                "usage": {"total_tokens": 321},
            },
        )

    result = _complete(OpenAIAdapter, handler, model="o4-mini")

    assert result.provider == "openai"
    assert result.text == "Acme leads the market."
    assert result.citations == ("https://acme.io/about",)
    assert result.used_web_search is True
    assert result.tokens_used == 321
    assert result.model == "o4-mini"
    request = captured[0]
    assert request.headers["Authorization"] == "Bearer secret-key"
    body = json.loads(request.content)
    assert body["tools"] == [{"type": "web_search"}]
    assert body["max_output_tokens"] == 300
    assert "temperature" not in body


def test_openai_without_output_text_is_a_response_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"output": []})

    with pytest.raises(ProviderResponseError):
        _complete(OpenAIAdapter, handler)


def test_claude_sums_input_and_output_tokens() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(
            200,
            json={
                "content": [{"type": "text", "text": "Acme "}, {"type": "text", "text": "wins."}],
                "usage": {"input_tokens": 10, "output_tokens": 5},
            },
        )

    result = _complete(ClaudeAdapter, handler)

    assert result.text == "Acme wins."
    assert result.tokens_used == 15
    assert result.citations == ()
    assert result.used_web_search is False
    assert captured[0].headers["x-api-key"] == "secret-key"
    assert captured[0].headers["anthropic-version"] == "2023-06-01"
    assert json.loads(captured[0].content)["temperature"] == 0.2


def test_perplexity_falls_back_to_search_results() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "choices": [{"message": {"content": "Acme and Globex are popular."}}],
                "citations": [],
                "search_results": [
                    {"url": "https://review.net/crm"},
                    {"url": "https://example.com/placeholder"},
                    {"title": "no url"},
                ],
            },
        )

    result = _complete(PerplexityAdapter, handler)

    assert result.citations == ("https://review.net/crm",)
    assert result.used_web_search is True
    assert result.tokens_used == 7


def test_gemini_prefers_grounding_titles_and_skips_redirect_uris() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(
            200,
            json={
                "candidates": [
                    {
                        "content": {"parts": [{"text": "Acme is a solid pick."}]},
                        "groundingMetadata": {
                            "groundingChunks": [
                                {
                                    "web": {
                                        "title": "acme.io",
                                        "uri": "https://vertexaisearch.cloud.google.com/r/1",
                                    },
                                },
                                {"web": {"uri": "https://vertexaisearch.cloud.google.com/r/2"}},
                                {"web": {"uri": "https://review.net/best"}},
                                {"web": {"title": "example.com"}},
                            ],
                        },
                    },
                ],
            },
        )

    result = _complete(GeminiAdapter, handler, model="gemini-2.0-flash-exp")

    assert result.text == "Acme is a solid pick."
    assert result.citations == ("https://acme.io", "https://review.net/best")
    assert result.tokens_used == 6
    assert captured[0].url.params["key"] == "secret-key"
    assert captured[0].url.path.endswith("gemini-2.0-flash-exp:generateContent")


def test_gemini_rate_limit_reads_retry_delay_from_body() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            429,
            json={
                "error": {
                    "status": "RESOURCE_EXHAUSTED",
                    "details": [
                        {"@type": "type.googleapis.com/google.rpc.RetryInfo", "retryDelay": "17s"},
                    ],
                },
            },
        )

    with pytest.raises(ProviderRateLimitError) as raised:
        _complete(GeminiAdapter, handler)

    assert raised.value.retry_after_seconds == 17.0
    assert raised.value.status_code == 429
    assert raised.value.transient is True


def test_retry_after_header_wins_for_rate_limits() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, headers={"retry-after": "3"}, text="slow down")

    with pytest.raises(ProviderRateLimitError) as raised:
        _complete(OpenAIAdapter, handler)

    assert raised.value.retry_after_seconds == 3.0
    assert str(raised.value) == "openai: HTTP 429: slow down"


@pytest.mark.parametrize(
    ("status_code", "transient"),
    [(500, True), (503, True), (408, True), (400, False), (401, False)],
)
def test_http_errors_mark_server_failures_transient(status_code: int, transient: bool) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, text="nope")

    with pytest.raises(ProviderHTTPError) as raised:
        _complete(ClaudeAdapter, handler)

    assert raised.value.status_code == status_code
    assert raised.value.transient is transient


def test_transport_failures_map_to_provider_errors() -> None:
    def timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("read timed out", request=request)

    def refused(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ProviderTimeoutError):
        _complete(PerplexityAdapter, timeout)
    with pytest.raises(ProviderConnectionError) as raised:
        _complete(PerplexityAdapter, refused)
    assert raised.value.transient is True


def test_non_json_success_body_is_a_response_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>maintenance</html>")

    with pytest.raises(ProviderResponseError, match="not JSON"):
        _complete(OpenAIAdapter, handler)


def test_grounding_urls_ignores_malformed_metadata() -> None:
    assert grounding_urls(None) == []
    assert grounding_urls({"groundingChunks": ["junk", {"web": None}]}) == []
    assert grounding_urls({"groundingChunks": [{"web": {"title": "https://x.org/a"}}]}) == [
        "https://x.org/a",
    ]


def test_build_adapters_only_for_enabled_providers_with_keys() -> None:
    settings = ProviderSettings(
        api_keys={"openai": "sk-1", "claude": "ck-1", "perplexity": "pk-1"},
        enabled=("openai", "gemini", "claude"),
    )

    async def _run():
        async with httpx.AsyncClient() as client:
            return build_adapters(settings, client)

    adapters = asyncio.run(_run())

    assert list(adapters) == ["openai", "claude"]
    assert isinstance(adapters["openai"], OpenAIAdapter)
    assert isinstance(adapters["claude"], ClaudeAdapter)
    assert adapters["openai"].model == "o4-mini"
    assert adapters["claude"].model == settings.models["claude"]
