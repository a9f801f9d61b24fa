"""Build provider adapters from settings."""

from __future__ import annotations

import httpx

from brand_monitor.config import ProviderSettings
from brand_monitor.providers.base import ProviderAdapter
from brand_monitor.providers.claude import ClaudeAdapter
from brand_monitor.providers.gemini import GeminiAdapter
from brand_monitor.providers.openai import OpenAIAdapter
from brand_monitor.providers.perplexity import PerplexityAdapter

ADAPTER_TYPES: dict[str, type[ProviderAdapter]] = {
    "openai": OpenAIAdapter,
    "gemini": GeminiAdapter,
    "claude": ClaudeAdapter,
    "perplexity": PerplexityAdapter,
}


def build_http_client(settings: ProviderSettings) -> httpx.AsyncClient:
    """Shared async client for all adapters in one process."""

    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.request_timeout_seconds, connect=10.0),
        headers={"Content-Type": "application/json"},
    )


def build_adapters(
    settings: ProviderSettings,
    client: httpx.AsyncClient,
) -> dict[str, ProviderAdapter]:
    """Adapters for every enabled provider that has credentials, keyed by name."""

    adapters: dict[str, ProviderAdapter] = {}
    for name in settings.configured():
        adapter_type = ADAPTER_TYPES[name]
        adapters[name] = adapter_type(
            client=client,
            api_key=settings.api_keys[name],
            model=settings.models[name],
        )
    return adapters
