"""Provider adapter contract and shared HTTP plumbing."""

from __future__ import annotations

import logging
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

from brand_monitor.providers.pricing import estimate_cost_usd

logger = logging.getLogger(__name__)

_ERROR_BODY_PREVIEW_CHARS = 500


@dataclass(slots=True, frozen=True)
class CompletionConfig:
    """Per-call generation settings."""

    temperature: float = 0.7
    max_tokens: int = 2_000


@dataclass(slots=True, frozen=True)
class CompletionResult:
    """Normalized answer returned by every adapter."""

    provider: str
    text: str
    tokens_used: int
    cost_usd: float
    latency_ms: int
    model: str
    citations: tuple[str, ...] = ()
    used_web_search: bool = False


class ProviderError(Exception):
    """Provider call failed. `transient` marks failures worth retrying later."""

    transient = False

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class ProviderHTTPError(ProviderError):
    def __init__(self, provider: str, status_code: int, body: str) -> None:
        super().__init__(provider, f"HTTP {status_code}: {body[:_ERROR_BODY_PREVIEW_CHARS]}")
        self.status_code = status_code
        self.transient = status_code >= 500 or status_code == 408


class ProviderRateLimitError(ProviderHTTPError):
    transient = True

    def __init__(
        self,
        provider: str,
        body: str,
        *,
        retry_after_seconds: float | None = None,
    ) -> None:
        super().__init__(provider, 429, body)
        self.retry_after_seconds = retry_after_seconds
        self.transient = True


class ProviderTimeoutError(ProviderError):
    transient = True


class ProviderConnectionError(ProviderError):
    transient = True


class ProviderResponseError(ProviderError):
    """Provider answered 2xx but the body could not be interpreted."""


class ProviderAdapter(ABC):
    """One external LLM API. Adapters never retry; the queue owns retries."""

    name: str = ""

    def __init__(self, *, client: httpx.AsyncClient, api_key: str, model: str) -> None:
        self._client = client
        self._api_key = api_key
        self.model = model

    async def complete(
        self,
        prompt: str,
        config: CompletionConfig | None = None,
    ) -> CompletionResult:
        """Send one prompt and return the normalized answer."""

        resolved = config or CompletionConfig()
        started = time.monotonic()
        text, tokens, citations, used_web_search = await self._complete(prompt, resolved)
        latency_ms = int((time.monotonic() - started) * 1000)
        tokens_used = tokens if tokens is not None else estimate_tokens(text)
        return CompletionResult(
            provider=self.name,
            text=text,
            tokens_used=tokens_used,
            cost_usd=estimate_cost_usd(provider=self.name, tokens=tokens_used),
            latency_ms=latency_ms,
            model=self.model,
            citations=citations,
            used_web_search=used_web_search,
        )

    @abstractmethod
    async def _complete(
        self,
        prompt: str,
        config: CompletionConfig,
    ) -> tuple[str, int | None, tuple[str, ...], bool]:
        """Return `(text, total_tokens or None, citations, used_web_search)`."""

    async def _post_json(
        self,
        url: str,
        *,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        try:
            response = await self._client.post(url, json=payload, headers=headers, params=params)
        except httpx.TimeoutException as exc:
            logger.warning("Timeout calling %s", self.name)
            raise ProviderTimeoutError(self.name, f"request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            logger.warning("HTTP error calling %s: %s", self.name, exc)
            raise ProviderConnectionError(self.name, str(exc)) from exc

        if response.status_code == 429:
            raise ProviderRateLimitError(
                self.name,
                response.text,
                retry_after_seconds=self._retry_after(response),
            )
        if not response.is_success:
            raise ProviderHTTPError(self.name, response.status_code, response.text)
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderResponseError(self.name, "response body is not JSON") from exc
        if not isinstance(data, dict):
            raise ProviderResponseError(self.name, "response body is not a JSON object")
        return data

    def _retry_after(self, response: httpx.Response) -> float | None:
        raw = response.headers.get("retry-after")
        if raw is None:
            return None
        try:
            return float(raw)
        except ValueError:
            return None


def estimate_tokens(text: str) -> int:
    """Rough token count when a provider omits usage: four characters per token."""

    return math.ceil(len(text) / 4)
