"""Google Gemini generateContent adapter with search grounding."""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from brand_monitor.extraction.urls import clean_source_urls
from brand_monitor.providers.base import CompletionConfig, ProviderAdapter

logger = logging.getLogger(__name__)

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"
DEFAULT_RETRY_DELAY_SECONDS = 60.0


class GeminiAdapter(ProviderAdapter):
    name = "gemini"

    async def _complete(
        self,
        prompt: str,
        config: CompletionConfig,
    ) -> tuple[str, int | None, tuple[str, ...], bool]:
        data = await self._post_json(
            f"{GEMINI_API_BASE}/{self.model}:generateContent",
            payload={
                "contents": [{"parts": [{"text": prompt}]}],
                "generationConfig": {
                    "temperature": config.temperature,
                    "maxOutputTokens": config.max_tokens,
                },
                "tools": [{"google_search": {}}],
            },
            params={"key": self._api_key},
        )

        candidates = data.get("candidates") or []
        candidate = candidates[0] if candidates and isinstance(candidates[0], dict) else {}
        parts = (candidate.get("content") or {}).get("parts") or []
        text = str(parts[0].get("text") or "") if parts and isinstance(parts[0], dict) else ""

        citations = clean_source_urls(grounding_urls(candidate.get("groundingMetadata")))
        # Gemini reports no usage with grounding; the base class estimates from text.
        return text, None, citations, True

    def _retry_after(self, response: httpx.Response) -> float | None:
        header_value = super()._retry_after(response)
        if header_value is not None:
            return header_value
        delay = _retry_delay_from_body(response.text)
        logger.warning("Gemini rate limited; retry after %.0fs", delay)
        return delay


def grounding_urls(metadata: Any) -> list[str]:
    """Source URLs from grounding chunks.

    Grounding URIs are opaque redirect links, so the chunk title (the source
    domain) is preferred when present.
    """

    if not isinstance(metadata, dict):
        return []
    urls: list[str] = []
    for chunk in metadata.get("groundingChunks") or []:
        web = chunk.get("web") if isinstance(chunk, dict) else None
        if not isinstance(web, dict):
            continue
        title = str(web.get("title") or "").strip()
        uri = str(web.get("uri") or "").strip()
        if title:
            urls.append(title if title.startswith("http") else f"https://{title}")
        elif uri and "vertexaisearch" not in uri:
            urls.append(uri)
    return urls


def _retry_delay_from_body(body: str) -> float:
    try:
        payload = json.loads(body)
    except ValueError:
        return DEFAULT_RETRY_DELAY_SECONDS
    details = (payload.get("error") or {}).get("details") if isinstance(payload, dict) else None
    for detail in details or []:
        if not isinstance(detail, dict) or "RetryInfo" not in str(detail.get("@type", "")):
            continue
        raw = str(detail.get("retryDelay") or "").strip().removesuffix("s")
        try:
            return float(raw)
        except ValueError:
            return DEFAULT_RETRY_DELAY_SECONDS
    return DEFAULT_RETRY_DELAY_SECONDS
