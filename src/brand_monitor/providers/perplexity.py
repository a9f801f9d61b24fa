"""Perplexity chat completions adapter; search is always on."""

from __future__ import annotations

from brand_monitor.extraction.urls import clean_source_urls
from brand_monitor.providers.base import CompletionConfig, ProviderAdapter, ProviderResponseError

PERPLEXITY_CHAT_URL = "https://api.perplexity.ai/chat/completions"


class PerplexityAdapter(ProviderAdapter):
    name = "perplexity"

    async def _complete(
        self,
        prompt: str,
        config: CompletionConfig,
    ) -> tuple[str, int | None, tuple[str, ...], bool]:
        data = await self._post_json(
            PERPLEXITY_CHAT_URL,
            payload={
                "model": self.model,
                "messages": [{"role": "user", "content": prompt}],
                "temperature": config.temperature,
                "max_tokens": config.max_tokens,
                "return_citations": True,
                "search_domain_filter": [],
            },
            headers={"Authorization": f"Bearer {self._api_key}"},
        )

        choices = data.get("choices") or []
        try:
            text = str(choices[0]["message"]["content"])
        except (IndexError, KeyError, TypeError) as exc:
            raise ProviderResponseError(self.name, "no message content in response") from exc

        raw_urls = [str(url) for url in data.get("citations") or [] if isinstance(url, str)]
        if not raw_urls:
            raw_urls = [
                str(result.get("url") or "")
                for result in data.get("search_results") or []
                if isinstance(result, dict)
            ]

        usage = data.get("usage")
        tokens = usage.get("total_tokens") if isinstance(usage, dict) else None
        return text, tokens if isinstance(tokens, int) else None, clean_source_urls(raw_urls), True
