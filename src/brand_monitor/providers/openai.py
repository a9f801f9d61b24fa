"""OpenAI Responses API adapter with the hosted web search tool."""

from __future__ import annotations

from typing import Any

from brand_monitor.extraction.urls import clean_source_urls
from brand_monitor.providers.base import CompletionConfig, ProviderAdapter, ProviderResponseError

OPENAI_RESPONSES_URL = "https://api.openai.com/v1/responses"


class OpenAIAdapter(ProviderAdapter):
    name = "openai"

    async def _complete(
        self,
        prompt: str,
        config: CompletionConfig,
    ) -> tuple[str, int | None, tuple[str, ...], bool]:
        # o-series models reject `temperature`.
        data = await self._post_json(
            OPENAI_RESPONSES_URL,
            payload={
                "model": self.model,
                "tools": [{"type": "web_search"}],
                "input": prompt,
                "max_output_tokens": config.max_tokens,
            },
            headers={"Authorization": f"Bearer {self._api_key}"},
        )

        texts: list[str] = []
        urls: list[str] = []
        for item in data.get("output") or []:
            if not isinstance(item, dict) or item.get("type") != "message":
                continue
            for part in item.get("content") or []:
                if not isinstance(part, dict) or part.get("type") != "output_text":
                    continue
                texts.append(str(part.get("text") or ""))
                for annotation in part.get("annotations") or []:
                    if isinstance(annotation, dict) and annotation.get("type") == "url_citation":
                        urls.append(str(annotation.get("url") or ""))

        if not texts and isinstance(data.get("output_text"), str):
            texts.append(data["output_text"])
        if not texts:
            raise ProviderResponseError(self.name, "no output_text in response")

        citations = clean_source_urls(urls)
        return "".join(texts), _total_tokens(data), citations, bool(citations)


def _total_tokens(data: dict[str, Any]) -> int | None:
    usage = data.get("usage")
    if isinstance(usage, dict) and isinstance(usage.get("total_tokens"), int):
        return usage["total_tokens"]
    return None
