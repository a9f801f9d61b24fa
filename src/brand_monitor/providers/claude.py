"""Anthropic Messages API adapter."""

from __future__ import annotations

from brand_monitor.providers.base import CompletionConfig, ProviderAdapter, ProviderResponseError

ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"


class ClaudeAdapter(ProviderAdapter):
    name = "claude"

    async def _complete(
        self,
        prompt: str,
        config: CompletionConfig,
    ) -> tuple[str, int | None, tuple[str, ...], bool]:
        data = await self._post_json(
            ANTHROPIC_MESSAGES_URL,
            payload={
                "model": self.model,
                "max_tokens": config.max_tokens,
                "temperature": config.temperature,
                "messages": [{"role": "user", "content": prompt}],
            },
            headers={
                "x-api-key": self._api_key,
                "anthropic-version": ANTHROPIC_VERSION,
            },
        )

        blocks = [
            block
            for block in data.get("content") or []
            if isinstance(block, dict) and block.get("type", "text") == "text"
        ]
        if not blocks:
            raise ProviderResponseError(self.name, "no text content in response")
        text = "".join(str(block.get("text") or "") for block in blocks)

        usage = data.get("usage") or {}
        tokens: int | None = None
        if isinstance(usage, dict) and ("input_tokens" in usage or "output_tokens" in usage):
            tokens = int(usage.get("input_tokens") or 0) + int(usage.get("output_tokens") or 0)
        return text, tokens, (), False
