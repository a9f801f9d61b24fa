"""LLM provider adapters behind one async `complete` contract."""

from brand_monitor.providers.base import (
    CompletionConfig,
    CompletionResult,
    ProviderAdapter,
    ProviderError,
    ProviderHTTPError,
    ProviderRateLimitError,
    ProviderTimeoutError,
)
from brand_monitor.providers.registry import build_adapters

__all__ = [
    "CompletionConfig",
    "CompletionResult",
    "ProviderAdapter",
    "ProviderError",
    "ProviderHTTPError",
    "ProviderRateLimitError",
    "ProviderTimeoutError",
    "build_adapters",
]
