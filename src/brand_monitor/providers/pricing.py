"""Token cost estimation for provider calls."""

from __future__ import annotations

import os

DEFAULT_RATE_PER_1K = 0.002

DEFAULT_PROVIDER_RATES_PER_1K: dict[str, float] = {
    "openai": 0.002,
    "gemini": 0.001,
    "claude": 0.003,
    "perplexity": 0.0015,
}


def estimate_cost_usd(*, provider: str, tokens: int) -> float:
    """Estimate call cost in USD from total tokens and the provider's per-1K rate."""

    rate = _lookup_rate(provider)
    return round((max(0, tokens) / 1_000) * rate, 6)


def _lookup_rate(provider: str) -> float:
    key = provider.strip().lower()
    overrides = _parse_pricing_mapping(os.getenv("BRAND_MONITOR_PROVIDER_PRICING", ""))
    if key in overrides:
        return overrides[key]
    if "*" in overrides:
        return overrides["*"]
    return DEFAULT_PROVIDER_RATES_PER_1K.get(key, DEFAULT_RATE_PER_1K)


def _parse_pricing_mapping(raw: str) -> dict[str, float]:
    """Parse `BRAND_MONITOR_PROVIDER_PRICING`.

    Format:
    - `provider:usd_per_1k_tokens`
    - multiple entries separated by `,`
    - `*` as provider sets the fallback rate
    """

    parsed: dict[str, float] = {}
    if not raw.strip():
        return parsed

    for entry in raw.split(","):
        value = entry.strip()
        if not value:
            continue
        parts = [part.strip() for part in value.split(":")]
        if len(parts) != 2:
            continue
        provider, rate = parts
        try:
            parsed[provider.lower()] = float(rate)
        except ValueError:
            continue
    return parsed
