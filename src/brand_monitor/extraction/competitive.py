"""Comparative context between the tracked brand and a competitor."""

from __future__ import annotations

import re
from enum import Enum


class CompetitiveContext(str, Enum):
    BRAND_BETTER = "brand_better"
    COMPETITOR_BETTER = "competitor_better"
    BRAND_WORSE = "brand_worse"
    COMPETITOR_WORSE = "competitor_worse"
    SIMILAR = "similar"
    MENTIONED_TOGETHER = "mentioned_together"


_COMPARISON_RE = re.compile(
    r"\b(?:vs\.?|versus|compared to|comparison|better than|worse than|similar to|like|unlike|"
    r"alternative to|instead of|rather than)\b",
    re.IGNORECASE,
)
_BETTER_RE = re.compile(r"\b(?:better|superior|outperforms?|leads|ahead of)\b", re.IGNORECASE)
_WORSE_RE = re.compile(r"\b(?:inferior|behind|lacks|falls short)\b", re.IGNORECASE)
_SIMILAR_RE = re.compile(r"\b(?:similar|comparable|like|same as|equivalent)\b", re.IGNORECASE)


def compared_with_brand(text: str, brand_name: str) -> bool:
    """True when the text names the brand and uses comparison language."""

    if not brand_name.strip() or brand_name.lower() not in text.lower():
        return False
    return _COMPARISON_RE.search(text) is not None


def competitive_context(
    text: str,
    brand_name: str,
    competitor_name: str,
) -> CompetitiveContext | None:
    """Classify how a competitor is positioned against the brand in `text`.

    The name that appears first is treated as the subject of the comparison.
    Returns None when the brand is not mentioned at all.
    """

    lowered = text.lower()
    brand_at = lowered.find(brand_name.lower()) if brand_name.strip() else -1
    competitor_at = lowered.find(competitor_name.lower()) if competitor_name.strip() else -1
    if brand_at < 0:
        return None
    if competitor_at < 0:
        return CompetitiveContext.MENTIONED_TOGETHER

    competitor_first = competitor_at < brand_at
    if _BETTER_RE.search(text):
        if competitor_first:
            return CompetitiveContext.COMPETITOR_BETTER
        return CompetitiveContext.BRAND_BETTER
    if _WORSE_RE.search(text):
        if competitor_first:
            return CompetitiveContext.COMPETITOR_WORSE
        return CompetitiveContext.BRAND_WORSE
    if _SIMILAR_RE.search(text):
        return CompetitiveContext.SIMILAR
    return CompetitiveContext.MENTIONED_TOGETHER
