"""Weighted sentiment vocabulary.

Weights are graded 1-3. Multi-word phrases are matched as phrases; single
words are matched on word boundaries.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType


def _weighted(*groups: tuple[int, tuple[str, ...]]) -> Mapping[str, int]:
    table: dict[str, int] = {}
    for weight, terms in groups:
        for term in terms:
            table[term] = weight
    return MappingProxyType(table)


POSITIVE_TERMS = _weighted(
    (
        3,
        (
            "excellent",
            "outstanding",
            "exceptional",
            "superb",
            "fantastic",
            "amazing",
            "wonderful",
            "brilliant",
            "perfect",
            "ideal",
        ),
    ),
    (
        2,
        (
            "great",
            "good",
            "best",
            "top",
            "leading",
            "preferred",
            "recommended",
            "popular",
            "trusted",
            "reliable",
            "effective",
            "successful",
            "innovative",
            "advanced",
            "powerful",
            "efficient",
            "love",
            "enjoy",
            "appreciate",
            "prefer",
            "high quality",
            "well known",
            "well-established",
            "highly rated",
            "customer favorite",
            "industry leader",
            "market leader",
        ),
    ),
    (
        1,
        (
            "nice",
            "decent",
            "solid",
            "fine",
            "okay",
            "adequate",
            "suitable",
            "helpful",
            "useful",
            "valuable",
            "beneficial",
            "choose",
            "select",
        ),
    ),
)

NEGATIVE_TERMS = _weighted(
    (
        3,
        (
            "terrible",
            "awful",
            "horrible",
            "worst",
            "disastrous",
            "catastrophic",
            "unacceptable",
            "appalling",
            "dreadful",
        ),
    ),
    (
        2,
        (
            "bad",
            "poor",
            "weak",
            "inferior",
            "subpar",
            "mediocre",
            "disappointing",
            "frustrating",
            "problematic",
            "unreliable",
            "ineffective",
            "inefficient",
            "outdated",
            "limited",
            "restrictive",
            "hate",
            "dislike",
            "not recommended",
            "stay away",
            "poor quality",
            "low quality",
            "customer complaints",
            "frequent issues",
            "many problems",
        ),
    ),
    (
        1,
        (
            "not great",
            "not good",
            "not ideal",
            "could be better",
            "lacks",
            "missing",
            "incomplete",
            "insufficient",
            "avoid",
            "complain",
            "criticize",
        ),
    ),
)

NEGATION_PATTERNS: tuple[str, ...] = (
    r"\bnot\s+(?:good|great|excellent|best|ideal|recommended|suitable)\b",
    r"\bno\s+(?:good|great|excellent|best|ideal)\b",
    r"\bdoesn't\s+(?:work|help|solve)\b",
    r"\bcan't\s+(?:recommend|use|trust)\b",
    r"\bfails?\s+to\b",
    r"\blacks?\s+(?:features?|support|quality)\b",
)


@dataclass(slots=True, frozen=True)
class SentimentLexicon:
    """Immutable scoring tables consumed by `SentimentClassifier`."""

    positive: Mapping[str, int] = field(default_factory=lambda: POSITIVE_TERMS)
    negative: Mapping[str, int] = field(default_factory=lambda: NEGATIVE_TERMS)
    negation_patterns: tuple[str, ...] = NEGATION_PATTERNS
    negation_penalty: int = 2
    threshold: int = 2
    _compiled: dict[str, re.Pattern[str]] = field(
        default_factory=dict,
        init=False,
        repr=False,
        compare=False,
    )

    def term_pattern(self, term: str) -> re.Pattern[str]:
        """Case-insensitive word-boundary pattern for one term, cached."""

        pattern = self._compiled.get(term)
        if pattern is None:
            pattern = re.compile(rf"(?<![\w-]){re.escape(term)}(?![\w-])", re.IGNORECASE)
            self._compiled[term] = pattern
        return pattern

    def negations(self) -> tuple[re.Pattern[str], ...]:
        return tuple(re.compile(pattern, re.IGNORECASE) for pattern in self.negation_patterns)


DEFAULT_LEXICON = SentimentLexicon()
