"""Lexicon-based sentiment scoring for entity mentions."""

from __future__ import annotations

from dataclasses import dataclass

from brand_monitor.extraction.lexicon import DEFAULT_LEXICON, SentimentLexicon
from brand_monitor.pipeline.models import SentimentLabel


@dataclass(slots=True, frozen=True)
class SentimentScore:
    """Classifier output for one piece of text.

    `score` is normalized to [-1, 1] as `(pos - neg) / max(pos + neg, 1)`.
    """

    label: SentimentLabel
    score: float
    positive_score: int
    negative_score: int
    positive_terms: tuple[str, ...] = ()
    negative_terms: tuple[str, ...] = ()
    negations: int = 0


class SentimentClassifier:
    """Weighted term counting with a negation penalty."""

    def __init__(self, lexicon: SentimentLexicon = DEFAULT_LEXICON) -> None:
        self._lexicon = lexicon
        self._negations = lexicon.negations()

    def classify(self, text: str) -> SentimentScore:
        positive, positive_terms = self._sum_terms(text, self._lexicon.positive)
        negative, negative_terms = self._sum_terms(text, self._lexicon.negative)

        negations = sum(1 for pattern in self._negations if pattern.search(text))
        if negations:
            penalty = negations * self._lexicon.negation_penalty
            positive = max(0, positive - penalty)
            negative += penalty

        threshold = self._lexicon.threshold
        if positive > negative and positive >= threshold:
            label = SentimentLabel.POSITIVE
        elif negative > positive and negative >= threshold:
            label = SentimentLabel.NEGATIVE
        else:
            label = SentimentLabel.NEUTRAL

        return SentimentScore(
            label=label,
            score=round((positive - negative) / max(positive + negative, 1), 4),
            positive_score=positive,
            negative_score=negative,
            positive_terms=positive_terms,
            negative_terms=negative_terms,
            negations=negations,
        )

    def classify_many(self, sentences: list[str]) -> SentimentScore:
        """Score the concatenation of several sentences as one text."""

        return self.classify(" ".join(sentences))

    def _sum_terms(self, text: str, table) -> tuple[int, tuple[str, ...]]:
        total = 0
        matched: list[str] = []
        for term, weight in table.items():
            if self._lexicon.term_pattern(term).search(text):
                total += weight
                matched.append(term)
        return total, tuple(matched)
