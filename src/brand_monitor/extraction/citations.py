"""Locate entity mentions in a provider answer.

Sentences are runs of text between `.`, `!` and `?`. A mention is a sentence
containing the entity name (case-insensitive). Source URLs are attributed
round-robin because providers return citations for the whole answer, not
per sentence.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass

from brand_monitor.extraction.urls import extract_domain

MENTION_CONFIDENCE = 0.95

_SENTENCE_RE = re.compile(r"[^.!?]+")


@dataclass(slots=True, frozen=True)
class Sentence:
    text: str
    start: int


@dataclass(slots=True, frozen=True)
class Mention:
    """One sentence that mentions an entity."""

    entity_name: str
    text: str
    position: int
    char_offset: int
    context_before: str | None
    context_after: str | None
    confidence: float = MENTION_CONFIDENCE
    source_url: str | None = None
    source_domain: str | None = None


def split_sentences(text: str) -> list[Sentence]:
    """Non-blank sentences with their stripped text and start offset."""

    sentences: list[Sentence] = []
    for match in _SENTENCE_RE.finditer(text):
        raw = match.group(0)
        stripped = raw.strip()
        if not stripped:
            continue
        leading = len(raw) - len(raw.lstrip())
        sentences.append(Sentence(text=stripped, start=match.start() + leading))
    return sentences


def extract_mentions(
    text: str,
    entity_name: str,
    source_urls: Sequence[str] = (),
) -> list[Mention]:
    """Return one mention per sentence that contains `entity_name`."""

    needle = entity_name.strip().lower()
    if not needle or not text:
        return []

    sentences = split_sentences(text)
    mentions: list[Mention] = []
    for index, sentence in enumerate(sentences):
        found = sentence.text.lower().find(needle)
        if found < 0:
            continue
        source_url = source_urls[len(mentions) % len(source_urls)] if source_urls else None
        mentions.append(
            Mention(
                entity_name=entity_name,
                text=sentence.text,
                position=index,
                char_offset=sentence.start + found,
                context_before=sentences[index - 1].text if index > 0 else None,
                context_after=sentences[index + 1].text if index + 1 < len(sentences) else None,
                source_url=source_url,
                source_domain=extract_domain(source_url) if source_url else None,
            ),
        )
    return mentions


def sentences_mentioning(text: str, entity_name: str) -> list[str]:
    """Plain sentence texts that mention the entity, in order."""

    return [mention.text for mention in extract_mentions(text, entity_name)]
