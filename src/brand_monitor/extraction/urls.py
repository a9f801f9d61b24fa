"""Source URL cleanup shared by provider adapters and citation extraction."""

from __future__ import annotations

from collections.abc import Iterable
from urllib.parse import urlparse

NON_SOURCE_URL_MARKERS: tuple[str, ...] = (
    "w3.org",
    "xmlns",
    "schemas.google",
    "json-schema",
    "example.com",
    "localhost",
)


def extract_domain(url: str) -> str | None:
    """Hostname without a leading `www.`, or None for unparsable URLs."""

    try:
        host = urlparse(url).hostname
    except ValueError:
        return None
    if not host:
        return None
    host = host.lower()
    return host[4:] if host.startswith("www.") else host


def is_http_url(value: str) -> bool:
    return value.startswith(("http://", "https://"))


def clean_source_urls(urls: Iterable[str]) -> tuple[str, ...]:
    """Keep http(s) source URLs, drop schema/namespace noise, dedupe preserving order."""

    seen: set[str] = set()
    cleaned: list[str] = []
    for raw in urls:
        url = raw.strip()
        if not url or not is_http_url(url):
            continue
        if "[" in url or "]" in url:
            continue
        lowered = url.lower()
        if any(marker in lowered for marker in NON_SOURCE_URL_MARKERS):
            continue
        if url in seen:
            continue
        seen.add(url)
        cleaned.append(url)
    return tuple(cleaned)
