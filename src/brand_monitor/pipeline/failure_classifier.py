"""Deterministic failure classification for queue item retries."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from brand_monitor.pipeline.errors import (
    FanOutFailedError,
    NoProvidersConfiguredError,
    SubjectNotFoundError,
)
from brand_monitor.pipeline.models import FailureClass
from brand_monitor.providers.base import (
    ProviderError,
    ProviderRateLimitError,
    ProviderTimeoutError,
)

_RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "429",
    "rate limit",
    "rate limited",
    "too many requests",
    "resource_exhausted",
)
_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "temporarily unavailable",
    "timeout",
    "timed out",
    "connection reset",
    "database is locked",
    "overloaded",
)


@dataclass(slots=True)
class FailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    matched_rule: str
    matched_pattern: str | None = None

    @property
    def is_rate_limit(self) -> bool:
        return self.failure_class is FailureClass.RATE_LIMIT


def classify_failure(error: BaseException) -> FailureClassification:
    """Map an executor exception to a failure class.

    Typed errors win; otherwise the message is scanned for rate-limit and
    transient markers.
    """

    if isinstance(error, ProviderRateLimitError):
        return FailureClassification(FailureClass.RATE_LIMIT, "provider_rate_limit_error")
    if isinstance(error, FanOutFailedError):
        pattern = _first_match(" ".join(error.errors.values()).lower(), _RATE_LIMIT_PATTERNS)
        if pattern is not None:
            return FailureClassification(FailureClass.RATE_LIMIT, "fan_out_rate_limited", pattern)
        return FailureClassification(FailureClass.FAN_OUT_FAILED, "fan_out_failed")
    if isinstance(error, (ProviderTimeoutError, asyncio.TimeoutError, TimeoutError)):
        return FailureClassification(FailureClass.TIMEOUT, "timeout_error")
    if isinstance(error, (SubjectNotFoundError, NoProvidersConfiguredError)):
        return FailureClassification(FailureClass.INPUT_MISSING, type(error).__name__)
    if isinstance(error, ProviderError):
        failure_class = (
            FailureClass.PROVIDER_TRANSIENT
            if error.transient
            else FailureClass.PROVIDER_NON_RETRYABLE
        )
        return FailureClassification(failure_class, "provider_error")

    haystack = str(error).lower()
    pattern = _first_match(haystack, _RATE_LIMIT_PATTERNS)
    if pattern is not None:
        return FailureClassification(FailureClass.RATE_LIMIT, "message_rate_limit", pattern)
    pattern = _first_match(haystack, _TRANSIENT_PATTERNS)
    if pattern is not None:
        return FailureClassification(FailureClass.PROVIDER_TRANSIENT, "message_transient", pattern)
    return FailureClassification(FailureClass.UNEXPECTED, "unexpected")


def format_attempt_error(
    *,
    error: BaseException,
    classification: FailureClassification,
    attempts: int,
    max_attempts: int,
) -> str:
    """Error text stored on the queue item, prefixed with the attempt counter."""

    prefix = "Rate limit - Attempt" if classification.is_rate_limit else "Attempt"
    message = str(error) or type(error).__name__
    return f"[{prefix} {attempts}/{max_attempts}] {message}"


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
