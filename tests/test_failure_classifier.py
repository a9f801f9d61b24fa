from __future__ import annotations

import asyncio

import allure

from brand_monitor.pipeline.errors import (
    FanOutFailedError,
    NoProvidersConfiguredError,
    SubjectNotFoundError,
)
from brand_monitor.pipeline.failure_classifier import classify_failure, format_attempt_error
from brand_monitor.pipeline.models import FailureClass
from brand_monitor.providers.base import (
    ProviderHTTPError,
    ProviderRateLimitError,
    ProviderTimeoutError,
)

pytestmark = [
    allure.epic("Work Queue"),
    allure.feature("Claiming & Retry Accounting"),
]


def test_typed_rate_limit_wins() -> None:
    classified = classify_failure(ProviderRateLimitError("gemini", "quota"))

    assert classified.failure_class == FailureClass.RATE_LIMIT
    assert classified.matched_rule == "provider_rate_limit_error"
    assert classified.is_rate_limit is True


def test_fan_out_failure_with_rate_limited_providers_is_rate_limit() -> None:
    error = FanOutFailedError(
        "job-1",
        {"openai": "openai: HTTP 429: Too Many Requests", "claude": "claude: HTTP 500: oops"},
    )

    classified = classify_failure(error)

    assert classified.failure_class == FailureClass.RATE_LIMIT
    assert classified.matched_rule == "fan_out_rate_limited"
    assert classified.matched_pattern == "429"


def test_fan_out_failure_without_rate_limits() -> None:
    classified = classify_failure(FanOutFailedError("job-1", {"claude": "claude: HTTP 401: bad"}))

    assert classified.failure_class == FailureClass.FAN_OUT_FAILED


def test_timeouts_and_missing_inputs() -> None:
    assert classify_failure(ProviderTimeoutError("openai", "slow")).failure_class == (
        FailureClass.TIMEOUT
    )
    assert classify_failure(asyncio.TimeoutError()).failure_class == FailureClass.TIMEOUT
    assert classify_failure(SubjectNotFoundError("prompt_analysis", "p-1")).failure_class == (
        FailureClass.INPUT_MISSING
    )
    assert classify_failure(NoProvidersConfiguredError()).failure_class == (
        FailureClass.INPUT_MISSING
    )


def test_provider_http_errors_split_on_transience() -> None:
    transient = classify_failure(ProviderHTTPError("claude", 503, "overloaded"))
    permanent = classify_failure(ProviderHTTPError("claude", 400, "bad request"))

    assert transient.failure_class == FailureClass.PROVIDER_TRANSIENT
    assert permanent.failure_class == FailureClass.PROVIDER_NON_RETRYABLE


def test_untyped_errors_are_classified_by_message() -> None:
    rate_limited = classify_failure(RuntimeError("RESOURCE_EXHAUSTED: slow down"))
    locked = classify_failure(RuntimeError("database is locked"))
    other = classify_failure(KeyError("prompt_text"))

    assert rate_limited.failure_class == FailureClass.RATE_LIMIT
    assert rate_limited.matched_pattern == "resource_exhausted"
    assert locked.failure_class == FailureClass.PROVIDER_TRANSIENT
    assert locked.matched_pattern == "database is locked"
    assert other.failure_class == FailureClass.UNEXPECTED


def test_format_attempt_error_prefixes_attempt_counter() -> None:
    error = ProviderRateLimitError("openai", "Too Many Requests")
    rate_limited = format_attempt_error(
        error=error,
        classification=classify_failure(error),
        attempts=2,
        max_attempts=3,
    )
    plain_error = RuntimeError()
    plain = format_attempt_error(
        error=plain_error,
        classification=classify_failure(plain_error),
        attempts=1,
        max_attempts=3,
    )

    assert rate_limited == "[Rate limit - Attempt 2/3] openai: HTTP 429: Too Many Requests"
    assert plain == "[Attempt 1/3] RuntimeError"
