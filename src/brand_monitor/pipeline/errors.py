"""Pipeline error types raised by executors and the dispatcher."""

from __future__ import annotations


class BrandMonitorError(Exception):
    """Base class for pipeline errors."""


class ScopeNotFoundError(BrandMonitorError):
    def __init__(self, scope_id: str) -> None:
        super().__init__(f"Scope not found or inactive: {scope_id}")
        self.scope_id = scope_id


class SubjectNotFoundError(BrandMonitorError):
    """Queue item points at a prompt or provider result that cannot be processed."""

    def __init__(self, kind: str, subject_id: str, reason: str = "not found") -> None:
        super().__init__(f"{kind} subject {subject_id}: {reason}")
        self.kind = kind
        self.subject_id = subject_id


class NoProvidersConfiguredError(BrandMonitorError):
    def __init__(self) -> None:
        super().__init__("No provider adapters are configured with credentials.")


class FanOutFailedError(BrandMonitorError):
    """Every provider in a fan-out failed; the job is closed as failed."""

    def __init__(self, job_id: str, errors: dict[str, str]) -> None:
        details = "; ".join(f"{name}: {message}" for name, message in sorted(errors.items()))
        super().__init__(f"All providers failed for job {job_id}: {details}")
        self.job_id = job_id
        self.errors = dict(errors)
