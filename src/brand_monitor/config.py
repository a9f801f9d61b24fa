"""Runtime configuration for the dispatcher, queue workers and providers."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

PROVIDER_KEY_ENVS: dict[str, tuple[str, ...]] = {
    "openai": ("OPENAI_API_KEY",),
    "gemini": ("GEMINI_API_KEY", "GOOGLE_API_KEY"),
    "claude": ("CLAUDE_API_KEY", "ANTHROPIC_API_KEY"),
    "perplexity": ("PERPLEXITY_API_KEY",),
}

DEFAULT_PROVIDER_MODELS: dict[str, str] = {
    "openai": "o4-mini",
    "gemini": "gemini-2.0-flash-exp",
    "claude": "claude-haiku-4-5-20251001",
    "perplexity": "sonar-pro",
}

SUPPORTED_PROVIDERS: tuple[str, ...] = tuple(DEFAULT_PROVIDER_MODELS)


@dataclass(slots=True)
class QueueSettings:
    """Durable queue retry and recovery settings."""

    max_attempts: int = 3
    stale_after_seconds: int = 600


@dataclass(slots=True)
class WorkerSettings:
    """Per-invocation worker limits."""

    analysis_batch_size: int = 5
    sentiment_batch_size: int = 10
    max_batches_per_invocation: int = 10
    max_auto_invocations: int = 5
    inter_batch_delay_seconds: float = 0.5
    max_concurrent_invocations: int = 20


@dataclass(slots=True)
class DispatcherSettings:
    """Discovery and fan-out settings."""

    insert_chunk_size: int = 100
    page_size: int = 1_000
    analysis_max_workers: int = 20
    analysis_items_per_worker: int = 5
    sentiment_max_workers: int = 10
    sentiment_items_per_worker: int = 10
    reanalysis_after_hours: int = 24
    launch_workers: bool = True


@dataclass(slots=True)
class ProviderSettings:
    """Provider credentials and request defaults."""

    api_keys: dict[str, str] = field(default_factory=dict)
    models: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_PROVIDER_MODELS))
    enabled: tuple[str, ...] = SUPPORTED_PROVIDERS
    temperature: float = 0.7
    max_tokens: int = 2_000
    request_timeout_seconds: float = 120.0

    def configured(self) -> tuple[str, ...]:
        """Providers that are enabled and have credentials."""

        return tuple(
            name for name in self.enabled if name in SUPPORTED_PROVIDERS and self.api_keys.get(name)
        )


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".brand_monitor.db")
    log_level: str = "INFO"
    queue: QueueSettings = field(default_factory=QueueSettings)
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    dispatcher: DispatcherSettings = field(default_factory=DispatcherSettings)
    providers: ProviderSettings = field(default_factory=ProviderSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("BRAND_MONITOR_DB_PATH", ".brand_monitor.db")),
            log_level=os.getenv("BRAND_MONITOR_LOG_LEVEL", "INFO").upper(),
            queue=QueueSettings(
                max_attempts=int(os.getenv("BRAND_MONITOR_QUEUE_MAX_ATTEMPTS", "3")),
                stale_after_seconds=int(
                    os.getenv("BRAND_MONITOR_QUEUE_STALE_AFTER_SECONDS", "600"),
                ),
            ),
            worker=WorkerSettings(
                analysis_batch_size=int(os.getenv("BRAND_MONITOR_ANALYSIS_BATCH_SIZE", "5")),
                sentiment_batch_size=int(os.getenv("BRAND_MONITOR_SENTIMENT_BATCH_SIZE", "10")),
                max_batches_per_invocation=int(
                    os.getenv("BRAND_MONITOR_WORKER_MAX_BATCHES", "10"),
                ),
                max_auto_invocations=int(
                    os.getenv("BRAND_MONITOR_WORKER_MAX_AUTO_INVOCATIONS", "5"),
                ),
                inter_batch_delay_seconds=float(
                    os.getenv("BRAND_MONITOR_WORKER_INTER_BATCH_DELAY_SECONDS", "0.5"),
                ),
                max_concurrent_invocations=int(
                    os.getenv("BRAND_MONITOR_WORKER_MAX_CONCURRENT_INVOCATIONS", "20"),
                ),
            ),
            dispatcher=DispatcherSettings(
                insert_chunk_size=int(os.getenv("BRAND_MONITOR_DISPATCH_CHUNK_SIZE", "100")),
                page_size=int(os.getenv("BRAND_MONITOR_DISPATCH_PAGE_SIZE", "1000")),
                analysis_max_workers=int(
                    os.getenv("BRAND_MONITOR_DISPATCH_ANALYSIS_MAX_WORKERS", "20"),
                ),
                analysis_items_per_worker=int(
                    os.getenv("BRAND_MONITOR_DISPATCH_ANALYSIS_ITEMS_PER_WORKER", "5"),
                ),
                sentiment_max_workers=int(
                    os.getenv("BRAND_MONITOR_DISPATCH_SENTIMENT_MAX_WORKERS", "10"),
                ),
                sentiment_items_per_worker=int(
                    os.getenv("BRAND_MONITOR_DISPATCH_SENTIMENT_ITEMS_PER_WORKER", "10"),
                ),
                reanalysis_after_hours=int(
                    os.getenv("BRAND_MONITOR_DISPATCH_REANALYSIS_AFTER_HOURS", "24"),
                ),
                launch_workers=_env_bool("BRAND_MONITOR_DISPATCH_LAUNCH_WORKERS", default=True),
            ),
            providers=ProviderSettings(
                api_keys=_collect_api_keys(),
                models=_collect_models(),
                enabled=_collect_enabled_providers(),
                temperature=float(os.getenv("BRAND_MONITOR_PROVIDER_TEMPERATURE", "0.7")),
                max_tokens=int(os.getenv("BRAND_MONITOR_PROVIDER_MAX_TOKENS", "2000")),
                request_timeout_seconds=float(
                    os.getenv("BRAND_MONITOR_PROVIDER_TIMEOUT_SECONDS", "120"),
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the pipeline cannot run with."""

        if self.queue.max_attempts < 1:
            raise ValueError("BRAND_MONITOR_QUEUE_MAX_ATTEMPTS must be >= 1.")
        if self.queue.stale_after_seconds <= 0:
            raise ValueError("BRAND_MONITOR_QUEUE_STALE_AFTER_SECONDS must be > 0.")
        if self.worker.analysis_batch_size < 1:
            raise ValueError("BRAND_MONITOR_ANALYSIS_BATCH_SIZE must be >= 1.")
        if self.worker.sentiment_batch_size < 1:
            raise ValueError("BRAND_MONITOR_SENTIMENT_BATCH_SIZE must be >= 1.")
        if self.worker.max_batches_per_invocation < 1:
            raise ValueError("BRAND_MONITOR_WORKER_MAX_BATCHES must be >= 1.")
        if self.worker.max_auto_invocations < 0:
            raise ValueError("BRAND_MONITOR_WORKER_MAX_AUTO_INVOCATIONS must be >= 0.")
        if self.worker.inter_batch_delay_seconds < 0:
            raise ValueError("BRAND_MONITOR_WORKER_INTER_BATCH_DELAY_SECONDS must be >= 0.")
        if self.worker.max_concurrent_invocations < 1:
            raise ValueError("BRAND_MONITOR_WORKER_MAX_CONCURRENT_INVOCATIONS must be >= 1.")
        if self.dispatcher.insert_chunk_size < 1:
            raise ValueError("BRAND_MONITOR_DISPATCH_CHUNK_SIZE must be >= 1.")
        if self.dispatcher.page_size < 1:
            raise ValueError("BRAND_MONITOR_DISPATCH_PAGE_SIZE must be >= 1.")
        if self.dispatcher.analysis_max_workers < 1 or self.dispatcher.sentiment_max_workers < 1:
            raise ValueError("Dispatcher worker limits must be >= 1.")
        if (
            self.dispatcher.analysis_items_per_worker < 1
            or self.dispatcher.sentiment_items_per_worker < 1
        ):
            raise ValueError("Dispatcher items-per-worker values must be >= 1.")
        if not 0.0 <= self.providers.temperature <= 2.0:
            raise ValueError("BRAND_MONITOR_PROVIDER_TEMPERATURE must be within [0, 2].")
        if self.providers.max_tokens < 1:
            raise ValueError("BRAND_MONITOR_PROVIDER_MAX_TOKENS must be >= 1.")

    def batch_size_for(self, kind: str) -> int:
        """Worker batch size for one work kind."""

        if kind == "sentiment_analysis":
            return self.worker.sentiment_batch_size
        return self.worker.analysis_batch_size


def _collect_api_keys() -> dict[str, str]:
    keys: dict[str, str] = {}
    for provider, env_names in PROVIDER_KEY_ENVS.items():
        for env_name in env_names:
            value = os.getenv(env_name, "").strip()
            if value:
                keys[provider] = value
                break
    return keys


def _collect_models() -> dict[str, str]:
    models = dict(DEFAULT_PROVIDER_MODELS)
    for provider in SUPPORTED_PROVIDERS:
        override = os.getenv(f"BRAND_MONITOR_{provider.upper()}_MODEL", "").strip()
        if override:
            models[provider] = override
    return models


def _collect_enabled_providers() -> tuple[str, ...]:
    raw = os.getenv("BRAND_MONITOR_PROVIDERS", "")
    if not raw.strip():
        return SUPPORTED_PROVIDERS
    enabled: list[str] = []
    for chunk in raw.split(","):
        name = chunk.strip().lower()
        if not name:
            continue
        if name not in SUPPORTED_PROVIDERS:
            raise ValueError(
                f"Unsupported provider in BRAND_MONITOR_PROVIDERS: {name}. "
                f"Supported: {', '.join(SUPPORTED_PROVIDERS)}.",
            )
        if name not in enabled:
            enabled.append(name)
    return tuple(enabled)


def _env_bool(name: str, *, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"{name} must be a boolean value.")
