"""Controllers for brand-monitor CLI commands."""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

import httpx

from brand_monitor.catalog.repository import CatalogRepository
from brand_monitor.config import Settings
from brand_monitor.extraction.sentiment import SentimentClassifier
from brand_monitor.pipeline.dispatcher import DispatchResult, Dispatcher
from brand_monitor.pipeline.errors import BrandMonitorError
from brand_monitor.pipeline.executors import PromptAnalysisExecutor, SentimentAnalysisExecutor
from brand_monitor.pipeline.launcher import InProcessLauncher, SubprocessLauncher
from brand_monitor.pipeline.models import QueueItemStatus, WorkKind
from brand_monitor.pipeline.queue import QueueRepository
from brand_monitor.pipeline.results import ResultsRepository
from brand_monitor.pipeline.worker import (
    QueueWorker,
    WorkerInvocationSummary,
    WorkerLauncher,
    WorkExecutor,
)
from brand_monitor.providers.base import CompletionConfig
from brand_monitor.providers.registry import build_adapters, build_http_client

logger = logging.getLogger(__name__)

CHAIN_MODES = ("in-process", "subprocess", "none")


@dataclass(slots=True)
class CatalogAddScopeCommand:
    """CLI input for scope creation."""

    db_path: Path | None
    name: str
    brand_name: str
    brand_domain: str | None


@dataclass(slots=True)
class CatalogAddPromptCommand:
    """CLI input for tracked prompt creation."""

    db_path: Path | None
    scope_id: str
    prompt_text: str


@dataclass(slots=True)
class CatalogAddCompetitorCommand:
    """CLI input for competitor creation."""

    db_path: Path | None
    scope_id: str
    name: str
    domain: str | None


@dataclass(slots=True)
class CatalogListCommand:
    """CLI input for catalog listing."""

    db_path: Path | None
    scope_id: str | None


@dataclass(slots=True)
class DispatchCommand:
    """CLI input for one dispatch run."""

    db_path: Path | None
    kind: str
    scope_id: str | None
    launch: bool
    wait: bool


@dataclass(slots=True)
class WorkerRunCommand:
    """CLI input for one worker invocation."""

    db_path: Path | None
    kind: str
    generation: int
    batch_id: str | None
    chain: str


@dataclass(slots=True)
class QueueListCommand:
    """CLI input for queue item listing."""

    db_path: Path | None
    status: str | None
    kind: str | None
    batch_id: str | None
    limit: int


@dataclass(slots=True)
class QueueStatsCommand:
    """CLI input for queue counters."""

    db_path: Path | None
    kind: str | None


@dataclass(slots=True)
class QueueRequeueCommand:
    """CLI input for manual requeue of a failed item."""

    db_path: Path | None
    item_id: str
    extra_attempts: int


@dataclass(slots=True)
class QueueResetStaleCommand:
    """CLI input for manual stale-item recovery."""

    db_path: Path | None
    kind: str | None
    older_than_seconds: int | None


@dataclass(slots=True)
class ResultsJobCommand:
    """CLI input for analysis job inspection."""

    db_path: Path | None
    job_id: str


@dataclass(slots=True)
class ResultsSubjectCommand:
    """CLI input for per-prompt result history."""

    db_path: Path | None
    subject_id: str
    limit: int


@dataclass(slots=True)
class _Repositories:
    catalog: CatalogRepository
    results: ResultsRepository
    queue: QueueRepository


class PipelineCliController:
    """Coordinates catalog, dispatch, worker and inspection CLI operations."""

    def add_scope(self, command: CatalogAddScopeCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repositories(settings) as repos:
            scope = repos.catalog.add_scope(
                name=command.name,
                brand_name=command.brand_name,
                brand_domain=command.brand_domain,
            )
        return [f"Scope created: scope_id={scope.scope_id} brand={scope.brand_name}"]

    def add_prompt(self, command: CatalogAddPromptCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repositories(settings) as repos:
            prompt = repos.catalog.add_prompt(
                scope_id=command.scope_id,
                prompt_text=command.prompt_text,
            )
        return [f"Prompt created: prompt_id={prompt.prompt_id} scope_id={prompt.scope_id}"]

    def add_competitor(self, command: CatalogAddCompetitorCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repositories(settings) as repos:
            competitor = repos.catalog.add_competitor(
                scope_id=command.scope_id,
                name=command.name,
                domain=command.domain,
            )
        return [
            "Competitor created: "
            f"competitor_id={competitor.competitor_id} name={competitor.name} "
            f"scope_id={competitor.scope_id}",
        ]

    def list_catalog(self, command: CatalogListCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repositories(settings) as repos:
            scopes = repos.catalog.list_scopes()
            if command.scope_id is not None:
                scopes = [scope for scope in scopes if scope.scope_id == command.scope_id]
                if not scopes:
                    return [f"Scope not found: {command.scope_id}"]
            lines = [f"Scopes: {len(scopes)}"]
            for scope in scopes:
                prompts = repos.catalog.list_prompts(scope_id=scope.scope_id)
                competitors = repos.catalog.list_competitors(scope_id=scope.scope_id)
                lines.append(
                    f"  {scope.scope_id} name={scope.name} brand={scope.brand_name} "
                    f"domain={scope.brand_domain or '-'} active={scope.is_active} "
                    f"prompts={len(prompts)} competitors={len(competitors)}",
                )
                for prompt in prompts:
                    lines.append(
                        f"    prompt {prompt.prompt_id} active={prompt.is_active} "
                        f"text={prompt.prompt_text}",
                    )
                for competitor in competitors:
                    lines.append(
                        f"    competitor {competitor.competitor_id} name={competitor.name} "
                        f"domain={competitor.domain or '-'}",
                    )
        return lines

    def dispatch(self, command: DispatchCommand) -> list[str]:
        """Discover and enqueue work, then start workers.

        With `wait` the workers run in this process and the command returns
        once every chained invocation finished; otherwise each worker is a
        detached `worker run` process.
        """

        settings = _settings(command.db_path)
        kind = WorkKind(command.kind)
        with _repositories(settings) as repos:
            result, summaries = asyncio.run(
                self._dispatch(settings=settings, repos=repos, kind=kind, command=command),
            )

        lines = [
            f"Dispatch {result.kind.value}: "
            f"scanned={result.scanned} already_open={result.already_open} "
            f"enqueued={result.enqueued_count} failed={result.failed_count} "
            f"workers_launched={result.workers_launched} batch_id={result.batch_id or '-'}",
        ]
        lines.extend(f"Launch error: {error}" for error in result.launch_errors)
        if summaries:
            lines.append(_render_chain_totals(summaries))
        return lines

    async def _dispatch(
        self,
        *,
        settings: Settings,
        repos: _Repositories,
        kind: WorkKind,
        command: DispatchCommand,
    ) -> tuple[DispatchResult, list[WorkerInvocationSummary]]:
        if not command.launch:
            dispatcher = _dispatcher(settings, repos, launcher=None)
            return await _run_dispatch(dispatcher, kind=kind, scope_id=command.scope_id), []
        if not command.wait:
            launcher = SubprocessLauncher(db_path=settings.db_path)
            dispatcher = _dispatcher(settings, repos, launcher=launcher)
            return await _run_dispatch(dispatcher, kind=kind, scope_id=command.scope_id), []

        async with build_http_client(settings.providers) as client:
            pool = InProcessLauncher(
                build_worker=_worker_factory(settings, repos, client),
                max_concurrent=settings.worker.max_concurrent_invocations,
            )
            dispatcher = _dispatcher(settings, repos, launcher=pool)
            with _signal_handlers(pool.request_stop):
                result = await _run_dispatch(dispatcher, kind=kind, scope_id=command.scope_id)
                summaries = await pool.drain()
        return result, summaries

    def run_worker(self, command: WorkerRunCommand) -> list[str]:
        if command.chain not in CHAIN_MODES:
            raise RuntimeError(f"Unsupported chain mode: {command.chain}")
        settings = _settings(command.db_path)
        kind = WorkKind(command.kind)
        with _repositories(settings) as repos:
            summaries = asyncio.run(
                self._run_worker(settings=settings, repos=repos, kind=kind, command=command),
            )

        lines = [_render_summary(summary) for summary in summaries]
        if len(summaries) > 1:
            lines.append(_render_chain_totals(summaries))
        return lines

    async def _run_worker(
        self,
        *,
        settings: Settings,
        repos: _Repositories,
        kind: WorkKind,
        command: WorkerRunCommand,
    ) -> list[WorkerInvocationSummary]:
        async with build_http_client(settings.providers) as client:
            build_worker = _worker_factory(settings, repos, client)
            if command.chain == "in-process":
                pool = InProcessLauncher(
                    build_worker=build_worker,
                    max_concurrent=settings.worker.max_concurrent_invocations,
                )
                with _signal_handlers(pool.request_stop):
                    pool.launch(kind=kind, generation=command.generation, batch_id=command.batch_id)
                    return await pool.drain()

            launcher = (
                SubprocessLauncher(db_path=settings.db_path)
                if command.chain == "subprocess"
                else None
            )
            worker = build_worker(kind, launcher)
            with _signal_handlers(worker.request_stop):
                summary = await worker.invoke(
                    generation=command.generation,
                    batch_id=command.batch_id,
                )
        return [summary]

    def list_queue(self, command: QueueListCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repositories(settings) as repos:
            items = repos.queue.list_items(
                status=QueueItemStatus(command.status) if command.status else None,
                kind=WorkKind(command.kind) if command.kind else None,
                batch_id=command.batch_id,
                limit=command.limit,
            )

        lines = [f"Queue items: {len(items)}"]
        for item in items:
            lines.append(
                f"  {item.item_id} kind={item.kind.value} subject={item.subject_id} "
                f"status={item.status.value} attempts={item.attempts}/{item.max_attempts} "
                f"updated_at={item.updated_at.isoformat()}",
            )
            if item.error_message:
                lines.append(f"    error: {item.error_message}")
            if item.note:
                lines.append(f"    note: {item.note}")
        return lines

    def queue_stats(self, command: QueueStatsCommand) -> list[str]:
        settings = _settings(command.db_path)
        kinds = [WorkKind(command.kind)] if command.kind else list(WorkKind)
        lines: list[str] = []
        with _repositories(settings) as repos:
            for kind in kinds:
                counts = repos.queue.count_by_status(kind=kind)
                eligible = repos.queue.count_eligible(kind=kind)
                rendered = " ".join(f"{status.value}={counts[status]}" for status in counts)
                lines.append(f"Queue {kind.value}: {rendered} eligible={eligible}")
        return lines

    def requeue(self, command: QueueRequeueCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repositories(settings) as repos:
            item = repos.queue.requeue(command.item_id, extra_attempts=command.extra_attempts)
        return [
            f"Requeued: item_id={item.item_id} status={item.status.value} "
            f"attempts={item.attempts}/{item.max_attempts}",
        ]

    def reset_stale(self, command: QueueResetStaleCommand) -> list[str]:
        settings = _settings(command.db_path)
        seconds = command.older_than_seconds or settings.queue.stale_after_seconds
        with _repositories(settings) as repos:
            reset = repos.queue.reset_stale(
                older_than=timedelta(seconds=seconds),
                kind=WorkKind(command.kind) if command.kind else None,
            )
        return [f"Stale items reset: {reset} (older than {seconds}s)"]

    def inspect_job(self, command: ResultsJobCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repositories(settings) as repos:
            job = repos.results.get_job(command.job_id)
            if job is None:
                return [f"Job not found: {command.job_id}"]
            provider_results = repos.results.list_provider_results(job_id=job.job_id)
            lines = [
                f"Job: {job.job_id}",
                f"Scope: {job.scope_id}",
                f"Prompt: {job.subject_id}",
                f"Status: {job.status.value}",
                f"Providers: {job.completed_providers} ok / {job.failed_providers} failed "
                f"of {job.total_providers}",
                f"Started: {job.started_at.isoformat()}",
                f"Finished: {job.finished_at.isoformat() if job.finished_at else '-'}",
            ]
            for result in provider_results:
                lines.append(
                    f"  {result.result_id} provider={result.provider} "
                    f"status={result.status.value} model={result.model or '-'} "
                    f"tokens={result.tokens_used if result.tokens_used is not None else '-'} "
                    f"cost_usd={_format_cost(result.cost_usd)} "
                    f"latency_ms={result.latency_ms if result.latency_ms is not None else '-'} "
                    f"sources={len(result.source_urls)}",
                )
                if result.error_message:
                    lines.append(f"    error: {result.error_message}")
                for citation in repos.results.list_citations(result_id=result.result_id):
                    lines.append(
                        f"    citation {citation.entity_type.value}:{citation.entity_name} "
                        f"sentence={citation.sentence_position} "
                        f"source={citation.source_domain or '-'} "
                        f"context={citation.competitive_context or '-'}",
                    )
                for sentiment in repos.results.list_sentiment(result_id=result.result_id):
                    lines.append(
                        f"    sentiment {sentiment.entity_name} label={sentiment.label.value} "
                        f"score={sentiment.score:.2f}",
                    )
        return lines

    def subject_history(self, command: ResultsSubjectCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repositories(settings) as repos:
            jobs = repos.results.list_jobs(subject_id=command.subject_id, limit=command.limit)
        lines = [f"Jobs for {command.subject_id}: {len(jobs)}"]
        for job in jobs:
            lines.append(
                f"  {job.job_id} status={job.status.value} "
                f"providers={job.completed_providers}/{job.total_providers} "
                f"started_at={job.started_at.isoformat()}",
            )
        return lines


async def _run_dispatch(
    dispatcher: Dispatcher,
    *,
    kind: WorkKind,
    scope_id: str | None,
) -> DispatchResult:
    try:
        if scope_id is None:
            return await dispatcher.run(kind=kind)
        return await dispatcher.run_for_scope(scope_id, kind=kind)
    except BrandMonitorError as exc:
        raise RuntimeError(str(exc)) from exc


def _dispatcher(
    settings: Settings,
    repos: _Repositories,
    *,
    launcher: WorkerLauncher | None,
) -> Dispatcher:
    return Dispatcher(
        catalog=repos.catalog,
        results=repos.results,
        queue=repos.queue,
        settings=settings,
        launcher=launcher,
    )


def _worker_factory(
    settings: Settings,
    repos: _Repositories,
    client: httpx.AsyncClient,
) -> Callable[[WorkKind, WorkerLauncher | None], QueueWorker]:
    adapters = build_adapters(settings.providers, client)
    if not adapters:
        logger.warning("No providers configured; prompt analysis items will fail and retry")
    executors: dict[WorkKind, WorkExecutor] = {
        WorkKind.PROMPT_ANALYSIS: PromptAnalysisExecutor(
            catalog=repos.catalog,
            results=repos.results,
            adapters=adapters,
            completion_config=CompletionConfig(
                temperature=settings.providers.temperature,
                max_tokens=settings.providers.max_tokens,
            ),
        ),
        WorkKind.SENTIMENT_ANALYSIS: SentimentAnalysisExecutor(
            catalog=repos.catalog,
            results=repos.results,
            classifier=SentimentClassifier(),
        ),
    }

    def build(kind: WorkKind, launcher: WorkerLauncher | None) -> QueueWorker:
        return QueueWorker(
            queue=repos.queue,
            executor=executors[kind],
            settings=settings,
            launcher=launcher,
        )

    return build


def _render_summary(summary: WorkerInvocationSummary) -> str:
    return (
        f"Worker {summary.kind.value} gen={summary.generation}: "
        f"claimed={summary.claimed} succeeded={summary.succeeded} "
        f"skipped={summary.skipped} retried={summary.retried} failed={summary.failed} "
        f"rate_limited={summary.rate_limited} stale_reset={summary.stale_reset} "
        f"exhausted={summary.exhausted} "
        f"remaining={summary.remaining} successor={summary.successor_scheduled}"
    )


def _render_chain_totals(summaries: list[WorkerInvocationSummary]) -> str:
    return (
        f"Workers finished: invocations={len(summaries)} "
        f"claimed={sum(s.claimed for s in summaries)} "
        f"succeeded={sum(s.succeeded for s in summaries)} "
        f"skipped={sum(s.skipped for s in summaries)} "
        f"retried={sum(s.retried for s in summaries)} "
        f"failed={sum(s.failed for s in summaries)} "
        f"remaining={summaries[-1].remaining if summaries else 0}"
    )


def _format_cost(value: float | None) -> str:
    return f"{value:.6f}" if value is not None else "-"


def _settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


@contextmanager
def _signal_handlers(stop: Callable[[], None]) -> Iterator[None]:
    if not hasattr(signal, "SIGTERM"):
        yield
        return

    def _handler(signum: int, _: object | None) -> None:
        logger.warning("Received %s; finishing current batch", signal.Signals(signum).name)
        stop()

    try:
        original_sigint = signal.signal(signal.SIGINT, _handler)
        original_sigterm = signal.signal(signal.SIGTERM, _handler)
    except ValueError:
        # Handlers can only be installed from the main thread.
        yield
        return
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, original_sigint)
        signal.signal(signal.SIGTERM, original_sigterm)


@contextmanager
def _repositories(settings: Settings) -> Iterator[_Repositories]:
    catalog = CatalogRepository(db_path=settings.db_path)
    catalog.init_schema()
    results = ResultsRepository(db_path=settings.db_path)
    queue = QueueRepository(db_path=settings.db_path)
    try:
        yield _Repositories(catalog=catalog, results=results, queue=queue)
    finally:
        queue.close()
        results.close()
        catalog.close()
