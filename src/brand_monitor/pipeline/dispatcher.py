"""Discover unprocessed work, bulk-enqueue it and launch worker chains."""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import timedelta

from brand_monitor.catalog.repository import CatalogRepository
from brand_monitor.config import Settings
from brand_monitor.pipeline.errors import ScopeNotFoundError
from brand_monitor.pipeline.models import QueueItemCreate, QueueItemStatus, WorkKind
from brand_monitor.pipeline.queue import QueueRepository
from brand_monitor.pipeline.results import ResultsRepository
from brand_monitor.pipeline.worker import WorkerLauncher
from brand_monitor.storage.common import utc_now

logger = logging.getLogger(__name__)

# Completed items cover answers that mention no tracked entity and so never
# get a sentiment record.
_SENTIMENT_BUSY_STATUSES = (
    QueueItemStatus.PENDING,
    QueueItemStatus.PROCESSING,
    QueueItemStatus.COMPLETED,
)


@dataclass(slots=True)
class DispatchResult:
    """Outcome of one dispatch run."""

    kind: WorkKind
    batch_id: str | None = None
    scanned: int = 0
    already_open: int = 0
    enqueued_count: int = 0
    failed_count: int = 0
    workers_launched: int = 0
    scope_id: str | None = None
    launch_errors: list[str] = field(default_factory=list)


@dataclass(slots=True)
class _Discovery:
    items: list[QueueItemCreate] = field(default_factory=list)
    scanned: int = 0
    already_open: int = 0


class Dispatcher:
    """Scan the catalog for eligible subjects and hand them to workers."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        catalog: CatalogRepository,
        results: ResultsRepository,
        queue: QueueRepository,
        settings: Settings,
        launcher: WorkerLauncher | None = None,
    ) -> None:
        self.catalog = catalog
        self.results = results
        self.queue = queue
        self.settings = settings
        self.launcher = launcher

    async def run(self, *, kind: WorkKind = WorkKind.PROMPT_ANALYSIS) -> DispatchResult:
        """Dispatch every eligible subject of `kind` across all active scopes."""

        return await self._dispatch(kind=kind, scope_id=None)

    async def run_for_scope(
        self,
        scope_id: str,
        *,
        kind: WorkKind = WorkKind.PROMPT_ANALYSIS,
    ) -> DispatchResult:
        """On-demand dispatch restricted to one scope."""

        scope = await asyncio.to_thread(self.catalog.get_scope, scope_id)
        if scope is None or not scope.is_active:
            raise ScopeNotFoundError(scope_id)
        return await self._dispatch(kind=kind, scope_id=scope_id)

    async def enqueue_subject(
        self,
        *,
        kind: WorkKind,
        subject_id: str,
        scope_id: str,
        force: bool = False,
    ) -> DispatchResult:
        """Enqueue one subject and launch a single worker for it.

        Without `force`, a subject with open queue work, or a provider result
        that already has sentiment records, is left alone.
        """

        result = DispatchResult(kind=kind, scope_id=scope_id, scanned=1)
        if not force:
            open_ids = await asyncio.to_thread(
                self.queue.open_subject_ids,
                kind=kind,
                subject_ids=[subject_id],
            )
            scored = (
                await asyncio.to_thread(self.results.sentiment_entity_names, result_id=subject_id)
                if kind is WorkKind.SENTIMENT_ANALYSIS
                else set()
            )
            if open_ids or scored:
                result.already_open = 1
                return result

        report = await asyncio.to_thread(
            self.queue.enqueue_chunked,
            [self._item(kind, subject_id, scope_id)],
            chunk_size=1,
        )
        result.batch_id = report.batch_id
        result.enqueued_count = report.inserted
        result.failed_count = report.failed
        if report.inserted:
            self._launch(result, workers=1)
        return result

    async def _dispatch(self, *, kind: WorkKind, scope_id: str | None) -> DispatchResult:
        result = DispatchResult(kind=kind, scope_id=scope_id)
        discovery = await asyncio.to_thread(self._discover, kind, scope_id)
        result.scanned = discovery.scanned
        result.already_open = discovery.already_open
        if not discovery.items:
            logger.info("Dispatch %s: nothing to enqueue (scanned %d)", kind.value, result.scanned)
            return result

        report = await asyncio.to_thread(
            self.queue.enqueue_chunked,
            discovery.items,
            chunk_size=self.settings.dispatcher.insert_chunk_size,
        )
        result.batch_id = report.batch_id
        result.enqueued_count = report.inserted
        result.failed_count = report.failed
        logger.info(
            "Dispatch %s: enqueued %d item(s) in batch %s, %d failed",
            kind.value,
            report.inserted,
            report.batch_id,
            report.failed,
        )
        if report.inserted:
            self._launch(result, workers=self.worker_count(kind, report.inserted))
        return result

    def worker_count(self, kind: WorkKind, enqueued: int) -> int:
        """Parallel worker chains for `enqueued` new items."""

        if enqueued <= 0:
            return 0
        dispatcher = self.settings.dispatcher
        if kind is WorkKind.SENTIMENT_ANALYSIS:
            cap = dispatcher.sentiment_max_workers
            per_worker = dispatcher.sentiment_items_per_worker
        else:
            cap = dispatcher.analysis_max_workers
            per_worker = dispatcher.analysis_items_per_worker
        return max(1, min(cap, math.ceil(enqueued / per_worker)))

    def _launch(self, result: DispatchResult, *, workers: int) -> None:
        if self.launcher is None or not self.settings.dispatcher.launch_workers:
            return
        # Workers drain every eligible item of the kind, not only this batch,
        # so leftovers from earlier runs are picked up too.
        for _ in range(workers):
            try:
                self.launcher.launch(kind=result.kind, generation=0, batch_id=None)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Failed to launch %s worker: %s", result.kind.value, exc)
                result.launch_errors.append(str(exc))
                continue
            result.workers_launched += 1

    def _discover(self, kind: WorkKind, scope_id: str | None) -> _Discovery:
        if kind is WorkKind.SENTIMENT_ANALYSIS:
            return self._discover_sentiment(scope_id)
        return self._discover_prompts(scope_id)

    def _discover_prompts(self, scope_id: str | None) -> _Discovery:
        discovery = _Discovery()
        page_size = self.settings.dispatcher.page_size
        since = utc_now() - timedelta(hours=self.settings.dispatcher.reanalysis_after_hours)
        after: str | None = None
        while True:
            page = self.catalog.active_prompt_page(
                page_size=page_size,
                after_prompt_id=after,
                scope_id=scope_id,
            )
            if not page:
                break
            after = page[-1].prompt_id
            discovery.scanned += len(page)
            subject_ids = [prompt.prompt_id for prompt in page]
            busy = self.queue.open_subject_ids(
                kind=WorkKind.PROMPT_ANALYSIS,
                subject_ids=subject_ids,
            )
            busy |= self.results.recently_analyzed_subjects(subject_ids=subject_ids, since=since)
            for prompt in page:
                if prompt.prompt_id in busy:
                    discovery.already_open += 1
                    continue
                discovery.items.append(
                    self._item(WorkKind.PROMPT_ANALYSIS, prompt.prompt_id, prompt.scope_id),
                )
            if len(page) < page_size:
                break
        return discovery

    def _discover_sentiment(self, scope_id: str | None) -> _Discovery:
        discovery = _Discovery()
        page_size = self.settings.dispatcher.page_size
        after: str | None = None
        while True:
            page = self.results.unscored_result_page(
                page_size=page_size,
                after_result_id=after,
                scope_id=scope_id,
            )
            if not page:
                break
            after = page[-1][0]
            discovery.scanned += len(page)
            busy = self.queue.open_subject_ids(
                kind=WorkKind.SENTIMENT_ANALYSIS,
                subject_ids=[result_id for result_id, _ in page],
                statuses=_SENTIMENT_BUSY_STATUSES,
            )
            for result_id, result_scope in page:
                if result_id in busy:
                    discovery.already_open += 1
                    continue
                discovery.items.append(
                    self._item(WorkKind.SENTIMENT_ANALYSIS, result_id, result_scope),
                )
            if len(page) < page_size:
                break
        return discovery

    def _item(self, kind: WorkKind, subject_id: str, scope_id: str) -> QueueItemCreate:
        return QueueItemCreate(
            kind=kind,
            subject_id=subject_id,
            scope_id=scope_id,
            max_attempts=self.settings.queue.max_attempts,
        )
