"""Queue worker invocation: reset stale, drain bounded batches, maybe chain."""

from __future__ import annotations

import asyncio
import logging
import os
import socket
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Protocol
from uuid import uuid4

from brand_monitor.config import Settings
from brand_monitor.pipeline.failure_classifier import classify_failure, format_attempt_error
from brand_monitor.pipeline.models import (
    ExecutionResult,
    FailureClass,
    QueueItemView,
    WorkKind,
)
from brand_monitor.pipeline.queue import QueueRepository

logger = logging.getLogger(__name__)


class WorkExecutor(Protocol):
    kind: WorkKind

    async def execute(self, item: QueueItemView) -> ExecutionResult: ...


class WorkerLauncher(Protocol):
    """Starts a worker invocation without waiting for it."""

    def launch(self, *, kind: WorkKind, generation: int, batch_id: str | None = None) -> None: ...


@dataclass(slots=True)
class WorkerInvocationSummary:
    """Aggregate worker counters for CLI reporting."""

    kind: WorkKind
    generation: int
    worker_id: str
    claimed: int = 0
    succeeded: int = 0
    skipped: int = 0
    retried: int = 0
    failed: int = 0
    rate_limited: int = 0
    batches: int = 0
    stale_reset: int = 0
    exhausted: int = 0
    remaining: int = 0
    successor_scheduled: bool = False


def default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid4().hex[:8]}"


class QueueWorker:
    """One bounded worker invocation over a single work kind."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        queue: QueueRepository,
        executor: WorkExecutor,
        settings: Settings,
        launcher: WorkerLauncher | None = None,
        worker_id: str | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.queue = queue
        self.executor = executor
        self.kind = executor.kind
        self.settings = settings
        self.launcher = launcher
        self.worker_id = worker_id or default_worker_id()
        self._sleep = sleep
        self._stop_requested = False

    def request_stop(self) -> None:
        """Finish the current batch, then skip remaining batches and chaining."""

        self._stop_requested = True

    async def invoke(
        self,
        *,
        generation: int = 0,
        batch_id: str | None = None,
    ) -> WorkerInvocationSummary:
        """Run one invocation. Item failures are recorded on the queue, never raised."""

        summary = WorkerInvocationSummary(
            kind=self.kind,
            generation=generation,
            worker_id=self.worker_id,
        )
        await self._reset_stale(summary)

        batch_size = self.settings.batch_size_for(self.kind.value)
        max_batches = self.settings.worker.max_batches_per_invocation
        for batch_no in range(max_batches):
            if self._stop_requested:
                break
            try:
                items = await asyncio.to_thread(
                    self.queue.claim_batch,
                    kind=self.kind,
                    limit=batch_size,
                    worker_id=self.worker_id,
                    batch_id=batch_id,
                )
            except Exception:
                logger.exception("Claim failed for %s worker %s", self.kind.value, self.worker_id)
                break
            if not items:
                break

            summary.batches += 1
            summary.claimed += len(items)
            settled = await asyncio.gather(
                *(self._process(item, summary) for item in items),
                return_exceptions=True,
            )
            for item, outcome in zip(items, settled, strict=True):
                if isinstance(outcome, BaseException):
                    logger.error(
                        "Queue bookkeeping failed for item %s: %s",
                        item.item_id,
                        outcome,
                    )

            if len(items) < batch_size or batch_no + 1 >= max_batches:
                break
            await self._sleep(self.settings.worker.inter_batch_delay_seconds)

        await self._maybe_chain(summary, batch_id=batch_id)
        logger.info(
            "%s worker %s gen=%d: claimed=%d ok=%d skipped=%d retried=%d failed=%d "
            "remaining=%d successor=%s",
            self.kind.value,
            self.worker_id,
            generation,
            summary.claimed,
            summary.succeeded,
            summary.skipped,
            summary.retried,
            summary.failed,
            summary.remaining,
            summary.successor_scheduled,
        )
        return summary

    async def _reset_stale(self, summary: WorkerInvocationSummary) -> None:
        try:
            summary.stale_reset = await asyncio.to_thread(
                self.queue.reset_stale,
                older_than=timedelta(seconds=self.settings.queue.stale_after_seconds),
                kind=self.kind,
            )
            summary.exhausted = await asyncio.to_thread(self.queue.fail_exhausted, kind=self.kind)
        except Exception:
            logger.exception("Stale reset failed for %s worker %s", self.kind.value, self.worker_id)

    async def _process(self, item: QueueItemView, summary: WorkerInvocationSummary) -> None:
        try:
            result = await self.executor.execute(item)
        except Exception as exc:  # noqa: BLE001
            await self._record_failure(item, exc, summary)
            return

        await asyncio.to_thread(self.queue.mark_completed, item.item_id, note=result.note)
        if result.skipped:
            summary.skipped += 1
        else:
            summary.succeeded += 1

    async def _record_failure(
        self,
        item: QueueItemView,
        error: Exception,
        summary: WorkerInvocationSummary,
    ) -> None:
        classification = classify_failure(error)
        message = format_attempt_error(
            error=error,
            classification=classification,
            attempts=item.attempts,
            max_attempts=item.max_attempts,
        )
        if classification.is_rate_limit:
            summary.rate_limited += 1
            logger.warning(
                "Rate limited on %s item %s (attempt %d/%d): %s",
                item.kind.value,
                item.item_id,
                item.attempts,
                item.max_attempts,
                error,
            )
        elif classification.failure_class is FailureClass.UNEXPECTED:
            logger.error(
                "Unexpected error on %s item %s (attempt %d/%d)",
                item.kind.value,
                item.item_id,
                item.attempts,
                item.max_attempts,
                exc_info=error,
            )
        else:
            logger.warning(
                "%s item %s failed (attempt %d/%d, %s): %s",
                item.kind.value,
                item.item_id,
                item.attempts,
                item.max_attempts,
                classification.failure_class.value,
                error,
            )

        recorded = await asyncio.to_thread(
            self.queue.mark_failed,
            item.item_id,
            error=message,
            failure_class=classification.failure_class,
        )
        if not recorded:
            logger.warning(
                "Failure of %s item %s not recorded; it is no longer processing",
                item.kind.value,
                item.item_id,
            )
            return
        if item.attempts < item.max_attempts:
            summary.retried += 1
        else:
            summary.failed += 1

    async def _maybe_chain(self, summary: WorkerInvocationSummary, *, batch_id: str | None) -> None:
        try:
            summary.remaining = await asyncio.to_thread(
                self.queue.count_eligible,
                kind=self.kind,
                batch_id=batch_id,
            )
        except Exception:
            logger.exception(
                "Remaining-count failed for %s worker %s",
                self.kind.value,
                self.worker_id,
            )
            return

        if summary.remaining <= 0 or self._stop_requested or self.launcher is None:
            return
        if summary.generation >= self.settings.worker.max_auto_invocations:
            logger.warning(
                "%s chain reached generation limit %d with %d item(s) left for the next dispatch",
                self.kind.value,
                self.settings.worker.max_auto_invocations,
                summary.remaining,
            )
            return
        try:
            self.launcher.launch(
                kind=self.kind,
                generation=summary.generation + 1,
                batch_id=batch_id,
            )
        except Exception:
            logger.exception("Failed to schedule successor for %s worker", self.kind.value)
            return
        summary.successor_scheduled = True
