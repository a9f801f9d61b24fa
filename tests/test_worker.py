from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import timedelta

import allure
from sqlalchemy import update as sa_update
from sqlmodel import Session, col

from brand_monitor.config import Settings
from brand_monitor.pipeline.models import (
    ExecutionResult,
    FailureClass,
    QueueItemCreate,
    QueueItemStatus,
    QueueItemView,
    WorkKind,
)
from brand_monitor.pipeline.queue import QueueRepository
from brand_monitor.pipeline.worker import QueueWorker
from brand_monitor.providers.base import ProviderRateLimitError
from brand_monitor.storage.common import to_db_datetime, utc_now
from brand_monitor.storage.sqlmodel_models import QueueItem

pytestmark = [
    allure.epic("Work Queue"),
    allure.feature("Worker Invocations & Chaining"),
]


class _FakeExecutor:
    kind = WorkKind.PROMPT_ANALYSIS

    def __init__(
        self,
        *,
        failing: dict[str, Exception] | None = None,
        skipped: set[str] | None = None,
    ) -> None:
        self.failing = failing or {}
        self.skipped = skipped or set()
        self.seen: list[str] = []

    async def execute(self, item: QueueItemView) -> ExecutionResult:
        self.seen.append(item.subject_id)
        error = self.failing.get(item.subject_id)
        if error is not None:
            raise error
        if item.subject_id in self.skipped:
            return ExecutionResult(skipped=True, note="already analyzed")
        return ExecutionResult(note="done")


class _RecordingLauncher:
    def __init__(self) -> None:
        self.launches: list[tuple[WorkKind, int, str | None]] = []

    def launch(self, *, kind: WorkKind, generation: int, batch_id: str | None = None) -> None:
        self.launches.append((kind, generation, batch_id))


def _enqueue(queue: QueueRepository, count: int, *, max_attempts: int = 3) -> str:
    return queue.enqueue(
        [
            QueueItemCreate(
                kind=WorkKind.PROMPT_ANALYSIS,
                subject_id=f"prompt-{index:02d}",
                scope_id="scope-1",
                max_attempts=max_attempts,
            )
            for index in range(count)
        ],
    )


def _settings(settings: Settings, *, batch_size: int = 5, max_batches: int = 2) -> Settings:
    return replace(
        settings,
        worker=replace(
            settings.worker,
            analysis_batch_size=batch_size,
            max_batches_per_invocation=max_batches,
        ),
    )


async def _no_sleep(_: float) -> None:
    return None


def test_bounded_invocation_processes_two_batches_and_schedules_one_successor(
    queue: QueueRepository,
    settings: Settings,
) -> None:
    _enqueue(queue, 12)
    launcher = _RecordingLauncher()
    executor = _FakeExecutor()
    worker = QueueWorker(
        queue=queue,
        executor=executor,
        settings=_settings(settings),
        launcher=launcher,
        worker_id="worker-a",
        sleep=_no_sleep,
    )

    summary = asyncio.run(worker.invoke(generation=0))

    assert summary.batches == 2
    assert summary.claimed == 10
    assert summary.succeeded == 10
    assert summary.remaining == 2
    assert summary.successor_scheduled is True
    assert launcher.launches == [(WorkKind.PROMPT_ANALYSIS, 1, None)]
    counts = queue.count_by_status(kind=WorkKind.PROMPT_ANALYSIS)
    assert counts[QueueItemStatus.COMPLETED] == 10
    assert counts[QueueItemStatus.PENDING] == 2
    assert len(executor.seen) == len(set(executor.seen)) == 10


def test_chain_stops_at_generation_limit(queue: QueueRepository, settings: Settings) -> None:
    _enqueue(queue, 12)
    launcher = _RecordingLauncher()
    limited = _settings(settings)
    worker = QueueWorker(
        queue=queue,
        executor=_FakeExecutor(),
        settings=limited,
        launcher=launcher,
        sleep=_no_sleep,
    )

    summary = asyncio.run(worker.invoke(generation=limited.worker.max_auto_invocations))

    assert summary.remaining == 2
    assert summary.successor_scheduled is False
    assert launcher.launches == []


def test_successor_keeps_batch_filter(queue: QueueRepository, settings: Settings) -> None:
    batch_id = _enqueue(queue, 6)
    _enqueue(queue, 3)
    launcher = _RecordingLauncher()
    worker = QueueWorker(
        queue=queue,
        executor=_FakeExecutor(),
        settings=_settings(settings, batch_size=5, max_batches=1),
        launcher=launcher,
        sleep=_no_sleep,
    )

    summary = asyncio.run(worker.invoke(generation=2, batch_id=batch_id))

    assert summary.claimed == 5
    assert summary.remaining == 1
    assert launcher.launches == [(WorkKind.PROMPT_ANALYSIS, 3, batch_id)]


def test_rate_limited_item_is_retried_with_prefixed_error(
    queue: QueueRepository,
    settings: Settings,
) -> None:
    _enqueue(queue, 3)
    executor = _FakeExecutor(
        failing={"prompt-01": ProviderRateLimitError("openai", "Too Many Requests")},
    )
    worker = QueueWorker(
        queue=queue,
        executor=executor,
        settings=_settings(settings),
        sleep=_no_sleep,
    )

    summary = asyncio.run(worker.invoke())

    assert summary.succeeded == 2
    assert summary.rate_limited == 1
    assert summary.retried == 1
    assert summary.failed == 0
    retried = queue.list_items(status=QueueItemStatus.PENDING)
    assert len(retried) == 1
    assert retried[0].subject_id == "prompt-01"
    assert retried[0].failure_class == FailureClass.RATE_LIMIT
    assert retried[0].error_message is not None
    assert retried[0].error_message.startswith("[Rate limit - Attempt 1/3] openai: HTTP 429")


def test_item_fails_terminally_on_last_attempt(
    queue: QueueRepository,
    settings: Settings,
) -> None:
    _enqueue(queue, 1, max_attempts=1)
    worker = QueueWorker(
        queue=queue,
        executor=_FakeExecutor(failing={"prompt-00": RuntimeError("boom")}),
        settings=_settings(settings),
        sleep=_no_sleep,
    )

    summary = asyncio.run(worker.invoke())

    assert summary.failed == 1
    assert summary.retried == 0
    failed = queue.list_items(status=QueueItemStatus.FAILED)
    assert len(failed) == 1
    assert failed[0].error_message == "[Attempt 1/1] boom"
    assert failed[0].failure_class == FailureClass.UNEXPECTED
    assert summary.remaining == 0


def test_short_batch_ends_invocation_without_extra_sleep(
    queue: QueueRepository,
    settings: Settings,
) -> None:
    _enqueue(queue, 7)
    sleeps: list[float] = []

    async def _record_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    launcher = _RecordingLauncher()
    worker = QueueWorker(
        queue=queue,
        executor=_FakeExecutor(),
        settings=_settings(settings, batch_size=5, max_batches=10),
        launcher=launcher,
        sleep=_record_sleep,
    )

    summary = asyncio.run(worker.invoke())

    assert summary.batches == 2
    assert summary.claimed == 7
    assert len(sleeps) == 1
    assert summary.remaining == 0
    assert launcher.launches == []


def test_skipped_items_are_completed_and_counted(
    queue: QueueRepository,
    settings: Settings,
) -> None:
    _enqueue(queue, 2)
    worker = QueueWorker(
        queue=queue,
        executor=_FakeExecutor(skipped={"prompt-00"}),
        settings=_settings(settings),
        sleep=_no_sleep,
    )

    summary = asyncio.run(worker.invoke())

    assert summary.skipped == 1
    assert summary.succeeded == 1
    assert queue.count_by_status()[QueueItemStatus.COMPLETED] == 2


def test_invocation_resets_stale_items_before_claiming(
    queue: QueueRepository,
    settings: Settings,
) -> None:
    _enqueue(queue, 1)
    stuck = queue.claim_batch(kind=WorkKind.PROMPT_ANALYSIS, limit=1, worker_id="crashed")[0]
    with Session(queue.engine) as session:
        session.exec(
            sa_update(QueueItem)
            .where(col(QueueItem.item_id) == stuck.item_id)
            .values(updated_at=to_db_datetime(utc_now() - timedelta(hours=1))),
        )
        session.commit()
    worker = QueueWorker(
        queue=queue,
        executor=_FakeExecutor(),
        settings=_settings(settings),
        sleep=_no_sleep,
    )

    summary = asyncio.run(worker.invoke())

    assert summary.stale_reset == 1
    assert summary.succeeded == 1
    item = queue.get_item(stuck.item_id)
    assert item is not None
    assert item.status == QueueItemStatus.COMPLETED
    assert item.attempts == 2


def test_stop_request_skips_claims_and_chaining(
    queue: QueueRepository,
    settings: Settings,
) -> None:
    _enqueue(queue, 3)
    launcher = _RecordingLauncher()
    worker = QueueWorker(
        queue=queue,
        executor=_FakeExecutor(),
        settings=_settings(settings),
        launcher=launcher,
        sleep=_no_sleep,
    )
    worker.request_stop()

    summary = asyncio.run(worker.invoke())

    assert summary.claimed == 0
    assert summary.remaining == 3
    assert launcher.launches == []



def test_invocation_closes_items_stranded_on_their_last_attempt(
    queue: QueueRepository,
    settings: Settings,
) -> None:
    _enqueue(queue, 1, max_attempts=1)
    stuck = queue.claim_batch(kind=WorkKind.PROMPT_ANALYSIS, limit=1, worker_id="crashed")[0]
    with Session(queue.engine) as session:
        session.exec(
            sa_update(QueueItem)
            .where(col(QueueItem.item_id) == stuck.item_id)
            .values(updated_at=to_db_datetime(utc_now() - timedelta(hours=1))),
        )
        session.commit()
    executor = _FakeExecutor()
    worker = QueueWorker(
        queue=queue,
        executor=executor,
        settings=_settings(settings),
        sleep=_no_sleep,
    )

    summary = asyncio.run(worker.invoke())

    assert (summary.stale_reset, summary.exhausted, summary.claimed) == (1, 1, 0)
    assert executor.seen == []
    item = queue.get_item(stuck.item_id)
    assert item is not None
    assert item.status == QueueItemStatus.FAILED
    assert item.attempts == 1


class _CompletedElsewhereExecutor:
    """Simulates a slow worker whose item was finished by another invocation."""

    kind = WorkKind.PROMPT_ANALYSIS

    def __init__(self, queue: QueueRepository) -> None:
        self.queue = queue

    async def execute(self, item: QueueItemView) -> ExecutionResult:
        self.queue.mark_completed(item.item_id, note="finished by another worker")
        raise RuntimeError("late failure")


def test_failure_on_item_no_longer_processing_is_not_counted(
    queue: QueueRepository,
    settings: Settings,
) -> None:
    _enqueue(queue, 1)
    worker = QueueWorker(
        queue=queue,
        executor=_CompletedElsewhereExecutor(queue),
        settings=_settings(settings),
        sleep=_no_sleep,
    )

    summary = asyncio.run(worker.invoke())

    assert summary.claimed == 1
    assert (summary.retried, summary.failed) == (0, 0)
    item = queue.list_items()[0]
    assert item.status == QueueItemStatus.COMPLETED
    assert item.error_message is None
