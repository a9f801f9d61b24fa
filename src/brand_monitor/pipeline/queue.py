"""Durable work queue backed by SQLModel + SQLite.

Claiming is a per-row compare-and-swap: a candidate is selected, then a
conditional UPDATE flips it to `processing` only if it is still eligible and
its attempt counter is unchanged. Rows lost to a concurrent claimer are
skipped, so one item is never handed to two live workers at once.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta
from pathlib import Path
from uuid import uuid4

from sqlalchemy import case, func, or_
from sqlalchemy import update as sa_update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from brand_monitor.pipeline.models import (
    EnqueueReport,
    FailureClass,
    QueueItemCreate,
    QueueItemStatus,
    QueueItemView,
    WorkKind,
)
from brand_monitor.storage.alembic_runner import upgrade_head
from brand_monitor.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from brand_monitor.storage.sqlmodel_models import QueueItem

logger = logging.getLogger(__name__)

STALE_RESET_NOTE = "[Auto-reset: stuck in processing]"
EXHAUSTED_NOTE = "[Attempts exhausted]"
_CLAIMABLE_STATUSES = (QueueItemStatus.PENDING.value, QueueItemStatus.FAILED.value)


class QueueRepository:
    """Queue persistence facade shared by the dispatcher and workers."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def enqueue(
        self,
        items: Sequence[QueueItemCreate],
        *,
        batch_id: str | None = None,
    ) -> str:
        """Insert pending items sharing one batch id in a single transaction."""

        resolved_batch_id = batch_id or str(uuid4())
        if not items:
            return resolved_batch_id
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            for item in items:
                session.add(
                    QueueItem(
                        item_id=str(uuid4()),
                        kind=item.kind.value,
                        subject_id=item.subject_id,
                        scope_id=item.scope_id,
                        status=QueueItemStatus.PENDING.value,
                        attempts=0,
                        max_attempts=item.max_attempts,
                        batch_id=resolved_batch_id,
                        created_at=now,
                        updated_at=now,
                    ),
                )
            session.commit()
        return resolved_batch_id

    def enqueue_chunked(
        self,
        items: Sequence[QueueItemCreate],
        *,
        chunk_size: int,
        batch_id: str | None = None,
    ) -> EnqueueReport:
        """Insert items in fixed-size chunks; a failing chunk does not abort the rest."""

        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        report = EnqueueReport(batch_id=batch_id or str(uuid4()))
        for start in range(0, len(items), chunk_size):
            chunk = items[start : start + chunk_size]
            try:
                self.enqueue(chunk, batch_id=report.batch_id)
            except SQLAlchemyError as exc:
                report.failed += len(chunk)
                report.failed_chunks += 1
                logger.warning(
                    "Queue insert chunk %d (%d items) failed: %s",
                    start // chunk_size,
                    len(chunk),
                    exc,
                )
                continue
            report.inserted += len(chunk)
        return report

    def claim_batch(  # noqa: PLR0913
        self,
        *,
        kind: WorkKind,
        limit: int,
        worker_id: str,
        max_attempts: int | None = None,
        batch_id: str | None = None,
    ) -> list[QueueItemView]:
        """Atomically claim up to `limit` eligible items.

        An item is eligible when its status is pending or failed and its
        attempt counter is below its own `max_attempts` (and below the
        optional `max_attempts` cap). Pending items go first, then oldest.
        """

        claimed: list[QueueItemView] = []
        lost: set[str] = set()
        while len(claimed) < limit:
            now = to_db_datetime(utc_now())
            with Session(self.engine) as session:
                query = select(QueueItem).where(
                    *self._eligible_clauses(
                        kind=kind,
                        max_attempts=max_attempts,
                        batch_id=batch_id,
                    ),
                )
                if lost:
                    query = query.where(col(QueueItem.item_id).notin_(lost))
                candidates = session.exec(
                    query.order_by(
                        case((col(QueueItem.status) == QueueItemStatus.FAILED.value, 1), else_=0),
                        col(QueueItem.created_at).asc(),
                        col(QueueItem.item_id).asc(),
                    ).limit(limit - len(claimed)),
                ).all()
                if not candidates:
                    break

                won: list[str] = []
                for candidate in candidates:
                    result = session.exec(
                        sa_update(QueueItem)
                        .where(
                            col(QueueItem.item_id) == candidate.item_id,
                            col(QueueItem.status).in_(_CLAIMABLE_STATUSES),
                            col(QueueItem.attempts) == candidate.attempts,
                            col(QueueItem.attempts) < col(QueueItem.max_attempts),
                        )
                        .values(
                            status=QueueItemStatus.PROCESSING.value,
                            attempts=candidate.attempts + 1,
                            worker_id=worker_id,
                            updated_at=now,
                        ),
                    )
                    if result.rowcount != 1:
                        lost.add(candidate.item_id)
                        continue
                    won.append(candidate.item_id)
                session.commit()

                if won:
                    rows = session.exec(
                        select(QueueItem).where(col(QueueItem.item_id).in_(won)),
                    ).all()
                    by_id = {row.item_id: row for row in rows}
                    claimed.extend(_to_item_view(by_id[item_id]) for item_id in won)
        return claimed

    def mark_completed(self, item_id: str, *, note: str | None = None) -> bool:
        """Mark an item completed. Completion is accepted from any non-terminal state."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(QueueItem)
                .where(
                    col(QueueItem.item_id) == item_id,
                    col(QueueItem.status) != QueueItemStatus.COMPLETED.value,
                )
                .values(
                    status=QueueItemStatus.COMPLETED.value,
                    error_message=None,
                    failure_class=None,
                    note=note,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def mark_failed(
        self,
        item_id: str,
        *,
        error: str,
        failure_class: FailureClass | None = None,
    ) -> bool:
        """Record a failed attempt on a processing item.

        The item returns to `pending` while `attempts < max_attempts` and
        becomes terminally `failed` otherwise. The attempt counter is left
        as the claim set it.
        """

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(QueueItem)
                .where(
                    col(QueueItem.item_id) == item_id,
                    col(QueueItem.status) == QueueItemStatus.PROCESSING.value,
                )
                .values(
                    status=case(
                        (
                            col(QueueItem.attempts) < col(QueueItem.max_attempts),
                            QueueItemStatus.PENDING.value,
                        ),
                        else_=QueueItemStatus.FAILED.value,
                    ),
                    error_message=error,
                    failure_class=failure_class.value if failure_class is not None else None,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def reset_stale(
        self,
        *,
        older_than: timedelta,
        kind: WorkKind | None = None,
        now: datetime | None = None,
    ) -> int:
        """Return items stuck in `processing` past the window to `pending`."""

        current = now or utc_now()
        cutoff = to_db_datetime(current - older_than)
        with Session(self.engine) as session:
            query = sa_update(QueueItem).where(
                col(QueueItem.status) == QueueItemStatus.PROCESSING.value,
                col(QueueItem.updated_at) < cutoff,
            )
            if kind is not None:
                query = query.where(col(QueueItem.kind) == kind.value)
            result = session.exec(
                query.values(
                    status=QueueItemStatus.PENDING.value,
                    error_message=func.trim(
                        func.coalesce(col(QueueItem.error_message), "").concat(
                            f" {STALE_RESET_NOTE}",
                        ),
                    ),
                    worker_id=None,
                    updated_at=to_db_datetime(current),
                ),
            )
            session.commit()
            count = int(result.rowcount or 0)
        if count:
            logger.warning(
                "Reset %d stale processing item(s) older than %s",
                count,
                older_than,
            )
        return count

    def fail_exhausted(self, *, kind: WorkKind | None = None) -> int:
        """Finalize pending items whose attempt budget is spent as `failed`.

        A stale reset of an item on its last attempt leaves it pending with
        `attempts == max_attempts`; nothing can claim it again, so it is
        closed here and becomes visible to operators and `requeue`.
        """

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            query = sa_update(QueueItem).where(
                col(QueueItem.status) == QueueItemStatus.PENDING.value,
                col(QueueItem.attempts) >= col(QueueItem.max_attempts),
            )
            if kind is not None:
                query = query.where(col(QueueItem.kind) == kind.value)
            result = session.exec(
                query.values(
                    status=QueueItemStatus.FAILED.value,
                    error_message=func.trim(
                        func.coalesce(col(QueueItem.error_message), "").concat(
                            f" {EXHAUSTED_NOTE}",
                        ),
                    ),
                    updated_at=now,
                ),
            )
            session.commit()
            count = int(result.rowcount or 0)
        if count:
            logger.warning("Marked %d pending item(s) with no attempts left as failed", count)
        return count

    def count_eligible(
        self,
        *,
        kind: WorkKind,
        max_attempts: int | None = None,
        batch_id: str | None = None,
    ) -> int:
        """Count items that a worker could claim right now."""

        with Session(self.engine) as session:
            return int(
                session.exec(
                    select(func.count())
                    .select_from(QueueItem)
                    .where(
                        *self._eligible_clauses(
                            kind=kind,
                            max_attempts=max_attempts,
                            batch_id=batch_id,
                        ),
                    ),
                ).one(),
            )

    def get_item(self, item_id: str) -> QueueItemView | None:
        with Session(self.engine) as session:
            row = session.exec(select(QueueItem).where(QueueItem.item_id == item_id)).one_or_none()
            return _to_item_view(row) if row is not None else None

    def list_items(
        self,
        *,
        status: QueueItemStatus | None = None,
        kind: WorkKind | None = None,
        batch_id: str | None = None,
        limit: int = 50,
    ) -> list[QueueItemView]:
        """List recent queue items with optional filters."""

        with Session(self.engine) as session:
            query = select(QueueItem)
            if status is not None:
                query = query.where(QueueItem.status == status.value)
            if kind is not None:
                query = query.where(QueueItem.kind == kind.value)
            if batch_id is not None:
                query = query.where(QueueItem.batch_id == batch_id)
            rows = session.exec(
                query.order_by(col(QueueItem.created_at).desc()).limit(limit),
            ).all()
            return [_to_item_view(row) for row in rows]

    def count_by_status(self, *, kind: WorkKind | None = None) -> dict[QueueItemStatus, int]:
        """Per-status item counts, zero-filled."""

        counts = {status: 0 for status in QueueItemStatus}
        with Session(self.engine) as session:
            query = select(QueueItem.status, func.count()).group_by(QueueItem.status)
            if kind is not None:
                query = query.where(QueueItem.kind == kind.value)
            for status, count in session.exec(query).all():
                counts[QueueItemStatus(status)] = int(count)
        return counts

    def open_subject_ids(
        self,
        *,
        kind: WorkKind,
        subject_ids: Iterable[str],
        statuses: tuple[QueueItemStatus, ...] = (
            QueueItemStatus.PENDING,
            QueueItemStatus.PROCESSING,
        ),
    ) -> set[str]:
        """Subjects that have an item of this kind in one of `statuses`.

        A pending item with no attempts left is not open work.
        """

        wanted = list(subject_ids)
        if not wanted:
            return set()
        with Session(self.engine) as session:
            rows = session.exec(
                select(QueueItem.subject_id).where(
                    QueueItem.kind == kind.value,
                    col(QueueItem.status).in_([status.value for status in statuses]),
                    or_(
                        col(QueueItem.status) != QueueItemStatus.PENDING.value,
                        col(QueueItem.attempts) < col(QueueItem.max_attempts),
                    ),
                    col(QueueItem.subject_id).in_(wanted),
                ),
            ).all()
            return set(rows)

    def requeue(self, item_id: str, *, extra_attempts: int) -> QueueItemView:
        """Give a terminally failed (or pending but exhausted) item a fresh attempt budget."""

        if extra_attempts < 1:
            raise ValueError("extra_attempts must be >= 1")
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = session.exec(select(QueueItem).where(QueueItem.item_id == item_id)).one_or_none()
            if row is None:
                raise RuntimeError(f"Queue item not found: {item_id}")
            exhausted = (
                row.status == QueueItemStatus.PENDING.value and row.attempts >= row.max_attempts
            )
            if row.status != QueueItemStatus.FAILED.value and not exhausted:
                raise RuntimeError(
                    f"Only failed items can be requeued; {item_id} is {row.status}.",
                )
            result = session.exec(
                sa_update(QueueItem)
                .where(
                    col(QueueItem.item_id) == item_id,
                    col(QueueItem.status) == row.status,
                    col(QueueItem.attempts) == row.attempts,
                )
                .values(
                    status=QueueItemStatus.PENDING.value,
                    max_attempts=row.attempts + extra_attempts,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                raise RuntimeError(f"Queue item {item_id} changed concurrently; retry requeue.")
            session.commit()
            session.refresh(row)
            return _to_item_view(row)

    @staticmethod
    def _eligible_clauses(
        *,
        kind: WorkKind,
        max_attempts: int | None,
        batch_id: str | None,
    ) -> list:
        clauses = [
            col(QueueItem.kind) == kind.value,
            col(QueueItem.status).in_(_CLAIMABLE_STATUSES),
            col(QueueItem.attempts) < col(QueueItem.max_attempts),
        ]
        if max_attempts is not None:
            clauses.append(col(QueueItem.attempts) < max_attempts)
        if batch_id is not None:
            clauses.append(col(QueueItem.batch_id) == batch_id)
        return clauses


def _to_item_view(row: QueueItem) -> QueueItemView:
    return QueueItemView(
        item_id=row.item_id,
        kind=WorkKind(row.kind),
        subject_id=row.subject_id,
        scope_id=row.scope_id,
        status=QueueItemStatus(row.status),
        attempts=row.attempts,
        max_attempts=row.max_attempts,
        batch_id=row.batch_id,
        error_message=row.error_message,
        failure_class=FailureClass(row.failure_class) if row.failure_class is not None else None,
        note=row.note,
        worker_id=row.worker_id,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
