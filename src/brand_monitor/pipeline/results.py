"""Persistence for analysis jobs, provider answers, citations and sentiment."""

from __future__ import annotations

import json
from collections.abc import Iterable, Sequence
from datetime import datetime
from pathlib import Path
from uuid import uuid4

from sqlalchemy import case, func
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from brand_monitor.pipeline.models import (
    AnalysisJobView,
    CitationView,
    CitationWrite,
    EntityType,
    JobStatus,
    ProviderResultStatus,
    ProviderResultView,
    ProviderSuccessWrite,
    SentimentLabel,
    SentimentView,
    SentimentWrite,
)
from brand_monitor.storage.alembic_runner import upgrade_head
from brand_monitor.storage.common import (
    build_sqlite_engine,
    optional_aware,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from brand_monitor.storage.sqlmodel_models import (
    AnalysisJob,
    CitationRow,
    ProviderResultRow,
    SentimentRow,
)


class ResultsRepository:
    """Writers used by executors and read accessors used by the CLI."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    # Jobs

    def create_job(
        self,
        *,
        scope_id: str,
        subject_id: str,
        total_providers: int,
    ) -> AnalysisJobView:
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = AnalysisJob(
                job_id=str(uuid4()),
                scope_id=scope_id,
                subject_id=subject_id,
                status=JobStatus.RUNNING.value,
                total_providers=total_providers,
                started_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_job_view(row)

    def record_provider_finished(self, *, job_id: str, succeeded: bool) -> None:
        """Atomically bump the job's completed or failed provider counter."""

        counter = "completed_providers" if succeeded else "failed_providers"
        column = col(getattr(AnalysisJob, counter))
        with Session(self.engine) as session:
            session.exec(
                sa_update(AnalysisJob)
                .where(col(AnalysisJob.job_id) == job_id)
                .values({counter: column + 1}),
            )
            session.commit()

    def finish_job(self, *, job_id: str) -> AnalysisJobView:
        """Close a running job: completed if any provider succeeded, else failed."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            session.exec(
                sa_update(AnalysisJob)
                .where(
                    col(AnalysisJob.job_id) == job_id,
                    col(AnalysisJob.status) == JobStatus.RUNNING.value,
                )
                .values(
                    status=case(
                        (col(AnalysisJob.completed_providers) > 0, JobStatus.COMPLETED.value),
                        else_=JobStatus.FAILED.value,
                    ),
                    finished_at=now,
                ),
            )
            session.commit()
            row = session.exec(select(AnalysisJob).where(AnalysisJob.job_id == job_id)).one()
            return _to_job_view(row)

    def abandon_job(self, *, job_id: str) -> bool:
        """Close a running job as failed regardless of its provider counters."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(AnalysisJob)
                .where(
                    col(AnalysisJob.job_id) == job_id,
                    col(AnalysisJob.status) == JobStatus.RUNNING.value,
                )
                .values(status=JobStatus.FAILED.value, finished_at=now),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def get_job(self, job_id: str) -> AnalysisJobView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(AnalysisJob).where(AnalysisJob.job_id == job_id),
            ).one_or_none()
            return _to_job_view(row) if row is not None else None

    def list_jobs(
        self,
        *,
        scope_id: str | None = None,
        subject_id: str | None = None,
        limit: int = 20,
    ) -> list[AnalysisJobView]:
        with Session(self.engine) as session:
            query = select(AnalysisJob)
            if scope_id is not None:
                query = query.where(AnalysisJob.scope_id == scope_id)
            if subject_id is not None:
                query = query.where(AnalysisJob.subject_id == subject_id)
            rows = session.exec(
                query.order_by(col(AnalysisJob.started_at).desc()).limit(limit),
            ).all()
            return [_to_job_view(row) for row in rows]

    def recently_analyzed_subjects(
        self,
        *,
        subject_ids: Iterable[str],
        since: datetime,
    ) -> set[str]:
        """Subjects with a completed job started at or after `since`."""

        wanted = list(subject_ids)
        if not wanted:
            return set()
        with Session(self.engine) as session:
            rows = session.exec(
                select(AnalysisJob.subject_id).where(
                    col(AnalysisJob.subject_id).in_(wanted),
                    AnalysisJob.status == JobStatus.COMPLETED.value,
                    col(AnalysisJob.started_at) >= to_db_datetime(since),
                ),
            ).all()
            return set(rows)

    # Provider results

    def create_provider_result(  # noqa: PLR0913
        self,
        *,
        job_id: str,
        scope_id: str,
        subject_id: str,
        provider: str,
        prompt_text: str,
        model: str | None = None,
    ) -> str:
        """Insert a `processing` row before the provider call starts."""

        now = to_db_datetime(utc_now())
        result_id = str(uuid4())
        with Session(self.engine) as session:
            session.add(
                ProviderResultRow(
                    result_id=result_id,
                    job_id=job_id,
                    scope_id=scope_id,
                    subject_id=subject_id,
                    provider=provider,
                    model=model,
                    prompt_text=prompt_text,
                    status=ProviderResultStatus.PROCESSING.value,
                    created_at=now,
                    updated_at=now,
                ),
            )
            session.commit()
        return result_id

    def complete_provider_result(self, *, result_id: str, payload: ProviderSuccessWrite) -> bool:
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(ProviderResultRow)
                .where(
                    col(ProviderResultRow.result_id) == result_id,
                    col(ProviderResultRow.status) == ProviderResultStatus.PROCESSING.value,
                )
                .values(
                    status=ProviderResultStatus.SUCCESS.value,
                    response_text=payload.response_text,
                    model=payload.model,
                    tokens_used=payload.tokens_used,
                    cost_usd=payload.cost_usd,
                    latency_ms=payload.latency_ms,
                    source_urls_json=json.dumps(list(payload.source_urls)),
                    used_web_search=payload.used_web_search,
                    error_message=None,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def fail_provider_result(self, *, result_id: str, error: str, latency_ms: int) -> bool:
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(ProviderResultRow)
                .where(
                    col(ProviderResultRow.result_id) == result_id,
                    col(ProviderResultRow.status) == ProviderResultStatus.PROCESSING.value,
                )
                .values(
                    status=ProviderResultStatus.ERROR.value,
                    error_message=error,
                    latency_ms=latency_ms,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def get_provider_result(self, result_id: str) -> ProviderResultView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(ProviderResultRow).where(ProviderResultRow.result_id == result_id),
            ).one_or_none()
            return _to_result_view(row) if row is not None else None

    def list_provider_results(
        self,
        *,
        job_id: str | None = None,
        subject_id: str | None = None,
        limit: int = 100,
    ) -> list[ProviderResultView]:
        with Session(self.engine) as session:
            query = select(ProviderResultRow)
            if job_id is not None:
                query = query.where(ProviderResultRow.job_id == job_id)
            if subject_id is not None:
                query = query.where(ProviderResultRow.subject_id == subject_id)
            rows = session.exec(
                query.order_by(
                    col(ProviderResultRow.created_at).desc(),
                    col(ProviderResultRow.provider).asc(),
                ).limit(limit),
            ).all()
            return [_to_result_view(row) for row in rows]

    def unscored_result_page(
        self,
        *,
        page_size: int,
        after_result_id: str | None = None,
        scope_id: str | None = None,
    ) -> list[tuple[str, str]]:
        """One keyset page of successful results that have no sentiment record yet.

        Returns `(result_id, scope_id)` pairs ordered by result id.
        """

        scored = select(SentimentRow.result_id).distinct()
        with Session(self.engine) as session:
            query = select(ProviderResultRow.result_id, ProviderResultRow.scope_id).where(
                ProviderResultRow.status == ProviderResultStatus.SUCCESS.value,
                col(ProviderResultRow.result_id).notin_(scored),
            )
            if scope_id is not None:
                query = query.where(ProviderResultRow.scope_id == scope_id)
            if after_result_id is not None:
                query = query.where(col(ProviderResultRow.result_id) > after_result_id)
            rows = session.exec(
                query.order_by(col(ProviderResultRow.result_id).asc()).limit(page_size),
            ).all()
            return [(str(result_id), str(row_scope)) for result_id, row_scope in rows]

    # Citations

    def add_citations(self, citations: Sequence[CitationWrite]) -> int:
        if not citations:
            return 0
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            for citation in citations:
                session.add(
                    CitationRow(
                        citation_id=str(uuid4()),
                        result_id=citation.result_id,
                        scope_id=citation.scope_id,
                        entity_type=citation.entity_type.value,
                        entity_name=citation.entity_name,
                        competitor_id=citation.competitor_id,
                        matched_text=citation.matched_text,
                        context_before=citation.context_before,
                        context_after=citation.context_after,
                        sentence_position=citation.sentence_position,
                        char_offset=citation.char_offset,
                        confidence_score=citation.confidence_score,
                        source_url=citation.source_url,
                        source_domain=citation.source_domain,
                        compared_with_brand=citation.compared_with_brand,
                        competitive_context=citation.competitive_context,
                        created_at=now,
                    ),
                )
            session.commit()
        return len(citations)

    def list_citations(self, *, result_id: str) -> list[CitationView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(CitationRow)
                .where(CitationRow.result_id == result_id)
                .order_by(col(CitationRow.entity_type).asc(), col(CitationRow.char_offset).asc()),
            ).all()
            return [
                CitationView(
                    citation_id=row.citation_id,
                    result_id=row.result_id,
                    entity_type=EntityType(row.entity_type),
                    entity_name=row.entity_name,
                    matched_text=row.matched_text,
                    sentence_position=row.sentence_position,
                    char_offset=row.char_offset,
                    confidence_score=row.confidence_score,
                    source_url=row.source_url,
                    source_domain=row.source_domain,
                    compared_with_brand=row.compared_with_brand,
                    competitive_context=row.competitive_context,
                )
                for row in rows
            ]

    # Sentiment

    def sentiment_entity_names(self, *, result_id: str) -> set[str]:
        """Entities already scored for one provider result."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(SentimentRow.entity_name).where(SentimentRow.result_id == result_id),
            ).all()
            return set(rows)

    def add_sentiment(self, record: SentimentWrite) -> bool:
        """Insert one sentiment record; returns False if (result, entity) already exists."""

        with Session(self.engine) as session:
            session.add(
                SentimentRow(
                    sentiment_id=str(uuid4()),
                    result_id=record.result_id,
                    scope_id=record.scope_id,
                    entity_type=record.entity_type.value,
                    entity_name=record.entity_name,
                    competitor_id=record.competitor_id,
                    label=record.label.value,
                    score=record.score,
                    positive_score=record.positive_score,
                    negative_score=record.negative_score,
                    positive_attributes_json=json.dumps(list(record.positive_attributes)),
                    negative_attributes_json=json.dumps(list(record.negative_attributes)),
                    analyzed_text=record.analyzed_text,
                    created_at=to_db_datetime(utc_now()),
                ),
            )
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return False
            return True

    def list_sentiment(self, *, result_id: str) -> list[SentimentView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(SentimentRow)
                .where(SentimentRow.result_id == result_id)
                .order_by(col(SentimentRow.entity_type).asc(), col(SentimentRow.entity_name).asc()),
            ).all()
            return [
                SentimentView(
                    sentiment_id=row.sentiment_id,
                    result_id=row.result_id,
                    entity_type=EntityType(row.entity_type),
                    entity_name=row.entity_name,
                    label=SentimentLabel(row.label),
                    score=row.score,
                    positive_score=row.positive_score,
                    negative_score=row.negative_score,
                    positive_attributes=tuple(json.loads(row.positive_attributes_json)),
                    negative_attributes=tuple(json.loads(row.negative_attributes_json)),
                    created_at=to_utc_aware_datetime(row.created_at),
                )
                for row in rows
            ]

    def sentiment_summary(self, *, scope_id: str) -> dict[str, dict[str, int]]:
        """Per-entity label counts for one scope."""

        summary: dict[str, dict[str, int]] = {}
        with Session(self.engine) as session:
            rows = session.exec(
                select(SentimentRow.entity_name, SentimentRow.label, func.count())
                .where(SentimentRow.scope_id == scope_id)
                .group_by(SentimentRow.entity_name, SentimentRow.label),
            ).all()
        for entity_name, label, count in rows:
            bucket = summary.setdefault(entity_name, {option.value: 0 for option in SentimentLabel})
            bucket[label] = int(count)
        return summary


def _to_job_view(row: AnalysisJob) -> AnalysisJobView:
    return AnalysisJobView(
        job_id=row.job_id,
        scope_id=row.scope_id,
        subject_id=row.subject_id,
        status=JobStatus(row.status),
        total_providers=row.total_providers,
        completed_providers=row.completed_providers,
        failed_providers=row.failed_providers,
        started_at=to_utc_aware_datetime(row.started_at),
        finished_at=optional_aware(row.finished_at),
    )


def _to_result_view(row: ProviderResultRow) -> ProviderResultView:
    return ProviderResultView(
        result_id=row.result_id,
        job_id=row.job_id,
        scope_id=row.scope_id,
        subject_id=row.subject_id,
        provider=row.provider,
        model=row.model,
        prompt_text=row.prompt_text,
        response_text=row.response_text,
        tokens_used=row.tokens_used,
        cost_usd=row.cost_usd,
        latency_ms=row.latency_ms,
        status=ProviderResultStatus(row.status),
        error_message=row.error_message,
        source_urls=tuple(json.loads(row.source_urls_json or "[]")),
        used_web_search=row.used_web_search,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
