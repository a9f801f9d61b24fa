"""SQLModel ORM tables for catalog and pipeline storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


class Scope(SQLModel, table=True):
    __tablename__ = "scopes"  # type: ignore[bad-override]

    scope_id: str = Field(primary_key=True)
    name: str = Field(index=True)
    brand_name: str
    brand_domain: str | None = None
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TrackedPrompt(SQLModel, table=True):
    __tablename__ = "tracked_prompts"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_tracked_prompts_scope_active", "scope_id", "is_active"),)

    prompt_id: str = Field(primary_key=True)
    scope_id: str = Field(
        sa_column=Column(
            ForeignKey("scopes.scope_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    prompt_text: str = Field(sa_column=Column(Text, nullable=False))
    is_active: bool = Field(default=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Competitor(SQLModel, table=True):
    __tablename__ = "competitors"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("scope_id", "name", name="uq_competitors_scope_name"),
    )

    competitor_id: str = Field(primary_key=True)
    scope_id: str = Field(
        sa_column=Column(
            ForeignKey("scopes.scope_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    name: str
    domain: str | None = None
    is_active: bool = Field(default=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class QueueItem(SQLModel, table=True):
    __tablename__ = "queue_items"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_queue_items_claim", "kind", "status", "attempts", "created_at"),
        Index("idx_queue_items_stale", "kind", "status", "updated_at"),
        Index("idx_queue_items_subject", "kind", "subject_id", "status"),
    )

    item_id: str = Field(primary_key=True)
    kind: str = Field(index=True)
    subject_id: str
    scope_id: str = Field(index=True)
    status: str = Field(index=True)
    attempts: int = Field(default=0)
    max_attempts: int = Field(default=3)
    batch_id: str | None = Field(default=None, index=True)
    error_message: str | None = Field(default=None, sa_column=Column(Text))
    failure_class: str | None = None
    note: str | None = None
    worker_id: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AnalysisJob(SQLModel, table=True):
    __tablename__ = "analysis_jobs"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_analysis_jobs_subject_time", "subject_id", "started_at"),)

    job_id: str = Field(primary_key=True)
    scope_id: str = Field(index=True)
    subject_id: str
    status: str = Field(index=True)
    total_providers: int = Field(default=0)
    completed_providers: int = Field(default=0)
    failed_providers: int = Field(default=0)
    started_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    finished_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))


class ProviderResultRow(SQLModel, table=True):
    __tablename__ = "provider_results"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("job_id", "provider", name="uq_provider_results_job_provider"),
        Index("idx_provider_results_status_time", "status", "created_at"),
    )

    result_id: str = Field(primary_key=True)
    job_id: str = Field(
        sa_column=Column(
            ForeignKey("analysis_jobs.job_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    scope_id: str = Field(index=True)
    subject_id: str = Field(index=True)
    provider: str
    model: str | None = None
    prompt_text: str = Field(sa_column=Column(Text, nullable=False))
    response_text: str | None = Field(default=None, sa_column=Column(Text))
    tokens_used: int | None = None
    cost_usd: float | None = None
    latency_ms: int | None = None
    status: str
    error_message: str | None = Field(default=None, sa_column=Column(Text))
    source_urls_json: str = Field(default="[]", sa_column=Column(Text, nullable=False))
    used_web_search: bool = Field(default=False)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class CitationRow(SQLModel, table=True):
    __tablename__ = "citation_records"  # type: ignore[bad-override]

    citation_id: str = Field(primary_key=True)
    result_id: str = Field(
        sa_column=Column(
            ForeignKey("provider_results.result_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    scope_id: str = Field(index=True)
    entity_type: str
    entity_name: str
    competitor_id: str | None = None
    matched_text: str = Field(sa_column=Column(Text, nullable=False))
    context_before: str | None = Field(default=None, sa_column=Column(Text))
    context_after: str | None = Field(default=None, sa_column=Column(Text))
    sentence_position: int
    char_offset: int
    confidence_score: float
    source_url: str | None = None
    source_domain: str | None = None
    compared_with_brand: bool = Field(default=False)
    competitive_context: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class SentimentRow(SQLModel, table=True):
    __tablename__ = "sentiment_records"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("result_id", "entity_name", name="uq_sentiment_records_result_entity"),
    )

    sentiment_id: str = Field(primary_key=True)
    result_id: str = Field(
        sa_column=Column(
            ForeignKey("provider_results.result_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    scope_id: str = Field(index=True)
    entity_type: str
    entity_name: str
    competitor_id: str | None = None
    label: str
    score: float
    positive_score: int
    negative_score: int
    positive_attributes_json: str = Field(default="[]", sa_column=Column(Text, nullable=False))
    negative_attributes_json: str = Field(default="[]", sa_column=Column(Text, nullable=False))
    analyzed_text: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
