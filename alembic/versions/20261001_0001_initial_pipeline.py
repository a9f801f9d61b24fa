"""Initial catalog, queue and analysis result schema."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261001_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "scopes",
        sa.Column("scope_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("brand_name", sa.String(), nullable=False),
        sa.Column("brand_domain", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("scope_id"),
    )
    op.create_index("ix_scopes_name", "scopes", ["name"], unique=False)
    op.create_index("ix_scopes_is_active", "scopes", ["is_active"], unique=False)

    op.create_table(
        "tracked_prompts",
        sa.Column("prompt_id", sa.String(), nullable=False),
        sa.Column("scope_id", sa.String(), nullable=False),
        sa.Column("prompt_text", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["scope_id"], ["scopes.scope_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("prompt_id"),
    )
    op.create_index("ix_tracked_prompts_scope_id", "tracked_prompts", ["scope_id"], unique=False)
    op.create_index(
        "idx_tracked_prompts_scope_active",
        "tracked_prompts",
        ["scope_id", "is_active"],
        unique=False,
    )

    op.create_table(
        "competitors",
        sa.Column("competitor_id", sa.String(), nullable=False),
        sa.Column("scope_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("domain", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["scope_id"], ["scopes.scope_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("competitor_id"),
        sa.UniqueConstraint("scope_id", "name", name="uq_competitors_scope_name"),
    )
    op.create_index("ix_competitors_scope_id", "competitors", ["scope_id"], unique=False)

    op.create_table(
        "queue_items",
        sa.Column("item_id", sa.String(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("subject_id", sa.String(), nullable=False),
        sa.Column("scope_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default=sa.text("3")),
        sa.Column("batch_id", sa.String(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("failure_class", sa.String(), nullable=True),
        sa.Column("note", sa.String(), nullable=True),
        sa.Column("worker_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("item_id"),
    )
    op.create_index("ix_queue_items_kind", "queue_items", ["kind"], unique=False)
    op.create_index("ix_queue_items_scope_id", "queue_items", ["scope_id"], unique=False)
    op.create_index("ix_queue_items_status", "queue_items", ["status"], unique=False)
    op.create_index("ix_queue_items_batch_id", "queue_items", ["batch_id"], unique=False)
    op.create_index(
        "idx_queue_items_claim",
        "queue_items",
        ["kind", "status", "attempts", "created_at"],
        unique=False,
    )
    op.create_index(
        "idx_queue_items_stale",
        "queue_items",
        ["kind", "status", "updated_at"],
        unique=False,
    )
    op.create_index(
        "idx_queue_items_subject",
        "queue_items",
        ["kind", "subject_id", "status"],
        unique=False,
    )

    op.create_table(
        "analysis_jobs",
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("scope_id", sa.String(), nullable=False),
        sa.Column("subject_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("total_providers", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "completed_providers",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column("failed_providers", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("job_id"),
    )
    op.create_index("ix_analysis_jobs_scope_id", "analysis_jobs", ["scope_id"], unique=False)
    op.create_index("ix_analysis_jobs_status", "analysis_jobs", ["status"], unique=False)
    op.create_index(
        "idx_analysis_jobs_subject_time",
        "analysis_jobs",
        ["subject_id", "started_at"],
        unique=False,
    )

    op.create_table(
        "provider_results",
        sa.Column("result_id", sa.String(), nullable=False),
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("scope_id", sa.String(), nullable=False),
        sa.Column("subject_id", sa.String(), nullable=False),
        sa.Column("provider", sa.String(), nullable=False),
        sa.Column("model", sa.String(), nullable=True),
        sa.Column("prompt_text", sa.Text(), nullable=False),
        sa.Column("response_text", sa.Text(), nullable=True),
        sa.Column("tokens_used", sa.Integer(), nullable=True),
        sa.Column("cost_usd", sa.Float(), nullable=True),
        sa.Column("latency_ms", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("source_urls_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column(
            "used_web_search",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["job_id"], ["analysis_jobs.job_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("result_id"),
        sa.UniqueConstraint("job_id", "provider", name="uq_provider_results_job_provider"),
    )
    op.create_index("ix_provider_results_job_id", "provider_results", ["job_id"], unique=False)
    op.create_index(
        "ix_provider_results_scope_id",
        "provider_results",
        ["scope_id"],
        unique=False,
    )
    op.create_index(
        "ix_provider_results_subject_id",
        "provider_results",
        ["subject_id"],
        unique=False,
    )
    op.create_index(
        "idx_provider_results_status_time",
        "provider_results",
        ["status", "created_at"],
        unique=False,
    )

    op.create_table(
        "citation_records",
        sa.Column("citation_id", sa.String(), nullable=False),
        sa.Column("result_id", sa.String(), nullable=False),
        sa.Column("scope_id", sa.String(), nullable=False),
        sa.Column("entity_type", sa.String(), nullable=False),
        sa.Column("entity_name", sa.String(), nullable=False),
        sa.Column("competitor_id", sa.String(), nullable=True),
        sa.Column("matched_text", sa.Text(), nullable=False),
        sa.Column("context_before", sa.Text(), nullable=True),
        sa.Column("context_after", sa.Text(), nullable=True),
        sa.Column("sentence_position", sa.Integer(), nullable=False),
        sa.Column("char_offset", sa.Integer(), nullable=False),
        sa.Column("confidence_score", sa.Float(), nullable=False),
        sa.Column("source_url", sa.String(), nullable=True),
        sa.Column("source_domain", sa.String(), nullable=True),
        sa.Column(
            "compared_with_brand",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column("competitive_context", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["result_id"],
            ["provider_results.result_id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("citation_id"),
    )
    op.create_index(
        "ix_citation_records_result_id",
        "citation_records",
        ["result_id"],
        unique=False,
    )
    op.create_index(
        "ix_citation_records_scope_id",
        "citation_records",
        ["scope_id"],
        unique=False,
    )

    op.create_table(
        "sentiment_records",
        sa.Column("sentiment_id", sa.String(), nullable=False),
        sa.Column("result_id", sa.String(), nullable=False),
        sa.Column("scope_id", sa.String(), nullable=False),
        sa.Column("entity_type", sa.String(), nullable=False),
        sa.Column("entity_name", sa.String(), nullable=False),
        sa.Column("competitor_id", sa.String(), nullable=True),
        sa.Column("label", sa.String(), nullable=False),
        sa.Column("score", sa.Float(), nullable=False),
        sa.Column("positive_score", sa.Integer(), nullable=False),
        sa.Column("negative_score", sa.Integer(), nullable=False),
        sa.Column("positive_attributes_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("negative_attributes_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("analyzed_text", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["result_id"],
            ["provider_results.result_id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("sentiment_id"),
        sa.UniqueConstraint(
            "result_id",
            "entity_name",
            name="uq_sentiment_records_result_entity",
        ),
    )
    op.create_index(
        "ix_sentiment_records_result_id",
        "sentiment_records",
        ["result_id"],
        unique=False,
    )
    op.create_index(
        "ix_sentiment_records_scope_id",
        "sentiment_records",
        ["scope_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_table("sentiment_records")
    op.drop_table("citation_records")
    op.drop_table("provider_results")
    op.drop_table("analysis_jobs")
    op.drop_table("queue_items")
    op.drop_table("competitors")
    op.drop_table("tracked_prompts")
    op.drop_table("scopes")
