"""Domain models for the work queue, analysis jobs and extracted records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class WorkKind(str, Enum):
    """Kinds of work that flow through the shared queue."""

    PROMPT_ANALYSIS = "prompt_analysis"
    SENTIMENT_ANALYSIS = "sentiment_analysis"


class QueueItemStatus(str, Enum):
    """Durable queue item lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ProviderResultStatus(str, Enum):
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"


class EntityType(str, Enum):
    BRAND = "brand"
    COMPETITOR = "competitor"


class SentimentLabel(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class SentimentOutcome(str, Enum):
    """Result of one sentiment unit of work."""

    ANALYZED = "analyzed"
    SKIPPED = "skipped"
    NO_ENTITIES = "no_entities"


class FailureClass(str, Enum):
    """Normalized failure classes recorded on failed queue items."""

    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    PROVIDER_TRANSIENT = "provider_transient"
    PROVIDER_NON_RETRYABLE = "provider_non_retryable"
    INPUT_MISSING = "input_missing"
    FAN_OUT_FAILED = "fan_out_failed"
    UNEXPECTED = "unexpected"


@dataclass(slots=True, frozen=True)
class QueueItemCreate:
    """Input payload for enqueuing one unit of work."""

    kind: WorkKind
    subject_id: str
    scope_id: str
    max_attempts: int = 3


@dataclass(slots=True)
class QueueItemView:
    """Readable queue item view for CLI and worker logic."""

    item_id: str
    kind: WorkKind
    subject_id: str
    scope_id: str
    status: QueueItemStatus
    attempts: int
    max_attempts: int
    batch_id: str | None
    error_message: str | None
    failure_class: FailureClass | None
    note: str | None
    worker_id: str | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class EnqueueReport:
    """Outcome of a chunked bulk insert."""

    batch_id: str
    inserted: int = 0
    failed: int = 0
    failed_chunks: int = 0


@dataclass(slots=True)
class AnalysisJobView:
    job_id: str
    scope_id: str
    subject_id: str
    status: JobStatus
    total_providers: int
    completed_providers: int
    failed_providers: int
    started_at: datetime
    finished_at: datetime | None


@dataclass(slots=True)
class ProviderResultView:
    result_id: str
    job_id: str
    scope_id: str
    subject_id: str
    provider: str
    model: str | None
    prompt_text: str
    response_text: str | None
    tokens_used: int | None
    cost_usd: float | None
    latency_ms: int | None
    status: ProviderResultStatus
    error_message: str | None
    source_urls: tuple[str, ...]
    used_web_search: bool
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class ProviderSuccessWrite:
    """Fields written when a provider call succeeds."""

    response_text: str
    model: str
    tokens_used: int
    cost_usd: float
    latency_ms: int
    source_urls: tuple[str, ...] = ()
    used_web_search: bool = False


@dataclass(slots=True)
class CitationWrite:
    """Append-only citation record payload."""

    result_id: str
    scope_id: str
    entity_type: EntityType
    entity_name: str
    matched_text: str
    sentence_position: int
    char_offset: int
    confidence_score: float
    competitor_id: str | None = None
    context_before: str | None = None
    context_after: str | None = None
    source_url: str | None = None
    source_domain: str | None = None
    compared_with_brand: bool = False
    competitive_context: str | None = None


@dataclass(slots=True)
class CitationView:
    citation_id: str
    result_id: str
    entity_type: EntityType
    entity_name: str
    matched_text: str
    sentence_position: int
    char_offset: int
    confidence_score: float
    source_url: str | None
    source_domain: str | None
    compared_with_brand: bool
    competitive_context: str | None


@dataclass(slots=True)
class SentimentWrite:
    """Append-only sentiment record payload."""

    result_id: str
    scope_id: str
    entity_type: EntityType
    entity_name: str
    label: SentimentLabel
    score: float
    positive_score: int
    negative_score: int
    analyzed_text: str
    competitor_id: str | None = None
    positive_attributes: tuple[str, ...] = ()
    negative_attributes: tuple[str, ...] = ()


@dataclass(slots=True)
class SentimentView:
    sentiment_id: str
    result_id: str
    entity_type: EntityType
    entity_name: str
    label: SentimentLabel
    score: float
    positive_score: int
    negative_score: int
    positive_attributes: tuple[str, ...]
    negative_attributes: tuple[str, ...]
    created_at: datetime


@dataclass(slots=True, frozen=True)
class TrackedEntity:
    """Brand or competitor name searched for in provider answers."""

    name: str
    entity_type: EntityType
    competitor_id: str | None = None


@dataclass(slots=True)
class PromptAnalysisOutcome:
    """Summary of one provider fan-out."""

    job_id: str
    status: JobStatus
    succeeded: tuple[str, ...] = ()
    failed: tuple[str, ...] = ()
    citations: int = 0
    errors: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class ExecutionResult:
    """What a worker records for a successfully handled queue item."""

    skipped: bool = False
    note: str | None = None


@dataclass(slots=True)
class SentimentAnalysisOutcome:
    result_id: str
    outcome: SentimentOutcome
    analyzed_entities: tuple[str, ...] = ()
    skipped_entities: tuple[str, ...] = ()
