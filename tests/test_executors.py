from __future__ import annotations

import asyncio

import allure
import pytest

from brand_monitor.catalog.repository import CatalogRepository
from brand_monitor.pipeline.errors import (
    FanOutFailedError,
    NoProvidersConfiguredError,
    SubjectNotFoundError,
)
from brand_monitor.pipeline.executors import (
    PromptAnalysisExecutor,
    PromptAnalysisRequest,
    SentimentAnalysisExecutor,
)
from brand_monitor.pipeline.models import (
    EntityType,
    JobStatus,
    ProviderResultStatus,
    ProviderSuccessWrite,
    QueueItemCreate,
    QueueItemView,
    SentimentLabel,
    SentimentOutcome,
    WorkKind,
)
from brand_monitor.pipeline.queue import QueueRepository
from brand_monitor.pipeline.results import ResultsRepository
from brand_monitor.providers.base import CompletionConfig, CompletionResult, ProviderHTTPError

pytestmark = [
    allure.epic("Analysis Pipeline"),
    allure.feature("Provider Fan-out & Sentiment"),
]

ANSWER = "Acme is the best tool for X. Globex is a cheaper alternative to Acme."
SOURCES = ("https://acme.io/docs", "https://review.net/top-tools")


class _FakeAdapter:
    def __init__(
        self,
        name: str,
        *,
        text: str = ANSWER,
        citations: tuple[str, ...] = SOURCES,
        error: Exception | None = None,
    ) -> None:
        self.name = name
        self.model = f"{name}-model"
        self.text = text
        self.citations = citations
        self.error = error
        self.prompts: list[str] = []

    async def complete(self, prompt: str, config: CompletionConfig | None = None):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return CompletionResult(
            provider=self.name,
            text=self.text,
            tokens_used=42,
            cost_usd=0.0001,
            latency_ms=7,
            model=self.model,
            citations=self.citations,
            used_web_search=bool(self.citations),
        )


def _scope(catalog: CatalogRepository) -> tuple[str, str]:
    scope = catalog.add_scope(name="Acme", brand_name="Acme", brand_domain="acme.io")
    catalog.add_competitor(scope_id=scope.scope_id, name="Globex", domain="globex.com")
    prompt = catalog.add_prompt(scope_id=scope.scope_id, prompt_text="Best tools for X?")
    return scope.scope_id, prompt.prompt_id


def _claim(
    queue: QueueRepository,
    *,
    kind: WorkKind,
    subject_id: str,
    scope_id: str,
) -> QueueItemView:
    queue.enqueue([QueueItemCreate(kind=kind, subject_id=subject_id, scope_id=scope_id)])
    return queue.claim_batch(kind=kind, limit=1, worker_id="test-worker")[0]


def _answer(results: ResultsRepository, *, scope_id: str, subject_id: str, text: str) -> str:
    job = results.create_job(scope_id=scope_id, subject_id=subject_id, total_providers=1)
    result_id = results.create_provider_result(
        job_id=job.job_id,
        scope_id=scope_id,
        subject_id=subject_id,
        provider="claude",
        prompt_text="Best tools for X?",
    )
    results.complete_provider_result(
        result_id=result_id,
        payload=ProviderSuccessWrite(
            response_text=text,
            model="claude-model",
            tokens_used=20,
            cost_usd=0.0,
            latency_ms=3,
        ),
    )
    results.record_provider_finished(job_id=job.job_id, succeeded=True)
    results.finish_job(job_id=job.job_id)
    return result_id


def test_partial_provider_failure_still_completes_job(
    catalog: CatalogRepository,
    results: ResultsRepository,
    queue: QueueRepository,
) -> None:
    scope_id, prompt_id = _scope(catalog)
    adapters = {
        "openai": _FakeAdapter("openai"),
        "gemini": _FakeAdapter("gemini", error=ProviderHTTPError("gemini", 503, "unavailable")),
        "claude": _FakeAdapter("claude", citations=()),
        "perplexity": _FakeAdapter("perplexity", error=RuntimeError("socket closed")),
    }
    executor = PromptAnalysisExecutor(catalog=catalog, results=results, adapters=adapters)
    item = _claim(queue, kind=WorkKind.PROMPT_ANALYSIS, subject_id=prompt_id, scope_id=scope_id)

    execution = asyncio.run(executor.execute(item))

    assert execution.skipped is False
    assert execution.note is not None
    assert execution.note.endswith("2 ok, 2 failed")
    job = results.list_jobs(subject_id=prompt_id)[0]
    assert job.status == JobStatus.COMPLETED
    assert job.completed_providers == 2
    assert job.failed_providers == 2
    assert job.total_providers == 4
    assert job.finished_at is not None

    by_provider = {row.provider: row for row in results.list_provider_results(job_id=job.job_id)}
    assert by_provider["openai"].status == ProviderResultStatus.SUCCESS
    assert by_provider["openai"].source_urls == SOURCES
    assert by_provider["openai"].used_web_search is True
    assert by_provider["openai"].tokens_used == 42
    assert by_provider["claude"].status == ProviderResultStatus.SUCCESS
    assert by_provider["gemini"].status == ProviderResultStatus.ERROR
    assert by_provider["gemini"].error_message == "gemini: HTTP 503: unavailable"
    assert by_provider["perplexity"].error_message == "socket closed"

    citations = results.list_citations(result_id=by_provider["openai"].result_id)
    brand = [row for row in citations if row.entity_type == EntityType.BRAND]
    competitor = [row for row in citations if row.entity_type == EntityType.COMPETITOR]
    assert [row.sentence_position for row in brand] == [0, 1]
    assert [row.source_url for row in brand] == list(SOURCES)
    assert [row.source_domain for row in brand] == ["acme.io", "review.net"]
    assert len(competitor) == 1
    assert competitor[0].entity_name == "Globex"
    assert competitor[0].compared_with_brand is True
    assert competitor[0].competitive_context == "mentioned_together"

    claude_citations = results.list_citations(result_id=by_provider["claude"].result_id)
    assert len(claude_citations) == 3
    assert all(row.source_url is None for row in claude_citations)


def test_all_providers_failing_fails_job_and_raises(
    catalog: CatalogRepository,
    results: ResultsRepository,
) -> None:
    scope_id, prompt_id = _scope(catalog)
    adapters = {
        "openai": _FakeAdapter("openai", error=RuntimeError("429 Too Many Requests")),
        "claude": _FakeAdapter("claude", error=ProviderHTTPError("claude", 401, "bad key")),
    }
    executor = PromptAnalysisExecutor(catalog=catalog, results=results, adapters=adapters)

    with pytest.raises(FanOutFailedError) as raised:
        asyncio.run(
            executor.run(
                PromptAnalysisRequest(
                    subject_id=prompt_id,
                    scope_id=scope_id,
                    prompt_text="Best tools for X?",
                ),
            ),
        )

    assert set(raised.value.errors) == {"openai", "claude"}
    job = results.get_job(raised.value.job_id)
    assert job is not None
    assert job.status == JobStatus.FAILED
    assert job.failed_providers == 2
    assert job.completed_providers == 0


def test_requested_provider_subset_limits_fan_out(
    catalog: CatalogRepository,
    results: ResultsRepository,
) -> None:
    scope_id, prompt_id = _scope(catalog)
    openai = _FakeAdapter("openai")
    claude = _FakeAdapter("claude")
    executor = PromptAnalysisExecutor(
        catalog=catalog,
        results=results,
        adapters={"openai": openai, "claude": claude},
    )

    outcome = asyncio.run(
        executor.run(
            PromptAnalysisRequest(
                subject_id=prompt_id,
                scope_id=scope_id,
                prompt_text="Best tools for X?",
                providers=("claude",),
            ),
        ),
    )

    assert outcome.succeeded == ("claude",)
    assert openai.prompts == []
    assert claude.prompts == ["Best tools for X?"]


def test_no_configured_providers_is_an_input_error(
    catalog: CatalogRepository,
    results: ResultsRepository,
) -> None:
    scope_id, prompt_id = _scope(catalog)
    executor = PromptAnalysisExecutor(catalog=catalog, results=results, adapters={})

    with pytest.raises(NoProvidersConfiguredError):
        asyncio.run(
            executor.run(
                PromptAnalysisRequest(subject_id=prompt_id, scope_id=scope_id, prompt_text="?"),
            ),
        )
    assert results.list_jobs(subject_id=prompt_id) == []


def test_execute_skips_inactive_and_already_analyzed_prompts(
    catalog: CatalogRepository,
    results: ResultsRepository,
    queue: QueueRepository,
) -> None:
    scope_id, prompt_id = _scope(catalog)
    adapter = _FakeAdapter("openai")
    executor = PromptAnalysisExecutor(
        catalog=catalog,
        results=results,
        adapters={"openai": adapter},
    )

    item = _claim(queue, kind=WorkKind.PROMPT_ANALYSIS, subject_id=prompt_id, scope_id=scope_id)
    _answer(results, scope_id=scope_id, subject_id=prompt_id, text=ANSWER)
    redelivered = asyncio.run(executor.execute(item))

    catalog.set_prompt_active(prompt_id, is_active=False)
    inactive = asyncio.run(executor.execute(item))

    assert redelivered.skipped is True
    assert redelivered.note == "already analyzed"
    assert inactive.skipped is True
    assert inactive.note == "prompt inactive"
    assert adapter.prompts == []


def test_execute_raises_for_missing_prompt(
    catalog: CatalogRepository,
    results: ResultsRepository,
    queue: QueueRepository,
) -> None:
    executor = PromptAnalysisExecutor(
        catalog=catalog,
        results=results,
        adapters={"openai": _FakeAdapter("openai")},
    )
    item = _claim(queue, kind=WorkKind.PROMPT_ANALYSIS, subject_id="gone", scope_id="scope")

    with pytest.raises(SubjectNotFoundError, match="gone"):
        asyncio.run(executor.execute(item))


def test_sentiment_scores_each_mentioned_entity_once(
    catalog: CatalogRepository,
    results: ResultsRepository,
) -> None:
    scope_id, prompt_id = _scope(catalog)
    result_id = _answer(
        results,
        scope_id=scope_id,
        subject_id=prompt_id,
        text="Acme is the best tool for X. Globex is not great for this.",
    )
    executor = SentimentAnalysisExecutor(catalog=catalog, results=results)

    first = asyncio.run(executor.run(result_id))
    second = asyncio.run(executor.run(result_id))

    assert first.outcome == SentimentOutcome.ANALYZED
    assert set(first.analyzed_entities) == {"Acme", "Globex"}
    assert second.outcome == SentimentOutcome.SKIPPED
    assert set(second.skipped_entities) == {"Acme", "Globex"}

    records = {row.entity_name: row for row in results.list_sentiment(result_id=result_id)}
    assert len(records) == 2
    assert records["Acme"].label == SentimentLabel.POSITIVE
    assert records["Acme"].entity_type == EntityType.BRAND
    assert "best" in records["Acme"].positive_attributes
    assert records["Globex"].label == SentimentLabel.NEGATIVE
    assert records["Globex"].entity_type == EntityType.COMPETITOR
    assert results.sentiment_summary(scope_id=scope_id)["Acme"]["positive"] == 1


def test_sentiment_without_tracked_entities_completes_with_note(
    catalog: CatalogRepository,
    results: ResultsRepository,
    queue: QueueRepository,
) -> None:
    scope_id, prompt_id = _scope(catalog)
    result_id = _answer(
        results,
        scope_id=scope_id,
        subject_id=prompt_id,
        text="There are many tools for X. Pick whichever fits.",
    )
    executor = SentimentAnalysisExecutor(catalog=catalog, results=results)
    item = _claim(queue, kind=WorkKind.SENTIMENT_ANALYSIS, subject_id=result_id, scope_id=scope_id)

    execution = asyncio.run(executor.execute(item))

    assert execution.skipped is False
    assert execution.note == "no tracked entities mentioned"
    assert results.list_sentiment(result_id=result_id) == []


def test_sentiment_rejects_failed_provider_results(
    catalog: CatalogRepository,
    results: ResultsRepository,
) -> None:
    scope_id, prompt_id = _scope(catalog)
    job = results.create_job(scope_id=scope_id, subject_id=prompt_id, total_providers=1)
    result_id = results.create_provider_result(
        job_id=job.job_id,
        scope_id=scope_id,
        subject_id=prompt_id,
        provider="gemini",
        prompt_text="Best tools for X?",
    )
    results.fail_provider_result(result_id=result_id, error="HTTP 500", latency_ms=10)
    executor = SentimentAnalysisExecutor(catalog=catalog, results=results)

    with pytest.raises(SubjectNotFoundError, match="no answer"):
        asyncio.run(executor.run(result_id))
    with pytest.raises(SubjectNotFoundError, match="not found"):
        asyncio.run(executor.run("missing-result"))


def test_citation_write_failure_leaves_prompt_for_a_full_retry(
    catalog: CatalogRepository,
    results: ResultsRepository,
    queue: QueueRepository,
    monkeypatch,
) -> None:
    scope_id, prompt_id = _scope(catalog)
    executor = PromptAnalysisExecutor(
        catalog=catalog,
        results=results,
        adapters={"openai": _FakeAdapter("openai")},
    )
    item = _claim(queue, kind=WorkKind.PROMPT_ANALYSIS, subject_id=prompt_id, scope_id=scope_id)
    original = results.add_citations
    calls: list[int] = []

    def _locked_once(writes):
        calls.append(len(writes))
        if len(calls) == 1:
            raise RuntimeError("database is locked")
        return original(writes)

    monkeypatch.setattr(results, "add_citations", _locked_once)

    with pytest.raises(RuntimeError, match="database is locked"):
        asyncio.run(executor.execute(item))
    abandoned = results.list_jobs(subject_id=prompt_id)
    assert [job.status for job in abandoned] == [JobStatus.FAILED]
    assert abandoned[0].finished_at is not None

    retry = asyncio.run(executor.execute(item))

    assert retry.skipped is False
    jobs = results.list_jobs(subject_id=prompt_id)
    assert sorted(job.status.value for job in jobs) == ["completed", "failed"]
    completed = next(job for job in jobs if job.status is JobStatus.COMPLETED)
    answer = results.list_provider_results(job_id=completed.job_id)[0]
    citations = results.list_citations(result_id=answer.result_id)
    assert {citation.entity_name for citation in citations} == {"Acme", "Globex"}
