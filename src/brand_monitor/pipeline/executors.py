"""Units of work run by queue workers.

Both executors are idempotent per subject: prompt analysis skips subjects
already analyzed after the item was enqueued, and sentiment analysis skips
entities that already have a record for the provider result.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass

from brand_monitor.catalog.repository import CatalogRepository
from brand_monitor.extraction.citations import extract_mentions, sentences_mentioning
from brand_monitor.extraction.competitive import compared_with_brand, competitive_context
from brand_monitor.extraction.sentiment import SentimentClassifier
from brand_monitor.pipeline.errors import (
    FanOutFailedError,
    NoProvidersConfiguredError,
    SubjectNotFoundError,
)
from brand_monitor.pipeline.models import (
    CitationWrite,
    EntityType,
    ExecutionResult,
    JobStatus,
    PromptAnalysisOutcome,
    ProviderResultStatus,
    ProviderSuccessWrite,
    QueueItemView,
    SentimentAnalysisOutcome,
    SentimentOutcome,
    SentimentWrite,
    TrackedEntity,
    WorkKind,
)
from brand_monitor.pipeline.results import ResultsRepository
from brand_monitor.providers.base import CompletionConfig, CompletionResult, ProviderAdapter

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class PromptAnalysisRequest:
    subject_id: str
    scope_id: str
    prompt_text: str
    providers: tuple[str, ...] | None = None


@dataclass(slots=True)
class _ProviderCall:
    provider: str
    result_id: str | None
    completion: CompletionResult | None = None
    error: str | None = None


class PromptAnalysisExecutor:
    """Fan one tracked prompt out to every configured provider."""

    kind = WorkKind.PROMPT_ANALYSIS

    def __init__(
        self,
        *,
        catalog: CatalogRepository,
        results: ResultsRepository,
        adapters: Mapping[str, ProviderAdapter],
        completion_config: CompletionConfig | None = None,
    ) -> None:
        self._catalog = catalog
        self._results = results
        self._adapters = dict(adapters)
        self._completion_config = completion_config or CompletionConfig()

    async def execute(self, item: QueueItemView) -> ExecutionResult:
        prompt = await asyncio.to_thread(self._catalog.get_prompt, item.subject_id)
        if prompt is None:
            raise SubjectNotFoundError(item.kind.value, item.subject_id)
        if not prompt.is_active:
            return ExecutionResult(skipped=True, note="prompt inactive")

        # A previous delivery of this item may have finished the fan-out
        # before its queue update was lost.
        already_done = await asyncio.to_thread(
            self._results.recently_analyzed_subjects,
            subject_ids=[item.subject_id],
            since=item.created_at,
        )
        if already_done:
            return ExecutionResult(skipped=True, note="already analyzed")

        outcome = await self.run(
            PromptAnalysisRequest(
                subject_id=prompt.prompt_id,
                scope_id=prompt.scope_id,
                prompt_text=prompt.prompt_text,
            ),
        )
        note = f"job {outcome.job_id}: {len(outcome.succeeded)} ok, {len(outcome.failed)} failed"
        return ExecutionResult(note=note)

    async def run(self, request: PromptAnalysisRequest) -> PromptAnalysisOutcome:
        """Run the fan-out, persist every provider answer and its citations.

        Raises `FanOutFailedError` when no provider succeeded so the queue
        item is retried.
        """

        targets = self._targets(request.providers)
        if not targets:
            raise NoProvidersConfiguredError()

        job = await asyncio.to_thread(
            self._results.create_job,
            scope_id=request.scope_id,
            subject_id=request.subject_id,
            total_providers=len(targets),
        )
        settled = await asyncio.gather(
            *(self._call_provider(job.job_id, request, name, targets[name]) for name in targets),
            return_exceptions=True,
        )

        calls: list[_ProviderCall] = []
        for name, outcome in zip(targets, settled, strict=True):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Provider %s bookkeeping failed for job %s: %s",
                    name,
                    job.job_id,
                    outcome,
                )
                calls.append(_ProviderCall(provider=name, result_id=None, error=str(outcome)))
                continue
            calls.append(outcome)

        successes = [call for call in calls if call.completion is not None and call.result_id]
        # The job only completes once its citations are stored; a completed
        # job makes redeliveries of the item skip.
        try:
            citations = await self._write_citations(request, successes)
        except Exception:
            await asyncio.to_thread(self._results.abandon_job, job_id=job.job_id)
            raise

        finished = await asyncio.to_thread(self._results.finish_job, job_id=job.job_id)
        errors = {call.provider: call.error for call in calls if call.error is not None}
        if finished.status is JobStatus.FAILED:
            raise FanOutFailedError(job.job_id, errors)

        logger.info(
            "Job %s finished: %d/%d providers succeeded, %d citation(s)",
            job.job_id,
            len(successes),
            len(targets),
            citations,
        )
        return PromptAnalysisOutcome(
            job_id=job.job_id,
            status=finished.status,
            succeeded=tuple(call.provider for call in successes),
            failed=tuple(sorted(errors)),
            citations=citations,
            errors=errors,
        )

    async def _write_citations(
        self,
        request: PromptAnalysisRequest,
        successes: list[_ProviderCall],
    ) -> int:
        if not successes:
            return 0
        entities = await asyncio.to_thread(self._catalog.tracked_entities, request.scope_id)
        citations = 0
        for call in successes:
            writes = build_citation_writes(
                result_id=call.result_id or "",
                scope_id=request.scope_id,
                text=call.completion.text if call.completion else "",
                source_urls=call.completion.citations if call.completion else (),
                entities=entities,
            )
            citations += await asyncio.to_thread(self._results.add_citations, writes)
        return citations

    def _targets(self, requested: tuple[str, ...] | None) -> dict[str, ProviderAdapter]:
        if requested is None:
            return dict(self._adapters)
        return {name: self._adapters[name] for name in requested if name in self._adapters}

    async def _call_provider(
        self,
        job_id: str,
        request: PromptAnalysisRequest,
        name: str,
        adapter: ProviderAdapter,
    ) -> _ProviderCall:
        result_id = await asyncio.to_thread(
            self._results.create_provider_result,
            job_id=job_id,
            scope_id=request.scope_id,
            subject_id=request.subject_id,
            provider=name,
            prompt_text=request.prompt_text,
            model=adapter.model,
        )
        started = time.monotonic()
        try:
            completion = await adapter.complete(request.prompt_text, self._completion_config)
        except Exception as exc:  # noqa: BLE001
            latency_ms = int((time.monotonic() - started) * 1000)
            message = str(exc) or type(exc).__name__
            logger.warning("Provider %s failed for job %s: %s", name, job_id, message)
            await asyncio.to_thread(
                self._results.fail_provider_result,
                result_id=result_id,
                error=message,
                latency_ms=latency_ms,
            )
            await asyncio.to_thread(
                self._results.record_provider_finished,
                job_id=job_id,
                succeeded=False,
            )
            return _ProviderCall(provider=name, result_id=result_id, error=message)

        await asyncio.to_thread(
            self._results.complete_provider_result,
            result_id=result_id,
            payload=ProviderSuccessWrite(
                response_text=completion.text,
                model=completion.model,
                tokens_used=completion.tokens_used,
                cost_usd=completion.cost_usd,
                latency_ms=completion.latency_ms,
                source_urls=completion.citations,
                used_web_search=completion.used_web_search,
            ),
        )
        await asyncio.to_thread(
            self._results.record_provider_finished,
            job_id=job_id,
            succeeded=True,
        )
        return _ProviderCall(provider=name, result_id=result_id, completion=completion)


def build_citation_writes(
    *,
    result_id: str,
    scope_id: str,
    text: str,
    source_urls: tuple[str, ...],
    entities: list[TrackedEntity],
) -> list[CitationWrite]:
    """Citation records for the brand and every competitor mentioned in `text`."""

    brand_name = next(
        (entity.name for entity in entities if entity.entity_type is EntityType.BRAND),
        None,
    )
    writes: list[CitationWrite] = []
    for entity in entities:
        for mention in extract_mentions(text, entity.name, source_urls):
            context = None
            compared = False
            if entity.entity_type is EntityType.COMPETITOR and brand_name is not None:
                context = competitive_context(mention.text, brand_name, entity.name)
                compared = compared_with_brand(mention.text, brand_name)
            writes.append(
                CitationWrite(
                    result_id=result_id,
                    scope_id=scope_id,
                    entity_type=entity.entity_type,
                    entity_name=entity.name,
                    competitor_id=entity.competitor_id,
                    matched_text=mention.text,
                    context_before=mention.context_before,
                    context_after=mention.context_after,
                    sentence_position=mention.position,
                    char_offset=mention.char_offset,
                    confidence_score=mention.confidence,
                    source_url=mention.source_url,
                    source_domain=mention.source_domain,
                    compared_with_brand=compared,
                    competitive_context=context.value if context is not None else None,
                ),
            )
    return writes


class SentimentAnalysisExecutor:
    """Score sentiment for every tracked entity mentioned in one provider answer."""

    kind = WorkKind.SENTIMENT_ANALYSIS

    def __init__(
        self,
        *,
        catalog: CatalogRepository,
        results: ResultsRepository,
        classifier: SentimentClassifier | None = None,
    ) -> None:
        self._catalog = catalog
        self._results = results
        self._classifier = classifier or SentimentClassifier()

    async def execute(self, item: QueueItemView) -> ExecutionResult:
        outcome = await self.run(item.subject_id)
        if outcome.outcome is SentimentOutcome.NO_ENTITIES:
            return ExecutionResult(note="no tracked entities mentioned")
        if outcome.outcome is SentimentOutcome.SKIPPED:
            return ExecutionResult(skipped=True, note="already analyzed")
        return ExecutionResult(note=f"analyzed {len(outcome.analyzed_entities)} entities")

    async def run(self, result_id: str) -> SentimentAnalysisOutcome:
        result = await asyncio.to_thread(self._results.get_provider_result, result_id)
        if result is None:
            raise SubjectNotFoundError(self.kind.value, result_id)
        if result.status is not ProviderResultStatus.SUCCESS or not result.response_text:
            raise SubjectNotFoundError(self.kind.value, result_id, "provider result has no answer")

        text = result.response_text
        entities = await asyncio.to_thread(self._catalog.tracked_entities, result.scope_id)
        mentioned = [entity for entity in entities if sentences_mentioning(text, entity.name)]
        if not mentioned:
            return SentimentAnalysisOutcome(
                result_id=result_id,
                outcome=SentimentOutcome.NO_ENTITIES,
            )

        done = await asyncio.to_thread(self._results.sentiment_entity_names, result_id=result_id)
        analyzed: list[str] = []
        skipped: list[str] = []
        for entity in mentioned:
            if entity.name in done:
                skipped.append(entity.name)
                continue
            sentences = sentences_mentioning(text, entity.name)
            score = self._classifier.classify_many(sentences)
            inserted = await asyncio.to_thread(
                self._results.add_sentiment,
                SentimentWrite(
                    result_id=result_id,
                    scope_id=result.scope_id,
                    entity_type=entity.entity_type,
                    entity_name=entity.name,
                    competitor_id=entity.competitor_id,
                    label=score.label,
                    score=score.score,
                    positive_score=score.positive_score,
                    negative_score=score.negative_score,
                    positive_attributes=score.positive_terms,
                    negative_attributes=score.negative_terms,
                    analyzed_text=" ".join(sentences),
                ),
            )
            (analyzed if inserted else skipped).append(entity.name)

        return SentimentAnalysisOutcome(
            result_id=result_id,
            outcome=SentimentOutcome.ANALYZED if analyzed else SentimentOutcome.SKIPPED,
            analyzed_entities=tuple(analyzed),
            skipped_entities=tuple(skipped),
        )
