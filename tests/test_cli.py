from __future__ import annotations

import re
from pathlib import Path

import allure
from click.testing import CliRunner

from brand_monitor import __version__
from brand_monitor.main import brand_monitor
from brand_monitor.pipeline.models import ProviderSuccessWrite, SentimentLabel
from brand_monitor.pipeline.results import ResultsRepository

pytestmark = [
    allure.epic("Operations"),
    allure.feature("CLI"),
]


def _invoke(runner: CliRunner, *args: str):
    return runner.invoke(brand_monitor, list(args), catch_exceptions=False)


def _scope_with_prompts(runner: CliRunner, db_path: Path, *prompts: str) -> str:
    created = _invoke(
        runner,
        "catalog",
        "add-scope",
        "--db-path",
        str(db_path),
        "--name",
        "Acme CRM",
        "--brand",
        "Acme",
        "--domain",
        "acme.io",
    )
    assert created.exit_code == 0, created.output
    match = re.search(r"scope_id=(\S+)", created.output)
    assert match is not None
    scope_id = match.group(1)
    for prompt in prompts:
        added = _invoke(
            runner,
            "catalog",
            "add-prompt",
            "--db-path",
            str(db_path),
            "--scope-id",
            scope_id,
            "--text",
            prompt,
        )
        assert added.exit_code == 0, added.output
    return scope_id


def test_catalog_commands_create_and_list_entities(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()
    scope_id = _scope_with_prompts(runner, db_path, "Best CRM for startups?")

    competitor = _invoke(
        runner,
        "catalog",
        "add-competitor",
        "--db-path",
        str(db_path),
        "--scope-id",
        scope_id,
        "--name",
        "Globex",
    )
    listing = _invoke(runner, "catalog", "list", "--db-path", str(db_path))
    missing = _invoke(
        runner,
        "catalog",
        "list",
        "--db-path",
        str(db_path),
        "--scope-id",
        "nope",
    )

    assert competitor.exit_code == 0
    assert "Competitor created:" in competitor.output
    assert "Scopes: 1" in listing.output
    assert "brand=Acme domain=acme.io active=True prompts=1 competitors=1" in listing.output
    assert "text=Best CRM for startups?" in listing.output
    assert "name=Globex domain=-" in listing.output
    assert "Scope not found: nope" in missing.output


def test_add_prompt_to_unknown_scope_fails_cleanly(tmp_path: Path) -> None:
    runner = CliRunner()
    result = runner.invoke(
        brand_monitor,
        [
            "catalog",
            "add-prompt",
            "--db-path",
            str(tmp_path / "cli.db"),
            "--scope-id",
            "missing",
            "--text",
            "Anything?",
        ],
    )

    assert result.exit_code == 1
    assert "Scope not found: missing" in result.output


def test_dispatch_without_launch_then_inspect_queue(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()
    _scope_with_prompts(runner, db_path, "Best CRM?", "Cheapest CRM?")

    dispatched = _invoke(runner, "dispatch", "run", "--db-path", str(db_path), "--no-launch")
    again = _invoke(runner, "dispatch", "run", "--db-path", str(db_path), "--no-launch")
    listing = _invoke(runner, "queue", "list", "--db-path", str(db_path), "--status", "pending")
    stats = _invoke(
        runner,
        "queue",
        "stats",
        "--db-path",
        str(db_path),
        "--kind",
        "prompt_analysis",
    )

    assert dispatched.exit_code == 0, dispatched.output
    assert "Dispatch prompt_analysis: scanned=2 already_open=0 enqueued=2" in dispatched.output
    assert "workers_launched=0" in dispatched.output
    assert "already_open=2 enqueued=0" in again.output
    assert "batch_id=-" in again.output
    assert "Queue items: 2" in listing.output
    assert "attempts=0/3" in listing.output
    assert (
        "Queue prompt_analysis: pending=2 processing=0 completed=0 failed=0 eligible=2"
        in stats.output
    )


def test_worker_without_providers_records_retryable_failure(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()
    _scope_with_prompts(runner, db_path, "Best CRM?")
    _invoke(runner, "dispatch", "run", "--db-path", str(db_path), "--no-launch")

    worked = _invoke(runner, "worker", "run", "--db-path", str(db_path), "--chain", "none")
    listing = _invoke(runner, "queue", "list", "--db-path", str(db_path))

    assert worked.exit_code == 0, worked.output
    assert "Worker prompt_analysis gen=0: claimed=1 succeeded=0" in worked.output
    assert "retried=1 failed=0" in worked.output
    assert "remaining=1 successor=False" in worked.output
    assert "status=pending attempts=1/3" in listing.output
    assert "error: [Attempt 1/3] No provider adapters are configured" in listing.output


def test_requeue_rejects_unknown_item(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()
    _scope_with_prompts(runner, db_path)

    result = runner.invoke(
        brand_monitor,
        ["queue", "requeue", "--db-path", str(db_path), "no-such-item"],
    )

    assert result.exit_code == 1
    assert "Queue item not found: no-such-item" in result.output


def test_reset_stale_and_missing_job(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()

    reset = _invoke(
        runner,
        "queue",
        "reset-stale",
        "--db-path",
        str(db_path),
        "--older-than-seconds",
        "30",
    )
    job = _invoke(runner, "results", "job", "--db-path", str(db_path), "nope")
    history = _invoke(runner, "results", "subject", "--db-path", str(db_path), "prompt-1")

    assert "Stale items reset: 0 (older than 30s)" in reset.output
    assert "Job not found: nope" in job.output
    assert "Jobs for prompt-1: 0" in history.output


def test_sentiment_dispatch_with_wait_scores_answers_in_process(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()
    scope_id = _scope_with_prompts(runner, db_path, "Best CRM?")
    results = ResultsRepository(db_path)
    job = results.create_job(scope_id=scope_id, subject_id="prompt-1", total_providers=1)
    result_id = results.create_provider_result(
        job_id=job.job_id,
        scope_id=scope_id,
        subject_id="prompt-1",
        provider="perplexity",
        prompt_text="Best CRM?",
    )
    results.complete_provider_result(
        result_id=result_id,
        payload=ProviderSuccessWrite(
            response_text="Acme is the best CRM for small teams.",
            model="sonar-pro",
            tokens_used=30,
            cost_usd=0.000045,
            latency_ms=900,
            source_urls=("https://review.net/crm",),
            used_web_search=True,
        ),
    )
    results.record_provider_finished(job_id=job.job_id, succeeded=True)
    results.finish_job(job_id=job.job_id)

    dispatched = _invoke(
        runner,
        "dispatch",
        "run",
        "--db-path",
        str(db_path),
        "--kind",
        "sentiment_analysis",
        "--wait",
    )
    inspected = _invoke(runner, "results", "job", "--db-path", str(db_path), job.job_id)
    sentiment = results.list_sentiment(result_id=result_id)
    results.close()

    assert dispatched.exit_code == 0, dispatched.output
    assert "Dispatch sentiment_analysis: scanned=1 already_open=0 enqueued=1" in dispatched.output
    assert "Workers finished: invocations=1 claimed=1 succeeded=1" in dispatched.output
    assert len(sentiment) == 1
    assert sentiment[0].label == SentimentLabel.POSITIVE
    assert "Status: completed" in inspected.output
    assert "provider=perplexity status=success model=sonar-pro" in inspected.output
    assert "sentiment Acme label=positive" in inspected.output


def test_version_option() -> None:
    result = CliRunner().invoke(brand_monitor, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output
