"""CLI entrypoint for brand-monitor."""

import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from brand_monitor import __version__
from brand_monitor.pipeline.controllers import (
    CHAIN_MODES,
    CatalogAddCompetitorCommand,
    CatalogAddPromptCommand,
    CatalogAddScopeCommand,
    CatalogListCommand,
    DispatchCommand,
    PipelineCliController,
    QueueListCommand,
    QueueRequeueCommand,
    QueueResetStaleCommand,
    QueueStatsCommand,
    ResultsJobCommand,
    ResultsSubjectCommand,
    WorkerRunCommand,
)
from brand_monitor.pipeline.models import QueueItemStatus, WorkKind

click.rich_click.USE_MARKDOWN = True
CONTROLLER = PipelineCliController()
KIND_CHOICES = [kind.value for kind in WorkKind]
STATUS_CHOICES = [status.value for status in QueueItemStatus]

CommandT = TypeVar("CommandT")


@click.group()
@click.version_option(version=__version__, prog_name="brand-monitor")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Log level; defaults to BRAND_MONITOR_LOG_LEVEL or INFO.",
)
def brand_monitor(log_level: str | None) -> None:
    """Brand visibility monitoring across AI answer engines.

    Tracked prompts are sent to every configured provider; answers are mined
    for brand and competitor citations and scored for sentiment.
    """

    level = (log_level or os.getenv("BRAND_MONITOR_LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@brand_monitor.group()
def catalog() -> None:
    """Scopes, tracked prompts and competitors."""


@catalog.command("add-scope")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--name", required=True, help="Scope display name.")
@click.option("--brand", "brand_name", required=True, help="Brand name to track.")
@click.option("--domain", "brand_domain", default=None, help="Brand web domain.")
def catalog_add_scope(
    db_path: Path | None,
    name: str,
    brand_name: str,
    brand_domain: str | None,
) -> None:
    """Create a monitoring scope for one brand."""

    _emit_lines(
        _run(
            CONTROLLER.add_scope,
            CatalogAddScopeCommand(
                db_path=db_path,
                name=name,
                brand_name=brand_name,
                brand_domain=brand_domain,
            ),
        ),
    )


@catalog.command("add-prompt")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--scope-id", required=True, help="Owning scope id.")
@click.option("--text", "prompt_text", required=True, help="Prompt sent to every provider.")
def catalog_add_prompt(db_path: Path | None, scope_id: str, prompt_text: str) -> None:
    """Add a tracked prompt to a scope."""

    _emit_lines(
        _run(
            CONTROLLER.add_prompt,
            CatalogAddPromptCommand(db_path=db_path, scope_id=scope_id, prompt_text=prompt_text),
        ),
    )


@catalog.command("add-competitor")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--scope-id", required=True, help="Owning scope id.")
@click.option("--name", required=True, help="Competitor name as it appears in answers.")
@click.option("--domain", default=None, help="Competitor web domain.")
def catalog_add_competitor(
    db_path: Path | None,
    scope_id: str,
    name: str,
    domain: str | None,
) -> None:
    """Add a competitor to a scope."""

    _emit_lines(
        _run(
            CONTROLLER.add_competitor,
            CatalogAddCompetitorCommand(
                db_path=db_path,
                scope_id=scope_id,
                name=name,
                domain=domain,
            ),
        ),
    )


@catalog.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--scope-id", default=None, help="Only show this scope.")
def catalog_list(db_path: Path | None, scope_id: str | None) -> None:
    """List scopes with their prompts and competitors."""

    _emit_lines(
        _run(CONTROLLER.list_catalog, CatalogListCommand(db_path=db_path, scope_id=scope_id)),
    )


@brand_monitor.group()
def dispatch() -> None:
    """Discover work and start workers."""


@dispatch.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--kind",
    type=click.Choice(KIND_CHOICES, case_sensitive=False),
    default=WorkKind.PROMPT_ANALYSIS.value,
    show_default=True,
    help="Work kind to dispatch.",
)
@click.option("--scope-id", default=None, help="Restrict discovery to one scope.")
@click.option(
    "--launch/--no-launch",
    default=True,
    show_default=True,
    help="Start workers for the enqueued items.",
)
@click.option(
    "--wait/--no-wait",
    default=False,
    show_default=True,
    help="Run workers in this process and wait for the whole chain to finish.",
)
def dispatch_run(  # noqa: PLR0913
    db_path: Path | None,
    kind: str,
    scope_id: str | None,
    launch: bool,
    wait: bool,
) -> None:
    """Enqueue every eligible subject and launch worker chains."""

    _emit_lines(
        _run(
            CONTROLLER.dispatch,
            DispatchCommand(
                db_path=db_path,
                kind=kind.lower(),
                scope_id=scope_id,
                launch=launch,
                wait=wait,
            ),
        ),
    )


@brand_monitor.group()
def worker() -> None:
    """Queue worker commands."""


@worker.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--kind",
    type=click.Choice(KIND_CHOICES, case_sensitive=False),
    default=WorkKind.PROMPT_ANALYSIS.value,
    show_default=True,
    help="Work kind to process.",
)
@click.option(
    "--generation",
    type=click.IntRange(min=0),
    default=0,
    show_default=True,
    help="Position of this invocation in its chain.",
)
@click.option("--batch-id", default=None, help="Only claim items from this dispatch batch.")
@click.option(
    "--chain",
    type=click.Choice(list(CHAIN_MODES), case_sensitive=False),
    default="in-process",
    show_default=True,
    help="How a successor invocation is started when work remains.",
)
def worker_run(  # noqa: PLR0913
    db_path: Path | None,
    kind: str,
    generation: int,
    batch_id: str | None,
    chain: str,
) -> None:
    """Run one bounded worker invocation."""

    _emit_lines(
        _run(
            CONTROLLER.run_worker,
            WorkerRunCommand(
                db_path=db_path,
                kind=kind.lower(),
                generation=generation,
                batch_id=batch_id,
                chain=chain.lower(),
            ),
        ),
    )


@brand_monitor.group()
def queue() -> None:
    """Queue inspection and recovery."""


@queue.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice(STATUS_CHOICES, case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--kind",
    type=click.Choice(KIND_CHOICES, case_sensitive=False),
    default=None,
    help="Optional work kind filter.",
)
@click.option("--batch-id", default=None, help="Optional dispatch batch filter.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
    help="Max items to print.",
)
def queue_list(  # noqa: PLR0913
    db_path: Path | None,
    status: str | None,
    kind: str | None,
    batch_id: str | None,
    limit: int,
) -> None:
    """List recent queue items."""

    _emit_lines(
        _run(
            CONTROLLER.list_queue,
            QueueListCommand(
                db_path=db_path,
                status=status.lower() if status else None,
                kind=kind.lower() if kind else None,
                batch_id=batch_id,
                limit=limit,
            ),
        ),
    )


@queue.command("stats")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--kind",
    type=click.Choice(KIND_CHOICES, case_sensitive=False),
    default=None,
    help="Optional work kind filter.",
)
def queue_stats(db_path: Path | None, kind: str | None) -> None:
    """Show per-status counts and eligible backlog."""

    _emit_lines(
        _run(
            CONTROLLER.queue_stats,
            QueueStatsCommand(db_path=db_path, kind=kind.lower() if kind else None),
        ),
    )


@queue.command("requeue")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--extra-attempts",
    type=click.IntRange(min=1, max=20),
    default=1,
    show_default=True,
    help="Additional attempts granted to the item.",
)
@click.argument("item_id")
def queue_requeue(db_path: Path | None, extra_attempts: int, item_id: str) -> None:
    """Give a terminally failed item another attempt budget."""

    _emit_lines(
        _run(
            CONTROLLER.requeue,
            QueueRequeueCommand(db_path=db_path, item_id=item_id, extra_attempts=extra_attempts),
        ),
    )


@queue.command("reset-stale")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--kind",
    type=click.Choice(KIND_CHOICES, case_sensitive=False),
    default=None,
    help="Optional work kind filter.",
)
@click.option(
    "--older-than-seconds",
    type=click.IntRange(min=1),
    default=None,
    help="Override BRAND_MONITOR_QUEUE_STALE_AFTER_SECONDS.",
)
def queue_reset_stale(
    db_path: Path | None,
    kind: str | None,
    older_than_seconds: int | None,
) -> None:
    """Return items stuck in processing to pending."""

    _emit_lines(
        _run(
            CONTROLLER.reset_stale,
            QueueResetStaleCommand(
                db_path=db_path,
                kind=kind.lower() if kind else None,
                older_than_seconds=older_than_seconds,
            ),
        ),
    )


@brand_monitor.group()
def results() -> None:
    """Analysis results inspection."""


@results.command("job")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("job_id")
def results_job(db_path: Path | None, job_id: str) -> None:
    """Show one analysis job with provider answers, citations and sentiment."""

    _emit_lines(_run(CONTROLLER.inspect_job, ResultsJobCommand(db_path=db_path, job_id=job_id)))


@results.command("subject")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=20,
    show_default=True,
    help="Max jobs to print.",
)
@click.argument("subject_id")
def results_subject(db_path: Path | None, limit: int, subject_id: str) -> None:
    """Show analysis job history for one tracked prompt."""

    _emit_lines(
        _run(
            CONTROLLER.subject_history,
            ResultsSubjectCommand(db_path=db_path, subject_id=subject_id, limit=limit),
        ),
    )


def _run(action: Callable[[CommandT], list[str]], command: CommandT) -> list[str]:
    try:
        return action(command)
    except (RuntimeError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    brand_monitor()
