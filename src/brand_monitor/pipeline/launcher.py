"""Fire-and-forget worker launchers.

`InProcessLauncher` supervises worker invocations as asyncio tasks on the
running loop, bounded by a semaphore. `SubprocessLauncher` starts each
invocation as a detached `brand-monitor worker run` process.
"""

from __future__ import annotations

import asyncio
import logging
import subprocess
import sys
from collections.abc import Callable
from pathlib import Path

from brand_monitor.pipeline.models import WorkKind
from brand_monitor.pipeline.worker import QueueWorker, WorkerInvocationSummary, WorkerLauncher

logger = logging.getLogger(__name__)

WorkerFactory = Callable[[WorkKind, WorkerLauncher], QueueWorker]


class InProcessLauncher:
    """Bounded in-process worker pool; successors are scheduled on the same pool."""

    def __init__(self, *, build_worker: WorkerFactory, max_concurrent: int) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self._build_worker = build_worker
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._tasks: set[asyncio.Task[WorkerInvocationSummary]] = set()
        self._workers: set[QueueWorker] = set()
        self._stop_requested = False
        self.summaries: list[WorkerInvocationSummary] = []
        self.launched = 0

    def launch(self, *, kind: WorkKind, generation: int, batch_id: str | None = None) -> None:
        if self._stop_requested:
            logger.info("Stop requested; not launching %s worker gen=%d", kind.value, generation)
            return
        task = asyncio.get_running_loop().create_task(
            self._run(kind=kind, generation=generation, batch_id=batch_id),
            name=f"{kind.value}-worker-gen{generation}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self.launched += 1

    async def drain(self) -> list[WorkerInvocationSummary]:
        """Wait until every launched invocation, including successors, has finished."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        return list(self.summaries)

    def request_stop(self) -> None:
        """Ask running workers to finish their current batch and stop chaining."""

        self._stop_requested = True
        for worker in list(self._workers):
            worker.request_stop()

    @property
    def active(self) -> int:
        return len(self._tasks)

    async def _run(
        self,
        *,
        kind: WorkKind,
        generation: int,
        batch_id: str | None,
    ) -> WorkerInvocationSummary:
        async with self._semaphore:
            worker = self._build_worker(kind, self)
            if self._stop_requested:
                worker.request_stop()
            self._workers.add(worker)
            try:
                summary = await worker.invoke(generation=generation, batch_id=batch_id)
            finally:
                self._workers.discard(worker)
        self.summaries.append(summary)
        return summary


class SubprocessLauncher:
    """Start each invocation as a detached CLI process."""

    def __init__(self, *, db_path: Path, python_executable: str | None = None) -> None:
        self._db_path = db_path
        self._python = python_executable or sys.executable
        self.launched = 0

    def command(self, *, kind: WorkKind, generation: int, batch_id: str | None = None) -> list[str]:
        command = [
            self._python,
            "-m",
            "brand_monitor.main",
            "worker",
            "run",
            "--db-path",
            str(self._db_path),
            "--kind",
            kind.value,
            "--generation",
            str(generation),
            "--chain",
            "subprocess",
        ]
        if batch_id is not None:
            command.extend(["--batch-id", batch_id])
        return command

    def launch(self, *, kind: WorkKind, generation: int, batch_id: str | None = None) -> None:
        command = self.command(kind=kind, generation=generation, batch_id=batch_id)
        subprocess.Popen(  # noqa: S603
            command,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
        self.launched += 1
        logger.info("Launched %s worker process gen=%d", kind.value, generation)
