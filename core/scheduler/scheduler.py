"""In-process periodic job scheduler.

Each registered job kind gets one loop task that fires the job every
`interval_seconds`. A job whose previous run is still going when it comes
due again is skipped for that tick. A failed run is logged and recorded on
the job; the next tick runs it again.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Mapping, Optional

from core.types import Job

logger = logging.getLogger(__name__)

JobFunc = Callable[[], Awaitable[Optional[Mapping[str, Any]]]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Scheduler:
    def __init__(self, *, clock: Callable[[], datetime] = _utcnow, stop_timeout: float = 1.0) -> None:
        self._clock = clock
        self._stop_timeout = stop_timeout
        self._jobs: dict[str, Job] = {}
        self._funcs: dict[str, JobFunc] = {}
        self._loops: dict[str, asyncio.Task] = {}
        self._runs: dict[str, asyncio.Task] = {}
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def register(self, kind: str, interval: float, func: JobFunc) -> Job:
        """Register a job kind.

        Jobs live for the life of the process. Registering a known kind keeps
        its Job and run history and only swaps the interval and function; the
        new interval applies from the next tick.
        """
        if interval <= 0:
            raise ValueError(f"interval must be > 0, got {interval}")
        self._funcs[kind] = func
        job = self._jobs.get(kind)
        if job is not None:
            job.interval_seconds = float(interval)
            logger.info("Updated job %s to every %gs", kind, interval)
            return job

        job = Job(kind=kind, interval_seconds=float(interval))
        self._jobs[kind] = job
        if self._running:
            self._loops[kind] = asyncio.create_task(self._loop(job), name=f"job:{kind}")
        logger.info("Registered job %s every %gs", kind, interval)
        return job

    def jobs(self) -> list[Job]:
        return list(self._jobs.values())

    def get(self, kind: str) -> Job:
        try:
            return self._jobs[kind]
        except KeyError:
            raise KeyError(f"Unknown job: {kind}") from None

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        for kind, job in self._jobs.items():
            self._loops[kind] = asyncio.create_task(self._loop(job), name=f"job:{kind}")
        logger.info("Scheduler started with %d jobs", len(self._jobs))

    async def stop(self) -> None:
        self._running = False
        loops, self._loops = list(self._loops.values()), {}
        for task in loops:
            task.cancel()
        await asyncio.gather(*loops, return_exceptions=True)

        for kind, task in list(self._runs.items()):
            await self._await_task(task, kind)
        logger.info("Scheduler stopped")

    async def run_now(self, kind: str) -> Job:
        """Run a job immediately and wait for it. A job already running is skipped."""
        job = self.get(kind)
        task = self._fire(job)
        if task is not None:
            await asyncio.shield(task)
        return job

    async def _await_task(self, task: asyncio.Task, kind: str) -> None:
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=self._stop_timeout)
        except asyncio.TimeoutError:
            logger.warning("Job %s did not finish in %.1fs, cancelling", kind, self._stop_timeout)
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        except asyncio.CancelledError:
            raise

    async def _loop(self, job: Job) -> None:
        try:
            while self._running:
                self._fire(job)
                job.next_due_at = self._clock() + timedelta(seconds=job.interval_seconds)
                await asyncio.sleep(job.interval_seconds)
        except asyncio.CancelledError:
            logger.debug("Job loop %s cancelled", job.kind)
            raise

    def _fire(self, job: Job) -> Optional[asyncio.Task]:
        if job.running:
            job.skipped += 1
            logger.info("Skipping %s: previous run still in progress", job.kind)
            return None
        job.running = True
        task = asyncio.create_task(self._execute(job), name=f"run:{job.kind}")
        self._runs[job.kind] = task
        return task

    async def _execute(self, job: Job) -> None:
        func = self._funcs[job.kind]
        started = self._clock()
        try:
            result = await func()
        except asyncio.CancelledError:
            job.last_error = "cancelled"
            raise
        except Exception as e:
            job.failures += 1
            job.last_error = str(e) or type(e).__name__
            logger.error("Job %s failed: %s", job.kind, e, exc_info=True)
        else:
            job.last_error = None
            job.last_result = dict(result) if result else None
            logger.info("Job %s completed: %s", job.kind, job.last_result)
        finally:
            job.runs += 1
            job.last_run = started
            job.running = False
            self._runs.pop(job.kind, None)
