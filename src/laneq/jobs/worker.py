"""Worker pool for processing queued jobs.

Provides a worker that:
- Claims jobs from its lane with at most `concurrency` in flight
- Dispatches each job to its registered handler
- Retries failed attempts with backoff, fails them after max attempts
- Renews leases while handlers run and recovers stalled jobs
- Drains in-flight work on shutdown

Example:
    worker = JobWorker(backend, registry, WorkerConfig(concurrency=10))
    await worker.start()
    ...
    await worker.stop()

    # Or as context manager
    async with JobWorker(backend, registry):
        await asyncio.Event().wait()
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from contextlib import suppress
from dataclasses import dataclass
from enum import Enum
from types import TracebackType
from typing import TYPE_CHECKING

from laneq.errors import FatalJobError, StalledJobError, UnknownJobError
from laneq.observability.events import JobEventSink, describe_error
from laneq.observability.logging import LogContext

if TYPE_CHECKING:
    from laneq.backend.base import QueueBackend
    from laneq.config import Settings
    from laneq.jobs.job import Job
    from laneq.jobs.registry import JobDefinition, JobRegistry

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    """Result kind of one execution attempt."""

    SUCCESS = "success"
    RETRYABLE = "retryable"
    FATAL = "fatal"


@dataclass(frozen=True)
class ExecutionOutcome:
    """Result of one execution attempt (never persisted)."""

    kind: Outcome
    error: BaseException | None = None

    @classmethod
    def success(cls) -> ExecutionOutcome:
        return cls(Outcome.SUCCESS)

    @classmethod
    def retryable(cls, error: BaseException) -> ExecutionOutcome:
        return cls(Outcome.RETRYABLE, error)

    @classmethod
    def fatal(cls, error: BaseException) -> ExecutionOutcome:
        return cls(Outcome.FATAL, error)


@dataclass
class WorkerConfig:
    """Worker configuration."""

    # Worker identification
    name: str = "default"

    # Job processing
    concurrency: int = 50
    poll_interval: float = 1.0
    claim_timeout: int = 1  # seconds to block on an empty queue, 0 = poll

    # Leases (renewal defaults to half the backend lease timeout)
    lease_renew_interval: float | None = None
    stalled_interval: float = 30.0

    # Shutdown
    shutdown_grace: float = 30.0

    # Backend error backoff
    error_backoff_initial: float = 1.0
    error_backoff_max: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> WorkerConfig:
        return cls(
            name=settings.instance_id,
            concurrency=settings.concurrency,
            poll_interval=settings.poll_interval,
            claim_timeout=settings.claim_timeout,
            stalled_interval=settings.stalled_interval,
            shutdown_grace=settings.shutdown_grace,
        )


class JobWorker:
    """Bounded pool of concurrent job executions for one lane.

    Each slot moves Idle -> Leased -> Executing -> Completing/Failing -> Idle.
    A slot is taken before claiming, so leased-but-unfinished jobs never
    exceed `concurrency`.
    """

    def __init__(
        self,
        backend: QueueBackend,
        registry: JobRegistry,
        config: WorkerConfig | None = None,
        events: JobEventSink | None = None,
    ) -> None:
        self.backend = backend
        self.registry = registry
        self.config = config or WorkerConfig()
        self.events = events or JobEventSink(lane=backend.lane)
        if self.config.concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {self.config.concurrency}")

        self._slots = asyncio.Semaphore(self.config.concurrency)
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._loop_task: asyncio.Task[None] | None = None
        self._stalled_task: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[ExecutionOutcome]] = set()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def active_count(self) -> int:
        """Jobs currently leased by this worker."""
        return len(self._tasks)

    @property
    def lease_renew_interval(self) -> float:
        return self.config.lease_renew_interval or self.backend.lease_timeout / 2

    async def start(self) -> None:
        """Start claiming jobs in the background."""
        if self._running:
            return

        self._running = True
        self._shutdown_event.clear()
        self._loop_task = asyncio.create_task(
            self._run_loop(), name=f"laneq-worker-{self.config.name}"
        )
        self._stalled_task = asyncio.create_task(
            self._stalled_loop(), name=f"laneq-stalled-{self.config.name}"
        )
        logger.info(
            f"Worker started: {self.config.name} "
            f"(lane={self.backend.lane}, concurrency={self.config.concurrency})"
        )

    async def stop(self) -> None:
        """Stop the worker gracefully.

        Stops claiming, waits up to `shutdown_grace` seconds for in-flight
        jobs, then cancels the rest. Cancelled jobs keep their lease and are
        recovered by the next stalled check.
        """
        if not self._running and self._loop_task is None and not self._tasks:
            return

        logger.info(f"Stopping worker: {self.config.name}")
        self._running = False
        self._shutdown_event.set()

        for task in (self._loop_task, self._stalled_task):
            if task is not None:
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task
        self._loop_task = None
        self._stalled_task = None

        if self._tasks:
            _, pending = await asyncio.wait(set(self._tasks), timeout=self.config.shutdown_grace)
            if pending:
                logger.warning(f"Abandoning {len(pending)} in-flight jobs after grace period")
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        logger.info(f"Worker stopped: {self.config.name}")

    async def run_once(self) -> int:
        """Claim available jobs (up to `concurrency`), process them and return.

        Useful for testing or one-off drains.

        Returns:
            Number of jobs processed
        """
        await self.backend.promote_delayed()

        jobs: list[Job] = []
        while len(jobs) < self.config.concurrency:
            job = await self.backend.claim(timeout=0)
            if job is None:
                break
            jobs.append(job)

        if jobs:
            await asyncio.gather(*(self._process_job(job) for job in jobs))
        return len(jobs)

    async def recover_stalled(self) -> int:
        """Requeue jobs whose lease expired; fail those stalled too often.

        Returns:
            Number of stalled jobs handled
        """
        requeued, failed = await self.backend.recover_stalled()
        if requeued:
            self.events.stalled(requeued)
        for job in failed:
            self.events.failed(job, StalledJobError(job.error or "job stalled"))
        return len(requeued) + len(failed)

    async def _wait_shutdown(self, timeout: float) -> None:
        with suppress(TimeoutError):
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=timeout)

    async def _stalled_loop(self) -> None:
        """Recover expired leases every `stalled_interval` seconds."""
        while self._running:
            try:
                await self.recover_stalled()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.events.backend_error(e)
            await self._wait_shutdown(self.config.stalled_interval)

    async def _run_loop(self) -> None:
        """Main loop that claims jobs and spawns their execution."""
        error_delay = self.config.error_backoff_initial

        while self._running:
            try:
                await self.backend.promote_delayed()

                await self._slots.acquire()
                try:
                    job = await self.backend.claim(timeout=self.config.claim_timeout)
                except BaseException:
                    self._slots.release()
                    raise

            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Backend unreachable: report, back off, keep the process alive
                self.events.backend_error(e)
                await self._wait_shutdown(error_delay)
                error_delay = min(error_delay * 2, self.config.error_backoff_max)
                continue

            error_delay = self.config.error_backoff_initial

            if job is None:
                self._slots.release()
                if self.config.claim_timeout <= 0:
                    await self._wait_shutdown(self.config.poll_interval)
                continue

            task = asyncio.create_task(self._process_job(job), name=f"laneq-job-{job.id}")
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[ExecutionOutcome]) -> None:
        self._tasks.discard(task)
        self._slots.release()
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Job task crashed: {task.get_name()}", exc_info=task.exception())

    async def _renew_lease(self, job: Job) -> None:
        """Extend the job's lease until cancelled."""
        while True:
            await asyncio.sleep(self.lease_renew_interval)
            try:
                if not await self.backend.extend_lease(job.id):
                    logger.warning(f"Lease lost for job: {job.id} ({job.name})")
                    return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.events.backend_error(e)

    async def _process_job(self, job: Job) -> ExecutionOutcome:
        """Execute one leased job and settle its outcome."""
        self.events.metrics.jobs_active.labels(lane=job.lane).inc()
        started = time.monotonic()
        try:
            definition = self.registry.get(job.name)

            if definition is None:
                logger.error(f"No handler for job: {job.name}")
                outcome = ExecutionOutcome.fatal(UnknownJobError(job.name))
            else:
                renewal = asyncio.create_task(self._renew_lease(job))
                try:
                    with LogContext(job_id=job.id, job_name=job.name, lane=job.lane):
                        outcome = await self._execute(definition, job)
                finally:
                    renewal.cancel()
                    await asyncio.gather(renewal, return_exceptions=True)

            duration = time.monotonic() - started
            self.events.metrics.job_duration_seconds.labels(
                name=job.name, lane=job.lane
            ).observe(duration)

            try:
                await self._settle(job, outcome, duration)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Job keeps its lease; the stalled check hands it out again
                self.events.backend_error(e)

            return outcome
        finally:
            self.events.metrics.jobs_active.labels(lane=job.lane).dec()

    async def _execute(self, definition: JobDefinition, job: Job) -> ExecutionOutcome:
        """Run the handler and classify what it raised."""
        handler = definition.handler
        try:
            if inspect.iscoroutinefunction(handler):
                await handler(job.payload)
            else:
                # Plain functions may block; keep them off the event loop
                result = await asyncio.to_thread(handler, job.payload)
                if inspect.isawaitable(result):
                    await result
        except FatalJobError as e:
            return ExecutionOutcome.fatal(e)
        except Exception as e:
            if definition.fatal_errors and isinstance(e, definition.fatal_errors):
                return ExecutionOutcome.fatal(e)
            return ExecutionOutcome.retryable(e)

        return ExecutionOutcome.success()

    async def _settle(self, job: Job, outcome: ExecutionOutcome, duration: float) -> None:
        """Acknowledge, retry or fail the job in the backend."""
        if outcome.kind is Outcome.SUCCESS:
            await self.backend.complete(job)
            self.events.completed(job, duration)
            return

        error = outcome.error or RuntimeError("job failed")

        if outcome.kind is Outcome.RETRYABLE and job.attempt < job.max_attempts:
            delay = job.backoff.compute(job.attempt)
            self.events.retrying(job, error, delay)
            await self.backend.retry(job, describe_error(error), delay)
            return

        await self.backend.fail(job, describe_error(error))
        self.events.failed(job, error)

    async def __aenter__(self) -> JobWorker:
        """Context manager entry."""
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Context manager exit."""
        await self.stop()
