"""Process lifecycle: wires the registry, backend, producer, worker and scheduler.

Example:
    runtime = JobRuntime(jobs=[send_welcome], crons=[purge_sessions])

    async with runtime:
        await runtime.enqueue("send_welcome", {"user_id": "abc123"})

    # Worker process
    await JobRuntime.from_module("myapp.tasks").run()
"""

from __future__ import annotations

import asyncio
import logging
import signal
from types import TracebackType
from typing import TYPE_CHECKING, Any, Iterable, Mapping

from laneq.backend.redis import RedisBackend
from laneq.config import Settings
from laneq.config import settings as default_settings
from laneq.errors import ConfigurationError
from laneq.jobs.queue import JobQueue, policy_from_settings
from laneq.jobs.registry import build_registry, load_definitions
from laneq.jobs.scheduler import CronScheduler
from laneq.jobs.worker import JobWorker, WorkerConfig
from laneq.lane import current_lane
from laneq.observability.events import JobEventSink
from laneq.observability.metrics import get_metrics
from laneq.observability.telemetry import Reporter, TelemetrySink

if TYPE_CHECKING:
    from redis.asyncio import Redis

    from laneq.backend.base import QueueBackend
    from laneq.jobs.backoff import Backoff
    from laneq.jobs.job import JobHandle
    from laneq.jobs.registry import CronDefinition, JobDefinition, JobRegistry
    from laneq.jobs.scheduler import CronEntry

logger = logging.getLogger(__name__)


class JobRuntime:
    """Owns the queue components of one process.

    In producer-only mode (`SCRIPT` set) only the registry, backend and
    producer are started; no jobs are claimed and no crons fire.
    """

    def __init__(
        self,
        jobs: Iterable[JobDefinition],
        crons: Iterable[CronDefinition] = (),
        settings: Settings | None = None,
        *,
        client: Redis | None = None,
        reporter: Reporter | None = None,
    ) -> None:
        self.settings = settings or default_settings
        self._jobs = list(jobs)
        self._crons = list(crons)
        self._client = client
        self.telemetry = TelemetrySink(reporter, max_size=self.settings.telemetry_queue_size)

        self.registry: JobRegistry | None = None
        self.backend: QueueBackend | None = None
        self.events: JobEventSink | None = None
        self.worker: JobWorker | None = None
        self.scheduler: CronScheduler | None = None
        self._queue: JobQueue | None = None

        self._started = False
        self._stopped = asyncio.Event()
        self._stop_task: asyncio.Task[None] | None = None

    @classmethod
    def from_module(
        cls,
        module_path: str | None = None,
        settings: Settings | None = None,
        **kwargs: Any,
    ) -> JobRuntime:
        """Build a runtime from the module named by `tasks_module`."""
        settings = settings or default_settings
        module_path = module_path or settings.tasks_module
        if not module_path:
            raise ConfigurationError("No tasks module configured (set LANEQ_TASKS_MODULE)")
        jobs, crons = load_definitions(module_path)
        return cls(jobs, crons, settings, **kwargs)

    @property
    def started(self) -> bool:
        return self._started

    @property
    def script_mode(self) -> bool:
        return self.settings.script

    @property
    def queue(self) -> JobQueue:
        if self._queue is None:
            raise RuntimeError("JobRuntime is not started")
        return self._queue

    async def start(self) -> None:
        """Connect and start every component this process runs."""
        if self._started:
            return

        registry = build_registry(self._jobs, self._crons)
        lane = current_lane(self.settings)
        backend = await RedisBackend.from_settings(self.settings, lane, self._client)

        self.registry = registry
        self.backend = backend
        self.events = JobEventSink(self.telemetry, lane=lane)
        self._queue = JobQueue(backend, registry, policy_from_settings(self.settings))
        self._started = True
        self._stopped.clear()

        if self.script_mode:
            logger.info(f"Producer-only mode, worker disabled (lane={lane})")
            return

        try:
            await self.telemetry.start()
            get_metrics().initialize(enabled=self.settings.enable_metrics)

            self.worker = JobWorker(
                backend, registry, WorkerConfig.from_settings(self.settings), self.events
            )
            await self.worker.start()

            self.scheduler = CronScheduler(
                self._queue, check_interval=self.settings.cron_check_interval, events=self.events
            )
            await self.scheduler.sync(registry.crons.values())
            await self.scheduler.start()
        except BaseException:
            # Partially started: stop what is running before propagating
            await self.stop()
            raise

        logger.info(f"Job runtime started (lane={lane}, jobs={len(registry)})")

    async def stop(self) -> None:
        """Stop claiming, drain in-flight jobs and release the connection."""
        if not self._started:
            return
        self._started = False

        if self.scheduler is not None:
            await self.scheduler.stop()
            self.scheduler = None

        if self.worker is not None:
            await self.worker.stop()
            self.worker = None

        await self.telemetry.stop()

        if self.backend is not None:
            await self.backend.close()

        self._stopped.set()
        logger.info("Job runtime stopped")

    async def run(self) -> None:
        """Start, then block until SIGINT/SIGTERM and stop gracefully."""
        await self.start()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._signal_handler, sig)

        try:
            await self._stopped.wait()
        finally:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(sig)
            await self.stop()

    def _signal_handler(self, sig: signal.Signals) -> None:
        logger.info(f"Received {sig.name}, shutting down")
        self._stop_task = asyncio.create_task(self.stop())

    async def enqueue(
        self,
        name: str,
        payload: Any = None,
        *,
        attempts: int | None = None,
        backoff: Backoff | Mapping[str, Any] | int | None = None,
        delay: int | None = None,
        job_id: str | None = None,
    ) -> JobHandle:
        """Submit a job to this process's lane (see JobQueue.enqueue)."""
        return await self.queue.enqueue(
            name, payload, attempts=attempts, backoff=backoff, delay=delay, job_id=job_id
        )

    async def schedule_cron(
        self,
        name: str,
        cron: str,
        payload: dict[str, Any] | None = None,
    ) -> CronEntry:
        return await self.queue.schedule_cron(name, cron, payload)

    async def __aenter__(self) -> JobRuntime:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()
