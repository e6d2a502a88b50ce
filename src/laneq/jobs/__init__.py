"""Background jobs partitioned by lane.

Provides a distributed job queue with:
- A static registry of job and cron definitions
- Redis-backed storage with atomic claiming (LMOVE) and leases
- Retry with fixed or exponential backoff
- Cron-like recurring schedules
- A bounded-concurrency worker pool

Example:
    from laneq.jobs import JobQueue, JobWorker, build_registry, define_job

    send_welcome = define_job("send_welcome", handler, attempts=5)
    registry = build_registry([send_welcome])

    # Submit a job
    queue = JobQueue(backend, registry)
    handle = await queue.enqueue("send_welcome", {"user_id": "abc123"})

    # Process jobs
    async with JobWorker(backend, registry):
        ...
"""

from laneq.jobs.backoff import (
    DEFAULT_ATTEMPTS,
    DEFAULT_BACKOFF_DELAY,
    Backoff,
    BackoffType,
    RetryPolicy,
)
from laneq.jobs.job import Job, JobHandle, JobStatus
from laneq.jobs.queue import JobQueue, policy_from_settings
from laneq.jobs.registry import (
    CronDefinition,
    JobDefinition,
    JobHandler,
    JobRegistry,
    build_registry,
    define_cron,
    define_job,
    load_definitions,
)
from laneq.jobs.scheduler import CRON_ALIASES, CronEntry, CronExpression, CronScheduler
from laneq.jobs.worker import ExecutionOutcome, JobWorker, Outcome, WorkerConfig

__all__ = [
    # Retry policy
    "Backoff",
    "BackoffType",
    "RetryPolicy",
    "DEFAULT_ATTEMPTS",
    "DEFAULT_BACKOFF_DELAY",
    # Jobs
    "Job",
    "JobHandle",
    "JobStatus",
    # Registry
    "JobDefinition",
    "CronDefinition",
    "JobHandler",
    "JobRegistry",
    "build_registry",
    "define_job",
    "define_cron",
    "load_definitions",
    # Producer
    "JobQueue",
    "policy_from_settings",
    # Worker
    "JobWorker",
    "WorkerConfig",
    "ExecutionOutcome",
    "Outcome",
    # Scheduler
    "CronScheduler",
    "CronEntry",
    "CronExpression",
    "CRON_ALIASES",
]
