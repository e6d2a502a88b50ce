"""Job producer.

Enqueues jobs and recurring schedules onto the current lane:
- Validates names against the registry before anything is written
- Merges per-call options over the job's policy over the queue default
- Writes each job in a single Redis transaction (the durability boundary)

Example:
    queue = JobQueue(backend, registry)

    # Submit a job
    handle = await queue.enqueue("send_welcome", {"user_id": "abc123"})

    # Override the retry policy for one job
    await queue.enqueue(
        "sync_feed", {"feed": 7}, attempts=5, backoff={"type": "fixed", "delay": 500}
    )

    # Idempotent recurring schedule
    await queue.schedule_cron("purge_sessions", "0 3 * * *")
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Mapping
from uuid import uuid4

import orjson
from redis.exceptions import RedisError

from laneq.errors import BackendError, InvalidPayloadError
from laneq.jobs.backoff import Backoff, BackoffType, RetryPolicy
from laneq.jobs.job import Job, JobHandle
from laneq.jobs.scheduler import CronEntry, CronExpression

if TYPE_CHECKING:
    from laneq.backend.base import QueueBackend
    from laneq.config import Settings
    from laneq.jobs.registry import JobRegistry

logger = logging.getLogger(__name__)


def policy_from_settings(settings: Settings) -> RetryPolicy:
    """Default retry policy configured for the deployment."""
    return RetryPolicy(
        attempts=settings.default_attempts,
        backoff=Backoff(
            type=BackoffType(settings.backoff_type),
            delay=settings.backoff_delay,
            jitter=settings.backoff_jitter,
        ),
    )


# orjson coerces datetimes and dataclasses to other JSON types unless passed through
_STRICT_JSON = (
    orjson.OPT_PASSTHROUGH_DATETIME
    | orjson.OPT_PASSTHROUGH_DATACLASS
    | orjson.OPT_PASSTHROUGH_SUBCLASS
)


def _check_payload(payload: Any) -> None:
    """Reject payloads a handler would not receive back unchanged."""
    try:
        encoded = orjson.dumps(payload, option=_STRICT_JSON)
    except orjson.JSONEncodeError as e:
        raise InvalidPayloadError(f"Job payload is not JSON serializable: {e}") from e

    if orjson.loads(encoded) != payload:
        raise InvalidPayloadError(
            f"Job payload does not survive JSON encoding: {type(payload).__name__}"
        )


class JobQueue:
    """Producer side of the queue for one lane."""

    def __init__(
        self,
        backend: QueueBackend,
        registry: JobRegistry,
        default_policy: RetryPolicy | None = None,
    ) -> None:
        self.backend = backend
        self.registry = registry
        self.default_policy = default_policy or RetryPolicy()

    @property
    def lane(self) -> str:
        return self.backend.lane

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
        """Submit a job to the current lane.

        Args:
            name: Registered job or cron name
            payload: JSON data passed to the handler as is (None included)
            attempts: Override the attempt limit
            backoff: Override the backoff (Backoff, mapping or fixed delay in ms)
            delay: Milliseconds before the first attempt becomes claimable
            job_id: Explicit id; enqueueing an existing id is a no-op

        Returns:
            Handle of the (possibly pre-existing) job

        Raises:
            UnknownJobError: If the name is not registered
            InvalidPayloadError: If the payload is not JSON serializable
            BackendError: If the job could not be stored
        """
        definition = self.registry.resolve(name)

        _check_payload(payload)

        if delay is not None and delay < 0:
            raise ValueError(f"delay must be >= 0, got {delay}")

        policy = (definition.policy or self.default_policy).merge(
            attempts=attempts, backoff=backoff
        )

        job = Job(
            id=job_id or uuid4().hex,
            name=name,
            payload=payload,
            lane=self.lane,
            attempt=1,
            max_attempts=policy.attempts,
            backoff=policy.backoff,
        )

        try:
            added = await self.backend.add(job, delay=delay or 0)
        except RedisError as e:
            raise BackendError(f"Failed to enqueue {name}: {e}") from e

        if added:
            logger.info(f"Job enqueued: {job.id} ({name}, lane={self.lane})")
        else:
            logger.info(f"Job already enqueued: {job.id} ({name})")

        return JobHandle(id=job.id, name=name, lane=self.lane)

    async def schedule_cron(
        self,
        name: str,
        cron: str,
        payload: dict[str, Any] | None = None,
    ) -> CronEntry:
        """Create or update a recurring trigger.

        Re-scheduling with an unchanged expression and payload keeps the
        pending next run.

        Raises:
            UnknownJobError: If the name is not registered
            InvalidCronError: If the expression cannot be parsed
        """
        self.registry.resolve(name)
        expression = CronExpression(cron)
        payload = dict(payload or {})
        _check_payload(payload)

        try:
            existing = await self.backend.get_cron(name)
            if existing is not None and existing.cron == cron and existing.payload == payload:
                return existing

            entry = CronEntry(
                name=name,
                cron=cron,
                payload=payload,
                next_run=expression.next_run(),
                last_run=existing.last_run if existing else None,
            )
            await self.backend.save_cron(entry)
        except RedisError as e:
            raise BackendError(f"Failed to schedule cron {name}: {e}") from e

        logger.info(f"Cron scheduled: {name} ({cron}), next run: {entry.next_run}")
        return entry

    async def get_queue_stats(self) -> dict[str, int]:
        """Get queue statistics.

        Returns:
            Dict with waiting, active, delayed, failed and cron counts
        """
        try:
            return await self.backend.stats()
        except RedisError as e:
            raise BackendError(f"Failed to read queue stats: {e}") from e
