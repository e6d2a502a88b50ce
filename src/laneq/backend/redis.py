"""Redis-backed queue backend.

Per-lane structures (see laneq.lane for the key schema):
- wait (list): job ids ready to run; LPUSH to add, LMOVE from the right
- active (list): job ids claimed by some worker
- leases (sorted set): claimed job ids scored by lease deadline (ms)
- delayed (sorted set): job ids scored by the time they become ready (ms)
- failed (list): dead-letter ids, only when failed jobs are retained
- job:{id} (string): JSON job data
- crons (hash): cron name -> JSON schedule

Claiming is an atomic LMOVE from wait to active followed by a lease entry.
Leases that expire (worker crashed or hung) are returned to wait by
recover_stalled(); ids sitting in active without a lease (claim
interrupted between the two steps) are adopted with a fresh lease first.

Example:
    backend = RedisBackend(await create_redis(url), QueueKeys("prod:{mq}", "prod"))
    await backend.add(job)
    claimed = await backend.claim(timeout=1)
    await backend.complete(claimed)
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable, TypeVar, cast

import orjson
import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

from laneq.backend.base import QueueBackend
from laneq.jobs.job import Job, JobStatus
from laneq.jobs.scheduler import CronEntry
from laneq.lane import QueueKeys

if TYPE_CHECKING:
    from redis.asyncio import Redis
    from redis.asyncio.client import Pipeline

    from laneq.config import Settings

T = TypeVar("T")


def _await_redis(result: Awaitable[T] | T) -> Awaitable[T]:
    """Cast redis-py async results to an awaitable for mypy."""
    return cast(Awaitable[T], result)


logger = logging.getLogger(__name__)

DEFAULT_JOB_TTL = 86400 * 7  # 7 days
DEFAULT_RESULT_TTL = 86400  # 24 hours
DEFAULT_LEASE_TIMEOUT = 30.0  # seconds
CRON_FIRE_TTL = 86400  # seconds a firing marker is kept
PROMOTE_BATCH = 100

STALLED_ERROR = "job stalled more than allowable limit"


def _decode(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else value


async def create_redis(url: str) -> Redis:
    """Create a Redis client with connection pooling."""
    return redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
    )


class RedisBackend(QueueBackend):
    """Queue backend for one lane on a (possibly shared) Redis."""

    def __init__(
        self,
        client: Redis,
        keys: QueueKeys,
        *,
        lease_timeout: float = DEFAULT_LEASE_TIMEOUT,
        max_stalled_count: int = 1,
        remove_on_complete: bool = True,
        remove_on_fail: bool = True,
        job_ttl: int = DEFAULT_JOB_TTL,
        result_ttl: int = DEFAULT_RESULT_TTL,
        clock: Callable[[], float] = time.time,
        owns_client: bool = True,
    ) -> None:
        self._client = client
        self.keys = keys
        self.lease_timeout = lease_timeout
        self.max_stalled_count = max_stalled_count
        self.remove_on_complete = remove_on_complete
        self.remove_on_fail = remove_on_fail
        self.job_ttl = job_ttl
        self.result_ttl = result_ttl
        self._clock = clock
        self._owns_client = owns_client
        self._closed = False

    @classmethod
    async def from_settings(
        cls,
        settings: Settings,
        lane: str | None = None,
        client: Redis | None = None,
    ) -> RedisBackend:
        """Build a backend from settings, connecting unless a client is given."""
        return cls(
            client if client is not None else await create_redis(settings.redis_url),
            QueueKeys.for_settings(settings, lane),
            lease_timeout=settings.lease_timeout,
            max_stalled_count=settings.max_stalled_count,
            remove_on_complete=settings.remove_on_complete,
            remove_on_fail=settings.remove_on_fail,
            job_ttl=settings.job_ttl,
            result_ttl=settings.result_ttl,
            owns_client=client is None,
        )

    @property
    def client(self) -> Redis:
        return self._client

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _deadline_ms(self) -> int:
        return self._now_ms() + int(self.lease_timeout * 1000)

    def _dump(self, job: Job) -> bytes:
        return orjson.dumps(job.to_dict())

    # -------------------------------------------------------------------------
    # Jobs
    # -------------------------------------------------------------------------

    async def add(self, job: Job, delay: int = 0) -> bool:
        key = self.keys.job(job.id)
        job.status = JobStatus.DELAYED if delay > 0 else JobStatus.WAITING

        try:
            async with self._client.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                if await pipe.exists(key):
                    return False

                pipe.multi()
                pipe.set(key, self._dump(job), ex=self.job_ttl)
                if delay > 0:
                    pipe.zadd(self.keys.delayed, {job.id: self._now_ms() + delay})
                else:
                    pipe.lpush(self.keys.wait, job.id)
                await pipe.execute()
        except WatchError:
            # Concurrent add with the same id won
            return False

        return True

    async def get(self, job_id: str) -> Job | None:
        data = await self._client.get(self.keys.job(job_id))
        if data is None:
            return None
        return Job.from_dict(orjson.loads(data))

    async def claim(self, timeout: float = 0) -> Job | None:
        if timeout > 0:
            raw_id = await _await_redis(
                self._client.blmove(self.keys.wait, self.keys.active, timeout, "RIGHT", "LEFT")
            )
        else:
            raw_id = await _await_redis(
                self._client.lmove(self.keys.wait, self.keys.active, "RIGHT", "LEFT")
            )

        if raw_id is None:
            return None

        job_id = _decode(raw_id)
        await self._client.zadd(self.keys.leases, {job_id: self._deadline_ms()})

        job = await self.get(job_id)
        if job is None:
            # Expired or removed while waiting
            async with self._client.pipeline(transaction=True) as pipe:
                self._release(pipe, job_id)
                await pipe.execute()
            logger.warning(f"Claimed job has no data, dropped: {job_id}")
            return None

        job.status = JobStatus.ACTIVE
        job.started_at = datetime.now(timezone.utc)
        await self._client.set(self.keys.job(job_id), self._dump(job), ex=self.job_ttl)

        logger.debug(f"Job claimed: {job_id} (attempt {job.attempt}/{job.max_attempts})")
        return job

    async def extend_lease(self, job_id: str) -> bool:
        if await self._client.zscore(self.keys.leases, job_id) is None:
            return False
        await self._client.zadd(self.keys.leases, {job_id: self._deadline_ms()}, xx=True)
        return True

    def _release(self, pipe: Pipeline, job_id: str) -> None:
        pipe.zrem(self.keys.leases, job_id)
        pipe.lrem(self.keys.active, 0, job_id)

    def _terminal(self, pipe: Pipeline, job: Job, error: str) -> None:
        job.status = JobStatus.FAILED
        job.error = error
        job.finished_at = datetime.now(timezone.utc)

        if self.remove_on_fail:
            pipe.delete(self.keys.job(job.id))
        else:
            pipe.set(self.keys.job(job.id), self._dump(job), ex=self.job_ttl)
            pipe.lpush(self.keys.failed, job.id)

    async def complete(self, job: Job) -> None:
        job.status = JobStatus.COMPLETED
        job.finished_at = datetime.now(timezone.utc)

        async with self._client.pipeline(transaction=True) as pipe:
            self._release(pipe, job.id)
            if self.remove_on_complete:
                pipe.delete(self.keys.job(job.id))
            else:
                pipe.set(self.keys.job(job.id), self._dump(job), ex=self.result_ttl)
            await pipe.execute()

    async def retry(self, job: Job, error: str, delay: int) -> None:
        job.attempt += 1
        job.error = error
        job.started_at = None
        job.status = JobStatus.DELAYED if delay > 0 else JobStatus.WAITING

        async with self._client.pipeline(transaction=True) as pipe:
            self._release(pipe, job.id)
            pipe.set(self.keys.job(job.id), self._dump(job), ex=self.job_ttl)
            if delay > 0:
                pipe.zadd(self.keys.delayed, {job.id: self._now_ms() + delay})
            else:
                pipe.lpush(self.keys.wait, job.id)
            await pipe.execute()

    async def fail(self, job: Job, error: str) -> None:
        async with self._client.pipeline(transaction=True) as pipe:
            self._release(pipe, job.id)
            self._terminal(pipe, job, error)
            await pipe.execute()

    async def promote_delayed(self) -> int:
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                await pipe.watch(self.keys.delayed)
                due = await pipe.zrangebyscore(
                    self.keys.delayed, "-inf", self._now_ms(), start=0, num=PROMOTE_BATCH
                )
                if not due:
                    return 0

                job_ids = [_decode(job_id) for job_id in due]
                pipe.multi()
                pipe.zrem(self.keys.delayed, *job_ids)
                pipe.lpush(self.keys.wait, *job_ids)
                await pipe.execute()
        except WatchError:
            # Another worker promoted concurrently
            return 0

        return len(job_ids)

    async def recover_stalled(self) -> tuple[list[str], list[Job]]:
        now = self._now_ms()
        await self._adopt_orphans(now)

        requeued: list[str] = []
        failed: list[Job] = []

        try:
            async with self._client.pipeline(transaction=True) as pipe:
                await pipe.watch(self.keys.leases)
                expired = [
                    _decode(job_id)
                    for job_id in await pipe.zrangebyscore(self.keys.leases, "-inf", now)
                ]
                if not expired:
                    return requeued, failed

                stored: list[tuple[Any, bool]] = []
                for job_id in expired:
                    data = await pipe.get(self.keys.job(job_id))
                    claimed = await pipe.lpos(self.keys.active, job_id) is not None
                    stored.append((data, claimed))

                pipe.multi()
                pipe.zrem(self.keys.leases, *expired)
                for job_id, (data, claimed) in zip(expired, stored):
                    pipe.lrem(self.keys.active, 0, job_id)
                    if data is None or not claimed:
                        continue

                    job = Job.from_dict(orjson.loads(data))
                    if job.status in (JobStatus.COMPLETED, JobStatus.FAILED):
                        # Lease outlived an acknowledged job
                        continue

                    job.stalled_count += 1
                    if job.stalled_count > self.max_stalled_count:
                        self._terminal(pipe, job, STALLED_ERROR)
                        failed.append(job)
                    else:
                        job.status = JobStatus.WAITING
                        job.started_at = None
                        pipe.set(self.keys.job(job_id), self._dump(job), ex=self.job_ttl)
                        pipe.lpush(self.keys.wait, job_id)
                        requeued.append(job_id)
                await pipe.execute()
        except WatchError:
            logger.debug("Lease set changed during stalled check, retrying next cycle")
            return [], []

        return requeued, failed

    async def _adopt_orphans(self, now: int) -> None:
        """Give a lease to active ids that never received one."""
        active = await _await_redis(self._client.lrange(self.keys.active, 0, -1))
        if not active:
            return

        deadline = now + int(self.lease_timeout * 1000)
        async with self._client.pipeline(transaction=False) as pipe:
            for job_id in active:
                pipe.zadd(self.keys.leases, {_decode(job_id): deadline}, nx=True)
            await pipe.execute()

    # -------------------------------------------------------------------------
    # Crons
    # -------------------------------------------------------------------------

    async def get_cron(self, name: str) -> CronEntry | None:
        data = await _await_redis(self._client.hget(self.keys.crons, name))
        if data is None:
            return None
        return CronEntry.from_dict(orjson.loads(data))

    async def list_crons(self) -> list[CronEntry]:
        values = await _await_redis(self._client.hvals(self.keys.crons))
        entries = [CronEntry.from_dict(orjson.loads(value)) for value in values]
        return sorted(entries, key=lambda entry: entry.name)

    async def save_cron(self, entry: CronEntry) -> None:
        await _await_redis(
            self._client.hset(self.keys.crons, entry.name, orjson.dumps(entry.to_dict()))
        )

    async def remove_cron(self, name: str) -> bool:
        removed = await _await_redis(self._client.hdel(self.keys.crons, name))
        return bool(removed)

    async def claim_cron_firing(self, name: str, fire_at: int) -> bool:
        acquired = await self._client.set(
            self.keys.cron_fire(name, fire_at), "1", nx=True, ex=CRON_FIRE_TTL
        )
        return bool(acquired)

    async def release_cron_firing(self, name: str, fire_at: int) -> None:
        await _await_redis(self._client.delete(self.keys.cron_fire(name, fire_at)))

    # -------------------------------------------------------------------------
    # Introspection and lifecycle
    # -------------------------------------------------------------------------

    async def stats(self) -> dict[str, int]:
        async with self._client.pipeline(transaction=False) as pipe:
            pipe.llen(self.keys.wait)
            pipe.llen(self.keys.active)
            pipe.zcard(self.keys.delayed)
            pipe.llen(self.keys.failed)
            pipe.hlen(self.keys.crons)
            waiting, active, delayed, failed, crons = await pipe.execute()

        return {
            "waiting": waiting,
            "active": active,
            "delayed": delayed,
            "failed": failed,
            "crons": crons,
        }

    async def ping(self) -> bool:
        """Check Redis connectivity."""
        try:
            await _await_redis(self._client.ping())
            return True
        except RedisError:
            return False

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._owns_client:
            await self._client.aclose()
        logger.info(f"Queue backend closed (lane={self.lane})")
