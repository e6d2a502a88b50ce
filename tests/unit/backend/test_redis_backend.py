"""Tests for the Redis queue backend."""

from collections.abc import Callable
from unittest.mock import AsyncMock

import fakeredis
import pytest

from laneq.backend.redis import STALLED_ERROR, RedisBackend
from laneq.jobs.job import Job, JobStatus
from laneq.lane import QueueKeys


def make_job(job_id: str = "job-1", **kwargs: object) -> Job:
    return Job(id=job_id, name="send_welcome", payload={"user_id": "abc123"}, lane="test", **kwargs)


class TestAddAndClaim:
    """Tests for add() and claim()."""

    @pytest.mark.asyncio
    async def test_claim_moves_job_to_active(self, backend: RedisBackend) -> None:
        """Claimed jobs are active and leased."""
        assert await backend.add(make_job()) is True

        job = await backend.claim()

        assert job is not None
        assert job.id == "job-1"
        assert job.status == JobStatus.ACTIVE
        assert job.started_at is not None
        assert await backend.client.zscore(backend.keys.leases, "job-1") is not None
        assert await backend.stats() == {
            "waiting": 0,
            "active": 1,
            "delayed": 0,
            "failed": 0,
            "crons": 0,
        }

    @pytest.mark.asyncio
    async def test_claim_empty_queue(self, backend: RedisBackend) -> None:
        """Nothing to claim returns None."""
        assert await backend.claim() is None

    @pytest.mark.asyncio
    async def test_fifo_order(self, backend: RedisBackend) -> None:
        """Jobs are claimed in enqueue order."""
        for n in range(3):
            await backend.add(make_job(f"job-{n}"))

        claimed = [(await backend.claim()).id for _ in range(3)]  # type: ignore[union-attr]

        assert claimed == ["job-0", "job-1", "job-2"]

    @pytest.mark.asyncio
    async def test_duplicate_id_not_added(self, backend: RedisBackend) -> None:
        """An id that already exists is not queued twice."""
        assert await backend.add(make_job()) is True
        assert await backend.add(make_job()) is False

        assert (await backend.stats())["waiting"] == 1

    @pytest.mark.asyncio
    async def test_claim_drops_ids_without_data(self, backend: RedisBackend) -> None:
        """Ids whose job record expired are discarded."""
        await backend.add(make_job())
        await backend.client.delete(backend.keys.job("job-1"))

        assert await backend.claim() is None
        assert (await backend.stats())["active"] == 0
        assert await backend.client.zcard(backend.keys.leases) == 0


class TestDelayed:
    """Tests for delayed jobs."""

    @pytest.mark.asyncio
    async def test_promote_when_due(self, backend: RedisBackend, clock: object) -> None:
        """Delayed jobs become claimable once their time comes."""
        await backend.add(make_job(), delay=1000)

        assert await backend.promote_delayed() == 0
        assert await backend.claim() is None

        clock.advance(1.0)  # type: ignore[attr-defined]

        assert await backend.promote_delayed() == 1
        job = await backend.claim()
        assert job is not None
        assert job.id == "job-1"


class TestSettle:
    """Tests for complete(), retry() and fail()."""

    @pytest.mark.asyncio
    async def test_complete_removes_job(self, backend: RedisBackend) -> None:
        """Completed jobs leave no trace by default."""
        await backend.add(make_job())
        job = await backend.claim()
        assert job is not None

        await backend.complete(job)

        assert await backend.get("job-1") is None
        assert (await backend.stats())["active"] == 0
        assert await backend.client.zcard(backend.keys.leases) == 0

    @pytest.mark.asyncio
    async def test_complete_keeps_record(self, make_backend: Callable[..., RedisBackend]) -> None:
        """remove_on_complete=False keeps the record with a result TTL."""
        backend = make_backend(remove_on_complete=False, result_ttl=60)
        await backend.add(make_job())
        job = await backend.claim()
        assert job is not None

        await backend.complete(job)

        stored = await backend.get("job-1")
        assert stored is not None
        assert stored.status == JobStatus.COMPLETED
        assert 0 < await backend.client.ttl(backend.keys.job("job-1")) <= 60

    @pytest.mark.asyncio
    async def test_retry_increments_attempt(self, backend: RedisBackend) -> None:
        """retry() stores attempt + 1 and the error."""
        await backend.add(make_job())
        job = await backend.claim()
        assert job is not None

        await backend.retry(job, "RuntimeError: boom", delay=500)

        stored = await backend.get("job-1")
        assert stored is not None
        assert stored.attempt == 2
        assert stored.error == "RuntimeError: boom"
        assert stored.status == JobStatus.DELAYED
        stats = await backend.stats()
        assert stats["active"] == 0
        assert stats["delayed"] == 1

    @pytest.mark.asyncio
    async def test_fail_removes_job(self, backend: RedisBackend) -> None:
        """Failed jobs are deleted by default."""
        await backend.add(make_job())
        job = await backend.claim()
        assert job is not None

        await backend.fail(job, "RuntimeError: boom")

        assert await backend.get("job-1") is None
        assert (await backend.stats())["failed"] == 0

    @pytest.mark.asyncio
    async def test_fail_keeps_dead_letter(self, make_backend: Callable[..., RedisBackend]) -> None:
        """remove_on_fail=False moves the job to the failed list."""
        backend = make_backend(remove_on_fail=False)
        await backend.add(make_job())
        job = await backend.claim()
        assert job is not None

        await backend.fail(job, "RuntimeError: boom")

        stored = await backend.get("job-1")
        assert stored is not None
        assert stored.status == JobStatus.FAILED
        assert stored.error == "RuntimeError: boom"
        assert (await backend.stats())["failed"] == 1


class TestLeases:
    """Tests for leases and stalled job recovery."""

    @pytest.mark.asyncio
    async def test_extend_lease(self, backend: RedisBackend, clock: object) -> None:
        """Extending moves the deadline forward."""
        await backend.add(make_job())
        await backend.claim()
        before = await backend.client.zscore(backend.keys.leases, "job-1")

        clock.advance(10)  # type: ignore[attr-defined]

        assert await backend.extend_lease("job-1") is True
        after = await backend.client.zscore(backend.keys.leases, "job-1")
        assert after == before + 10_000

    @pytest.mark.asyncio
    async def test_extend_lost_lease(self, backend: RedisBackend) -> None:
        """A lease that no longer exists cannot be extended."""
        assert await backend.extend_lease("job-1") is False

    @pytest.mark.asyncio
    async def test_recover_expired_lease(self, backend: RedisBackend, clock: object) -> None:
        """Expired leases put the job back in wait."""
        await backend.add(make_job())
        await backend.claim()

        clock.advance(backend.lease_timeout + 1)  # type: ignore[attr-defined]
        requeued, failed = await backend.recover_stalled()

        assert requeued == ["job-1"]
        assert failed == []
        stored = await backend.get("job-1")
        assert stored is not None
        assert stored.status == JobStatus.WAITING
        assert stored.stalled_count == 1
        assert (await backend.stats())["waiting"] == 1

    @pytest.mark.asyncio
    async def test_recover_exhausted(self, backend: RedisBackend, clock: object) -> None:
        """A job stalled more than max_stalled_count times fails."""
        await backend.add(make_job(stalled_count=1))
        await backend.claim()

        clock.advance(backend.lease_timeout + 1)  # type: ignore[attr-defined]
        requeued, failed = await backend.recover_stalled()

        assert requeued == []
        assert [job.id for job in failed] == ["job-1"]
        assert failed[0].error == STALLED_ERROR
        assert await backend.get("job-1") is None

    @pytest.mark.asyncio
    async def test_live_lease_is_untouched(self, backend: RedisBackend) -> None:
        """Leases within their deadline are not recovered."""
        await backend.add(make_job())
        await backend.claim()

        assert await backend.recover_stalled() == ([], [])
        assert (await backend.stats())["active"] == 1

    @pytest.mark.asyncio
    async def test_orphaned_active_id_is_adopted(
        self, backend: RedisBackend, clock: object
    ) -> None:
        """An id moved to active without a lease is eventually requeued."""
        await backend.add(make_job())
        await backend.client.lmove(backend.keys.wait, backend.keys.active, "RIGHT", "LEFT")

        assert await backend.recover_stalled() == ([], [])
        assert await backend.client.zscore(backend.keys.leases, "job-1") is not None

        clock.advance(backend.lease_timeout + 1)  # type: ignore[attr-defined]
        requeued, _ = await backend.recover_stalled()

        assert requeued == ["job-1"]


class TestCrons:
    """Tests for cron storage."""

    @pytest.mark.asyncio
    async def test_claim_firing_once(self, backend: RedisBackend) -> None:
        """Each firing can be claimed by one process only."""
        assert await backend.claim_cron_firing("purge", 1_700_000_000_000) is True
        assert await backend.claim_cron_firing("purge", 1_700_000_000_000) is False
        assert await backend.claim_cron_firing("purge", 1_700_000_300_000) is True

    @pytest.mark.asyncio
    async def test_released_firing_can_be_claimed_again(self, backend: RedisBackend) -> None:
        """Releasing a firing lets the next check claim it."""
        assert await backend.claim_cron_firing("purge", 1_700_000_000_000) is True

        await backend.release_cron_firing("purge", 1_700_000_000_000)

        assert await backend.claim_cron_firing("purge", 1_700_000_000_000) is True


class TestLifecycle:
    """Tests for connection handling."""

    @pytest.mark.asyncio
    async def test_ping(self, backend: RedisBackend) -> None:
        """ping() reports connectivity."""
        assert await backend.ping() is True

    @pytest.mark.asyncio
    async def test_close_owned_client_once(self) -> None:
        """Owned clients are closed exactly once."""
        client = AsyncMock(spec=fakeredis.FakeAsyncRedis)
        backend = RedisBackend(client, QueueKeys("test:{mq}", "test"))

        await backend.close()
        await backend.close()

        client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_shared_client_left_open(self, backend: RedisBackend) -> None:
        """Borrowed clients stay open."""
        await backend.close()

        assert await backend.client.ping() is True
