"""Global pytest configuration and fixtures.

Provides an in-process Redis (fakeredis) shared by every backend created in
a test, and a controllable clock for lease and delay deadlines.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from typing import Any

import fakeredis
import pytest

from laneq.backend.redis import RedisBackend
from laneq.config import Settings
from laneq.lane import QueueKeys

TEST_PREFIX = "test:{mq}"


class FakeClock:
    """Wall clock in seconds that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    """Controllable clock for backends."""
    return FakeClock()


@pytest.fixture
async def redis_client() -> AsyncIterator[fakeredis.FakeAsyncRedis]:
    """Isolated in-memory Redis for one test."""
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def make_backend(
    redis_client: fakeredis.FakeAsyncRedis, clock: FakeClock
) -> Callable[..., RedisBackend]:
    """Factory for backends sharing one Redis, one per lane."""

    def factory(lane: str = "test", **kwargs: Any) -> RedisBackend:
        kwargs.setdefault("clock", clock)
        return RedisBackend(
            redis_client,
            QueueKeys(TEST_PREFIX, lane),
            owns_client=False,
            **kwargs,
        )

    return factory


@pytest.fixture
def backend(make_backend: Callable[..., RedisBackend]) -> RedisBackend:
    """Backend for the default test lane."""
    return make_backend()


@pytest.fixture
def test_settings() -> Settings:
    """Settings for a runtime that never touches a real Redis or exporter."""
    return Settings(
        env="test",
        lane="test",
        namespace=TEST_PREFIX,
        script=False,
        claim_timeout=0,
        poll_interval=0.01,
        stalled_interval=0.05,
        cron_check_interval=0.05,
        shutdown_grace=1.0,
        backoff_delay=0,
        enable_tracing=False,
        enable_metrics=False,
        log_json=False,
    )
