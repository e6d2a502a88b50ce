"""Tests for retry policy and backoff delays."""

import random

import pytest

from laneq.jobs.backoff import Backoff, BackoffType, RetryPolicy


class TestBackoff:
    """Tests for Backoff.compute()."""

    def test_exponential_doubles(self) -> None:
        """Default exponential backoff waits 1000, 2000, 4000 ms."""
        backoff = Backoff()

        assert [backoff.compute(k) for k in (1, 2, 3)] == [1000, 2000, 4000]

    def test_fixed_is_constant(self) -> None:
        """Fixed backoff waits the same delay every time."""
        backoff = Backoff(type=BackoffType.FIXED, delay=250)

        assert [backoff.compute(k) for k in (1, 2, 5)] == [250, 250, 250]

    def test_zero_delay(self) -> None:
        """A zero delay stays zero, with or without jitter."""
        assert Backoff(delay=0).compute(3) == 0
        assert Backoff(delay=0, jitter=0.5).compute(3) == 0

    def test_jitter_stays_within_spread(self) -> None:
        """Jitter only shortens the delay by at most the jitter fraction."""
        backoff = Backoff(delay=1000, jitter=0.2)
        rng = random.Random(42)

        delays = [backoff.compute(2, rng) for _ in range(50)]

        assert all(1600 <= d <= 2000 for d in delays)
        assert len(set(delays)) > 1

    def test_rejects_attempts_below_one(self) -> None:
        """At least one attempt must have been made."""
        with pytest.raises(ValueError, match="attempts_made"):
            Backoff().compute(0)

    @pytest.mark.parametrize("kwargs", [{"delay": -1}, {"jitter": 1.5}, {"jitter": -0.1}])
    def test_rejects_invalid_values(self, kwargs: dict) -> None:
        """Negative delays and out-of-range jitter are rejected."""
        with pytest.raises(ValueError):
            Backoff(**kwargs)


class TestBackoffCoerce:
    """Tests for Backoff.coerce()."""

    def test_int_is_fixed_delay(self) -> None:
        """A bare int means a fixed delay in milliseconds."""
        assert Backoff.coerce(500) == Backoff(type=BackoffType.FIXED, delay=500)

    def test_mapping(self) -> None:
        """Mappings use the serialized field names."""
        backoff = Backoff.coerce({"type": "fixed", "delay": 300, "jitter": 0.1})

        assert backoff.type == BackoffType.FIXED
        assert backoff.delay == 300
        assert backoff.jitter == 0.1

    def test_backoff_passthrough(self) -> None:
        """A Backoff instance is returned unchanged."""
        backoff = Backoff(delay=10)

        assert Backoff.coerce(backoff) is backoff

    def test_bool_rejected(self) -> None:
        """Booleans are not treated as delays."""
        with pytest.raises(TypeError):
            Backoff.coerce(True)

    def test_unknown_type_rejected(self) -> None:
        """Unknown strategies fail loudly."""
        with pytest.raises(ValueError):
            Backoff.coerce({"type": "linear"})


class TestRetryPolicy:
    """Tests for RetryPolicy.merge()."""

    def test_defaults(self) -> None:
        """Three attempts with exponential backoff from 1000 ms."""
        policy = RetryPolicy()

        assert policy.attempts == 3
        assert policy.backoff == Backoff(type=BackoffType.EXPONENTIAL, delay=1000)

    def test_merge_without_overrides_returns_self(self) -> None:
        """No overrides means the same policy."""
        policy = RetryPolicy()

        assert policy.merge() is policy

    def test_merge_overrides(self) -> None:
        """Overrides replace only the given fields."""
        policy = RetryPolicy(attempts=5).merge(backoff=100)

        assert policy.attempts == 5
        assert policy.backoff == Backoff(type=BackoffType.FIXED, delay=100)

    def test_rejects_zero_attempts(self) -> None:
        """A job must be tried at least once."""
        with pytest.raises(ValueError):
            RetryPolicy(attempts=0)
