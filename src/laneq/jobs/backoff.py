"""Retry policy and backoff delays.

Delays are in milliseconds. For exponential backoff the delay before
attempt k+1 is ``delay * 2 ** (k - 1)``, where k is the number of attempts
already made: 1000, 2000, 4000, ... for the default policy.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Mapping

DEFAULT_ATTEMPTS = 3
DEFAULT_BACKOFF_DELAY = 1000


class BackoffType(str, Enum):
    """Backoff strategy between retry attempts."""

    FIXED = "fixed"
    EXPONENTIAL = "exponential"


@dataclass(frozen=True)
class Backoff:
    """Backoff configuration carried by every job instance."""

    type: BackoffType = BackoffType.EXPONENTIAL
    delay: int = DEFAULT_BACKOFF_DELAY
    jitter: float = 0.0  # fraction of the delay randomized, 0..1

    def __post_init__(self) -> None:
        if self.delay < 0:
            raise ValueError(f"Backoff delay must be >= 0, got {self.delay}")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError(f"Backoff jitter must be within [0, 1], got {self.jitter}")

    def compute(self, attempts_made: int, rng: random.Random | None = None) -> int:
        """Delay in milliseconds before the next attempt.

        Args:
            attempts_made: Attempts already made (>= 1)
            rng: Random source for jitter (module random if not given)

        Returns:
            Delay in milliseconds
        """
        if attempts_made < 1:
            raise ValueError(f"attempts_made must be >= 1, got {attempts_made}")

        if self.type == BackoffType.EXPONENTIAL:
            delay = self.delay * 2 ** (attempts_made - 1)
        else:
            delay = self.delay

        if self.jitter and delay:
            source = rng or random
            spread = delay * self.jitter
            return int(delay - spread + source.uniform(0, spread))
        return int(delay)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "delay": self.delay, "jitter": self.jitter}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Backoff:
        return cls(
            type=BackoffType(data.get("type", BackoffType.EXPONENTIAL.value)),
            delay=int(data.get("delay", DEFAULT_BACKOFF_DELAY)),
            jitter=float(data.get("jitter", 0.0)),
        )

    @classmethod
    def coerce(cls, value: Backoff | Mapping[str, Any] | int) -> Backoff:
        """Accept a Backoff, a mapping, or a bare int (fixed delay in ms)."""
        if isinstance(value, Backoff):
            return value
        if isinstance(value, bool):
            raise TypeError("Backoff must be a Backoff, a mapping or an int")
        if isinstance(value, int):
            return cls(type=BackoffType.FIXED, delay=value)
        if isinstance(value, Mapping):
            return cls.from_dict(value)
        raise TypeError("Backoff must be a Backoff, a mapping or an int")


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt limit and backoff applied to a job."""

    attempts: int = DEFAULT_ATTEMPTS
    backoff: Backoff = field(default_factory=Backoff)

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError(f"attempts must be >= 1, got {self.attempts}")

    def merge(
        self,
        attempts: int | None = None,
        backoff: Backoff | Mapping[str, Any] | int | None = None,
    ) -> RetryPolicy:
        """Return a policy with the given overrides applied."""
        changes: dict[str, Any] = {}
        if attempts is not None:
            changes["attempts"] = attempts
        if backoff is not None:
            changes["backoff"] = Backoff.coerce(backoff)
        return replace(self, **changes) if changes else self
