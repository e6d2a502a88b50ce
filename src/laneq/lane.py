"""Lane derivation and backend key schema.

Key format: {prefix}:{lane}:{suffix}

Where:
- prefix: deployment namespace, "{env}:{mq}" by default. "{mq}" is a Redis
  Cluster hash tag, so every key of a deployment maps to one slot and
  multi-key transactions stay valid.
- lane: partition of the deployment ("production", "staging", or the host
  name of a developer machine)
- suffix: "wait", "active", "leases", "delayed", "failed", "crons",
  "job:{id}", "fire:{name}:{ts}"
"""

from __future__ import annotations

import re
import socket
from dataclasses import dataclass

from laneq.config import Settings

MAX_LANE_LENGTH = 64

_INVALID_LANE_CHARS = re.compile(r"[\s:{}]+")


def sanitize_lane(value: str) -> str:
    """Strip characters that would break the key schema and bound the length."""
    lane = _INVALID_LANE_CHARS.sub("-", value.strip()).strip("-")
    if not lane:
        raise ValueError(f"Invalid lane identifier: {value!r}")
    return lane[:MAX_LANE_LENGTH]


def current_lane(settings: Settings) -> str:
    """Lane this process produces to and consumes from.

    An explicit lane wins. Development environments use the host name so
    that developers sharing one Redis never take each other's jobs.
    """
    if settings.lane:
        return sanitize_lane(settings.lane)
    if settings.is_dev:
        return sanitize_lane(socket.gethostname())
    return sanitize_lane(settings.env)


@dataclass(frozen=True)
class QueueKeys:
    """Key generator for one lane."""

    prefix: str
    lane: str

    @classmethod
    def for_settings(cls, settings: Settings, lane: str | None = None) -> QueueKeys:
        return cls(prefix=settings.key_prefix, lane=lane or current_lane(settings))

    @property
    def base(self) -> str:
        return f"{self.prefix}:{self.lane}"

    @property
    def wait(self) -> str:
        """List of job ids ready to be claimed."""
        return f"{self.base}:wait"

    @property
    def active(self) -> str:
        """List of job ids claimed by a worker."""
        return f"{self.base}:active"

    @property
    def leases(self) -> str:
        """Sorted set of claimed job ids scored by lease deadline (ms)."""
        return f"{self.base}:leases"

    @property
    def delayed(self) -> str:
        """Sorted set of job ids scored by the time they become ready (ms)."""
        return f"{self.base}:delayed"

    @property
    def failed(self) -> str:
        """Dead-letter list, only used when failed jobs are retained."""
        return f"{self.base}:failed"

    @property
    def crons(self) -> str:
        """Hash of cron name to persisted schedule."""
        return f"{self.base}:crons"

    def job(self, job_id: str) -> str:
        return f"{self.base}:job:{job_id}"

    def cron_fire(self, name: str, fire_at_ms: int) -> str:
        return f"{self.base}:fire:{name}:{fire_at_ms}"
