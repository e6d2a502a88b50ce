"""Job instance model stored in the queue backend."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from laneq.jobs.backoff import DEFAULT_ATTEMPTS, Backoff


class JobStatus(str, Enum):
    """Job state in the backend."""

    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Job:
    """A single enqueued unit of work."""

    id: str
    name: str
    payload: Any
    lane: str
    attempt: int = 1
    max_attempts: int = DEFAULT_ATTEMPTS
    backoff: Backoff = field(default_factory=Backoff)
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status: JobStatus = JobStatus.WAITING
    started_at: datetime | None = None
    finished_at: datetime | None = None
    error: str | None = None
    stalled_count: int = 0

    @property
    def attempts_left(self) -> int:
        return max(self.max_attempts - self.attempt, 0)

    def to_dict(self) -> dict[str, Any]:
        """Serialize job to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "payload": self.payload,
            "lane": self.lane,
            "attempt": self.attempt,
            "max_attempts": self.max_attempts,
            "backoff": self.backoff.to_dict(),
            "enqueued_at": self.enqueued_at.isoformat(),
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "error": self.error,
            "stalled_count": self.stalled_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Job:
        """Deserialize job from dictionary."""
        return cls(
            id=data["id"],
            name=data["name"],
            payload=data.get("payload"),
            lane=data["lane"],
            attempt=data.get("attempt", 1),
            max_attempts=data.get("max_attempts", DEFAULT_ATTEMPTS),
            backoff=Backoff.from_dict(data.get("backoff") or {}),
            enqueued_at=datetime.fromisoformat(data["enqueued_at"]),
            status=JobStatus(data.get("status", JobStatus.WAITING.value)),
            started_at=(
                datetime.fromisoformat(data["started_at"]) if data.get("started_at") else None
            ),
            finished_at=(
                datetime.fromisoformat(data["finished_at"]) if data.get("finished_at") else None
            ),
            error=data.get("error"),
            stalled_count=data.get("stalled_count", 0),
        )


@dataclass(frozen=True)
class JobHandle:
    """Reference returned to the enqueuing caller."""

    id: str
    name: str
    lane: str
