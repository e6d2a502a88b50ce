"""Queue backend interface.

A backend is a durable, per-lane store with:
- FIFO waiting jobs and a delayed set for scheduled visibility
- Leased claims that become visible again when the lease expires
- Acknowledgement on completion or terminal failure
- Persisted cron entries
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from laneq.jobs.job import Job
    from laneq.jobs.scheduler import CronEntry
    from laneq.lane import QueueKeys


class QueueBackend(ABC):
    """Abstract queue backend bound to one lane."""

    keys: QueueKeys
    lease_timeout: float

    @property
    def lane(self) -> str:
        return self.keys.lane

    @abstractmethod
    async def add(self, job: Job, delay: int = 0) -> bool:
        """Store a job durably.

        Args:
            job: Job to store
            delay: Milliseconds before the job becomes claimable

        Returns:
            False if a job with the same id already exists
        """

    @abstractmethod
    async def get(self, job_id: str) -> Job | None:
        """Get a stored job by id."""

    @abstractmethod
    async def claim(self, timeout: float = 0) -> Job | None:
        """Lease the next waiting job.

        Args:
            timeout: Seconds to block waiting for a job (0 = do not block)
        """

    @abstractmethod
    async def extend_lease(self, job_id: str) -> bool:
        """Push the lease deadline forward. False if the lease was lost."""

    @abstractmethod
    async def complete(self, job: Job) -> None:
        """Acknowledge a successful job."""

    @abstractmethod
    async def retry(self, job: Job, error: str, delay: int) -> None:
        """Release a failed job for another attempt after `delay` ms."""

    @abstractmethod
    async def fail(self, job: Job, error: str) -> None:
        """Acknowledge a job that will not be retried."""

    @abstractmethod
    async def promote_delayed(self) -> int:
        """Move due delayed jobs to waiting. Returns the number moved."""

    @abstractmethod
    async def recover_stalled(self) -> tuple[list[str], list[Job]]:
        """Return expired leases to waiting.

        Returns:
            Tuple of (requeued job ids, jobs failed for stalling too often)
        """

    @abstractmethod
    async def get_cron(self, name: str) -> CronEntry | None:
        """Get a persisted cron entry."""

    @abstractmethod
    async def list_crons(self) -> list[CronEntry]:
        """List persisted cron entries."""

    @abstractmethod
    async def save_cron(self, entry: CronEntry) -> None:
        """Insert or replace a cron entry."""

    @abstractmethod
    async def remove_cron(self, name: str) -> bool:
        """Remove a cron entry."""

    @abstractmethod
    async def claim_cron_firing(self, name: str, fire_at: int) -> bool:
        """Claim one firing of a cron. True for exactly one caller."""

    @abstractmethod
    async def release_cron_firing(self, name: str, fire_at: int) -> None:
        """Give back a claimed firing whose job could not be enqueued."""

    @abstractmethod
    async def stats(self) -> dict[str, int]:
        """Counts of waiting, active, delayed, failed jobs and crons."""

    @abstractmethod
    async def close(self) -> None:
        """Release backend connections."""
