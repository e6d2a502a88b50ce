"""Cron-like job scheduler.

Recurring triggers are persisted per lane in the backend and materialized
into ordinary jobs when due:
- Every worker process runs a scheduler; a SET NX marker per firing makes
  sure only one of them enqueues it
- Materialized jobs get the id "cron:{name}:{fire_ms}" and follow the
  normal retry and dispatch path
- Missed firings (all schedulers down) collapse into a single run

Example:
    scheduler = CronScheduler(queue)
    await scheduler.sync(registry.crons.values())
    await scheduler.start()
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, Iterable

from laneq.errors import InvalidCronError

if TYPE_CHECKING:
    from laneq.jobs.job import JobHandle
    from laneq.jobs.queue import JobQueue
    from laneq.jobs.registry import CronDefinition
    from laneq.observability.events import JobEventSink

logger = logging.getLogger(__name__)

# Search horizon for the next matching minute (covers "0 0 29 2 *")
MAX_LOOKAHEAD = timedelta(days=366 * 5)

CRON_ALIASES = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * 0",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
}


class CronExpression:
    """Parse and evaluate cron expressions.

    Supports standard 5-field cron format:
    - minute (0-59)
    - hour (0-23)
    - day of month (1-31)
    - month (1-12)
    - day of week (0-7, 0 and 7 = Sunday)

    Special characters:
    - * : any value
    - */n : every n values
    - n-m : range from n to m
    - n-m/s : every s values from n to m
    - n,m : specific values n and m

    When both day fields are restricted a day matches if either does.
    """

    def __init__(self, expression: str) -> None:
        self.expression = expression
        self._parse(CRON_ALIASES.get(expression.strip(), expression))

    def _parse(self, expression: str) -> None:
        """Parse cron expression into components."""
        parts = expression.strip().split()
        if len(parts) != 5:
            raise InvalidCronError(f"Invalid cron expression (expected 5 parts): {expression}")

        self.minute = self._parse_field(parts[0], 0, 59)
        self.hour = self._parse_field(parts[1], 0, 23)
        self.day_of_month = self._parse_field(parts[2], 1, 31)
        self.month = self._parse_field(parts[3], 1, 12)
        self.day_of_week = {d % 7 for d in self._parse_field(parts[4], 0, 7)}

        # A day field starting with "*" (including "*/n") leaves days unrestricted
        self._dom_restricted = not parts[2].startswith("*")
        self._dow_restricted = not parts[4].startswith("*")

    def _parse_field(self, field: str, min_val: int, max_val: int) -> set[int]:
        """Parse a single cron field."""
        values: set[int] = set()

        try:
            for part in field.split(","):
                step = 1
                stepped = "/" in part
                if stepped:
                    part, step_str = part.split("/", 1)
                    step = int(step_str)
                    if step < 1:
                        raise ValueError(f"step must be >= 1: {step}")

                if part == "*":
                    start, end = min_val, max_val
                elif "-" in part:
                    start, end = map(int, part.split("-", 1))
                else:
                    start = int(part)
                    end = max_val if stepped else start

                if start < min_val or end > max_val or start > end:
                    raise ValueError(f"{part} outside {min_val}-{max_val}")

                values.update(range(start, end + 1, step))
        except ValueError as e:
            raise InvalidCronError(
                f"Invalid cron field {field!r} in {self.expression!r}: {e}"
            ) from e

        return values

    def _day_matches(self, dt: datetime) -> bool:
        dom = dt.day in self.day_of_month
        dow = dt.weekday() in self._convert_weekday(self.day_of_week)
        if self._dom_restricted and self._dow_restricted:
            return dom or dow
        return dom and dow

    def matches(self, dt: datetime) -> bool:
        """Check if datetime matches this cron expression."""
        return (
            dt.minute in self.minute
            and dt.hour in self.hour
            and dt.month in self.month
            and self._day_matches(dt)
        )

    def _convert_weekday(self, cron_days: set[int]) -> set[int]:
        """Convert cron weekdays (0=Sun) to Python weekdays (0=Mon)."""
        return {(day - 1) % 7 for day in cron_days}

    def next_run(self, after: datetime | None = None) -> datetime:
        """Calculate next run time strictly after the given datetime."""
        if after is None:
            after = datetime.now(UTC)

        current = after.replace(second=0, microsecond=0) + timedelta(minutes=1)
        limit = current + MAX_LOOKAHEAD

        while current < limit:
            if current.month not in self.month:
                first = current.replace(day=1, hour=0, minute=0)
                current = (first + timedelta(days=32)).replace(day=1)
            elif not self._day_matches(current):
                current = current.replace(hour=0, minute=0) + timedelta(days=1)
            elif current.hour not in self.hour:
                current = current.replace(minute=0) + timedelta(hours=1)
            elif current.minute not in self.minute:
                current += timedelta(minutes=1)
            else:
                return current

        raise InvalidCronError(f"No matching time found for: {self.expression}")


@dataclass
class CronEntry:
    """A persisted recurring trigger."""

    name: str
    cron: str
    payload: dict[str, Any] = field(default_factory=dict)
    next_run: datetime | None = None
    last_run: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "cron": self.cron,
            "payload": self.payload,
            "next_run": self.next_run.isoformat() if self.next_run else None,
            "last_run": self.last_run.isoformat() if self.last_run else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CronEntry:
        return cls(
            name=data["name"],
            cron=data["cron"],
            payload=data.get("payload") or {},
            next_run=datetime.fromisoformat(data["next_run"]) if data.get("next_run") else None,
            last_run=datetime.fromisoformat(data["last_run"]) if data.get("last_run") else None,
        )


class CronScheduler:
    """Materializes due cron entries of one lane into jobs."""

    def __init__(
        self,
        queue: JobQueue,
        check_interval: float = 10.0,
        events: JobEventSink | None = None,
    ) -> None:
        self.queue = queue
        self.backend = queue.backend
        self.check_interval = check_interval
        self.events = events
        self._running = False
        self._wakeup = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    async def sync(self, definitions: Iterable[CronDefinition]) -> None:
        """Upsert registered crons and drop persisted ones no longer registered."""
        names: set[str] = set()
        for definition in definitions:
            await self.queue.schedule_cron(
                definition.name, definition.schedule, definition.payload
            )
            names.add(definition.name)

        for entry in await self.backend.list_crons():
            if entry.name not in names:
                await self.backend.remove_cron(entry.name)
                logger.info(f"Removed stale cron: {entry.name}")

    async def start(self) -> None:
        """Start the scheduler loop."""
        if self._running:
            return
        self._running = True
        self._wakeup.clear()
        self._task = asyncio.create_task(self._run_loop(), name="laneq-cron-scheduler")
        logger.info(f"Cron scheduler started (lane={self.queue.lane})")

    async def stop(self) -> None:
        """Stop the scheduler loop."""
        if not self._running:
            return
        self._running = False
        self._wakeup.set()
        if self._task is not None:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info("Cron scheduler stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.check_schedules()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if self.events is not None:
                    self.events.backend_error(e)
                else:
                    logger.error(f"Cron check failed: {e}")

            with suppress(TimeoutError):
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.check_interval)

    async def check_schedules(self, now: datetime | None = None) -> list[JobHandle]:
        """Enqueue every due cron entry and advance its next run.

        Returns:
            Handles of the jobs this call enqueued
        """
        now = now or datetime.now(UTC)
        handles: list[JobHandle] = []

        for entry in await self.backend.list_crons():
            if entry.next_run is None or entry.next_run > now:
                continue

            fire_ms = int(entry.next_run.timestamp() * 1000)
            if await self.backend.claim_cron_firing(entry.name, fire_ms):
                try:
                    handle = await self.queue.enqueue(
                        entry.name,
                        dict(entry.payload),
                        job_id=f"cron:{entry.name}:{fire_ms}",
                    )
                except Exception:
                    # Entry is not advanced; the next check fires it again
                    await self.backend.release_cron_firing(entry.name, fire_ms)
                    raise
                handles.append(handle)
                logger.info(f"Cron fired: {entry.name} -> {handle.id}")

            entry.last_run = entry.next_run
            entry.next_run = CronExpression(entry.cron).next_run(now)
            await self.backend.save_cron(entry)

        return handles

    async def run_now(self, name: str) -> JobHandle | None:
        """Manually trigger a cron immediately.

        Returns:
            Job handle if submitted, None if the cron is not scheduled
        """
        entry = await self.backend.get_cron(name)
        if entry is None:
            return None

        handle = await self.queue.enqueue(entry.name, dict(entry.payload))
        logger.info(f"Manually triggered cron: {name} -> {handle.id}")
        return handle
