"""Job and cron registry.

The registry is assembled once at process start from two static lists and
is read-only afterwards, so the producer and the worker pool can share it
without synchronization.

Example:
    async def send_welcome(payload: dict) -> None:
        ...

    jobs = [define_job("send_welcome", send_welcome, attempts=5)]
    crons = [define_cron("purge_sessions", "0 3 * * *", purge_sessions)]

    registry = build_registry(jobs, crons)
    definition = registry.resolve("send_welcome")
"""

from __future__ import annotations

import importlib
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Iterable, Iterator, Mapping

from laneq.errors import ConfigurationError, DuplicateNameError, UnknownJobError
from laneq.jobs.backoff import Backoff, RetryPolicy
from laneq.jobs.scheduler import CronExpression

logger = logging.getLogger(__name__)

# Handlers receive the payload; coroutine functions are awaited, plain
# functions run in a worker thread.
JobHandler = Callable[[Any], Awaitable[None] | None]


@dataclass(frozen=True)
class JobDefinition:
    """A named handler with an optional retry policy override."""

    name: str
    handler: JobHandler
    policy: RetryPolicy | None = None
    # Exception types that fail the job immediately instead of retrying
    fatal_errors: tuple[type[BaseException], ...] = ()


@dataclass(frozen=True)
class CronDefinition(JobDefinition):
    """A job definition bound to a recurring schedule."""

    schedule: str = field(kw_only=True)
    payload: dict[str, Any] = field(default_factory=dict, kw_only=True)

    def __post_init__(self) -> None:
        CronExpression(self.schedule)


def _policy(
    attempts: int | None,
    backoff: Backoff | Mapping[str, Any] | int | None,
) -> RetryPolicy | None:
    if attempts is None and backoff is None:
        return None
    return RetryPolicy().merge(attempts=attempts, backoff=backoff)


def define_job(
    name: str,
    handler: JobHandler,
    *,
    attempts: int | None = None,
    backoff: Backoff | Mapping[str, Any] | int | None = None,
    fatal_errors: tuple[type[BaseException], ...] = (),
) -> JobDefinition:
    """Create a job definition.

    Args:
        name: Unique job name
        handler: Function called with the job payload
        attempts: Override the queue's default attempt limit
        backoff: Override the queue's default backoff
        fatal_errors: Exception types that are never retried
    """
    return JobDefinition(
        name=name,
        handler=handler,
        policy=_policy(attempts, backoff),
        fatal_errors=fatal_errors,
    )


def define_cron(
    name: str,
    schedule: str,
    handler: JobHandler,
    *,
    payload: dict[str, Any] | None = None,
    attempts: int | None = None,
    backoff: Backoff | Mapping[str, Any] | int | None = None,
    fatal_errors: tuple[type[BaseException], ...] = (),
) -> CronDefinition:
    """Create a cron definition (a job plus a cron schedule)."""
    return CronDefinition(
        name=name,
        handler=handler,
        policy=_policy(attempts, backoff),
        fatal_errors=fatal_errors,
        schedule=schedule,
        payload=dict(payload or {}),
    )


class JobRegistry:
    """Immutable name-to-definition lookup.

    Build it with build_registry(); instances are never mutated.
    """

    def __init__(
        self,
        jobs: Mapping[str, JobDefinition],
        crons: Mapping[str, CronDefinition],
    ) -> None:
        self._jobs = MappingProxyType(dict(jobs))
        self._crons = MappingProxyType(dict(crons))

    @property
    def jobs(self) -> Mapping[str, JobDefinition]:
        return self._jobs

    @property
    def crons(self) -> Mapping[str, CronDefinition]:
        return self._crons

    def get(self, name: str) -> JobDefinition | None:
        """Get a definition by name, or None if not registered."""
        definition = self._jobs.get(name)
        if definition is None:
            definition = self._crons.get(name)
        return definition

    def resolve(self, name: str) -> JobDefinition:
        """Get a definition by name.

        Raises:
            UnknownJobError: If no job or cron has this name
        """
        definition = self.get(name)
        if definition is None:
            raise UnknownJobError(name)
        return definition

    def names(self) -> list[str]:
        return [*self._jobs, *self._crons]

    def __contains__(self, name: object) -> bool:
        return name in self._jobs or name in self._crons

    def __iter__(self) -> Iterator[JobDefinition]:
        yield from self._jobs.values()
        yield from self._crons.values()

    def __len__(self) -> int:
        return len(self._jobs) + len(self._crons)


def build_registry(
    jobs: Iterable[JobDefinition],
    crons: Iterable[CronDefinition] = (),
) -> JobRegistry:
    """Validate the registration lists and build the registry.

    Raises:
        DuplicateNameError: If a name appears twice across jobs and crons
        ConfigurationError: If a definition has an empty name
    """
    seen: set[str] = set()
    job_map: dict[str, JobDefinition] = {}
    cron_map: dict[str, CronDefinition] = {}

    for definition in [*jobs, *crons]:
        if not definition.name or not definition.name.strip():
            raise ConfigurationError("Job name cannot be empty")
        if definition.name in seen:
            raise DuplicateNameError(definition.name)
        seen.add(definition.name)

        if isinstance(definition, CronDefinition):
            cron_map[definition.name] = definition
        else:
            job_map[definition.name] = definition

    logger.info(f"Registry built: {len(job_map)} jobs, {len(cron_map)} crons")
    return JobRegistry(job_map, cron_map)


def load_definitions(
    module_path: str,
) -> tuple[list[JobDefinition], list[CronDefinition]]:
    """Import an application module exposing `jobs` and `crons` lists.

    Args:
        module_path: Dotted module path (e.g. "myapp.tasks")

    Returns:
        Tuple of (jobs, crons)
    """
    module = importlib.import_module(module_path)
    jobs = list(getattr(module, "jobs", []))
    crons = list(getattr(module, "crons", []))

    for definition in jobs:
        if isinstance(definition, CronDefinition):
            raise ConfigurationError(
                f"Cron {definition.name!r} is listed in {module_path}.jobs"
            )
    for definition in crons:
        if not isinstance(definition, CronDefinition):
            raise ConfigurationError(
                f"{definition!r} in {module_path}.crons is not a CronDefinition"
            )

    return jobs, crons
