"""CLI command for submitting a job.

Usage:
    laneq enqueue send_welcome --payload '{"user_id": "abc123"}'
    laneq enqueue sync_feed --attempts 5 --delay 60000
    laneq enqueue purge_sessions --job-id purge-2024-01-01
"""

from __future__ import annotations

import asyncio
from typing import Any

import typer


def enqueue(
    name: str = typer.Argument(..., help="Registered job or cron name"),
    payload: str = typer.Option(
        "{}",
        "--payload",
        "-p",
        help="JSON payload passed to the handler",
    ),
    tasks: str | None = typer.Option(
        None,
        "--tasks",
        "-t",
        help="Module exposing `jobs` and `crons` lists (default: LANEQ_TASKS_MODULE)",
    ),
    attempts: int | None = typer.Option(
        None,
        "--attempts",
        "-a",
        help="Override the attempt limit",
    ),
    delay: int | None = typer.Option(
        None,
        "--delay",
        "-d",
        help="Milliseconds before the job becomes claimable",
    ),
    job_id: str | None = typer.Option(
        None,
        "--job-id",
        help="Explicit job id (re-submitting an existing id is a no-op)",
    ),
) -> None:
    """Submit a job to this process's lane without starting a worker."""
    import orjson

    try:
        data = orjson.loads(payload)
    except orjson.JSONDecodeError as e:
        typer.echo(f"Error: invalid JSON payload: {e}", err=True)
        raise typer.Exit(code=1) from e

    asyncio.run(_enqueue(name, data, tasks, attempts, delay, job_id))


async def _enqueue(
    name: str,
    payload: Any,
    tasks: str | None,
    attempts: int | None,
    delay: int | None,
    job_id: str | None,
) -> None:
    from laneq.config import settings
    from laneq.errors import QueueError
    from laneq.runtime import JobRuntime

    # Producer-only: never claim jobs from a CLI invocation
    producer_settings = settings.model_copy(update={"script": True})

    try:
        runtime = JobRuntime.from_module(tasks, producer_settings)
        async with runtime:
            handle = await runtime.enqueue(
                name, payload, attempts=attempts, delay=delay, job_id=job_id
            )
    except (QueueError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e

    typer.echo(f"Enqueued {handle.name} as {handle.id} (lane={handle.lane})")
