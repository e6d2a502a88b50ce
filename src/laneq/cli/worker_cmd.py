"""CLI command for running a worker process.

Usage:
    laneq worker --tasks myapp.tasks
    laneq worker --concurrency 10 --log-format console
    laneq worker --metrics-port 9100
"""

from __future__ import annotations

import asyncio

import typer

app = typer.Typer(help="Run the job worker and cron scheduler")


@app.callback(invoke_without_command=True)
def worker(
    tasks: str | None = typer.Option(
        None,
        "--tasks",
        "-t",
        help="Module exposing `jobs` and `crons` lists (default: LANEQ_TASKS_MODULE)",
    ),
    concurrency: int | None = typer.Option(
        None,
        "--concurrency",
        "-c",
        help="Maximum jobs executing at once",
    ),
    lane: str | None = typer.Option(
        None,
        "--lane",
        help="Override the lane (default: hostname in dev, environment otherwise)",
    ),
    log_level: str | None = typer.Option(
        None,
        "--log-level",
        "-l",
        help="Log level: debug, info, warning, error",
    ),
    log_format: str | None = typer.Option(
        None,
        "--log-format",
        help="Log format: json, console",
    ),
    metrics_port: int | None = typer.Option(
        None,
        "--metrics-port",
        help="Expose Prometheus metrics on this port",
    ),
) -> None:
    """Run the worker until SIGINT/SIGTERM.

    Claims jobs from this process's lane, fires due crons, and drains
    in-flight jobs on shutdown.
    """
    from laneq.config import settings
    from laneq.errors import ConfigurationError
    from laneq.lane import current_lane
    from laneq.observability.logging import configure_logging
    from laneq.observability.metrics import start_metrics_server
    from laneq.observability.tracing import setup_tracing, shutdown_tracing
    from laneq.runtime import JobRuntime

    overrides: dict[str, object] = {}
    if concurrency is not None:
        overrides["concurrency"] = concurrency
    if lane is not None:
        overrides["lane"] = lane
    if log_level is not None:
        overrides["log_level"] = log_level
    if metrics_port is not None:
        overrides["metrics_port"] = metrics_port
    if log_format is not None:
        overrides["log_json"] = log_format.lower() == "json"
    worker_settings = settings.model_copy(update=overrides)

    if worker_settings.script:
        typer.echo("SCRIPT is set: producer-only mode, refusing to start a worker", err=True)
        raise typer.Exit(code=1)

    configure_logging(json_format=worker_settings.log_json, level=worker_settings.log_level)

    worker_lane = current_lane(worker_settings)
    setup_tracing(worker_settings, worker_lane)

    if worker_settings.enable_metrics and worker_settings.metrics_port:
        start_metrics_server(worker_settings.metrics_port)

    try:
        runtime = JobRuntime.from_module(tasks, worker_settings)
    except ConfigurationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e

    typer.echo("Starting laneq worker...")
    typer.echo(f"  Lane: {worker_lane}")
    typer.echo(f"  Concurrency: {worker_settings.concurrency}")
    try:
        asyncio.run(runtime.run())
    finally:
        shutdown_tracing()
