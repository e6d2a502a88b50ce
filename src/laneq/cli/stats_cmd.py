"""CLI command for showing queue counts.

Usage:
    laneq stats
    laneq stats --lane production
    laneq stats --format json
"""

from __future__ import annotations

import asyncio

import typer

app = typer.Typer(help="Show queue statistics for a lane")


@app.callback(invoke_without_command=True)
def stats(
    lane: str | None = typer.Option(
        None,
        "--lane",
        help="Lane to inspect (default: this process's lane)",
    ),
    output_format: str = typer.Option(
        "text",
        "--format",
        "-f",
        help="Output format: text, json",
    ),
) -> None:
    """Show waiting, active, delayed, failed and cron counts."""
    asyncio.run(_stats(lane, output_format))


async def _stats(lane: str | None, output_format: str) -> None:
    import orjson
    from redis.exceptions import RedisError
    from rich.console import Console
    from rich.table import Table

    from laneq.backend.redis import RedisBackend
    from laneq.config import settings
    from laneq.lane import current_lane, sanitize_lane

    console = Console()
    lane = sanitize_lane(lane) if lane else current_lane(settings)

    backend = await RedisBackend.from_settings(settings, lane)
    try:
        counts = await backend.stats()
    except RedisError as e:
        console.print(f"[red]Redis error:[/red] {e}")
        raise typer.Exit(code=1) from e
    finally:
        await backend.close()

    if output_format == "json":
        console.print(orjson.dumps({"lane": lane, **counts}).decode())
        return

    table = Table(title=f"Queue {backend.keys.base}")
    table.add_column("State")
    table.add_column("Count", justify="right")
    for state, count in counts.items():
        table.add_row(state, str(count))
    console.print(table)
