"""CLI command for printing the lane this process resolves to.

Usage:
    laneq lane
"""

from __future__ import annotations

import typer

app = typer.Typer(help="Print the lane and key prefix of this process")


@app.callback(invoke_without_command=True)
def lane() -> None:
    """Print the resolved lane and its Redis key prefix."""
    from laneq.config import settings
    from laneq.lane import QueueKeys

    keys = QueueKeys.for_settings(settings)
    typer.echo(f"lane: {keys.lane}")
    typer.echo(f"keys: {keys.base}:*")
