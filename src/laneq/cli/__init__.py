"""CLI commands for laneq.

Provides command-line interface using Typer:
- laneq worker: Run the worker and cron scheduler for this lane
- laneq enqueue: Submit a job from the shell
- laneq stats: Show queue counts for a lane
- laneq lane: Print the lane and key prefix this process would use

Usage:
    laneq --help
    laneq worker --tasks myapp.tasks
    laneq enqueue send_welcome --payload '{"user_id": "abc123"}'
    laneq stats
    laneq lane
"""

import typer

from laneq.cli.enqueue_cmd import enqueue
from laneq.cli.lane_cmd import app as lane_app
from laneq.cli.stats_cmd import app as stats_app
from laneq.cli.worker_cmd import app as worker_app

# Main CLI application
app = typer.Typer(
    name="laneq",
    help="laneq: Redis-backed background jobs partitioned by lane",
    no_args_is_help=True,
)

# Add subcommands
app.add_typer(worker_app, name="worker")
app.command(name="enqueue")(enqueue)
app.add_typer(stats_app, name="stats")
app.add_typer(lane_app, name="lane")


@app.callback()
def callback() -> None:
    """laneq: Redis-backed background jobs partitioned by lane."""
    pass


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
