"""CLI subpackage for PulsePoint.

Commands are grouped by function: database, tracked subreddits, runs, web.
"""

from __future__ import annotations

import typer
from rich.console import Console

# Create main app
app = typer.Typer(
    name="pulsepoint",
    help="Scrape subreddits, cluster recurring problems and generate scored micro-SaaS ideas.",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        from .. import __version__

        console.print(f"pulsepoint {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
):
    """PulsePoint - Turn subreddit discussions into scored product ideas."""
    pass


# Import and register command modules
from . import db, runs, subreddits, web  # noqa: E402, F401
