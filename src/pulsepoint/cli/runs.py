"""Run commands - run, runs, show."""

from __future__ import annotations

import asyncio
from typing import Annotated

import typer
from rich.panel import Panel
from rich.table import Table

from ..budget import OperationBudget
from ..config import get_settings
from ..logging_config import configure_logging
from ..models import RunStatus
from ..pipeline import InvalidRunRequest, SubredditNotFound, run_scrape
from ..store import AsyncStore
from . import app, console

STATUS_STYLES = {
    "completed": "green",
    "failed": "red",
    "running": "yellow",
    "queued": "dim",
}


def _status(value: str) -> str:
    style = STATUS_STYLES.get(value, "white")
    return f"[{style}]{value}[/{style}]"


@app.command()
def run(
    subreddit_id: Annotated[int, typer.Argument(help="Tracked subreddit ID.")],
    window: Annotated[
        int,
        typer.Option(
            "--window",
            "-w",
            help="Time window in days: 1, 7 or 30.",
        ),
    ] = 7,
    budget: Annotated[
        int | None,
        typer.Option(
            "--budget",
            "-b",
            help="Operation budget for this run (overrides settings).",
        ),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            help="Logging level: DEBUG, INFO, WARNING, ERROR",
        ),
    ] = None,
    log_json: Annotated[
        bool,
        typer.Option(
            "--log-json",
            help="Output logs as JSON.",
        ),
    ] = False,
    db_path: Annotated[
        str | None,
        typer.Option(
            "--db",
            help="Path to database file.",
        ),
    ] = None,
):
    """Scrape a tracked subreddit and synthesize ideas for one window.

    Runs synchronously and exits non-zero when the run fails.
    """
    settings = get_settings()
    configure_logging(log_level or settings.log_level, log_json or settings.log_json)
    path = db_path or settings.db_path

    try:
        run_budget = OperationBudget(budget) if budget is not None else None
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(2) from e

    async def _run():
        store = AsyncStore(path)
        await store.connect()
        await store.init_db()
        try:
            return await run_scrape(settings, store, subreddit_id, window, budget=run_budget)
        finally:
            await store.close()

    try:
        result = asyncio.run(_run())
    except InvalidRunRequest as e:
        console.print(f"[red]Invalid request:[/red] {e}")
        raise typer.Exit(2) from e
    except SubredditNotFound as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from e
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        raise typer.Exit(130) from None

    stats = result.stats
    table = Table(title=f"Run {result.run_id}", show_header=True)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Status", _status(result.status.value))
    if stats:
        table.add_row("Posts scraped", str(stats.posts_scraped))
        table.add_row("Posts with comments", str(stats.posts_with_comments))
        table.add_row("Comments scraped", str(stats.comments_scraped))
        table.add_row("Problems stored", str(stats.problems_extracted))
        table.add_row("Clusters", str(stats.clusters_created))
        table.add_row("Ideas", str(stats.ideas_generated))
        table.add_row("Operations used", str(stats.operations_used))
    console.print(table)

    if result.status == RunStatus.FAILED:
        console.print(f"[red]Run failed:[/red] {result.error_message}")
        raise typer.Exit(1)


@app.command()
def runs(
    limit: int = typer.Option(
        20,
        "--limit",
        "-n",
        help="Number of runs to show.",
    ),
    db_path: str | None = typer.Option(
        None,
        "--db",
        help="Path to database file.",
    ),
):
    """Show recent runs, most recent first."""
    settings = get_settings()
    path = db_path or settings.db_path

    async def _runs():
        store = AsyncStore(path)
        await store.connect()
        await store.init_db()
        rows = await store.get_runs(limit=limit)
        await store.close()
        return rows

    rows = asyncio.run(_runs())

    if not rows:
        console.print("[yellow]No runs yet.[/yellow]")
        return

    table = Table(title="Recent Runs", show_header=True)
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Subreddit")
    table.add_column("Window", justify="right")
    table.add_column("Status")
    table.add_column("Started")
    table.add_column("Posts", justify="right")
    table.add_column("Ideas", justify="right")

    for row in rows:
        run_stats = row.get("stats") or {}
        table.add_row(
            str(row["id"]),
            f"r/{row['subreddit_name']}",
            f"{row['window_days']}d",
            _status(row["status"]),
            row["started_at"][:19],
            str(run_stats.get("postsScraped", 0)),
            str(run_stats.get("ideasGenerated", 0)),
        )

    console.print(table)


@app.command()
def show(
    run_id: int = typer.Argument(..., help="Run ID."),
    db_path: str | None = typer.Option(
        None,
        "--db",
        help="Path to database file.",
    ),
):
    """Show a run with its clusters and ideas."""
    settings = get_settings()
    path = db_path or settings.db_path

    async def _show():
        store = AsyncStore(path)
        await store.connect()
        await store.init_db()
        detail = await store.get_run_detail(run_id)
        await store.close()
        return detail

    detail = asyncio.run(_show())
    if not detail:
        console.print(f"[red]Run {run_id} not found[/red]")
        raise typer.Exit(1)

    console.print(
        f"\n[bold]Run {detail['id']}[/bold] r/{detail['subreddit_name']} "
        f"({detail['window_days']}d) {_status(detail['status'])}"
    )
    if detail.get("error_message"):
        console.print(f"[red]Error:[/red] {detail['error_message']}")

    if detail["clusters"]:
        table = Table(title="Problem Clusters", show_header=True)
        table.add_column("Title", width=35)
        table.add_column("Frequency", justify="right")
        table.add_column("Severity")
        table.add_column("Evidence", width=50)
        for cluster in detail["clusters"]:
            table.add_row(
                cluster["title"],
                str(cluster["frequency"]),
                cluster["severity"],
                "\n".join(f"- {e}" for e in cluster["evidence"][:2]),
            )
        console.print(table)

    for idea in detail["ideas"]:
        body = idea["idea"]
        lines = [f"[italic]{body.get('oneLiner', '')}[/italic]", ""]
        if body.get("targetUser"):
            lines.append(f"[bold]For:[/bold] {body['targetUser']}")
        if body.get("mvp"):
            lines.append("[bold]MVP:[/bold] " + "; ".join(body["mvp"]))
        if body.get("pricing"):
            lines.append(f"[bold]Pricing:[/bold] {body['pricing']}")
        console.print(Panel("\n".join(lines), title=f"{idea['title']} (score {idea['score']})"))
