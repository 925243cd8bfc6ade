"""Tracked subreddit commands - list, add, remove."""

from __future__ import annotations

import asyncio

import typer
from rich.table import Table

from ..config import get_settings
from ..store import AsyncStore
from . import app, console


@app.command()
def subreddits(
    active_only: bool = typer.Option(
        False,
        "--active",
        "-a",
        help="Only show active subreddits.",
    ),
    db_path: str | None = typer.Option(
        None,
        "--db",
        help="Path to database file.",
    ),
):
    """List tracked subreddits."""
    settings = get_settings()
    path = db_path or settings.db_path

    async def _list():
        store = AsyncStore(path)
        await store.connect()
        await store.init_db()
        rows = await store.list_subreddits(active_only=active_only)
        await store.close()
        return rows

    rows = asyncio.run(_list())

    if not rows:
        console.print("[yellow]No tracked subreddits. Add one with:[/yellow]")
        console.print("  pulsepoint subreddits-add saas")
        return

    table = Table(title="Tracked Subreddits", show_header=True, header_style="bold")
    table.add_column("ID", width=4)
    table.add_column("Name", width=30)
    table.add_column("Active", width=8)
    table.add_column("Added", width=20)

    for row in rows:
        table.add_row(
            str(row["id"]),
            f"r/{row['name']}",
            "[green]yes[/green]" if row["is_active"] else "[dim]no[/dim]",
            row["created_at"][:19],
        )

    console.print(table)


@app.command("subreddits-add")
def subreddits_add(
    name: str = typer.Argument(..., help="Subreddit name, with or without r/."),
    inactive: bool = typer.Option(
        False,
        "--inactive",
        help="Store the subreddit as inactive.",
    ),
    db_path: str | None = typer.Option(
        None,
        "--db",
        help="Path to database file.",
    ),
):
    """Track a subreddit (re-adding an existing name updates it)."""
    settings = get_settings()
    path = db_path or settings.db_path

    async def _add():
        store = AsyncStore(path)
        await store.connect()
        await store.init_db()
        try:
            return await store.upsert_subreddit(name, is_active=not inactive)
        finally:
            await store.close()

    try:
        row = asyncio.run(_add())
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    console.print(f"[green]✓ Tracking r/{row['name']}[/green] (ID {row['id']})")


@app.command("subreddits-remove")
def subreddits_remove(
    subreddit_id: int = typer.Argument(..., help="Tracked subreddit ID."),
    db_path: str | None = typer.Option(
        None,
        "--db",
        help="Path to database file.",
    ),
):
    """Stop tracking a subreddit. Its past runs are kept."""
    settings = get_settings()
    path = db_path or settings.db_path

    async def _remove():
        store = AsyncStore(path)
        await store.connect()
        await store.init_db()
        deleted = await store.delete_subreddit(subreddit_id)
        await store.close()
        return deleted

    if not asyncio.run(_remove()):
        console.print(f"[red]Subreddit {subreddit_id} not found[/red]")
        raise typer.Exit(1)

    console.print(f"[green]✓ Removed subreddit {subreddit_id}[/green]")
