"""Web server CLI command."""

import os

import typer
import uvicorn

from . import app


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host to bind to."),
    port: int = typer.Option(8000, help="Port to bind to."),
    reload: bool = typer.Option(False, help="Enable auto-reload."),
    db_path: str | None = typer.Option(
        None,
        "--db",
        help="Path to database file (exported as PULSEPOINT_DB_PATH).",
    ),
    log_level: str = typer.Option("info", "--log-level", help="Uvicorn log level."),
):
    """Serve the JSON API (run trigger, analyses, tracked subreddits)."""
    if db_path:
        os.environ["PULSEPOINT_DB_PATH"] = db_path

    uvicorn.run(
        "pulsepoint.web_app:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )
