"""SQLite persistence for runs, scraped content and synthesis results."""

from .core import AsyncStore

__all__ = ["AsyncStore"]
