"""Core AsyncStore class for database operations."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import aiosqlite

from ..logging_config import get_logger
from ..models import BusinessIdea, ProblemCluster, RunStats, RunStatus, normalize_subreddit_name
from ..reddit_client import RedditComment, RedditPost
from .schema import SCHEMA

logger = get_logger(__name__)


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _run_from_row(row: aiosqlite.Row) -> dict:
    run = dict(row)
    run["stats"] = json.loads(run.get("stats") or "{}")
    return run


class AsyncStore:
    """Async SQLite storage for runs, scraped content and synthesis results."""

    def __init__(self, db_path: str):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Open database connection."""
        self._connection = await aiosqlite.connect(self.db_path)
        self._connection.row_factory = aiosqlite.Row
        logger.info("database_connected", path=self.db_path)

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None
            logger.info("database_closed")

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Context manager for database connection."""
        if not self._connection:
            await self.connect()
        yield self._connection

    async def init_db(self) -> None:
        """Initialize database schema."""
        async with self.connection() as conn:
            await conn.executescript(SCHEMA)
            await conn.commit()
        logger.info("database_initialized")

    async def ping(self) -> bool:
        """Run a trivial query to check the database is reachable."""
        async with self.connection() as conn:
            cursor = await conn.execute("SELECT 1")
            return (await cursor.fetchone())[0] == 1

    # --- Tracked Subreddits ---

    async def upsert_subreddit(self, name: str, is_active: bool = True) -> dict:
        """Add a subreddit or refresh an existing one by name.

        Args:
            name: Subreddit name, with or without r/ prefix
            is_active: Activation flag to store

        Returns:
            The stored subreddit row

        Raises:
            ValueError: If the name is empty after normalization
        """
        clean_name = normalize_subreddit_name(name)
        if not clean_name:
            raise ValueError("Subreddit name is required")

        async with self.connection() as conn:
            now = _now()
            await conn.execute(
                """
                INSERT INTO tracked_subreddits (name, is_active, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (name) DO UPDATE SET
                    is_active = excluded.is_active,
                    updated_at = excluded.updated_at
                """,
                (clean_name, 1 if is_active else 0, now, now),
            )
            await conn.commit()
            cursor = await conn.execute("SELECT * FROM tracked_subreddits WHERE name = ?", (clean_name,))
            row = await cursor.fetchone()

        logger.info("subreddit_upserted", name=clean_name, is_active=is_active)
        return dict(row)

    async def get_subreddit(self, subreddit_id: int) -> dict | None:
        """Get a tracked subreddit by ID."""
        async with self.connection() as conn:
            cursor = await conn.execute("SELECT * FROM tracked_subreddits WHERE id = ?", (subreddit_id,))
            row = await cursor.fetchone()
        return dict(row) if row else None

    async def list_subreddits(self, active_only: bool = False) -> list[dict]:
        """List tracked subreddits, newest first."""
        async with self.connection() as conn:
            query = "SELECT * FROM tracked_subreddits"
            if active_only:
                query += " WHERE is_active = 1"
            query += " ORDER BY created_at DESC, id DESC"
            cursor = await conn.execute(query)
            rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def set_subreddit_active(self, subreddit_id: int, is_active: bool) -> bool:
        """Toggle a subreddit's activation flag.

        Returns:
            True if a row was updated
        """
        async with self.connection() as conn:
            cursor = await conn.execute(
                "UPDATE tracked_subreddits SET is_active = ?, updated_at = ? WHERE id = ?",
                (1 if is_active else 0, _now(), subreddit_id),
            )
            await conn.commit()
        return cursor.rowcount > 0

    async def delete_subreddit(self, subreddit_id: int) -> bool:
        """Delete a tracked subreddit. Its runs are kept.

        Returns:
            True if a row was deleted
        """
        async with self.connection() as conn:
            cursor = await conn.execute("DELETE FROM tracked_subreddits WHERE id = ?", (subreddit_id,))
            await conn.commit()
        deleted = cursor.rowcount > 0
        logger.info("subreddit_deleted", id=subreddit_id, deleted=deleted)
        return deleted

    # --- Run Management ---

    async def create_run(self, subreddit_id: int, subreddit_name: str, window_days: int) -> int:
        """Create a run record in the running state.

        Returns:
            Run ID
        """
        async with self.connection() as conn:
            cursor = await conn.execute(
                """
                INSERT INTO scrape_runs (subreddit_id, subreddit_name, window_days, status, started_at, stats)
                VALUES (?, ?, ?, ?, ?, '{}')
                """,
                (subreddit_id, subreddit_name, window_days, RunStatus.RUNNING.value, _now()),
            )
            await conn.commit()
            return cursor.lastrowid

    async def finish_run(
        self,
        run_id: int,
        status: RunStatus,
        stats: RunStats,
        error_message: str | None = None,
    ) -> None:
        """Write a run's terminal status.

        Only a running run is updated, so the terminal write happens once.
        """
        async with self.connection() as conn:
            await conn.execute(
                """
                UPDATE scrape_runs SET
                    status = ?,
                    finished_at = ?,
                    error_message = ?,
                    stats = ?
                WHERE id = ? AND status = ?
                """,
                (
                    status.value,
                    _now(),
                    error_message,
                    stats.model_dump_json(by_alias=True),
                    run_id,
                    RunStatus.RUNNING.value,
                ),
            )
            await conn.commit()
        logger.info("run_finished", run_id=run_id, status=status.value)

    async def get_runs(self, limit: int = 50) -> list[dict]:
        """Get recent runs, most recent first.

        Args:
            limit: Maximum runs to return

        Returns:
            List of run dictionaries
        """
        async with self.connection() as conn:
            cursor = await conn.execute(
                """
                SELECT * FROM scrape_runs
                ORDER BY started_at DESC, id DESC
                LIMIT ?
                """,
                (limit,),
            )
            rows = await cursor.fetchall()
        return [_run_from_row(row) for row in rows]

    async def get_run(self, run_id: int) -> dict | None:
        """Get a specific run by ID."""
        async with self.connection() as conn:
            cursor = await conn.execute("SELECT * FROM scrape_runs WHERE id = ?", (run_id,))
            row = await cursor.fetchone()
        return _run_from_row(row) if row else None

    async def get_run_detail(self, run_id: int) -> dict | None:
        """Get a run with its clusters (by frequency) and ideas (by score).

        Returns:
            Run dictionary with "clusters" and "ideas" lists, or None
        """
        run = await self.get_run(run_id)
        if not run:
            return None

        async with self.connection() as conn:
            cursor = await conn.execute(
                """
                SELECT id, title, summary, frequency, severity, evidence, created_at
                FROM problem_clusters
                WHERE run_id = ?
                ORDER BY frequency DESC, id ASC
                """,
                (run_id,),
            )
            cluster_rows = await cursor.fetchall()

            cursor = await conn.execute(
                """
                SELECT id, cluster_ref, title, idea, score, created_at
                FROM generated_ideas
                WHERE run_id = ?
                ORDER BY score DESC, id ASC
                """,
                (run_id,),
            )
            idea_rows = await cursor.fetchall()

        clusters = []
        for row in cluster_rows:
            cluster = dict(row)
            cluster["evidence"] = json.loads(cluster["evidence"] or "[]")
            clusters.append(cluster)

        ideas = []
        for row in idea_rows:
            idea = dict(row)
            idea["idea"] = json.loads(idea["idea"] or "{}")
            ideas.append(idea)

        run["clusters"] = clusters
        run["ideas"] = ideas
        return run

    # --- Checkpoints ---

    async def get_checkpoint(self, subreddit_id: int, window_days: int) -> dict | None:
        """Read the cursor state for a subreddit and window."""
        async with self.connection() as conn:
            cursor = await conn.execute(
                "SELECT * FROM scrape_checkpoints WHERE subreddit_id = ? AND window_days = ?",
                (subreddit_id, window_days),
            )
            row = await cursor.fetchone()
        return dict(row) if row else None

    async def save_checkpoint(
        self,
        subreddit_id: int,
        window_days: int,
        cursor_token: str | None,
        last_post_created_utc: int | None,
    ) -> None:
        """Upsert the cursor state for a subreddit and window."""
        async with self.connection() as conn:
            await conn.execute(
                """
                INSERT INTO scrape_checkpoints
                    (subreddit_id, window_days, last_after_cursor, last_post_created_utc, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (subreddit_id, window_days) DO UPDATE SET
                    last_after_cursor = excluded.last_after_cursor,
                    last_post_created_utc = excluded.last_post_created_utc,
                    updated_at = excluded.updated_at
                """,
                (subreddit_id, window_days, cursor_token, last_post_created_utc, _now()),
            )
            await conn.commit()

    async def clear_checkpoint(self, subreddit_id: int, window_days: int) -> None:
        """Delete the cursor state for a subreddit and window."""
        async with self.connection() as conn:
            await conn.execute(
                "DELETE FROM scrape_checkpoints WHERE subreddit_id = ? AND window_days = ?",
                (subreddit_id, window_days),
            )
            await conn.commit()

    # --- Scraped Content ---

    async def upsert_post(self, run_id: int, subreddit_id: int, post: RedditPost) -> int:
        """Insert a post, or hand an existing one over to this run.

        An existing row only gets its run_id updated.

        Returns:
            Row ID of the post
        """
        async with self.connection() as conn:
            cursor = await conn.execute(
                """
                INSERT INTO reddit_posts (
                    run_id, subreddit_id, external_id, created_utc, title, body,
                    author, permalink, url, score, num_comments, raw
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (external_id) DO UPDATE SET run_id = excluded.run_id
                RETURNING id
                """,
                (
                    run_id,
                    subreddit_id,
                    post.id,
                    post.created_utc,
                    post.title,
                    post.body,
                    post.author,
                    post.permalink,
                    post.url,
                    post.score,
                    post.num_comments,
                    json.dumps(post.raw),
                ),
            )
            row = await cursor.fetchone()
            await conn.commit()
        return row[0]

    async def insert_comment(
        self,
        run_id: int,
        subreddit_id: int,
        post_ref: int,
        comment: RedditComment,
    ) -> int | None:
        """Insert a comment; an already stored external ID is left untouched.

        Returns:
            Row ID of the new comment, or None if it already existed
        """
        async with self.connection() as conn:
            cursor = await conn.execute(
                """
                INSERT INTO reddit_comments (
                    run_id, subreddit_id, post_ref, external_id, external_post_id,
                    parent_external_id, created_utc, author, body, score, raw
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (external_id) DO NOTHING
                RETURNING id
                """,
                (
                    run_id,
                    subreddit_id,
                    post_ref,
                    comment.id,
                    comment.post_id,
                    comment.parent_id,
                    comment.created_utc,
                    comment.author,
                    comment.body,
                    comment.score,
                    json.dumps(comment.raw),
                ),
            )
            row = await cursor.fetchone()
            await conn.commit()
        return row[0] if row else None

    # --- Synthesis Results ---

    async def insert_problem(
        self,
        run_id: int,
        subreddit_id: int,
        source_type: str,
        source_ref: int,
        statement: str,
    ) -> int:
        """Append one problem statement."""
        async with self.connection() as conn:
            cursor = await conn.execute(
                """
                INSERT INTO problem_statements (run_id, subreddit_id, source_type, source_ref, statement, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (run_id, subreddit_id, source_type, source_ref, statement, _now()),
            )
            await conn.commit()
            return cursor.lastrowid

    async def insert_cluster(
        self,
        run_id: int,
        subreddit_id: int,
        cluster: ProblemCluster,
        evidence: list[str],
    ) -> int:
        """Append one problem cluster with its evidence excerpts."""
        async with self.connection() as conn:
            cursor = await conn.execute(
                """
                INSERT INTO problem_clusters
                    (run_id, subreddit_id, title, summary, frequency, severity, evidence, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    run_id,
                    subreddit_id,
                    cluster.title,
                    cluster.summary,
                    cluster.frequency,
                    cluster.severity.value,
                    json.dumps(evidence),
                    _now(),
                ),
            )
            await conn.commit()
            return cursor.lastrowid

    async def insert_idea(
        self,
        run_id: int,
        subreddit_id: int,
        cluster_ref: int,
        idea: BusinessIdea,
        score: int,
    ) -> int:
        """Store the idea generated for a cluster."""
        async with self.connection() as conn:
            cursor = await conn.execute(
                """
                INSERT INTO generated_ideas (run_id, subreddit_id, cluster_ref, title, idea, score, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    run_id,
                    subreddit_id,
                    cluster_ref,
                    idea.title,
                    idea.model_dump_json(by_alias=True),
                    score,
                    _now(),
                ),
            )
            await conn.commit()
            return cursor.lastrowid

    # --- Statistics ---

    async def get_stats(self) -> dict:
        """Get database statistics.

        Returns:
            Dictionary of row counts per table
        """
        tables = {
            "subreddits": "tracked_subreddits",
            "runs": "scrape_runs",
            "posts": "reddit_posts",
            "comments": "reddit_comments",
            "problems": "problem_statements",
            "clusters": "problem_clusters",
            "ideas": "generated_ideas",
        }
        stats = {}
        async with self.connection() as conn:
            for key, table in tables.items():
                cursor = await conn.execute(f"SELECT COUNT(*) FROM {table}")
                stats[key] = (await cursor.fetchone())[0]

            cursor = await conn.execute("SELECT AVG(score) FROM generated_ideas")
            avg = (await cursor.fetchone())[0]
            stats["avg_idea_score"] = round(avg, 2) if avg else 0
        return stats
