"""Scrape-and-synthesize run orchestration.

One run covers one tracked subreddit and one time window. Stages execute
sequentially, each outbound operation admitted through the run's
OperationBudget; a stage that runs out of budget stops early and the run
still completes. The terminal status write always uses the reserved unit and
is the last operation of the run.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass

import aiosqlite
from pydantic import ValidationError

from .ai_client import OpenRouterSession
from .budget import OperationBudget
from .checkpoints import resolve_start_cursor
from .config import Settings
from .logging_config import get_logger
from .models import (
    WINDOW_DAYS,
    ProblemCluster,
    RunScrapeRequest,
    RunScrapeResult,
    RunStats,
    RunStatus,
)
from .reddit_client import FetchFailed, RedditComment, RedditPost, RedditSession
from .scoring import idea_score
from .store import AsyncStore

logger = get_logger(__name__)

SECONDS_PER_DAY = 86_400
MAX_EVIDENCE = 5


class InvalidRunRequest(ValueError):
    """The trigger payload is missing fields or names an unsupported window."""

    pass


class SubredditNotFound(LookupError):
    """The requested tracked subreddit does not exist."""

    def __init__(self, subreddit_id: int):
        super().__init__(f"Subreddit {subreddit_id} not found")
        self.subreddit_id = subreddit_id


def validate_run_request(payload: dict) -> RunScrapeRequest:
    """Validate a trigger payload.

    Args:
        payload: Mapping with subredditId and windowDays (snake_case accepted)

    Returns:
        The parsed request

    Raises:
        InvalidRunRequest: If a field is missing or the window is unsupported
    """
    subreddit_id = payload.get("subredditId", payload.get("subreddit_id"))
    window_days = payload.get("windowDays", payload.get("window_days"))
    if subreddit_id is None or window_days is None:
        raise InvalidRunRequest("subredditId and windowDays are required")

    try:
        return RunScrapeRequest(subreddit_id=subreddit_id, window_days=window_days)
    except ValidationError as e:
        if any(err["loc"][:1] in (("window_days",), ("windowDays",)) for err in e.errors()):
            raise InvalidRunRequest("windowDays must be 1, 7, or 30") from e
        raise InvalidRunRequest("subredditId must be an integer") from e


@dataclass
class StoredPost:
    ref: int
    post: RedditPost


@dataclass
class StoredComment:
    ref: int
    comment: RedditComment


@dataclass
class ExtractedProblem:
    statement: str
    source_type: str
    source_ref: int


class ScrapeJob:
    """Runs the pipeline stages for one run record."""

    def __init__(
        self,
        settings: Settings,
        store: AsyncStore,
        budget: OperationBudget,
        reddit: RedditSession,
        ai: OpenRouterSession,
        run_id: int,
        subreddit: dict,
        window_days: int,
    ):
        self.settings = settings
        self.store = store
        self.budget = budget
        self.reddit = reddit
        self.ai = ai
        self.run_id = run_id
        self.subreddit_id: int = subreddit["id"]
        self.subreddit_name: str = subreddit["name"]
        self.window_days = window_days
        self.stats = RunStats()
        self.log = logger.bind(run_id=run_id, subreddit=self.subreddit_name)

    async def execute(self) -> RunStats:
        """Run every stage in order and return the counters."""
        cursor = await resolve_start_cursor(self.store, self.budget, self.subreddit_id, self.window_days)
        posts = await self.collect_posts(cursor)
        comments = await self.collect_comments(posts)
        problems = await self.extract_problems(posts, comments)
        clusters = await self.cluster_problems(problems)
        await self.generate_ideas(clusters)
        return self.stats

    async def collect_posts(self, cursor: str | None) -> list[StoredPost]:
        """Page through the new listing until the window or a quota ends.

        The checkpoint is saved after every fetched page.
        """
        cutoff_utc = int(time.time()) - self.window_days * SECONDS_PER_DAY
        stored: list[StoredPost] = []

        while len(stored) < self.settings.max_posts:
            if not self.budget.try_consume("fetch_posts"):
                break
            try:
                page = await self.reddit.fetch_posts(
                    self.subreddit_name,
                    cutoff_utc,
                    after=cursor,
                    limit=self.settings.page_limit,
                )
            except FetchFailed as e:
                self.log.warning("posts_fetch_failed", error=str(e))
                break

            for post in page.posts:
                if len(stored) >= self.settings.max_posts:
                    break
                if not self.budget.try_consume("upsert_post"):
                    break
                try:
                    ref = await self.store.upsert_post(self.run_id, self.subreddit_id, post)
                except aiosqlite.Error as e:
                    self.log.error("post_save_failed", post_id=post.id, error=str(e))
                    continue
                stored.append(StoredPost(ref=ref, post=post))
                self.stats.posts_scraped += 1

            await self._save_checkpoint(page.next_cursor, page.posts[-1].created_utc if page.posts else cutoff_utc)

            if not page.posts or page.next_cursor is None:
                break
            cursor = page.next_cursor

        self.log.info("posts_collected", count=len(stored))
        return stored

    async def _save_checkpoint(self, cursor: str | None, last_post_created_utc: int) -> None:
        if not self.budget.try_consume("save_checkpoint"):
            return
        try:
            await self.store.save_checkpoint(self.subreddit_id, self.window_days, cursor, last_post_created_utc)
        except aiosqlite.Error as e:
            self.log.error("checkpoint_save_failed", error=str(e))

    async def collect_comments(self, posts: list[StoredPost]) -> list[StoredComment]:
        """Fetch and store comments for the first posts collected.

        Returns:
            Comments inserted by this run (already stored ones excluded)
        """
        inserted: list[StoredComment] = []
        targets = posts[: self.settings.max_posts_with_comments]

        for index, target in enumerate(targets):
            if index > 0 and self.settings.comment_fetch_delay > 0:
                await asyncio.sleep(self.settings.comment_fetch_delay)
            if not self.budget.try_consume("fetch_comments"):
                break
            try:
                comments = await self.reddit.fetch_comments(
                    self.subreddit_name,
                    target.post.id,
                    max_depth=self.settings.comment_fetch_depth,
                    max_count=self.settings.comment_fetch_count,
                )
            except FetchFailed as e:
                self.log.warning("comments_fetch_failed", post_id=target.post.id, error=str(e))
                continue
            self.stats.posts_with_comments += 1

            for comment in comments[: self.settings.max_comments_per_post]:
                if not self.budget.try_consume("insert_comment"):
                    break
                try:
                    ref = await self.store.insert_comment(self.run_id, self.subreddit_id, target.ref, comment)
                except aiosqlite.Error as e:
                    self.log.error("comment_save_failed", comment_id=comment.id, error=str(e))
                    continue
                if ref is None:
                    continue
                inserted.append(StoredComment(ref=ref, comment=comment))
                self.stats.comments_scraped += 1

        self.log.info("comments_collected", count=len(inserted))
        return inserted

    async def _extract(self, text: str, source_type: str, source_ref: int) -> list[ExtractedProblem]:
        if len(text) <= self.settings.min_extract_chars:
            return []
        if not self.budget.try_consume("extract_problems"):
            return []
        label = f"{source_type} in r/{self.subreddit_name}"
        statements = await self.ai.extract_problems(text, label)
        return [
            ExtractedProblem(statement=s, source_type=source_type, source_ref=source_ref)
            for s in statements[: self.settings.problems_per_item]
        ]

    async def extract_problems(
        self,
        posts: list[StoredPost],
        comments: list[StoredComment],
    ) -> list[ExtractedProblem]:
        """Extract problem statements from posts, then the top-scored comments.

        Every extracted statement is returned; only the first few are stored.
        """
        extracted: list[ExtractedProblem] = []

        for item in posts[: self.settings.posts_to_analyze]:
            text = f"{item.post.title}\n\n{item.post.body}".strip()
            extracted.extend(await self._extract(text, "post", item.ref))

        ranked = sorted(comments, key=lambda c: c.comment.score, reverse=True)
        for item in ranked[: self.settings.comments_to_analyze]:
            extracted.extend(await self._extract(item.comment.body, "comment", item.ref))

        for problem in extracted[: self.settings.max_problems_stored]:
            if not self.budget.try_consume("insert_problem"):
                break
            try:
                await self.store.insert_problem(
                    self.run_id,
                    self.subreddit_id,
                    problem.source_type,
                    problem.source_ref,
                    problem.statement,
                )
            except aiosqlite.Error as e:
                self.log.error("problem_save_failed", error=str(e))
                continue
            self.stats.problems_extracted += 1

        self.log.info("problems_extracted", extracted=len(extracted), stored=self.stats.problems_extracted)
        return extracted

    async def cluster_problems(self, problems: list[ExtractedProblem]) -> list[tuple[int, ProblemCluster]]:
        """Cluster all extracted statements and store one row per cluster.

        Returns:
            (cluster row ID, cluster) pairs for the stored clusters
        """
        if not problems or not self.budget.try_consume("cluster_problems"):
            return []

        clusters = await self.ai.cluster_problems([p.statement for p in problems])
        stored: list[tuple[int, ProblemCluster]] = []

        for cluster in clusters:
            if not self.budget.try_consume("insert_cluster"):
                break
            evidence = [
                problems[i].statement
                for i in cluster.member_indices[:MAX_EVIDENCE]
                if 0 <= i < len(problems)
            ]
            try:
                ref = await self.store.insert_cluster(self.run_id, self.subreddit_id, cluster, evidence)
            except aiosqlite.Error as e:
                self.log.error("cluster_save_failed", title=cluster.title, error=str(e))
                continue
            stored.append((ref, cluster))
            self.stats.clusters_created += 1

        self.log.info("clusters_stored", count=len(stored))
        return stored

    async def generate_ideas(self, clusters: list[tuple[int, ProblemCluster]]) -> None:
        """Generate, score and store one idea per stored cluster."""
        for cluster_ref, cluster in clusters:
            if not self.budget.try_consume("generate_idea"):
                break
            idea = await self.ai.generate_idea(cluster)
            if idea is None:
                continue
            if not self.budget.try_consume("insert_idea"):
                break
            score = idea_score(cluster.frequency, cluster.severity)
            try:
                await self.store.insert_idea(self.run_id, self.subreddit_id, cluster_ref, idea, score)
            except aiosqlite.Error as e:
                self.log.error("idea_save_failed", cluster_ref=cluster_ref, error=str(e))
                continue
            self.stats.ideas_generated += 1

        self.log.info("ideas_generated", count=self.stats.ideas_generated)


async def run_scrape(
    settings: Settings,
    store: AsyncStore,
    subreddit_id: int,
    window_days: int,
    reddit: RedditSession | None = None,
    ai: OpenRouterSession | None = None,
    budget: OperationBudget | None = None,
) -> RunScrapeResult:
    """Execute one scrape-and-synthesize run to completion.

    Args:
        settings: Application settings
        store: Connected result store
        subreddit_id: Tracked subreddit to scrape
        window_days: Window length, one of 1, 7 or 30
        reddit: Reddit session (built from settings when None)
        ai: AI session (built from settings when None)
        budget: Operation budget (built from settings when None)

    Returns:
        RunScrapeResult with the terminal status and counters

    Raises:
        InvalidRunRequest: If the window is unsupported
        SubredditNotFound: If the subreddit does not exist (no run is created)
    """
    if window_days not in WINDOW_DAYS:
        raise InvalidRunRequest("windowDays must be 1, 7, or 30")

    subreddit = await store.get_subreddit(subreddit_id)
    if subreddit is None:
        raise SubredditNotFound(subreddit_id)

    budget = budget or OperationBudget(settings.operation_budget)
    if not budget.try_consume("create_run"):
        raise RuntimeError("operation budget exhausted before run creation")
    run_id = await store.create_run(subreddit_id, subreddit["name"], window_days)
    logger.info("run_created", run_id=run_id, subreddit=subreddit["name"], window_days=window_days)

    stats = RunStats()
    status = RunStatus.COMPLETED
    error_message: str | None = None
    owns_reddit = reddit is None

    try:
        if ai is None:
            ai = OpenRouterSession.from_settings(settings, budget=budget)
        if reddit is None:
            reddit = RedditSession.from_settings(settings, budget=budget)
        job = ScrapeJob(settings, store, budget, reddit, ai, run_id, subreddit, window_days)
        try:
            await job.execute()
        finally:
            stats = job.stats
    except Exception as e:
        status = RunStatus.FAILED
        error_message = str(e) or type(e).__name__
        logger.error("run_failed", run_id=run_id, error=error_message)
    finally:
        if owns_reddit and reddit is not None:
            await reddit.aclose()

    budget.consume_reserved("finish_run")
    stats.operations_used = budget.used
    try:
        await store.finish_run(run_id, status, stats, error_message)
    except Exception as e:
        logger.error("run_finish_failed", run_id=run_id, status=status.value, error=str(e))
        raise

    logger.info(
        "run_complete",
        run_id=run_id,
        status=status.value,
        posts=stats.posts_scraped,
        comments=stats.comments_scraped,
        problems=stats.problems_extracted,
        clusters=stats.clusters_created,
        ideas=stats.ideas_generated,
        operations=stats.operations_used,
    )
    return RunScrapeResult(run_id=run_id, status=status, stats=stats, error_message=error_message)
