"""Reddit read access through the JSON listing API.

A RedditSession is built once per run and owns the HTTP client, the cached
OAuth token and the request throttle. Retries go through the shared tenacity
policy; whatever still fails surfaces as FetchFailed.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from .budget import OperationBudget
from .config import Settings
from .http_client import build_http_client
from .logging_config import get_logger
from .retry_policy import TransientHTTPError, check_response_for_retry, http_retry

logger = get_logger(__name__)

REDDIT_BASE = "https://www.reddit.com"
REDDIT_OAUTH_BASE = "https://oauth.reddit.com"
TOKEN_URL = f"{REDDIT_BASE}/api/v1/access_token"

# Seconds shaved off the token lifetime
TOKEN_EXPIRY_MARGIN = 60.0

REMOVED_BODIES = frozenset({"[deleted]", "[removed]"})


class FetchFailed(Exception):
    """A Reddit request failed after retries."""

    def __init__(self, message: str, url: str | None = None):
        super().__init__(message)
        self.url = url


@dataclass
class RedditPost:
    """Normalized Reddit post data."""

    id: str
    subreddit: str
    title: str
    body: str
    author: str
    created_utc: int
    permalink: str
    url: str
    score: int
    num_comments: int
    raw: dict = field(default_factory=dict)


@dataclass
class RedditComment:
    """Normalized Reddit comment data."""

    id: str
    post_id: str
    parent_id: str | None
    body: str
    author: str
    created_utc: int
    score: int
    raw: dict = field(default_factory=dict)


@dataclass
class PostPage:
    """One page of the new listing, cut at the window boundary."""

    posts: list[RedditPost]
    next_cursor: str | None
    cutoff_reached: bool = False


def _parse_post(data: dict, subreddit: str) -> RedditPost | None:
    """Parse listing child data into a RedditPost."""
    post_id = data.get("id")
    if not post_id:
        return None
    try:
        created_utc = int(float(data.get("created_utc") or 0))
    except (TypeError, ValueError):
        return None

    return RedditPost(
        id=str(post_id),
        subreddit=data.get("subreddit") or subreddit,
        title=data.get("title") or "",
        body=data.get("selftext") or "",
        author=data.get("author") or "[deleted]",
        created_utc=created_utc,
        permalink=data.get("permalink") or "",
        url=data.get("url") or "",
        score=int(data.get("score") or 0),
        num_comments=int(data.get("num_comments") or 0),
        raw=data,
    )


def _parse_comment(data: dict, post_id: str) -> RedditComment | None:
    """Parse a t1 child into a RedditComment; None for removed or empty bodies."""
    body = (data.get("body") or "").strip()
    if not data.get("id") or not body or body in REMOVED_BODIES:
        return None

    try:
        created_utc = int(float(data.get("created_utc") or 0))
    except (TypeError, ValueError):
        return None

    parent = data.get("parent_id") or ""
    return RedditComment(
        id=str(data["id"]),
        post_id=post_id,
        # t1_ parents are comments; a t3_ parent means top-level
        parent_id=parent[3:] if parent.startswith("t1_") else None,
        body=body,
        author=data.get("author") or "[deleted]",
        created_utc=created_utc,
        score=int(data.get("score") or 0),
        raw=data,
    )


class RedditSession:
    """Per-run Reddit client with throttling, retries and optional OAuth."""

    def __init__(
        self,
        user_agent: str,
        client_id: str | None = None,
        client_secret: str | None = None,
        min_interval: float = 1.0,
        budget: OperationBudget | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.user_agent = user_agent
        self.client_id = client_id
        self.client_secret = client_secret
        self.min_interval = min_interval
        self.budget = budget
        self._client = client or build_http_client(user_agent=user_agent)
        self._last_request_at: float | None = None
        self._access_token: str | None = None
        self._token_expires_at = 0.0
        self._oauth_disabled = not (client_id and client_secret)

    @classmethod
    def from_settings(cls, settings: Settings, budget: OperationBudget | None = None) -> RedditSession:
        return cls(
            user_agent=settings.reddit_user_agent,
            client_id=settings.reddit_client_id,
            client_secret=settings.reddit_client_secret,
            min_interval=settings.min_request_interval,
            budget=budget,
        )

    async def __aenter__(self) -> RedditSession:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _throttle(self) -> None:
        """Keep at least min_interval seconds between two requests."""
        if self._last_request_at is not None and self.min_interval > 0:
            elapsed = time.monotonic() - self._last_request_at
            if elapsed < self.min_interval:
                await asyncio.sleep(self.min_interval - elapsed)
        self._last_request_at = time.monotonic()

    async def _ensure_token(self) -> str | None:
        """Return a cached OAuth token, fetching one if needed.

        Returns None when the session runs anonymously.
        """
        if self._oauth_disabled:
            return None
        if self._access_token and time.monotonic() < self._token_expires_at:
            return self._access_token
        if self.budget is not None and not self.budget.try_consume("reddit_auth"):
            logger.info("reddit_auth_skipped", reason="budget")
            self._oauth_disabled = True
            return None

        await self._throttle()
        try:
            response = await self._client.post(
                TOKEN_URL,
                auth=(self.client_id, self.client_secret),
                data={"grant_type": "client_credentials"},
            )
            response.raise_for_status()
            payload = response.json()
            self._access_token = payload["access_token"]
            expires_in = float(payload.get("expires_in") or 3600)
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.warning("reddit_auth_failed", error=str(e))
            self._oauth_disabled = True
            return None

        self._token_expires_at = time.monotonic() + expires_in - TOKEN_EXPIRY_MARGIN
        logger.debug("reddit_token_acquired", expires_in=expires_in)
        return self._access_token

    @http_retry
    async def _request_json(self, url: str, params: dict, headers: dict) -> Any:
        await self._throttle()
        logger.debug("reddit_request", url=url, params=params)
        response = await self._client.get(url, params=params, headers=headers)
        check_response_for_retry(response)
        return response.json()

    async def _get_json(self, path: str, params: dict) -> Any:
        """GET a listing path, mapping every failure to FetchFailed."""
        token = await self._ensure_token()
        if token:
            url = f"{REDDIT_OAUTH_BASE}{path}"
            headers = {"Authorization": f"Bearer {token}"}
        else:
            url = f"{REDDIT_BASE}{path}.json"
            headers = {}

        try:
            return await self._request_json(url, params, headers)
        except TransientHTTPError as e:
            raise FetchFailed(f"Reddit request failed after retries: {e}", url=url) from e
        except httpx.HTTPStatusError as e:
            raise FetchFailed(f"Reddit API error: {e.response.status_code}", url=url) from e
        except httpx.HTTPError as e:
            raise FetchFailed(f"Reddit transport error: {e}", url=url) from e
        except ValueError as e:
            raise FetchFailed(f"Reddit returned invalid JSON: {e}", url=url) from e

    async def fetch_posts(
        self,
        subreddit: str,
        cutoff_utc: int,
        after: str | None = None,
        limit: int = 25,
    ) -> PostPage:
        """Fetch one page of the new listing.

        Collection stops at the first post older than the cutoff; the listing
        is newest first so nothing after it can be in the window.

        Args:
            subreddit: Subreddit name (without r/)
            cutoff_utc: Oldest creation time (epoch seconds) to keep
            after: Pagination cursor from the previous page
            limit: Posts requested from Reddit

        Returns:
            PostPage; next_cursor is None when the cutoff was reached or
            Reddit reports no further page

        Raises:
            FetchFailed: If the request fails after retries
        """
        params: dict[str, Any] = {"limit": limit, "raw_json": 1}
        if after:
            params["after"] = after

        data = await self._get_json(f"/r/{subreddit}/new", params)
        if not isinstance(data, dict):
            raise FetchFailed("Unexpected listing payload")

        listing = data.get("data") or {}
        posts: list[RedditPost] = []
        cutoff_reached = False

        for child in listing.get("children") or []:
            if child.get("kind") != "t3":
                continue
            post = _parse_post(child.get("data") or {}, subreddit)
            if post is None:
                continue
            if post.created_utc < cutoff_utc:
                cutoff_reached = True
                break
            posts.append(post)

        next_cursor = None if cutoff_reached else listing.get("after")
        logger.info(
            "posts_page_fetched",
            subreddit=subreddit,
            posts=len(posts),
            cutoff_reached=cutoff_reached,
            has_next=next_cursor is not None,
        )
        return PostPage(posts=posts, next_cursor=next_cursor, cutoff_reached=cutoff_reached)

    async def fetch_comments(
        self,
        subreddit: str,
        post_id: str,
        max_depth: int = 2,
        max_count: int = 100,
    ) -> list[RedditComment]:
        """Fetch a post's comment tree, depth first.

        Args:
            subreddit: Subreddit name (without r/)
            post_id: Reddit post id (without t3_)
            max_depth: Reply levels to walk; 1 means top-level only
            max_count: Maximum comments to return

        Returns:
            Comments in tree order, removed/deleted bodies skipped

        Raises:
            FetchFailed: If the request fails after retries
        """
        params = {"limit": max(max_count, 1), "depth": max_depth, "raw_json": 1}
        data = await self._get_json(f"/r/{subreddit}/comments/{post_id}", params)

        # Reddit returns [post_listing, comment_listing]
        if not isinstance(data, list) or len(data) < 2 or not isinstance(data[1], dict):
            return []

        comments: list[RedditComment] = []

        def walk(children: list, depth: int) -> None:
            for child in children:
                if len(comments) >= max_count:
                    return
                if child.get("kind") != "t1":
                    continue
                item = child.get("data") or {}
                comment = _parse_comment(item, post_id)
                if comment is not None:
                    comments.append(comment)
                replies = item.get("replies")
                if depth < max_depth and isinstance(replies, dict):
                    walk((replies.get("data") or {}).get("children") or [], depth + 1)

        walk((data[1].get("data") or {}).get("children") or [], 1)
        logger.debug("comments_fetched", post_id=post_id, count=len(comments))
        return comments
