import json
import time
from unittest.mock import AsyncMock, MagicMock, patch

import aiosqlite
import httpx
import pytest
import respx
from structlog.testing import capture_logs

from pulsepoint.budget import OperationBudget
from pulsepoint.models import RunStatus
from pulsepoint.pipeline import InvalidRunRequest, SubredditNotFound, run_scrape, validate_run_request
from pulsepoint.reddit_client import FetchFailed, RedditSession

LONG_BODY = "Every month I spend hours chasing clients who have not paid their invoices on time."

EXTRACT_P1 = '["Chasing unpaid invoices wastes hours", "Clients ignore reminder emails"]'
EXTRACT_P2 = '```json\n["Reconciling payments is manual"]\n```'
EXTRACT_C1 = "[]"
CLUSTERS = json.dumps(
    [{"title": "Getting paid", "summary": "Collecting payments is slow", "severity": "medium", "memberIndices": [0, 1]}]
)
IDEA = json.dumps({"title": "DunningDesk", "oneLiner": "Polite automatic payment reminders", "mvp": ["Reminders"]})


def _post(post_id: str, age_seconds: int, now: int) -> dict:
    return {
        "kind": "t3",
        "data": {
            "id": post_id,
            "subreddit": "saas",
            "title": f"Post {post_id}",
            "selftext": LONG_BODY,
            "author": "founder",
            "created_utc": now - age_seconds,
            "permalink": f"/r/saas/comments/{post_id}/",
            "url": f"https://www.reddit.com/r/saas/comments/{post_id}/",
            "score": 10,
            "num_comments": 1,
        },
    }


def _listing(now: int) -> dict:
    """Three posts, the last one outside a 7-day window."""
    return {
        "data": {
            "after": "t3_p3",
            "children": [_post("p1", 3600, now), _post("p2", 7200, now), _post("p3", 10 * 86400, now)],
        }
    }


def _comments(*bodies: str) -> list:
    children = [
        {
            "kind": "t1",
            "data": {"id": f"c{i}", "parent_id": "t3_p1", "body": body, "author": "x", "created_utc": 1, "score": i},
        }
        for i, body in enumerate(bodies, start=1)
    ]
    return [{"data": {"children": []}}, {"data": {"children": children}}]


def _mock_reddit(respx_mock, now: int, p1_status: int = 200):
    p1_comments = _comments("Reconciling Stripe payouts with the bank is a nightmare")
    respx_mock.get("/r/saas/new.json").mock(side_effect=lambda request: httpx.Response(200, json=_listing(now)))
    respx_mock.get("/r/saas/comments/p1.json").mock(
        side_effect=lambda request: httpx.Response(p1_status, json=p1_comments)
    )
    respx_mock.get("/r/saas/comments/p2.json").mock(side_effect=lambda request: httpx.Response(200, json=_comments()))


@pytest.mark.asyncio
async def test_run_end_to_end(settings, store, fake_ai):
    """Two in-window posts are stored and yield one cluster and one scored idea."""
    sub = await store.upsert_subreddit("saas")
    now = int(time.time())
    ai = fake_ai([EXTRACT_P1, EXTRACT_P2, EXTRACT_C1, CLUSTERS, IDEA])
    reddit = RedditSession(user_agent="test-agent", min_interval=0)

    try:
        with respx.mock(base_url="https://www.reddit.com") as respx_mock:
            _mock_reddit(respx_mock, now)
            with patch.object(store, "save_checkpoint", wraps=store.save_checkpoint) as save_checkpoint:
                result = await run_scrape(settings, store, sub["id"], 7, reddit=reddit, ai=ai)
    finally:
        await reddit.aclose()

    assert result.status == RunStatus.COMPLETED
    assert result.error_message is None
    stats = result.stats
    assert stats.posts_scraped == 2
    assert stats.posts_with_comments == 2
    assert stats.comments_scraped == 1
    assert stats.problems_extracted == 3
    assert stats.clusters_created == 1
    assert stats.ideas_generated == 1
    assert stats.operations_used == 20

    save_checkpoint.assert_awaited_once()
    checkpoint = await store.get_checkpoint(sub["id"], 7)
    assert checkpoint["last_after_cursor"] is None
    assert checkpoint["last_post_created_utc"] == now - 7200

    detail = await store.get_run_detail(result.run_id)
    assert detail["status"] == "completed"
    assert detail["stats"]["postsScraped"] == 2
    assert len(detail["clusters"]) == 1
    cluster = detail["clusters"][0]
    assert cluster["frequency"] == 2
    assert cluster["severity"] == "medium"
    assert cluster["evidence"] == ["Chasing unpaid invoices wastes hours", "Clients ignore reminder emails"]
    assert len(detail["ideas"]) == 1
    assert detail["ideas"][0]["score"] == 4
    assert detail["ideas"][0]["idea"]["oneLiner"] == "Polite automatic payment reminders"


@pytest.mark.asyncio
async def test_rerun_reassigns_posts_and_keeps_comments(settings, store, fake_ai):
    sub = await store.upsert_subreddit("saas")
    now = int(time.time())
    reddit = RedditSession(user_agent="test-agent", min_interval=0)

    try:
        with respx.mock(base_url="https://www.reddit.com") as respx_mock:
            _mock_reddit(respx_mock, now)
            first = await run_scrape(settings, store, sub["id"], 7, reddit=reddit, ai=fake_ai(["[]"]))
            second = await run_scrape(settings, store, sub["id"], 7, reddit=reddit, ai=fake_ai(["[]"]))
    finally:
        await reddit.aclose()

    assert second.status == RunStatus.COMPLETED
    assert second.stats.posts_scraped == 2
    assert second.stats.comments_scraped == 0

    async with store.connection() as conn:
        cursor = await conn.execute("SELECT run_id FROM reddit_posts")
        post_runs = [row[0] for row in await cursor.fetchall()]
        cursor = await conn.execute("SELECT run_id FROM reddit_comments")
        comment_runs = [row[0] for row in await cursor.fetchall()]
    assert post_runs == [second.run_id, second.run_id]
    assert comment_runs == [first.run_id]


@pytest.mark.asyncio
async def test_tiny_budget_still_completes(settings, store, fake_ai):
    """With only the run creation and the final write affordable, nothing else runs."""
    sub = await store.upsert_subreddit("saas")
    budget = OperationBudget(2)
    reddit = MagicMock(spec=RedditSession)
    reddit.fetch_posts = AsyncMock()

    result = await run_scrape(settings, store, sub["id"], 7, reddit=reddit, ai=fake_ai([]), budget=budget)

    assert result.status == RunStatus.COMPLETED
    assert result.stats.posts_scraped == 0
    assert result.stats.problems_extracted == 0
    assert result.stats.operations_used == 2
    assert budget.remaining == 0
    reddit.fetch_posts.assert_not_awaited()
    assert (await store.get_run(result.run_id))["status"] == "completed"


@pytest.mark.asyncio
async def test_budget_truncates_post_collection(settings, store, fake_ai):
    sub = await store.upsert_subreddit("saas")
    now = int(time.time())
    budget = OperationBudget(5)
    reddit = RedditSession(user_agent="test-agent", min_interval=0)

    try:
        with respx.mock(base_url="https://www.reddit.com", assert_all_called=False) as respx_mock:
            _mock_reddit(respx_mock, now)
            result = await run_scrape(settings, store, sub["id"], 7, reddit=reddit, ai=fake_ai([]), budget=budget)
    finally:
        await reddit.aclose()

    assert result.status == RunStatus.COMPLETED
    assert result.stats.posts_scraped == 1
    assert result.stats.comments_scraped == 0
    assert result.stats.problems_extracted == 0
    assert result.stats.operations_used == 5
    assert await store.get_checkpoint(sub["id"], 7) is None


@pytest.mark.asyncio
async def test_comment_fetch_failure_is_skipped(settings, store, fake_ai):
    sub = await store.upsert_subreddit("saas")
    now = int(time.time())
    reddit = RedditSession(user_agent="test-agent", min_interval=0)

    try:
        with respx.mock(base_url="https://www.reddit.com") as respx_mock:
            _mock_reddit(respx_mock, now, p1_status=404)
            result = await run_scrape(settings, store, sub["id"], 7, reddit=reddit, ai=fake_ai(["[]"]))
    finally:
        await reddit.aclose()

    assert result.status == RunStatus.COMPLETED
    assert result.stats.posts_scraped == 2
    assert result.stats.posts_with_comments == 1
    assert result.stats.comments_scraped == 0


@pytest.mark.asyncio
async def test_post_fetch_failure_completes_empty(settings, store, fake_ai):
    sub = await store.upsert_subreddit("saas")
    reddit = MagicMock(spec=RedditSession)
    reddit.fetch_posts = AsyncMock(side_effect=FetchFailed("Reddit API error: 403"))

    result = await run_scrape(settings, store, sub["id"], 30, reddit=reddit, ai=fake_ai([]))

    assert result.status == RunStatus.COMPLETED
    assert result.stats.posts_scraped == 0


@pytest.mark.asyncio
async def test_unexpected_error_fails_run_with_terminal_write_last(settings, store, fake_ai, monkeypatch):
    sub = await store.upsert_subreddit("saas")
    calls = []

    async def exploding_fetch(*args, **kwargs):
        calls.append("fetch_posts")
        raise RuntimeError("boom")

    original_finish = store.finish_run

    async def recording_finish(*args, **kwargs):
        calls.append("finish_run")
        await original_finish(*args, **kwargs)

    monkeypatch.setattr(store, "finish_run", recording_finish)
    reddit = MagicMock(spec=RedditSession)
    reddit.fetch_posts = AsyncMock(side_effect=exploding_fetch)

    result = await run_scrape(settings, store, sub["id"], 7, reddit=reddit, ai=fake_ai([]))

    assert result.status == RunStatus.FAILED
    assert result.error_message == "boom"
    assert calls == ["fetch_posts", "finish_run"]
    run = await store.get_run(result.run_id)
    assert run["status"] == "failed"
    assert run["error_message"] == "boom"
    assert run["finished_at"] is not None


@pytest.mark.asyncio
async def test_error_without_message_uses_class_name(settings, store, fake_ai):
    sub = await store.upsert_subreddit("saas")
    reddit = MagicMock(spec=RedditSession)
    reddit.fetch_posts = AsyncMock(side_effect=KeyError())

    result = await run_scrape(settings, store, sub["id"], 7, reddit=reddit, ai=fake_ai([]))

    assert result.status == RunStatus.FAILED
    assert result.error_message == "KeyError"


@pytest.mark.asyncio
async def test_missing_api_key_fails_run(settings, store):
    sub = await store.upsert_subreddit("saas")
    no_key = settings.model_copy(update={"openrouter_api_key": ""})

    result = await run_scrape(no_key, store, sub["id"], 7)

    assert result.status == RunStatus.FAILED
    assert "OPENROUTER_API_KEY" in result.error_message
    assert (await store.get_run(result.run_id))["status"] == "failed"


@pytest.mark.asyncio
async def test_unknown_subreddit_creates_no_run(settings, store, fake_ai):
    with pytest.raises(SubredditNotFound):
        await run_scrape(settings, store, 999, 7, ai=fake_ai([]))
    assert await store.get_runs() == []


@pytest.mark.asyncio
async def test_invalid_window_rejected(settings, store, fake_ai):
    sub = await store.upsert_subreddit("saas")
    with pytest.raises(InvalidRunRequest):
        await run_scrape(settings, store, sub["id"], 14, ai=fake_ai([]))
    assert await store.get_runs() == []


@pytest.mark.asyncio
async def test_collects_across_pages_with_a_checkpoint_per_page(settings, store, fake_ai):
    """A provider cursor on the first page is followed and checkpointed."""
    sub = await store.upsert_subreddit("saas")
    now = int(time.time())
    pages = {
        None: {"data": {"after": "t3_p2", "children": [_post("p1", 600, now), _post("p2", 1200, now)]}},
        "t3_p2": {"data": {"after": "t3_p4", "children": [_post("p3", 1800, now), _post("p4", 10 * 86400, now)]}},
    }
    reddit = RedditSession(user_agent="test-agent", min_interval=0)

    try:
        with respx.mock(base_url="https://www.reddit.com") as respx_mock:
            listing = respx_mock.get("/r/saas/new.json").mock(
                side_effect=lambda request: httpx.Response(200, json=pages[request.url.params.get("after")])
            )
            for post_id in ("p1", "p2", "p3"):
                respx_mock.get(f"/r/saas/comments/{post_id}.json").mock(
                    side_effect=lambda request: httpx.Response(200, json=_comments())
                )
            with patch.object(store, "save_checkpoint", wraps=store.save_checkpoint) as save_checkpoint:
                result = await run_scrape(settings, store, sub["id"], 7, reddit=reddit, ai=fake_ai(["[]"]))
    finally:
        await reddit.aclose()

    assert result.status == RunStatus.COMPLETED
    assert result.stats.posts_scraped == 3
    assert [call.request.url.params.get("after") for call in listing.calls] == [None, "t3_p2"]

    assert save_checkpoint.await_count == 2
    assert save_checkpoint.await_args_list[0].args == (sub["id"], 7, "t3_p2", now - 1200)
    assert save_checkpoint.await_args_list[1].args == (sub["id"], 7, None, now - 1800)
    checkpoint = await store.get_checkpoint(sub["id"], 7)
    assert checkpoint["last_after_cursor"] is None
    assert checkpoint["last_post_created_utc"] == now - 1800


@pytest.mark.asyncio
async def test_one_day_window_ignores_stale_checkpoint(settings, store, fake_ai):
    """The 1-day window clears its checkpoint and pages from the newest post."""
    sub = await store.upsert_subreddit("saas")
    await store.save_checkpoint(sub["id"], 1, "t3_stale", 123)
    now = int(time.time())
    ai = fake_ai([EXTRACT_P1, EXTRACT_P2, EXTRACT_C1, CLUSTERS, IDEA])
    reddit = RedditSession(user_agent="test-agent", min_interval=0)

    try:
        with respx.mock(base_url="https://www.reddit.com") as respx_mock:
            _mock_reddit(respx_mock, now)
            with (
                patch.object(store, "clear_checkpoint", wraps=store.clear_checkpoint) as clear_checkpoint,
                patch.object(store, "save_checkpoint", wraps=store.save_checkpoint) as save_checkpoint,
            ):
                result = await run_scrape(settings, store, sub["id"], 1, reddit=reddit, ai=ai)
            first_listing = respx_mock.calls[0].request
    finally:
        await reddit.aclose()

    assert "after" not in first_listing.url.params
    clear_checkpoint.assert_awaited_once_with(sub["id"], 1)
    save_checkpoint.assert_awaited_once()

    checkpoint = await store.get_checkpoint(sub["id"], 1)
    assert checkpoint["last_after_cursor"] is None
    assert checkpoint["last_post_created_utc"] == now - 7200

    assert result.status == RunStatus.COMPLETED
    assert result.stats.posts_scraped == 2
    assert result.stats.clusters_created == 1
    assert result.stats.ideas_generated == 1
    assert result.stats.operations_used == 20
    detail = await store.get_run_detail(result.run_id)
    assert detail["window_days"] == 1
    assert detail["ideas"][0]["score"] == 4


def _failing_on(original, should_fail):
    async def wrapper(*args, **kwargs):
        if should_fail(*args):
            raise aiosqlite.OperationalError("database is locked")
        return await original(*args, **kwargs)

    return wrapper


@pytest.mark.asyncio
async def test_failed_post_and_problem_rows_are_skipped(settings, store, fake_ai, monkeypatch):
    sub = await store.upsert_subreddit("saas")
    now = int(time.time())
    monkeypatch.setattr(
        store,
        "upsert_post",
        _failing_on(store.upsert_post, lambda run_id, sub_id, post: post.id == "p1"),
    )
    monkeypatch.setattr(store, "insert_problem", _failing_on(store.insert_problem, lambda *args: True))
    ai = fake_ai([EXTRACT_P2, CLUSTERS, IDEA])
    reddit = RedditSession(user_agent="test-agent", min_interval=0)

    try:
        with respx.mock(base_url="https://www.reddit.com", assert_all_called=False) as respx_mock:
            _mock_reddit(respx_mock, now)
            result = await run_scrape(settings, store, sub["id"], 7, reddit=reddit, ai=ai)
    finally:
        await reddit.aclose()

    assert result.status == RunStatus.COMPLETED
    assert result.stats.posts_scraped == 1
    assert result.stats.posts_with_comments == 1
    assert result.stats.problems_extracted == 0
    assert result.stats.clusters_created == 1
    assert result.stats.ideas_generated == 1

    detail = await store.get_run_detail(result.run_id)
    assert detail["clusters"][0]["evidence"] == ["Reconciling payments is manual"]
    async with store.connection() as conn:
        cursor = await conn.execute("SELECT external_id FROM reddit_posts")
        assert [row[0] for row in await cursor.fetchall()] == ["p2"]


@pytest.mark.asyncio
async def test_failed_comment_cluster_and_idea_rows_are_skipped(settings, store, fake_ai, monkeypatch):
    sub = await store.upsert_subreddit("saas")
    now = int(time.time())
    monkeypatch.setattr(store, "insert_comment", _failing_on(store.insert_comment, lambda *args: True))
    monkeypatch.setattr(store, "insert_idea", _failing_on(store.insert_idea, lambda *args: True))
    two_clusters = json.dumps(
        [
            {"title": "Getting paid", "severity": "high", "memberIndices": [0, 1]},
            {"title": "Reconciliation", "severity": "low", "memberIndices": [2]},
        ]
    )
    monkeypatch.setattr(
        store,
        "insert_cluster",
        _failing_on(store.insert_cluster, lambda run_id, sub_id, cluster, evidence: cluster.title == "Getting paid"),
    )
    ai = fake_ai([EXTRACT_P1, EXTRACT_P2, two_clusters, IDEA])
    reddit = RedditSession(user_agent="test-agent", min_interval=0)

    try:
        with respx.mock(base_url="https://www.reddit.com") as respx_mock:
            _mock_reddit(respx_mock, now)
            result = await run_scrape(settings, store, sub["id"], 7, reddit=reddit, ai=ai)
    finally:
        await reddit.aclose()

    assert result.status == RunStatus.COMPLETED
    assert result.stats.posts_with_comments == 2
    assert result.stats.comments_scraped == 0
    assert result.stats.problems_extracted == 3
    assert result.stats.clusters_created == 1
    assert result.stats.ideas_generated == 0

    detail = await store.get_run_detail(result.run_id)
    assert [c["title"] for c in detail["clusters"]] == ["Reconciliation"]
    assert detail["ideas"] == []


@pytest.mark.asyncio
async def test_terminal_write_failure_is_logged_and_raised(settings, store, fake_ai, monkeypatch):
    sub = await store.upsert_subreddit("saas")

    async def broken_finish(*args, **kwargs):
        raise aiosqlite.OperationalError("disk I/O error")

    monkeypatch.setattr(store, "finish_run", broken_finish)
    reddit = MagicMock(spec=RedditSession)
    reddit.fetch_posts = AsyncMock(side_effect=FetchFailed("Reddit API error: 403"))

    with capture_logs() as logs:
        with pytest.raises(aiosqlite.OperationalError):
            await run_scrape(settings, store, sub["id"], 7, reddit=reddit, ai=fake_ai([]))

    run = (await store.get_runs())[0]
    assert run["status"] == "running"
    failures = [entry for entry in logs if entry["event"] == "run_finish_failed"]
    assert len(failures) == 1
    assert failures[0]["run_id"] == run["id"]
    assert failures[0]["log_level"] == "error"

def test_validate_run_request():
    request = validate_run_request({"subredditId": 3, "windowDays": 30})
    assert request.subreddit_id == 3
    assert request.window_days == 30

    assert validate_run_request({"subreddit_id": 1, "window_days": 1}).window_days == 1


@pytest.mark.parametrize(
    "payload, message",
    [
        ({}, "required"),
        ({"subredditId": 1}, "required"),
        ({"subredditId": 1, "windowDays": 14}, "1, 7, or 30"),
        ({"subredditId": "abc", "windowDays": 7}, "subredditId"),
    ],
)
def test_validate_run_request_rejects(payload, message):
    with pytest.raises(InvalidRunRequest, match=message):
        validate_run_request(payload)
