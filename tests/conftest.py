import logging
import time

import pytest
import pytest_asyncio
import structlog
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from pulsepoint.ai_client import OpenRouterSession
from pulsepoint.config import Settings
from pulsepoint.models import BusinessIdea, ProblemCluster, Severity
from pulsepoint.reddit_client import RedditComment, RedditPost
from pulsepoint.store import AsyncStore


@pytest.fixture(autouse=True)
def _reset_logging():
    """Undo logging config bound to CliRunner's temporary streams between tests."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    structlog.reset_defaults()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the environment, with no request pacing."""
    return Settings(
        _env_file=None,
        db_path=str(tmp_path / "test.sqlite3"),
        reddit_user_agent="test-agent",
        reddit_client_id=None,
        reddit_client_secret=None,
        openrouter_api_key="test-key",
        openrouter_model="test/model",
        min_request_interval=0.0,
        comment_fetch_delay=0.0,
    )


@pytest_asyncio.fixture
async def store():
    """Initialized in-memory store."""
    store = AsyncStore(":memory:")
    await store.connect()
    await store.init_db()
    yield store
    await store.close()


@pytest.fixture
def fake_ai():
    """Build an OpenRouterSession answering from a fixed list of responses."""

    def _build(responses: list[str], budget=None) -> OpenRouterSession:
        return OpenRouterSession(
            api_key="test-key",
            model="test/model",
            budget=budget,
            llm=FakeListChatModel(responses=responses),
        )

    return _build


@pytest.fixture
def sample_post():
    """Sample RedditPost for testing."""
    return RedditPost(
        id="abc123",
        subreddit="saas",
        title="Invoicing is killing me",
        body="I spend hours every month chasing clients for unpaid invoices.",
        author="founder",
        created_utc=int(time.time()) - 3600,
        permalink="/r/saas/comments/abc123/invoicing/",
        url="https://www.reddit.com/r/saas/comments/abc123/invoicing/",
        score=42,
        num_comments=3,
        raw={"id": "abc123"},
    )


@pytest.fixture
def sample_comment():
    """Sample RedditComment for testing."""
    return RedditComment(
        id="c1",
        post_id="abc123",
        parent_id=None,
        body="Same here, reconciling payments across Stripe and the bank takes forever.",
        author="commenter",
        created_utc=int(time.time()) - 1800,
        score=7,
        raw={"id": "c1"},
    )


@pytest.fixture
def sample_cluster():
    return ProblemCluster(
        title="Invoice chasing",
        summary="Freelancers lose time collecting payments",
        frequency=2,
        severity=Severity.MEDIUM,
        member_indices=[0, 1],
    )


@pytest.fixture
def sample_idea():
    return BusinessIdea(
        title="DunningDesk",
        one_liner="Automatic, polite payment reminders for freelancers",
        target_user="Solo freelancers who invoice monthly",
        solution="Connects to the invoicing tool and sends escalating reminders.",
        mvp=["Stripe sync", "Reminder schedule", "Payment page"],
        pricing="$12/month",
        differentiators=["Tone presets"],
        risks=["Crowded market"],
        acquisition_channel="Freelancer communities",
    )
