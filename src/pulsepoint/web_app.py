"""FastAPI JSON application: run trigger, run history and tracked subreddits."""

from __future__ import annotations

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, Field

from .config import Settings, get_settings
from .logging_config import get_logger
from .models import BusinessIdea, CamelModel, RunStats, RunStatus, Severity
from .pipeline import InvalidRunRequest, SubredditNotFound, run_scrape, validate_run_request
from .store import AsyncStore

logger = get_logger(__name__)

app = FastAPI(title="PulsePoint API")


class SubredditCreate(CamelModel):
    name: str
    is_active: bool = True


class SubredditUpdate(CamelModel):
    is_active: bool


class TrackedSubreddit(CamelModel):
    id: int
    name: str
    is_active: bool
    created_at: str
    updated_at: str


class ScrapeRun(CamelModel):
    id: int
    subreddit_id: int
    subreddit_name: str
    window_days: int
    status: RunStatus
    started_at: str
    finished_at: str | None = None
    error_message: str | None = None
    stats: RunStats = Field(default_factory=RunStats)


class ClusterView(CamelModel):
    id: int
    title: str
    summary: str | None = None
    frequency: int
    severity: Severity
    evidence: list[str] = Field(default_factory=list)
    created_at: str


class IdeaView(CamelModel):
    id: int
    cluster_id: int = Field(
        validation_alias=AliasChoices("cluster_ref", "cluster_id", "clusterId"),
        serialization_alias="clusterId",
    )
    title: str
    idea: BusinessIdea
    score: int
    created_at: str


class ScrapeRunDetail(ScrapeRun):
    clusters: list[ClusterView] = Field(default_factory=list)
    ideas: list[IdeaView] = Field(default_factory=list)


def get_app_settings() -> Settings:
    return get_settings()


async def get_store(settings: Settings = Depends(get_app_settings)):
    store = AsyncStore(settings.db_path)
    await store.connect()
    await store.init_db()
    try:
        yield store
    finally:
        await store.close()


@app.post("/api/scrape/run")
async def trigger_run(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    store: AsyncStore = Depends(get_store),
):
    """Run the pipeline synchronously and answer with the terminal status.

    Returns 200 for a completed run and 500 for a failed one; the body is
    the run result either way.
    """
    try:
        payload = await request.json()
    except ValueError as e:
        raise HTTPException(status_code=400, detail="Request body must be JSON") from e
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")

    try:
        run_request = validate_run_request(payload)
        result = await run_scrape(settings, store, run_request.subreddit_id, run_request.window_days)
    except InvalidRunRequest as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except SubredditNotFound as e:
        raise HTTPException(status_code=404, detail=str(e)) from e

    status_code = 500 if result.status == RunStatus.FAILED else 200
    return JSONResponse(result.model_dump(mode="json", by_alias=True), status_code=status_code)


@app.get("/api/analyses", response_model=list[ScrapeRun])
async def list_analyses(
    limit: int = Query(50, ge=1, le=200),
    store: AsyncStore = Depends(get_store),
):
    """List runs, most recent first."""
    return [ScrapeRun.model_validate(run) for run in await store.get_runs(limit=limit)]


@app.get("/api/analyses/{run_id}", response_model=ScrapeRunDetail)
async def get_analysis(run_id: int, store: AsyncStore = Depends(get_store)):
    """Get a run with its clusters and ideas."""
    detail = await store.get_run_detail(run_id)
    if not detail:
        raise HTTPException(status_code=404, detail="Analysis not found")
    return ScrapeRunDetail.model_validate(detail)


@app.get("/api/subreddits", response_model=list[TrackedSubreddit])
async def list_subreddits(store: AsyncStore = Depends(get_store)):
    return [TrackedSubreddit.model_validate(row) for row in await store.list_subreddits()]


@app.post("/api/subreddits", status_code=201, response_model=TrackedSubreddit)
async def add_subreddit(body: SubredditCreate, store: AsyncStore = Depends(get_store)):
    """Track a subreddit; re-adding a name refreshes the existing row."""
    try:
        row = await store.upsert_subreddit(body.name, is_active=body.is_active)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return TrackedSubreddit.model_validate(row)


@app.patch("/api/subreddits/{subreddit_id}", response_model=TrackedSubreddit)
async def update_subreddit(
    subreddit_id: int,
    body: SubredditUpdate,
    store: AsyncStore = Depends(get_store),
):
    """Pause or resume tracking of a subreddit."""
    if not await store.set_subreddit_active(subreddit_id, body.is_active):
        raise HTTPException(status_code=404, detail="Subreddit not found")
    return TrackedSubreddit.model_validate(await store.get_subreddit(subreddit_id))


@app.delete("/api/subreddits/{subreddit_id}")
async def remove_subreddit(subreddit_id: int, store: AsyncStore = Depends(get_store)):
    if not await store.delete_subreddit(subreddit_id):
        raise HTTPException(status_code=404, detail="Subreddit not found")
    return {"success": True}


@app.get("/api/health")
async def health(settings: Settings = Depends(get_app_settings)):
    """Report service status and whether the database answers."""
    store = AsyncStore(settings.db_path)
    try:
        await store.ping()
    except Exception as e:
        logger.error("health_check_failed", error=str(e))
        return JSONResponse({"status": "error", "error": str(e)}, status_code=500)
    finally:
        await store.close()
    return {"status": "ok", "database": "connected"}
