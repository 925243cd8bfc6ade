"""Pydantic models for LLM outputs, run records and the trigger interface."""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

WINDOW_DAYS: tuple[int, ...] = (1, 7, 30)


class Severity(str, Enum):
    """Canonical cluster severity."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RunStatus(str, Enum):
    """Lifecycle state of a scrape run."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class CamelModel(BaseModel):
    """Model serialized with camelCase keys, populated by either form."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProblemCluster(CamelModel):
    """A group of similar problem statements returned by the clustering call."""

    title: str = Field(..., min_length=1, description="Clear title (3-7 words)")
    summary: str = Field(default="", description="Core issue shared by the members")
    frequency: int | None = Field(default=None, description="How many statements relate to this cluster")
    severity: Severity = Field(default=Severity.MEDIUM, description="Normalized severity")
    member_indices: list[int] = Field(default_factory=list, description="Indices into the clustered list")

    @model_validator(mode="after")
    def _default_frequency(self) -> ProblemCluster:
        if self.frequency is None:
            self.frequency = len(self.member_indices)
        return self

    @field_validator("severity", mode="before")
    @classmethod
    def _normalize_severity(cls, v: object) -> Severity:
        from .scoring import normalize_severity

        return normalize_severity(v)

    @field_validator("member_indices", mode="before")
    @classmethod
    def _keep_int_indices(cls, v: object) -> list[int]:
        if not isinstance(v, list):
            return []
        return [i for i in v if isinstance(i, int) and not isinstance(i, bool)]

    @field_validator("frequency", mode="before")
    @classmethod
    def _coerce_frequency(cls, v: object) -> int | None:
        if v is None:
            return None
        try:
            return max(0, int(v))
        except (TypeError, ValueError):
            return 0


class BusinessIdea(CamelModel):
    """Structured micro-SaaS idea generated for one cluster."""

    title: str = Field(..., min_length=1, description="Product name (2-4 words)")
    one_liner: str = Field(default="", description="Value proposition (10-15 words)")
    target_user: str = Field(default="", description="Who this is for")
    solution: str = Field(default="", description="What it does")
    mvp: list[str] = Field(default_factory=list, description="3-5 core MVP features")
    pricing: str = Field(default="", description="Suggested pricing model")
    differentiators: list[str] = Field(default_factory=list, description="2-3 key differentiators")
    risks: list[str] = Field(default_factory=list, description="2-3 main risks")
    acquisition_channel: str = Field(default="", description="Best channel to reach users")


class RunStats(CamelModel):
    """Counters accumulated while a run executes."""

    posts_scraped: int = 0
    posts_with_comments: int = 0
    comments_scraped: int = 0
    problems_extracted: int = 0
    clusters_created: int = 0
    ideas_generated: int = 0
    operations_used: int = 0


class RunScrapeRequest(CamelModel):
    """Trigger payload for one scrape run."""

    subreddit_id: int
    window_days: Literal[1, 7, 30]


class RunScrapeResult(CamelModel):
    """Outcome returned to the trigger caller."""

    run_id: int
    status: RunStatus
    stats: RunStats | None = None
    error_message: str | None = None


def normalize_subreddit_name(name: str) -> str:
    """Strip an optional r/ prefix, surrounding slashes and whitespace; lower-case."""
    cleaned = name.strip()
    if cleaned.lower().startswith("/r/"):
        cleaned = cleaned[3:]
    elif cleaned.lower().startswith("r/"):
        cleaned = cleaned[2:]
    return cleaned.strip().strip("/").lower()
