"""Configuration management using pydantic-settings."""

from __future__ import annotations

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Required configuration is missing or unusable."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="PULSEPOINT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Storage
    db_path: str = Field(
        default="pulsepoint.sqlite3",
        description="Path to SQLite database file",
    )

    # Reddit access
    reddit_user_agent: str = Field(
        default="web:PulsePoint:v0.1.0 (by /u/pulsepoint)",
        validation_alias=AliasChoices("REDDIT_USER_AGENT", "PULSEPOINT_REDDIT_USER_AGENT"),
        description="User agent sent to Reddit (Reddit rejects generic agents)",
    )
    reddit_client_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("REDDIT_CLIENT_ID", "PULSEPOINT_REDDIT_CLIENT_ID"),
        description="Reddit app client id (anonymous access when unset)",
    )
    reddit_client_secret: str | None = Field(
        default=None,
        validation_alias=AliasChoices("REDDIT_CLIENT_SECRET", "PULSEPOINT_REDDIT_CLIENT_SECRET"),
        description="Reddit app client secret",
    )
    page_limit: int = Field(
        default=25,
        ge=1,
        le=100,
        description="Posts requested per listing page",
    )
    min_request_interval: float = Field(
        default=1.0,
        ge=0.0,
        description="Minimum seconds between two Reddit requests",
    )
    comment_fetch_delay: float = Field(
        default=0.2,
        ge=0.0,
        description="Pause in seconds between comment fetches",
    )

    # OpenRouter configuration
    openrouter_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("OPENROUTER_API_KEY", "PULSEPOINT_OPENROUTER_API_KEY"),
        description="OpenRouter API key (accepts OPENROUTER_API_KEY or PULSEPOINT_OPENROUTER_API_KEY)",
    )
    openrouter_model: str | None = Field(
        default=None,
        validation_alias=AliasChoices("OPENROUTER_MODEL", "PULSEPOINT_OPENROUTER_MODEL"),
        description="Model override; the model catalog is consulted when unset",
    )
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        description="OpenAI-compatible API base URL",
    )

    # Operation budget and per-stage caps
    operation_budget: int = Field(
        default=45,
        ge=2,
        description="Outbound operations (HTTP + DB) allowed per run",
    )
    max_posts: int = Field(default=8, ge=0, description="Posts stored per run")
    max_posts_with_comments: int = Field(default=3, ge=0, description="Posts whose comments are fetched")
    max_comments_per_post: int = Field(default=2, ge=0, description="Comments stored per post")
    comment_fetch_depth: int = Field(default=1, ge=1, description="Reply depth walked per comment tree")
    comment_fetch_count: int = Field(default=10, ge=1, description="Comments collected per tree walk")
    posts_to_analyze: int = Field(default=3, ge=0, description="Posts sent to problem extraction")
    comments_to_analyze: int = Field(default=2, ge=0, description="Comments sent to problem extraction")
    problems_per_item: int = Field(default=2, ge=0, description="Statements kept per analyzed item")
    max_problems_stored: int = Field(default=6, ge=0, description="Statements persisted per run")
    min_extract_chars: int = Field(
        default=50,
        ge=0,
        description="Texts of this length or shorter are not sent to extraction",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR",
    )
    log_json: bool = Field(
        default=False,
        description="Output logs as JSON (for production)",
    )


def get_settings() -> Settings:
    """Load and return application settings."""
    return Settings()
