"""Centralized HTTP client configuration.

Provides a properly configured httpx.AsyncClient with:
- Connection limits sized for one sequential run
- Timeouts bounded to an interactive request budget
- JSON-friendly default headers
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime

import httpx

from .logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(
    timeout=30.0,  # Total timeout
    connect=10.0,  # Connection timeout
    read=20.0,  # Read timeout
    write=10.0,  # Write timeout
)

DEFAULT_LIMITS = httpx.Limits(
    max_connections=5,
    max_keepalive_connections=2,
    keepalive_expiry=30.0,
)

DEFAULT_HEADERS = {
    "Accept": "application/json",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate",
}

DEFAULT_USER_AGENT = "web:PulsePoint:v0.1.0 (by /u/pulsepoint)"


def build_http_client(
    user_agent: str | None = None,
    timeout: httpx.Timeout | None = None,
    limits: httpx.Limits | None = None,
    extra_headers: dict | None = None,
) -> httpx.AsyncClient:
    """Build a configured HTTP client. The caller owns closing it.

    Args:
        user_agent: Custom user agent (uses default if not provided)
        timeout: Custom timeout config (uses DEFAULT_TIMEOUT if not provided)
        limits: Custom connection limits (uses DEFAULT_LIMITS if not provided)
        extra_headers: Additional headers to include

    Returns:
        Configured httpx.AsyncClient
    """
    headers = DEFAULT_HEADERS.copy()
    headers["User-Agent"] = user_agent or DEFAULT_USER_AGENT

    if extra_headers:
        headers.update(extra_headers)

    client = httpx.AsyncClient(
        timeout=timeout or DEFAULT_TIMEOUT,
        limits=limits or DEFAULT_LIMITS,
        headers=headers,
        follow_redirects=True,
    )
    logger.debug("http_client_created", user_agent=headers["User-Agent"][:50])
    return client


@asynccontextmanager
async def create_http_client(
    user_agent: str | None = None,
    timeout: httpx.Timeout | None = None,
    extra_headers: dict | None = None,
) -> AsyncIterator[httpx.AsyncClient]:
    """Context manager around build_http_client.

    Example:
        async with create_http_client() as client:
            response = await client.get("https://openrouter.ai/api/v1/models")
    """
    client = build_http_client(user_agent=user_agent, timeout=timeout, extra_headers=extra_headers)
    try:
        yield client
    finally:
        await client.aclose()
        logger.debug("http_client_closed")


def parse_retry_after(response: httpx.Response) -> float | None:
    """Parse Retry-After header from response.

    Args:
        response: HTTP response

    Returns:
        Seconds to wait, or None if header not present/parseable
    """
    retry_after = response.headers.get("Retry-After")
    if not retry_after:
        return None

    try:
        return float(retry_after)
    except ValueError:
        pass

    try:
        # HTTP-date form, e.g. "Wed, 21 Oct 2015 07:28:00 GMT"
        dt = parsedate_to_datetime(retry_after)
        delta = (dt - datetime.now(UTC)).total_seconds()
        return max(0.0, delta)
    except (ValueError, TypeError):
        pass

    return None
