"""Retry policies for HTTP requests and LLM calls.

Provides reusable tenacity decorators with:
- Proper exception handling for httpx and OpenAI
- Retry-After honoring for rate limits
- Logging of retry attempts
- Exponential backoff with jitter
"""

from __future__ import annotations

import httpx
import openai
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)
from tenacity.wait import wait_base

from .http_client import parse_retry_after
from .logging_config import get_logger

logger = get_logger(__name__)

# Wait used when a 429 carries no Retry-After header
DEFAULT_RATE_LIMIT_WAIT = 60.0
MAX_RATE_LIMIT_WAIT = 120.0

HTTP_MAX_ATTEMPTS = 4

# Transient HTTP exceptions that should trigger retries
HTTP_TRANSIENT_EXCEPTIONS: tuple[type[Exception], ...] = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
)

LLM_TRANSIENT_EXCEPTIONS: tuple[type[Exception], ...] = (
    TimeoutError,
    ConnectionError,
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)


class TransientHTTPError(Exception):
    """Wrapper for transient HTTP errors (429, 5xx) that should be retried."""

    def __init__(self, message: str, status_code: int, retry_after: float | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class RateLimitError(TransientHTTPError):
    """Rate limit (429) error with optional Retry-After."""

    pass


class wait_retry_after(wait_base):
    """Wait the provider's Retry-After on 429, otherwise defer to a fallback wait."""

    def __init__(self, fallback: wait_base, default: float = DEFAULT_RATE_LIMIT_WAIT, cap: float = MAX_RATE_LIMIT_WAIT):
        self.fallback = fallback
        self.default = default
        self.cap = cap

    def __call__(self, retry_state: RetryCallState) -> float:
        exception = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exception, RateLimitError):
            seconds = exception.retry_after if exception.retry_after is not None else self.default
            return max(0.0, min(seconds, self.cap))
        return self.fallback(retry_state)


def log_retry_attempt(retry_state: RetryCallState) -> None:
    """Log retry attempts with context."""
    exception = retry_state.outcome.exception() if retry_state.outcome else None
    wait_time = retry_state.next_action.sleep if retry_state.next_action else 0

    logger.warning(
        "retry_attempt",
        attempt=retry_state.attempt_number,
        wait_seconds=round(wait_time, 2),
        exception_type=type(exception).__name__ if exception else None,
        exception_msg=str(exception)[:100] if exception else None,
    )


# Retry policy for Reddit requests
http_retry = retry(
    reraise=True,
    stop=stop_after_attempt(HTTP_MAX_ATTEMPTS),
    wait=wait_retry_after(wait_exponential_jitter(initial=1, max=10, jitter=1)),
    retry=retry_if_exception_type(HTTP_TRANSIENT_EXCEPTIONS + (TransientHTTPError,)),
    before_sleep=log_retry_attempt,
)


# Retry policy for LLM calls (longer backoff for provider rate limits)
llm_retry = retry(
    reraise=True,
    stop=stop_after_attempt(3),
    wait=wait_exponential_jitter(initial=2, max=30, jitter=2),
    retry=retry_if_exception_type(LLM_TRANSIENT_EXCEPTIONS),
    before_sleep=log_retry_attempt,
)


def check_response_for_retry(response: httpx.Response) -> None:
    """Check response status and raise appropriate exception for retry.

    Args:
        response: HTTP response to check

    Raises:
        RateLimitError: For 429 responses
        TransientHTTPError: For 5xx responses
        httpx.HTTPStatusError: For other 4xx errors (not retried)
    """
    if response.status_code == 429:
        raise RateLimitError(
            "Rate limited (429)",
            status_code=429,
            retry_after=parse_retry_after(response),
        )

    if response.status_code >= 500:
        raise TransientHTTPError(
            f"Server error ({response.status_code})",
            status_code=response.status_code,
        )

    # For other errors, raise normally (won't retry)
    response.raise_for_status()
