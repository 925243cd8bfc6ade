"""Cursor checkpoint policy per time window."""

from __future__ import annotations

from .budget import OperationBudget
from .logging_config import get_logger
from .store import AsyncStore

logger = get_logger(__name__)

# Whether a run may resume from the stored cursor. The 1-day window always
# starts from the newest page.
CHECKPOINT_POLICY: dict[int, bool] = {1: False, 7: True, 30: True}


def reuses_checkpoint(window_days: int) -> bool:
    """Return True if runs for this window resume from the stored cursor."""
    return CHECKPOINT_POLICY.get(window_days, False)


async def resolve_start_cursor(
    store: AsyncStore,
    budget: OperationBudget,
    subreddit_id: int,
    window_days: int,
) -> str | None:
    """Find the cursor a run starts paging from.

    Windows that do not reuse checkpoints get theirs cleared; the others read
    the stored cursor. Either way one budget unit is charged.

    Args:
        store: Result store
        budget: Run budget
        subreddit_id: Tracked subreddit ID
        window_days: Window length in days

    Returns:
        The stored cursor, or None to start from the newest page
    """
    if not reuses_checkpoint(window_days):
        if budget.try_consume("checkpoint_clear"):
            await store.clear_checkpoint(subreddit_id, window_days)
            logger.debug("checkpoint_cleared", subreddit_id=subreddit_id, window_days=window_days)
        return None

    if not budget.try_consume("checkpoint_read"):
        return None

    checkpoint = await store.get_checkpoint(subreddit_id, window_days)
    cursor = checkpoint.get("last_after_cursor") if checkpoint else None
    logger.debug("checkpoint_loaded", subreddit_id=subreddit_id, window_days=window_days, cursor=cursor)
    return cursor
