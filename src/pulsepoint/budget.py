"""Per-run operation budget.

Every outbound call a run makes (Reddit request, AI request, database
statement) is admitted through one OperationBudget before it is attempted.
A denied operation is skipped, never retried. One unit stays reserved for
the run's terminal status write.
"""

from __future__ import annotations

from .logging_config import get_logger

logger = get_logger(__name__)


class OperationBudget:
    """Admission-control counter for outbound operations."""

    def __init__(self, ceiling: int, reserve: int = 1):
        """Initialize the budget.

        Args:
            ceiling: Total operations allowed, reserved units included
            reserve: Units held back for the terminal status write

        Raises:
            ValueError: If the ceiling leaves no unit outside the reserve
        """
        if reserve < 0:
            raise ValueError("reserve must be non-negative")
        if ceiling <= reserve:
            raise ValueError(f"ceiling ({ceiling}) must exceed reserve ({reserve})")
        self.ceiling = ceiling
        self._remaining = ceiling
        self._reserved = reserve
        self._denied: set[str] = set()

    @property
    def remaining(self) -> int:
        """Units left, reserved units included."""
        return self._remaining

    @property
    def available(self) -> int:
        """Units ordinary operations may still consume."""
        return self._remaining - self._reserved

    @property
    def used(self) -> int:
        return self.ceiling - self._remaining

    @property
    def exhausted(self) -> bool:
        return self.available <= 0

    def try_consume(self, label: str) -> bool:
        """Admit one operation if a non-reserved unit is left.

        Args:
            label: Short name of the operation, for logging

        Returns:
            True if the caller may perform the operation
        """
        if self.available < 1:
            if label not in self._denied:
                self._denied.add(label)
                logger.info("budget_denied", operation=label, used=self.used, ceiling=self.ceiling)
            return False
        self._remaining -= 1
        return True

    def consume_reserved(self, label: str) -> None:
        """Spend one reserved unit.

        Falls back to an ordinary unit when the reserve was already spent.

        Raises:
            RuntimeError: If no unit at all is left
        """
        if self._reserved > 0:
            self._reserved -= 1
        elif self._remaining < 1:
            raise RuntimeError(f"operation budget exhausted before {label}")
        self._remaining -= 1
        logger.debug("budget_reserved_used", operation=label, used=self.used)
