"""Exception types raised by the statistics services."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from usage_stats.schemas.stats import DatabaseEngine, UsageSnapshot


class StatsError(RuntimeError):
    """Base exception for usage statistics failures."""


class StoreError(StatsError):
    """Raised when the backing store cannot be reached or a query fails.

    The original driver exception is always chained as ``__cause__``.
    """


class PartialResultError(StatsError):
    """Raised when a snapshot computation fails partway through.

    The values computed before the failing step are still meaningful, so
    they travel with the exception instead of being discarded.
    """

    def __init__(self, message: str, stats: UsageSnapshot, database: DatabaseEngine) -> None:
        super().__init__(message)
        self.stats = stats
        self.database = database
