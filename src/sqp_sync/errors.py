"""
Error Types
===========
Exception hierarchy for the sync engine.

Configuration errors are fatal at construction. Transient warehouse errors
are retried by the scheduler. Row-level problems are never raised; they are
collected as RowError entries on the sync result.
"""

from dataclasses import asdict, dataclass


class SyncError(Exception):
    """Base class for sync engine errors."""


class ConfigurationError(SyncError):
    """Invalid or missing configuration. Never retried."""


class WarehouseError(SyncError):
    """A warehouse query failed. Aborts the current sync pass."""


class TransientWarehouseError(WarehouseError):
    """Timeout, rate limit or server-side hiccup. Eligible for retry."""


class PoolClosedError(SyncError):
    """Connection pool has been drained."""


class PoolTimeoutError(TransientWarehouseError):
    """No connection became available within the acquire timeout."""


class StoreError(SyncError):
    """An operational store call failed."""


@dataclass
class RowError:
    """A single row that failed to transform, validate or write."""

    stage: str
    error: str
    query: str | None = None
    asin: str | None = None
    period_start: str | None = None
    period_end: str | None = None
    source_date: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)
