"""Error taxonomy for the sync engine.

Provider errors are recovered inside the client layer; store errors are
recovered per chunk by the reconciliation engine; cache errors never leave
`BestEffortCache`.
"""

from __future__ import annotations

from typing import Any


class SyncError(Exception):
    """Base exception for all sync engine errors."""
    pass


class UpstreamFetchError(SyncError):
    """Network, timeout or non-success response from an upstream provider."""

    def __init__(self, message: str, *, retryable: bool = False, status_code: int | None = None) -> None:
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code


class RateLimitedError(UpstreamFetchError):
    """HTTP 429 from the provider; `retry_after` is the server hint in seconds, if any."""

    def __init__(self, message: str, *, retry_after: float | None = None) -> None:
        super().__init__(message, retryable=True, status_code=429)
        self.retry_after = retry_after


class QueueFullError(SyncError):
    """The rate-limited client already holds its maximum number of pending calls."""
    pass


class ReconciliationBatchError(SyncError):
    """A store write for one chunk failed; the chunk is counted as failed."""

    def __init__(self, entity: str, size: int, message: str) -> None:
        super().__init__(f"{entity}: batch of {size} failed: {message}")
        self.entity = entity
        self.size = size


class AllOperationsFailedError(SyncError):
    """Every record of an entity type's pass failed to write."""

    def __init__(self, entity: str, summary: Any) -> None:
        failed = getattr(summary, "failed", "?")
        super().__init__(f"All {entity} write operations failed ({failed} records)")
        self.entity = entity
        self.summary = summary


class CacheError(SyncError):
    """Raised by the raw cache client; only `BestEffortCache` catches it."""
    pass
