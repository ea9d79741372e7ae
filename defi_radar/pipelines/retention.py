"""Time-series retention for pool charts.

For one pool: delete stored points older than the horizon, fetch fresh points,
keep the ones inside the horizon and insert them append-only (a point already
stored for the same timestamp is skipped, never overwritten). The pool's cache
entry is then replaced with the fresh window, or dropped when upstream has no
points inside the horizon.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from defi_radar.core.config import settings
from defi_radar.core.errors import AllOperationsFailedError, ReconciliationBatchError
from defi_radar.core.log import get_logger
from defi_radar.pipelines.reconcile import chunked
from defi_radar.repositories.defillama_repository import DefiLlamaRepository
from defi_radar.services.cache import BestEffortCache, CacheKeys, CacheTTL, jsonable
from defi_radar.services.defillama_client import DefiLlamaClient


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ChartRefreshSummary:
    pool_id: str
    fetched: int = 0
    in_window: int = 0
    deleted: int = 0
    inserted: int = 0
    duplicates: int = 0
    failed: int = 0
    cached: bool = False

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class ChartRetentionManager:
    def __init__(
        self,
        client: DefiLlamaClient,
        repository: DefiLlamaRepository,
        cache: BestEffortCache,
        *,
        retention_days: int = settings.CHART_RETENTION_DAYS,
        batch_size: int = settings.CHART_BATCH_SIZE,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self._client = client
        self._repository = repository
        self._cache = cache
        self.retention = timedelta(days=retention_days)
        self.batch_size = batch_size
        self._now = now

    def cutoff(self) -> datetime:
        return self._now() - self.retention

    async def refresh_chart(self, pool_id: str) -> ChartRefreshSummary:
        """Prune, re-fetch and append one pool's recent time series.

        Raises:
            UpstreamFetchError: The chart could not be fetched.
            ReconciliationBatchError: Old points could not be deleted.
            AllOperationsFailedError: Points were in the window but none could be written.
        """
        logger = get_logger(__name__)
        summary = ChartRefreshSummary(pool_id=pool_id)
        cutoff = self.cutoff()

        summary.deleted = await self._repository.delete_chart_before(pool_id, cutoff)
        logger.info(f"Pool {pool_id}: deleted {summary.deleted} point(s) older than {cutoff.isoformat()}")

        points = await self._client.get_pool_chart(pool_id)
        summary.fetched = len(points)
        recent = [p for p in points if p.timestamp >= cutoff]
        summary.in_window = len(recent)
        if not recent:
            logger.info(f"Pool {pool_id}: no chart data in the window upstream; dropping the cached window")
            await self._cache.delete(CacheKeys.pool_chart(pool_id))
            return summary

        written_chunks = 0
        for chunk in chunked(recent, self.batch_size):
            try:
                inserted = await self._repository.insert_chart_points(pool_id, chunk)
            except ReconciliationBatchError as exc:
                summary.failed += len(chunk)
                logger.error(f"Pool {pool_id}: chart batch failed: {exc}")
                continue
            written_chunks += 1
            summary.inserted += inserted
            summary.duplicates += len(chunk) - inserted

        if not written_chunks:
            raise AllOperationsFailedError(f"pool_charts:{pool_id}", summary)

        window = jsonable([p.model_dump() for p in recent])
        summary.cached = await self._cache.set(CacheKeys.pool_chart(pool_id), window, CacheTTL.POOL_CHART)

        log = logger.warning if summary.failed else logger.info
        log(
            f"Pool {pool_id}: {summary.inserted} inserted, {summary.duplicates} already stored, "
            f"{summary.failed} failed ({summary.in_window}/{summary.fetched} points in window)"
        )
        return summary
