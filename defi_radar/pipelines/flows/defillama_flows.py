"""Prefect flows: DeFi Llama sync.

- `defillama-sync`: full pass (protocols -> pools -> stablecoins -> top pool
  charts) or a single entity type
- `defillama-pool-chart`: refresh the 7-day chart of one pool

Schedules live with the deployments, not here.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator

from prefect import flow, get_run_logger, task

from defi_radar.core.config import settings
from defi_radar.core.database import dispose_engine
from defi_radar.core.errors import SyncError
from defi_radar.core.prefect_secrets import apply_prefect_secrets_to_env
from defi_radar.pipelines.defillama_sync import DefiLlamaSyncService
from defi_radar.pipelines.orchestrator import SyncOrchestrator, SyncRunSummary
from defi_radar.services.cache import build_cache


ENTITIES = ("all", "protocols", "pools", "stablecoins", "charts")


@asynccontextmanager
async def sync_service() -> AsyncIterator[DefiLlamaSyncService]:
    """A sync service bound to the configured store and cache, closed on exit."""
    cache = build_cache()
    try:
        yield DefiLlamaSyncService.from_settings(cache)
    finally:
        await cache.aclose()


@task
async def sync_entity_task(entity: str) -> dict[str, Any]:
    """Run one entity pass; raises when the pass failed as a whole."""
    async with sync_service() as service:
        passes = {
            "protocols": service.sync_protocols,
            "pools": service.sync_pools,
            "stablecoins": service.sync_stablecoins,
        }
        summary = await passes[entity]()
    return summary.as_dict()


@task
async def refresh_top_pool_charts_task(min_tvl_usd: float, min_apy: float, limit: int) -> dict[str, Any]:
    async with sync_service() as service:
        orchestrator = SyncOrchestrator(
            service, top_pool_min_tvl_usd=min_tvl_usd, top_pool_min_apy=min_apy, top_pool_limit=limit
        )
        run = SyncRunSummary(started_at=datetime.now(timezone.utc))
        await orchestrator.refresh_top_pool_charts(run)
        run.finished_at = datetime.now(timezone.utc)
    return run.as_dict()


@task
async def sync_all_task(refresh_charts: bool, min_tvl_usd: float, min_apy: float, limit: int) -> dict[str, Any]:
    async with sync_service() as service:
        orchestrator = SyncOrchestrator(
            service,
            refresh_charts=refresh_charts,
            top_pool_min_tvl_usd=min_tvl_usd,
            top_pool_min_apy=min_apy,
            top_pool_limit=limit,
        )
        run = await orchestrator.sync_all()
    if run.all_failed:
        raise SyncError(f"Every DeFi Llama entity sync failed: {run.as_dict()['entities']}")
    return run.as_dict()


@task
async def sync_pool_chart_task(pool_id: str) -> dict[str, Any]:
    async with sync_service() as service:
        summary = await service.sync_pool_chart(pool_id)
    return summary.as_dict()


@flow(name="defillama-sync", log_prints=True)
async def defillama_sync_flow(
    entity: str = "all",
    refresh_charts: bool = True,
    top_pool_min_tvl_usd: float = settings.TOP_POOL_MIN_TVL_USD,
    top_pool_min_apy: float = settings.TOP_POOL_MIN_APY,
    top_pool_limit: int = settings.TOP_POOL_LIMIT,
) -> dict[str, Any]:
    """Sync DeFi Llama data into Postgres and refresh the derived cache.

    Args:
        entity: "all" (default), "protocols", "pools", "stablecoins" or "charts".
        refresh_charts: For "all", also refresh top pool charts when pools synced.
    """
    logger = get_run_logger()
    if entity not in ENTITIES:
        raise ValueError(f"entity must be one of {ENTITIES}, got {entity!r}")

    applied = apply_prefect_secrets_to_env()
    if applied:
        logger.info(f"Loaded {', '.join(applied)} from Prefect Secret blocks")

    try:
        if entity == "all":
            result = await sync_all_task(refresh_charts, top_pool_min_tvl_usd, top_pool_min_apy, top_pool_limit)
        elif entity == "charts":
            result = await refresh_top_pool_charts_task(top_pool_min_tvl_usd, top_pool_min_apy, top_pool_limit)
        else:
            result = await sync_entity_task(entity)
    finally:
        await dispose_engine()

    logger.info(f"defillama-sync ({entity}) finished")
    return result


@flow(name="defillama-pool-chart", log_prints=True)
async def defillama_pool_chart_flow(pool_id: str) -> dict[str, Any]:
    """Refresh the retention window of one pool's chart."""
    apply_prefect_secrets_to_env()
    try:
        return await sync_pool_chart_task(pool_id)
    finally:
        await dispose_engine()
