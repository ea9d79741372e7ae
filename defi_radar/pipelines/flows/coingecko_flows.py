"""Prefect flows: CoinGecko token registry.

- `coingecko-coins-sync`: coin index + per-platform contract addresses
- `coingecko-trending-sync`: trending list cache + details of trending coins
"""

from __future__ import annotations

from typing import Any

from prefect import flow, get_run_logger, task

from defi_radar.core.database import dispose_engine
from defi_radar.core.prefect_secrets import apply_prefect_secrets_to_env
from defi_radar.pipelines.coingecko_sync import CoinGeckoSyncService
from defi_radar.repositories.coingecko_repository import CoinGeckoRepository
from defi_radar.services.cache import BestEffortCache, build_cache
from defi_radar.services.coingecko_client import CoinGeckoClient
from defi_radar.services.rate_limiter import RateLimitedClient


def _service(limiter: RateLimitedClient, cache: BestEffortCache) -> CoinGeckoSyncService:
    return CoinGeckoSyncService(CoinGeckoClient(limiter), CoinGeckoRepository(), cache)


@task(retries=3, retry_delay_seconds=[10, 20, 40])
async def sync_coins_list_task() -> dict[str, Any]:
    cache = build_cache()
    try:
        async with RateLimitedClient() as limiter:
            summary = await _service(limiter, cache).sync_coins_list_and_platforms()
    finally:
        await cache.aclose()
    return summary.as_dict()


@task(retries=2, retry_delay_seconds=[5, 10])
async def sync_trending_task() -> list[dict[str, Any]]:
    cache = build_cache()
    try:
        async with RateLimitedClient() as limiter:
            return await _service(limiter, cache).sync_trending_coins()
    finally:
        await cache.aclose()


@flow(name="coingecko-coins-sync", log_prints=True)
async def coingecko_coins_sync_flow() -> dict[str, Any]:
    """Reconcile the CoinGecko coin index and platform addresses."""
    logger = get_run_logger()
    apply_prefect_secrets_to_env()
    try:
        summary = await sync_coins_list_task()
    finally:
        await dispose_engine()
    logger.info(f"coingecko-coins-sync finished: {summary}")
    return summary


@flow(name="coingecko-trending-sync", log_prints=True)
async def coingecko_trending_sync_flow() -> int:
    """Cache trending coins and refresh their details. Returns the trending count."""
    logger = get_run_logger()
    apply_prefect_secrets_to_env()
    try:
        items = await sync_trending_task()
    finally:
        await dispose_engine()
    logger.info(f"coingecko-trending-sync finished: {len(items)} trending coins")
    return len(items)
