"""Read API used by the query layer; every method is cache-aside over the store.

Store rows are returned in their cached JSON form, so a hit and a miss
yield the same value types.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from defi_radar.core.config import settings
from defi_radar.repositories.coingecko_repository import CoinGeckoRepository
from defi_radar.repositories.defillama_repository import DefiLlamaRepository
from defi_radar.services.cache import BestEffortCache, CacheKeys, CacheTTL, jsonable

MAX_LIMIT = 100


def _clamp_limit(limit: int) -> int:
    return max(1, min(int(limit), MAX_LIMIT))


class PoolQueryService:
    def __init__(
        self,
        repository: DefiLlamaRepository,
        coins: CoinGeckoRepository,
        cache: BestEffortCache,
        *,
        retention_days: int = settings.CHART_RETENTION_DAYS,
    ) -> None:
        self.repository = repository
        self.coins = coins
        self.cache = cache
        self.retention = timedelta(days=retention_days)

    async def find_pools(
        self,
        chain: str | None = None,
        min_tvl_usd: float = 10_000,
        min_apy: float = 5,
        limit: int = 10,
        stablecoin_only: bool = False,
    ) -> list[dict[str, Any]]:
        """Pools matching the filters, highest APY first (at most 100)."""
        limit = _clamp_limit(limit)
        key = CacheKeys.pool_query(chain, min_tvl_usd, min_apy, limit, stablecoin_only)
        cached = await self.cache.get(key)
        if isinstance(cached, list):
            return cached

        rows = await self.repository.find_pools(
            chain=chain,
            min_tvl_usd=min_tvl_usd,
            min_apy=min_apy,
            limit=limit,
            stablecoin_only=stablecoin_only,
        )
        rows = jsonable(rows)
        await self.cache.set(key, rows, CacheTTL.POOL_QUERY)
        return rows

    async def search_protocols(
        self,
        name_query: str | None = None,
        category: str | None = None,
        min_tvl: float | None = None,
        limit: int = 10,
    ) -> list[dict[str, Any]]:
        limit = _clamp_limit(limit)
        key = CacheKeys.protocol_query(name_query, category, min_tvl, limit)
        cached = await self.cache.get(key)
        if isinstance(cached, list):
            return cached

        rows = jsonable(
            await self.repository.search_protocols(
                name_query=name_query, category=category, min_tvl=min_tvl, limit=limit
            )
        )
        await self.cache.set(key, rows, CacheTTL.PROTOCOL_QUERY)
        return rows

    async def get_pool_chart(self, pool_id: str) -> list[dict[str, Any]]:
        """A pool's recent time series (the retention window)."""
        key = CacheKeys.pool_chart(pool_id)
        cached = await self.cache.get(key)
        if isinstance(cached, list):
            return cached

        since = datetime.now(timezone.utc) - self.retention
        rows = jsonable(await self.repository.get_pool_chart(pool_id, since))
        if rows:
            await self.cache.set(key, rows, CacheTTL.POOL_CHART)
        return rows

    async def get_coin_contract_addresses(self, cg_id: str) -> list[dict[str, str]]:
        key = CacheKeys.coin_addresses(cg_id)
        cached = await self.cache.get(key)
        if isinstance(cached, list):
            return cached

        rows = await self.coins.get_contract_addresses(cg_id)
        if rows:
            await self.cache.set(key, rows, CacheTTL.COIN_ADDRESSES)
        return rows
