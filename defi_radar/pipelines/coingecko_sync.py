"""CoinGecko token registry sync and lookups.

- `sync_coins_list_and_platforms` reconciles the coin index (create vs update
  by CoinGecko id) and inserts platform rows, then warms the lookup keys.
- Lookups are cache-aside: cache, then store, then (for details) the API.
- Coin details are fetched lazily and refreshed once older than a staleness
  threshold.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Iterable, Sequence

from sqlalchemy.exc import SQLAlchemyError

from defi_radar.core.config import settings
from defi_radar.core.errors import ReconciliationBatchError
from defi_radar.core.log import get_logger
from defi_radar.pipelines.reconcile import ReconcileSummary, chunked, reconcile
from defi_radar.repositories.coingecko_repository import CoinGeckoRepository
from defi_radar.schemas.coingecko import CoinListItem
from defi_radar.services.cache import BestEffortCache, CacheKeys, CacheTTL
from defi_radar.services.coingecko_client import CoinGeckoClient


# DeFi Llama chain name -> CoinGecko asset platform id, where they differ
DEFILLAMA_TO_COINGECKO_PLATFORM: dict[str, str] = {
    "arbitrum": "arbitrum-one",
    "bsc": "binance-smart-chain",
    "optimism": "optimistic-ethereum",
    "manta": "manta-pacific",
}


def to_coingecko_platform(chain: str) -> str:
    name = chain.strip().lower()
    return DEFILLAMA_TO_COINGECKO_PLATFORM.get(name, name)


@dataclass
class ResolvedToken:
    chain: str
    address: str
    cg_id: str | None = None
    name: str | None = None
    symbol: str | None = None
    details: dict[str, Any] | None = None


class CoinGeckoSyncService:
    def __init__(
        self,
        client: CoinGeckoClient,
        repository: CoinGeckoRepository,
        cache: BestEffortCache,
        *,
        batch_size: int = settings.COIN_INDEX_BATCH_SIZE,
        resolve_batch_size: int = settings.TOKEN_RESOLVE_BATCH_SIZE,
        resolve_pause_seconds: float = settings.TOKEN_RESOLVE_PAUSE_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.client = client
        self.repository = repository
        self.cache = cache
        self.batch_size = batch_size
        self.resolve_batch_size = resolve_batch_size
        self.resolve_pause_seconds = resolve_pause_seconds
        self._sleep = sleep
        self._now = now

    async def sync_coins_list_and_platforms(self) -> ReconcileSummary:
        logger = get_logger(__name__)
        summary = ReconcileSummary(entity="cg_coins_index")
        coins = await self.client.get_coins_list(include_platform=True)
        summary.fetched = len(coins)
        logger.info(f"Fetched {len(coins)} CoinGecko coins")
        if not coins:
            return summary

        existing = await self.repository.load_coin_ids()
        await reconcile(
            coins,
            existing_keys=existing,
            key=lambda c: c.id,
            create=self.repository.create_coins,
            update=self.repository.update_coins,
            batch_size=self.batch_size,
            summary=summary,
            logger=logger,
        )
        if summary.succeeded:
            await self._warm_lookup_cache(coins)
        logger.info(f"CoinGecko coin index sync finished {summary.as_dict()}")
        return summary

    async def _warm_lookup_cache(self, coins: Sequence[CoinListItem]) -> None:
        for chunk in chunked(coins, 1000):
            info: dict[str, Any] = {}
            platforms: dict[str, Any] = {}
            for coin in chunk:
                info[CacheKeys.coin_info(coin.id)] = {"symbol": coin.symbol, "name": coin.name}
                for platform_id, address in coin.platform_addresses():
                    platforms[CacheKeys.coin_platform(platform_id, address)] = coin.id
            await self.cache.set_many(info, CacheTTL.COIN_INFO)
            await self.cache.set_many(platforms, CacheTTL.COIN_PLATFORM)

    async def find_cg_info_by_platform_contract(
        self, platform_id: str, contract_address: str
    ) -> dict[str, str] | None:
        """Resolve a contract on a platform to `{cg_id, name, symbol}`."""
        if not platform_id or not contract_address:
            return None
        address = contract_address.strip().lower()
        platform_key = CacheKeys.coin_platform(platform_id, address)

        cg_id = await self.cache.get(platform_key)
        if not cg_id:
            cg_id = await self.repository.find_cg_id_by_platform(platform_id, address)
            if not cg_id:
                return None
            await self.cache.set(platform_key, cg_id, CacheTTL.COIN_PLATFORM)

        info_key = CacheKeys.coin_info(cg_id)
        info = await self.cache.get(info_key)
        if isinstance(info, dict) and info.get("name") and info.get("symbol"):
            return {"cg_id": cg_id, "name": info["name"], "symbol": info["symbol"]}

        row = await self.repository.get_coin_index(cg_id)
        if row is None:
            return {"cg_id": cg_id, "name": "Unknown", "symbol": "Unknown"}
        await self.cache.set(info_key, {"symbol": row["symbol"], "name": row["name"]}, CacheTTL.COIN_INFO)
        return row

    async def get_contract_addresses(self, cg_id: str) -> list[dict[str, str]]:
        """Per-platform contract addresses of a coin."""
        key = CacheKeys.coin_addresses(cg_id)
        cached = await self.cache.get(key)
        if isinstance(cached, list):
            return cached
        rows = await self.repository.get_contract_addresses(cg_id)
        if rows:
            await self.cache.set(key, rows, CacheTTL.COIN_ADDRESSES)
        return rows

    def _is_fresh(self, row: dict[str, Any], max_staleness: timedelta) -> bool:
        fetched_at = row.get("data_fetched_at")
        if not isinstance(fetched_at, datetime):
            return False
        if fetched_at.tzinfo is None:
            fetched_at = fetched_at.replace(tzinfo=timezone.utc)
        return self._now() - fetched_at < max_staleness

    async def get_coin_details(self, cg_id: str, max_staleness_hours: float = 2) -> dict[str, Any] | None:
        """Coin details, fetched from the API only when the stored copy is missing or stale."""
        logger = get_logger(__name__)
        if not cg_id:
            return None
        key = CacheKeys.coin_details(cg_id)
        ttl = max(1, int(max_staleness_hours * 3600))
        max_staleness = timedelta(hours=max_staleness_hours)

        cached = await self.cache.get(key)
        if isinstance(cached, dict):
            return cached

        try:
            stored = await self.repository.get_coin_details(cg_id)
        except SQLAlchemyError as exc:
            logger.error(f"Could not read stored details for {cg_id}: {exc}")
            stored = None
        if stored is not None and self._is_fresh(stored, max_staleness):
            await self.cache.set(key, stored, ttl)
            return stored

        detail = await self.client.get_coin_details(cg_id)
        if detail is None:
            logger.info(f"No CoinGecko details available for {cg_id}")
            return stored

        row = detail.to_row(self._now())
        try:
            await self.repository.upsert_coin_details(row)
        except ReconciliationBatchError as exc:
            logger.error(f"Could not store details for {cg_id}: {exc}")
            return row
        await self.cache.set(key, row, ttl)
        return row

    async def sync_trending_coins(self) -> list[dict[str, Any]]:
        """Cache the trending list, then refresh details of each trending coin."""
        logger = get_logger(__name__)
        trending = await self.client.get_trending_coins()
        if not trending:
            logger.info("No trending coins returned; skipping")
            return []

        items = [t.model_dump() for t in trending]
        await self.cache.set(CacheKeys.TRENDING, items, CacheTTL.TRENDING)

        refreshed = 0
        for batch in chunked(trending, self.resolve_batch_size):
            results = await asyncio.gather(*[self.get_coin_details(t.id, max_staleness_hours=1) for t in batch])
            refreshed += sum(1 for r in results if r)
        logger.info(f"Refreshed details of {refreshed}/{len(trending)} trending coins")
        return items

    async def get_trending_coins_from_cache(self) -> list[dict[str, Any]] | None:
        cached = await self.cache.get(CacheKeys.TRENDING)
        return cached if isinstance(cached, list) else None

    async def resolve_tokens(
        self, tokens: Iterable[tuple[str, str]], *, with_details: bool = True
    ) -> dict[tuple[str, str], ResolvedToken]:
        """Map `(chain, address)` pairs to CoinGecko ids (and details).

        Lookups fan out `resolve_batch_size` at a time with a pause between
        batches to keep the rate-limited queue short.
        """
        logger = get_logger(__name__)
        keys: list[tuple[str, str]] = []
        for chain, address in tokens:
            key = (chain.strip().lower(), address.strip().lower())
            if key not in keys:
                keys.append(key)

        resolved: dict[tuple[str, str], ResolvedToken] = {}
        batches = list(chunked(keys, self.resolve_batch_size))
        for index, batch in enumerate(batches):
            if index:
                await self._sleep(self.resolve_pause_seconds)
            logger.debug(f"Resolving token batch {index + 1}/{len(batches)}")

            infos = await asyncio.gather(
                *[self.find_cg_info_by_platform_contract(to_coingecko_platform(c), a) for c, a in batch]
            )
            for (chain, address), info in zip(batch, infos):
                token = ResolvedToken(chain=chain, address=address)
                if info:
                    token.cg_id, token.name, token.symbol = info["cg_id"], info["name"], info["symbol"]
                resolved[(chain, address)] = token

            if with_details:
                cg_ids = sorted({resolved[k].cg_id for k in batch if resolved[k].cg_id})
                details = await asyncio.gather(*[self.get_coin_details(cg_id) for cg_id in cg_ids])
                by_id = dict(zip(cg_ids, details))
                for k in batch:
                    if resolved[k].cg_id:
                        resolved[k].details = by_id.get(resolved[k].cg_id)
        return resolved
