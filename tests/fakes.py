"""In-memory stand-ins for clients, repositories and the cache.

Repositories keep rows in dicts and build them with the real row builders,
so sync passes exercise the same row shapes the database sees.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Mapping, Sequence

from defi_radar.core.errors import CacheError, ReconciliationBatchError, UpstreamFetchError
from defi_radar.repositories.coingecko_repository import build_platform_rows
from defi_radar.repositories.defillama_repository import (
    build_chart_rows,
    build_pool_row,
    build_pool_token_rows,
    build_protocol_row,
    build_stablecoin_row,
    pool_metrics_row,
    protocol_metrics_row,
)
from defi_radar.schemas.coingecko import CoinDetail, CoinListItem, TrendingCoin
from defi_radar.schemas.defillama import ChartPoint, PoolRecord, ProtocolRecord, StablecoinRecord


class FakeClock:
    """Monotonic clock whose `sleep` advances time instantly."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def time(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class MemoryCache:
    """Raw cache backed by a dict; records TTLs of every write."""

    def __init__(self) -> None:
        self.data: dict[str, Any] = {}
        self.ttls: dict[str, int] = {}
        self.reads: list[str] = []

    async def get(self, key: str) -> Any:
        self.reads.append(key)
        return self.data.get(key)

    async def set(self, key: str, value: Any, ttl: int) -> None:
        self.data[key] = value
        self.ttls[key] = ttl

    async def set_many(self, items: Mapping[str, Any], ttl: int) -> None:
        for key, value in items.items():
            await self.set(key, value, ttl)

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)

    async def aclose(self) -> None:
        return None


class BrokenCache:
    """Raw cache whose every operation fails, like an unreachable Redis."""

    def __init__(self) -> None:
        self.calls = 0

    def _fail(self) -> None:
        self.calls += 1
        raise CacheError("connection refused")

    async def get(self, key: str) -> Any:
        self._fail()

    async def set(self, key: str, value: Any, ttl: int) -> None:
        self._fail()

    async def set_many(self, items: Mapping[str, Any], ttl: int) -> None:
        self._fail()

    async def delete(self, key: str) -> None:
        self._fail()

    async def aclose(self) -> None:
        self._fail()


def protocol(
    id: str,
    slug: str | None = None,
    *,
    chain: str = "Ethereum",
    chains: Sequence[str] | None = None,
    tvl: float = 1_000_000.0,
    dead_from: Any = None,
    **extra: Any,
) -> ProtocolRecord:
    payload: dict[str, Any] = {
        "id": id,
        "name": (slug or id).title(),
        "slug": slug or id,
        "chain": chain,
        "chains": list(chains) if chains is not None else [chain],
        "tvl": tvl,
        "deadFrom": dead_from,
    }
    payload.update(extra)
    return ProtocolRecord.model_validate(payload)


def pool(
    pool_id: str,
    project: str,
    *,
    chain: str = "Ethereum",
    tvl_usd: float = 500_000.0,
    apy: float | None = 8.0,
    stablecoin: bool = False,
    tokens: Sequence[Any] | None = None,
) -> PoolRecord:
    return PoolRecord.model_validate(
        {
            "pool": pool_id,
            "chain": chain,
            "project": project,
            "symbol": "USDC-WETH",
            "tvlUsd": tvl_usd,
            "apy": apy,
            "stablecoin": stablecoin,
            "underlyingTokens": list(tokens) if tokens is not None else [],
        }
    )


def stablecoin(id: str, *, circulating: float = 1_000.0, symbol: str = "USDT") -> StablecoinRecord:
    return StablecoinRecord.model_validate(
        {
            "id": id,
            "name": f"Stable {id}",
            "symbol": symbol,
            "pegType": "peggedUSD",
            "circulating": {"peggedUSD": circulating},
            "chains": ["Ethereum"],
        }
    )


def chart_point(ts: datetime, *, tvl_usd: float = 100.0, apy: float | None = 5.0) -> ChartPoint:
    return ChartPoint.model_validate({"timestamp": ts.isoformat(), "tvlUsd": tvl_usd, "apy": apy})


class FakeDefiLlamaClient:
    def __init__(
        self,
        *,
        protocols: Sequence[ProtocolRecord] = (),
        pools: Sequence[PoolRecord] = (),
        stablecoins: Sequence[StablecoinRecord] = (),
        charts: Mapping[str, Sequence[ChartPoint]] | None = None,
        failing: Sequence[str] = (),
    ) -> None:
        self.protocols = list(protocols)
        self.pools = list(pools)
        self.stablecoins = list(stablecoins)
        self.charts = dict(charts or {})
        self.failing = set(failing)
        self.calls: list[str] = []

    def _check(self, name: str) -> None:
        self.calls.append(name)
        if name in self.failing:
            raise UpstreamFetchError(f"{name}: HTTP 503", status_code=503)

    async def get_protocols(self) -> list[ProtocolRecord]:
        self._check("protocols")
        return list(self.protocols)

    async def get_pools(self) -> list[PoolRecord]:
        self._check("pools")
        return list(self.pools)

    async def get_stablecoins(self) -> list[StablecoinRecord]:
        self._check("stablecoins")
        return list(self.stablecoins)

    async def get_pool_chart(self, pool_id: str) -> list[ChartPoint]:
        self._check(f"chart:{pool_id}")
        return list(self.charts.get(pool_id, []))


class MemoryDefiLlamaRepository:
    """Dict-backed store with the `DefiLlamaRepository` interface.

    `fail_calls` maps a write method name to the 1-based call numbers that
    raise `ReconciliationBatchError`; `fail_always` names methods that always do.
    """

    def __init__(self) -> None:
        self.protocols: dict[str, dict[str, Any]] = {}
        self.pools: dict[str, dict[str, Any]] = {}
        self.pool_tokens: list[dict[str, Any]] = []
        self.stablecoins: dict[str, dict[str, Any]] = {}
        self.charts: dict[str, dict[datetime, dict[str, Any]]] = {}
        self.fail_calls: dict[str, set[int]] = {}
        self.fail_always: set[str] = set()
        self.write_log: list[tuple[str, int]] = []
        self._counts: dict[str, int] = {}
        self.top_pools: list[str] | None = None

    def _write(self, method: str, size: int) -> None:
        self._counts[method] = self._counts.get(method, 0) + 1
        self.write_log.append((method, size))
        if method in self.fail_always or self._counts[method] in self.fail_calls.get(method, set()):
            raise ReconciliationBatchError(method, size, "simulated constraint violation")

    async def load_protocol_ids(self) -> set[str]:
        return set(self.protocols)

    async def load_protocol_slugs(self) -> set[str]:
        return {row["slug"] for row in self.protocols.values()}

    async def load_pool_ids(self) -> set[str]:
        return set(self.pools)

    async def load_stablecoin_ids(self) -> set[str]:
        return set(self.stablecoins)

    async def create_protocols(self, records: Sequence[ProtocolRecord]) -> None:
        self._write("create_protocols", len(records))
        for record in records:
            self.protocols[record.id] = build_protocol_row(record)

    async def update_protocols(self, records: Sequence[ProtocolRecord]) -> None:
        self._write("update_protocols", len(records))
        for record in records:
            self.protocols[record.id].update(protocol_metrics_row(record, datetime(2026, 1, 1)))

    async def create_pools(self, records: Sequence[PoolRecord]) -> None:
        self._write("create_pools", len(records))
        for record in records:
            self.pools[record.pool] = build_pool_row(record)
        self.pool_tokens.extend(build_pool_token_rows(records))

    async def update_pools(self, records: Sequence[PoolRecord]) -> None:
        self._write("update_pools", len(records))
        for record in records:
            self.pools[record.pool].update(pool_metrics_row(record, datetime(2026, 1, 1)))

    async def upsert_stablecoins(self, records: Sequence[StablecoinRecord]) -> None:
        self._write("upsert_stablecoins", len(records))
        for record in records:
            self.stablecoins[record.id] = build_stablecoin_row(record)

    async def delete_chart_before(self, pool_id: str, cutoff: datetime) -> int:
        self._write("delete_chart_before", 0)
        points = self.charts.get(pool_id, {})
        old = [ts for ts in points if ts < cutoff]
        for ts in old:
            del points[ts]
        return len(old)

    async def insert_chart_points(self, pool_id: str, points: Sequence[ChartPoint]) -> int:
        self._write("insert_chart_points", len(points))
        stored = self.charts.setdefault(pool_id, {})
        inserted = 0
        for row in build_chart_rows(pool_id, points):
            if row["timestamp"] in stored:
                continue
            stored[row["timestamp"]] = row
            inserted += 1
        return inserted

    async def get_pool_chart(self, pool_id: str, since: datetime) -> list[dict[str, Any]]:
        points = self.charts.get(pool_id, {})
        return [points[ts] for ts in sorted(points) if ts >= since]

    async def top_pools_for_chart(self, *, min_tvl_usd: float, min_apy: float, limit: int) -> list[str]:
        if self.top_pools is not None:
            return list(self.top_pools)
        rows = [
            r for r in self.pools.values() if r["tvl_usd"] > min_tvl_usd and (r["apy"] or 0) > min_apy
        ]
        rows.sort(key=lambda r: r["apy"], reverse=True)
        return [r["id"] for r in rows[:limit]]

    async def protocols_projection(self) -> list[dict[str, Any]]:
        return [
            {"id": r["id"], "name": r["name"], "slug": r["slug"], "tvl": r["tvl"], "category": r["category"]}
            for r in self.protocols.values()
        ]

    async def high_yield_pools_projection(self, limit: int = 100) -> list[dict[str, Any]]:
        rows = sorted((r for r in self.pools.values() if (r["apy"] or 0) > 0), key=lambda r: r["apy"], reverse=True)
        return [{"id": r["id"], "chain": r["chain"], "apy": r["apy"]} for r in rows[:limit]]

    async def stablecoins_projection(self) -> list[dict[str, Any]]:
        return [{"id": r["id"], "symbol": r["symbol"], "circulating": r["circulating"]} for r in self.stablecoins.values()]


class FakeCoinGeckoClient:
    def __init__(
        self,
        *,
        coins: Sequence[CoinListItem] = (),
        details: Mapping[str, CoinDetail] | None = None,
        trending: Sequence[TrendingCoin] = (),
    ) -> None:
        self.coins = list(coins)
        self.details = dict(details or {})
        self.trending = list(trending)
        self.detail_calls: list[str] = []

    async def get_coins_list(self, include_platform: bool = True) -> list[CoinListItem]:
        return list(self.coins)

    async def get_coin_details(self, cg_id: str) -> CoinDetail | None:
        self.detail_calls.append(cg_id)
        return self.details.get(cg_id)

    async def get_trending_coins(self) -> list[TrendingCoin]:
        return list(self.trending)


class MemoryCoinGeckoRepository:
    def __init__(self) -> None:
        self.index: dict[str, dict[str, Any]] = {}
        self.platforms: list[dict[str, Any]] = []
        self.details: dict[str, dict[str, Any]] = {}
        self.lookups: list[tuple[str, str]] = []
        self.fail_details_write = False

    async def load_coin_ids(self) -> set[str]:
        return set(self.index)

    def _insert_platforms(self, items: Sequence[CoinListItem]) -> None:
        existing = {(p["cg_id"], p["platform_id"], p["contract_address"]) for p in self.platforms}
        for row in build_platform_rows(items):
            key = (row["cg_id"], row["platform_id"], row["contract_address"])
            if key not in existing:
                self.platforms.append(row)
                existing.add(key)

    async def create_coins(self, items: Sequence[CoinListItem]) -> None:
        for item in items:
            self.index[item.id] = {"cg_id": item.id, "symbol": item.symbol, "name": item.name}
        self._insert_platforms(items)

    async def update_coins(self, items: Sequence[CoinListItem]) -> None:
        for item in items:
            self.index[item.id].update({"symbol": item.symbol, "name": item.name})
        self._insert_platforms(items)

    async def find_cg_id_by_platform(self, platform_id: str, contract_address: str) -> str | None:
        self.lookups.append((platform_id, contract_address))
        for row in self.platforms:
            if row["platform_id"] == platform_id and row["contract_address"] == contract_address.lower():
                return row["cg_id"]
        return None

    async def get_coin_index(self, cg_id: str) -> dict[str, Any] | None:
        row = self.index.get(cg_id)
        return dict(row) if row else None

    async def get_contract_addresses(self, cg_id: str) -> list[dict[str, str]]:
        rows = [p for p in self.platforms if p["cg_id"] == cg_id]
        return [
            {"platform_id": p["platform_id"], "contract_address": p["contract_address"]}
            for p in sorted(rows, key=lambda p: p["platform_id"])
        ]

    async def get_coin_details(self, cg_id: str) -> dict[str, Any] | None:
        row = self.details.get(cg_id)
        return dict(row) if row else None

    async def upsert_coin_details(self, row: dict[str, Any]) -> None:
        if self.fail_details_write:
            raise ReconciliationBatchError("cg_coin_details", 1, "simulated failure")
        self.index.setdefault(row["cg_id"], {"cg_id": row["cg_id"], "symbol": row["symbol"], "name": row["name"]})
        self.details[row["cg_id"]] = dict(row)
