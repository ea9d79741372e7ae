"""Cache-aside layer.

`RedisCache` is the raw client: every failure surfaces as `CacheError`.
`BestEffortCache` is the only place that catches `CacheError`; it logs the
failure and turns reads into misses and writes into no-ops, so sync and query
code never branch on cache health. Without `REDIS_URL` a `NullCache` stands in.

Keys are namespaced by provider and query shape (see `CacheKeys`).
"""

from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Mapping, Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError

from defi_radar.core.config import Settings, settings
from defi_radar.core.errors import CacheError
from defi_radar.core.log import get_logger


HOUR = 60 * 60
DAY = 24 * HOUR


class CacheTTL:
    """TTLs in seconds, short for fast-moving metrics, long for slow lists."""

    PROTOCOLS_LIST = HOUR
    HIGH_YIELD_POOLS = HOUR
    STABLECOINS_LIST = HOUR
    POOL_CHART = DAY
    POOL_QUERY = 2 * HOUR
    PROTOCOL_QUERY = 2 * HOUR
    COIN_INFO = 7 * DAY
    COIN_PLATFORM = 7 * DAY
    COIN_ADDRESSES = 7 * DAY
    TRENDING = HOUR


class CacheKeys:
    PROTOCOLS_LIST = "defillama:protocols:list"
    HIGH_YIELD_POOLS = "defillama:pools:high-yield"
    STABLECOINS_LIST = "defillama:stablecoins:list"
    TRENDING = "cg:trending:coins"

    @staticmethod
    def pool_chart(pool_id: str) -> str:
        return f"defillama:poolchart:{pool_id}"

    @staticmethod
    def pool_query(chain: str | None, min_tvl: float, min_apy: float, limit: int, stablecoin_only: bool) -> str:
        return f"defillama:high-yield-pools:{(chain or 'all').lower()}:{min_tvl}:{min_apy}:{limit}:{stablecoin_only}"

    @staticmethod
    def protocol_query(name_query: str | None, category: str | None, min_tvl: float | None, limit: int) -> str:
        return f"defillama:protocols:search:{(name_query or '').lower()}:{(category or '').lower()}:{min_tvl}:{limit}"

    @staticmethod
    def coin_info(cg_id: str) -> str:
        return f"cg:info:{cg_id}"

    @staticmethod
    def coin_platform(platform_id: str, contract_address: str) -> str:
        return f"cg:{platform_id}:{contract_address.lower()}"

    @staticmethod
    def coin_addresses(cg_id: str) -> str:
        return f"cg:addresses:{cg_id}"

    @staticmethod
    def coin_details(cg_id: str) -> str:
        return f"cg:details:{cg_id}"


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dumps(value: Any) -> str:
    return json.dumps(value, default=_json_default)


def jsonable(value: Any) -> Any:
    """`value` as it reads back from the cache (decimals as floats, datetimes as ISO strings)."""
    return json.loads(dumps(value))


class Cache(Protocol):
    async def get(self, key: str) -> Any: ...

    async def set(self, key: str, value: Any, ttl: int) -> None: ...

    async def set_many(self, items: Mapping[str, Any], ttl: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def aclose(self) -> None: ...


class RedisCache:
    """JSON values in Redis with explicit TTLs. Raises `CacheError` on any failure."""

    def __init__(self, client: redis.Redis) -> None:
        self._redis = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        return cls(redis.from_url(url, encoding="utf-8", decode_responses=True))

    async def get(self, key: str) -> Any:
        try:
            raw = await self._redis.get(key)
        except RedisError as exc:
            raise CacheError(f"GET {key}: {exc}") from exc
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise CacheError(f"GET {key}: undecodable value") from exc

    async def set(self, key: str, value: Any, ttl: int) -> None:
        try:
            await self._redis.set(key, dumps(value), ex=ttl)
        except (RedisError, TypeError) as exc:
            raise CacheError(f"SET {key}: {exc}") from exc

    async def set_many(self, items: Mapping[str, Any], ttl: int) -> None:
        """Write many keys in one pipeline round trip."""
        if not items:
            return
        try:
            async with self._redis.pipeline(transaction=False) as pipe:
                for key, value in items.items():
                    pipe.set(key, dumps(value), ex=ttl)
                await pipe.execute()
        except (RedisError, TypeError) as exc:
            raise CacheError(f"SET x{len(items)}: {exc}") from exc

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(key)
        except RedisError as exc:
            raise CacheError(f"DEL {key}: {exc}") from exc

    async def aclose(self) -> None:
        try:
            await self._redis.aclose()
        except RedisError as exc:
            raise CacheError(f"close: {exc}") from exc


class NullCache:
    """Cache used when no Redis is configured: every read misses."""

    async def get(self, key: str) -> Any:
        return None

    async def set(self, key: str, value: Any, ttl: int) -> None:
        return None

    async def set_many(self, items: Mapping[str, Any], ttl: int) -> None:
        return None

    async def delete(self, key: str) -> None:
        return None

    async def aclose(self) -> None:
        return None


class BestEffortCache:
    """Wraps a raw cache; cache failures are logged and swallowed here."""

    def __init__(self, inner: Cache) -> None:
        self._inner = inner

    async def get(self, key: str) -> Any:
        try:
            return await self._inner.get(key)
        except CacheError as exc:
            get_logger(__name__).warning(f"Cache read failed, treating as miss: {exc}")
            return None

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        try:
            await self._inner.set(key, value, ttl)
            return True
        except CacheError as exc:
            get_logger(__name__).warning(f"Cache write failed, skipped: {exc}")
            return False

    async def set_many(self, items: Mapping[str, Any], ttl: int) -> bool:
        try:
            await self._inner.set_many(items, ttl)
            return True
        except CacheError as exc:
            get_logger(__name__).warning(f"Cache bulk write failed, skipped: {exc}")
            return False

    async def delete(self, key: str) -> bool:
        try:
            await self._inner.delete(key)
            return True
        except CacheError as exc:
            get_logger(__name__).warning(f"Cache delete failed, skipped: {exc}")
            return False

    async def aclose(self) -> None:
        try:
            await self._inner.aclose()
        except CacheError as exc:
            get_logger(__name__).warning(f"Cache close failed: {exc}")


def build_cache(config: Settings = settings) -> BestEffortCache:
    """Return the best-effort cache for the configured `REDIS_URL` (or a null cache)."""
    if config.REDIS_URL:
        return BestEffortCache(RedisCache.from_url(config.REDIS_URL))
    get_logger(__name__).info("REDIS_URL is not set; caching disabled")
    return BestEffortCache(NullCache())
