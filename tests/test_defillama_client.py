"""Unit tests for the DeFi Llama client.

These tests are network-isolated and use httpx MockTransport.
"""

from __future__ import annotations

from datetime import datetime, timezone

import httpx
import pytest

from defi_radar.core.errors import UpstreamFetchError
from defi_radar.services.defillama_client import DefiLlamaClient


class _Sleeps:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def _client(handler, **kwargs) -> DefiLlamaClient:
    kwargs.setdefault("sleep", _Sleeps())
    return DefiLlamaClient(transport=httpx.MockTransport(handler), **kwargs)


@pytest.mark.asyncio
async def test_get_pools_parses_data_and_drops_invalid_entries() -> None:
    """Pools are read from 'data'; entries missing required fields are dropped."""

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "GET"
        assert str(request.url) == "https://yields.llama.fi/pools"
        return httpx.Response(
            200,
            json={
                "data": [
                    {
                        "pool": "p1",
                        "chain": "Ethereum",
                        "project": "aave-v3",
                        "symbol": "USDC",
                        "tvlUsd": 1_000_000,
                        "apy": 4.2,
                        "stablecoin": True,
                        "underlyingTokens": ["0xA0b8"],
                    },
                    {"pool": "p2", "chain": "Ethereum", "project": "aave-v3", "symbol": "DAI"},
                    "not-a-pool",
                ]
            },
        )

    pools = await _client(handler).get_pools()

    assert [p.pool for p in pools] == ["p1"]
    assert pools[0].tvl_usd == 1_000_000
    assert pools[0].stablecoin is True
    assert pools[0].underlying_tokens == ["0xA0b8"]


@pytest.mark.asyncio
async def test_get_pools_missing_data_key_returns_empty_list() -> None:
    """Client tolerates payloads without a 'data' key."""

    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"unexpected": []})

    assert await _client(handler).get_pools() == []


@pytest.mark.asyncio
async def test_get_protocols_reads_top_level_list() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert str(request.url) == "https://api.llama.fi/protocols"
        return httpx.Response(
            200,
            json=[
                {"id": "1", "name": "Aave", "slug": "aave", "chain": "Multi-Chain", "chains": ["Ethereum"]},
                {"id": 2, "name": "Gone", "slug": "gone", "chains": None, "deadFrom": "2023-01-01"},
            ],
        )

    protocols = await _client(handler).get_protocols()

    assert [p.id for p in protocols] == ["1", "2"]
    assert protocols[1].chains == []
    assert protocols[1].is_dead
    assert not protocols[0].is_dead


@pytest.mark.asyncio
async def test_get_pool_chart_parses_iso_timestamps_as_utc() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert str(request.url) == "https://yields.llama.fi/chart/pool-1"
        return httpx.Response(
            200,
            json={"status": "success", "data": [{"timestamp": "2026-10-01T00:00:00.000Z", "tvlUsd": 10, "apy": 3}]},
        )

    points = await _client(handler).get_pool_chart("pool-1")

    assert len(points) == 1
    assert points[0].timestamp == datetime(2026, 10, 1, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_get_stablecoins_reads_pegged_assets() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert str(request.url) == "https://stablecoins.llama.fi/stablecoins"
        return httpx.Response(
            200,
            json={
                "peggedAssets": [
                    {
                        "id": "1",
                        "name": "Tether",
                        "symbol": "USDT",
                        "pegType": "peggedUSD",
                        "circulating": {"peggedUSD": 120.5},
                        "chains": ["Ethereum", "Tron"],
                    }
                ]
            },
        )

    coins = await _client(handler).get_stablecoins()

    assert coins[0].circulating_amount == 120.5


@pytest.mark.asyncio
async def test_transient_failures_are_retried_with_exponential_backoff() -> None:
    responses = iter([httpx.Response(500), httpx.Response(502), httpx.Response(200, json={"data": []})])
    sleeps = _Sleeps()

    def handler(_: httpx.Request) -> httpx.Response:
        return next(responses)

    client = _client(handler, sleep=sleeps, max_retries=3, initial_delay=5, backoff_factor=2)

    assert await client.get_pools() == []
    assert sleeps.delays == [5, 10]


@pytest.mark.asyncio
async def test_exhausted_retries_raise_upstream_fetch_error() -> None:
    """Client raises once every attempt failed."""
    calls = 0
    sleeps = _Sleeps()

    def handler(_: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(500, json={"error": "boom"})

    client = _client(handler, sleep=sleeps, max_retries=2, initial_delay=5, backoff_factor=2)

    with pytest.raises(UpstreamFetchError) as exc_info:
        await client.get_pools()

    assert calls == 3
    assert sleeps.delays == [5, 10]
    assert exc_info.value.status_code == 500


@pytest.mark.asyncio
async def test_network_errors_are_retried() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise httpx.ConnectTimeout("timed out", request=request)
        return httpx.Response(200, json=[])

    assert await _client(handler, max_retries=1).get_protocols() == []
    assert calls == 2


def test_retry_delay_grows_by_backoff_factor() -> None:
    client = DefiLlamaClient(initial_delay=5, backoff_factor=2)

    assert [client.retry_delay(n) for n in range(4)] == [5, 10, 20, 40]
