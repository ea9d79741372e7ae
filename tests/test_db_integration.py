"""Integration test for the Postgres repositories.

Requirements:
- A reachable Postgres DB via `DATABASE_URL` (sync-style URL is fine; code will
  convert to asyncpg internally).
- The DB user must have permission to run migrations.

This test will run `alembic upgrade head` to ensure the schema exists.
"""

from __future__ import annotations

import asyncio
import os
import subprocess
import sys
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy import delete

from defi_radar.core.database import AsyncSessionLocal, dispose_engine
from defi_radar.models.defillama import Pool, PoolChart, PoolToken, Protocol
from defi_radar.repositories.defillama_repository import DefiLlamaRepository
from defi_radar.schemas.defillama import ChartPoint, PoolRecord, ProtocolRecord


@pytest.mark.asyncio
@pytest.mark.integration
async def test_protocol_pool_and_chart_round_trip() -> None:
    """Create, update and chart writes land in Postgres as expected."""

    # NOTE: Alembic env.py uses asyncio.run(); run migrations in a separate
    # process to avoid "asyncio.run() cannot be called" inside pytest-asyncio.
    repo_root = Path(__file__).resolve().parents[1]
    try:
        await asyncio.to_thread(
            lambda: subprocess.run(
                [sys.executable, "-m", "alembic", "upgrade", "head"],
                check=True,
                cwd=str(repo_root),
                env=os.environ.copy(),
            )
        )
    except subprocess.CalledProcessError:
        pytest.skip("Postgres at DATABASE_URL is not reachable")

    suffix = uuid.uuid4().hex[:8]
    protocol_id = f"test-{suffix}"
    slug = f"test-protocol-{suffix}"
    pool_id = f"test-pool-{suffix}"
    repo = DefiLlamaRepository()

    try:
        await repo.create_protocols(
            [ProtocolRecord.model_validate({"id": protocol_id, "name": "Test", "slug": slug, "chain": "Ethereum", "tvl": 1})]
        )
        await repo.update_protocols(
            [ProtocolRecord.model_validate({"id": protocol_id, "name": "Test", "slug": slug, "tvl": 2})]
        )
        pool = PoolRecord.model_validate(
            {
                "pool": pool_id,
                "chain": "Ethereum",
                "project": slug,
                "symbol": "USDC",
                "tvlUsd": 5_000_000,
                "apy": 7.5,
                "underlyingTokens": ["0xA0b8", "0xA0b8"],
            }
        )
        await repo.create_pools([pool])

        now = datetime.now(timezone.utc).replace(microsecond=0)
        points = [
            ChartPoint.model_validate({"timestamp": (now - timedelta(days=d)).isoformat(), "tvlUsd": 1, "apy": 2})
            for d in (1, 2)
        ]
        assert await repo.insert_chart_points(pool_id, points) == 2
        assert await repo.insert_chart_points(pool_id, points) == 0
        assert await repo.delete_chart_before(pool_id, now - timedelta(days=1, hours=12)) == 1

        assert protocol_id in await repo.load_protocol_ids()
        assert slug in await repo.load_protocol_slugs()
        assert pool_id in await repo.load_pool_ids()
        chart = await repo.get_pool_chart(pool_id, now - timedelta(days=7))
        assert len(chart) == 1

        async with AsyncSessionLocal() as session:
            stored = await session.get(Protocol, protocol_id)
            assert float(stored.tvl) == 2.0
            assert stored.chain == "ethereum"
    finally:
        async with AsyncSessionLocal() as session:
            async with session.begin():
                await session.execute(delete(PoolChart).where(PoolChart.pool_id == pool_id))
                await session.execute(delete(PoolToken).where(PoolToken.pool_id == pool_id))
                await session.execute(delete(Pool).where(Pool.id == pool_id))
                await session.execute(delete(Protocol).where(Protocol.id == protocol_id))
        await dispose_engine()
