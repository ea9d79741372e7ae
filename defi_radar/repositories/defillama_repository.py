"""Store access for DeFi Llama entities.

Row builders are plain functions so they can be tested without a database.
Write methods run one atomic batch each and raise `ReconciliationBatchError`
when the store rejects it; the reconciliation engine counts the chunk as
failed and moves on.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Sequence

from sqlalchemy import delete, or_, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError

from defi_radar.core.config import settings
from defi_radar.core.log import get_logger
from defi_radar.models.defillama import Pool, PoolChart, PoolToken, Protocol, Stablecoin
from defi_radar.repositories.base import BaseRepository
from defi_radar.schemas.defillama import ChartPoint, PoolRecord, ProtocolRecord, StablecoinRecord


def _lower_list(values: Sequence[Any]) -> list[str]:
    return [str(v).lower() for v in values if v]


def _strip_chain_prefix(address: str | None) -> str | None:
    # Protocol addresses may come as "chain:0x..."
    if address and ":" in address:
        return address.split(":", 1)[1]
    return address


def build_protocol_row(record: ProtocolRecord) -> dict[str, Any]:
    """Full row for a newly seen protocol (identity and display fields included)."""
    return {
        "id": record.id,
        "slug": record.slug,
        "name": record.name,
        "address": _strip_chain_prefix(record.address),
        "symbol": record.symbol,
        "description": record.description,
        "chain": record.chain.lower() if record.chain else None,
        "logo": record.logo,
        "audits": record.audits,
        "audit_links": list(record.audit_links),
        "github": record.github[0] if record.github else None,
        "category": record.category,
        "chains": _lower_list(record.chains),
        "twitter": record.twitter,
        "url": record.url,
        "tvl": record.tvl,
        "change_1h": record.change_1h,
        "change_1d": record.change_1d,
        "change_7d": record.change_7d,
        "mcap": record.mcap,
    }


def protocol_metrics_row(record: ProtocolRecord, now: datetime) -> dict[str, Any]:
    """Partial row for an existing protocol: only the dynamic metrics change."""
    return {
        "id": record.id,
        "tvl": record.tvl,
        "change_1h": record.change_1h,
        "change_1d": record.change_1d,
        "change_7d": record.change_7d,
        "mcap": record.mcap,
        "updated_at": now,
    }


def build_pool_row(record: PoolRecord) -> dict[str, Any]:
    reward_tokens = None
    if record.reward_tokens:
        reward_tokens = [str(t) for t in record.reward_tokens if t]
    return {
        "id": record.pool,
        "project": record.project,
        "chain": record.chain.lower(),
        "symbol": record.symbol,
        "tvl_usd": record.tvl_usd,
        "apy": record.apy,
        "apy_base": record.apy_base,
        "apy_reward": record.apy_reward,
        "reward_tokens": reward_tokens,
        "stablecoin": record.stablecoin,
        "il_risk": record.il_risk,
        "exposure": record.exposure,
        "pool_meta": record.pool_meta,
    }


def pool_metrics_row(record: PoolRecord, now: datetime) -> dict[str, Any]:
    return {
        "id": record.pool,
        "tvl_usd": record.tvl_usd,
        "apy": record.apy,
        "apy_base": record.apy_base,
        "apy_reward": record.apy_reward,
        "updated_at": now,
    }


TOKEN_ADDRESS_MAX_LENGTH = PoolToken.__table__.c.token_address.type.length


def build_pool_token_rows(
    records: Sequence[PoolRecord], *, logger: logging.Logger | None = None
) -> list[dict[str, Any]]:
    """Underlying-token rows for new pools.

    Entries that are not a non-empty string, or that do not fit the address
    column, are skipped one by one with a warning; they never fail the
    enclosing batch. Duplicates within a pool are collapsed.
    """
    log = logger or logging.getLogger(__name__)
    rows: list[dict[str, Any]] = []
    for record in records:
        seen: set[str] = set()
        for token in record.underlying_tokens:
            if not isinstance(token, str) or not token.strip():
                log.warning(f"Skipping invalid underlying token {token!r} of pool {record.pool}")
                continue
            address = token.strip()
            if len(address) > TOKEN_ADDRESS_MAX_LENGTH:
                log.warning(f"Skipping oversized underlying token of pool {record.pool} ({len(address)} chars)")
                continue
            if address in seen:
                continue
            seen.add(address)
            rows.append({"pool_id": record.pool, "token_address": address, "chain": record.chain.lower()})
    return rows


def build_stablecoin_row(record: StablecoinRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "name": record.name,
        "symbol": record.symbol,
        "gecko_id": record.gecko_id,
        "peg_type": record.peg_type,
        "peg_mechanism": record.peg_mechanism,
        "circulating": record.circulating_amount,
        "price": record.price,
        "chains": _lower_list(record.chains),
    }


def build_chart_rows(pool_id: str, points: Sequence[ChartPoint]) -> list[dict[str, Any]]:
    return [
        {
            "pool_id": pool_id,
            "timestamp": p.timestamp,
            "tvl_usd": p.tvl_usd,
            "apy": p.apy,
            "apy_base": p.apy_base,
            "apy_reward": p.apy_reward,
        }
        for p in points
    ]


def _pool_dict(pool: Pool) -> dict[str, Any]:
    return {
        "id": pool.id,
        "chain": pool.chain,
        "project": pool.project,
        "symbol": pool.symbol,
        "tvl_usd": pool.tvl_usd,
        "apy": pool.apy,
        "apy_base": pool.apy_base,
        "apy_reward": pool.apy_reward,
        "stablecoin": pool.stablecoin,
        "il_risk": pool.il_risk,
        "exposure": pool.exposure,
        "pool_meta": pool.pool_meta,
    }


class DefiLlamaRepository(BaseRepository):
    """Reads and batched writes for protocols, pools, pool charts and stablecoins."""

    # Key sets, loaded once per pass

    async def load_protocol_ids(self) -> set[str]:
        async with self.read() as session:
            return set((await session.execute(select(Protocol.id))).scalars().all())

    async def load_protocol_slugs(self) -> set[str]:
        async with self.read() as session:
            return set((await session.execute(select(Protocol.slug))).scalars().all())

    async def load_pool_ids(self) -> set[str]:
        async with self.read() as session:
            return set((await session.execute(select(Pool.id))).scalars().all())

    async def load_stablecoin_ids(self) -> set[str]:
        async with self.read() as session:
            return set((await session.execute(select(Stablecoin.id))).scalars().all())

    # Batched writes

    async def create_protocols(self, records: Sequence[ProtocolRecord]) -> None:
        rows = [build_protocol_row(r) for r in records]
        async with self.write_batch("protocols", len(rows)) as session:
            await session.execute(insert(Protocol).values(rows))

    async def update_protocols(self, records: Sequence[ProtocolRecord]) -> None:
        now = datetime.now(timezone.utc)
        rows = [protocol_metrics_row(r, now) for r in records]
        async with self.write_batch("protocols", len(rows)) as session:
            # ORM bulk UPDATE by primary key
            await session.execute(update(Protocol), rows)

    async def create_pools(self, records: Sequence[PoolRecord]) -> None:
        """Insert new pools, then their underlying tokens.

        Each token batch runs in its own savepoint: a batch the store rejects
        is logged and dropped, and the pools of the chunk are still committed.
        """
        logger = get_logger(__name__)
        rows = [build_pool_row(r) for r in records]
        token_rows = build_pool_token_rows(records, logger=logger)
        batch = settings.POOL_TOKEN_BATCH_SIZE
        async with self.write_batch("pools", len(rows)) as session:
            stmt = insert(Pool).values(rows).on_conflict_do_nothing(index_elements=[Pool.id])
            await session.execute(stmt)
            for i in range(0, len(token_rows), batch):
                chunk = token_rows[i : i + batch]
                token_stmt = insert(PoolToken).values(chunk).on_conflict_do_nothing(
                    constraint="uq_pool_tokens_pool_id_token_address"
                )
                try:
                    async with session.begin_nested():
                        await session.execute(token_stmt)
                except SQLAlchemyError as exc:
                    reason = (str(exc).splitlines() or [repr(exc)])[0]
                    logger.warning(f"Skipped a batch of {len(chunk)} pool token(s): {reason}")

    async def update_pools(self, records: Sequence[PoolRecord]) -> None:
        now = datetime.now(timezone.utc)
        rows = [pool_metrics_row(r, now) for r in records]
        async with self.write_batch("pools", len(rows)) as session:
            await session.execute(update(Pool), rows)

    async def upsert_stablecoins(self, records: Sequence[StablecoinRecord]) -> None:
        """Every field is overwritten; stablecoins have no immutable columns."""
        rows = [build_stablecoin_row(r) for r in records]
        async with self.write_batch("stablecoins", len(rows)) as session:
            stmt = insert(Stablecoin).values(rows)
            stmt = stmt.on_conflict_do_update(
                index_elements=[Stablecoin.id],
                set_={
                    "name": stmt.excluded.name,
                    "symbol": stmt.excluded.symbol,
                    "gecko_id": stmt.excluded.gecko_id,
                    "peg_type": stmt.excluded.peg_type,
                    "peg_mechanism": stmt.excluded.peg_mechanism,
                    "circulating": stmt.excluded.circulating,
                    "price": stmt.excluded.price,
                    "chains": stmt.excluded.chains,
                    "updated_at": datetime.now(timezone.utc),
                },
            )
            await session.execute(stmt)

    # Pool charts

    async def delete_chart_before(self, pool_id: str, cutoff: datetime) -> int:
        async with self.write_batch("pool_charts", 0) as session:
            result = await session.execute(
                delete(PoolChart).where(PoolChart.pool_id == pool_id, PoolChart.timestamp < cutoff)
            )
            return result.rowcount or 0

    async def insert_chart_points(self, pool_id: str, points: Sequence[ChartPoint]) -> int:
        """Insert points, skipping ones already stored for the same timestamp.

        Returns the number of rows actually inserted.
        """
        rows = build_chart_rows(pool_id, points)
        if not rows:
            return 0
        async with self.write_batch("pool_charts", len(rows)) as session:
            stmt = (
                insert(PoolChart)
                .values(rows)
                .on_conflict_do_nothing(index_elements=[PoolChart.pool_id, PoolChart.timestamp])
                .returning(PoolChart.pool_id)
            )
            result = await session.execute(stmt)
            return len(result.all())

    async def get_pool_chart(self, pool_id: str, since: datetime) -> list[dict[str, Any]]:
        async with self.read() as session:
            result = await session.execute(
                select(PoolChart)
                .where(PoolChart.pool_id == pool_id, PoolChart.timestamp >= since)
                .order_by(PoolChart.timestamp)
            )
            return [
                {
                    "timestamp": p.timestamp,
                    "tvl_usd": p.tvl_usd,
                    "apy": p.apy,
                    "apy_base": p.apy_base,
                    "apy_reward": p.apy_reward,
                }
                for p in result.scalars().all()
            ]

    async def top_pools_for_chart(self, *, min_tvl_usd: float, min_apy: float, limit: int) -> list[str]:
        """Ids of high-value pools (TVL and APY above thresholds), best APY first."""
        async with self.read() as session:
            result = await session.execute(
                select(Pool.id)
                .where(Pool.tvl_usd > min_tvl_usd, Pool.apy > min_apy)
                .order_by(Pool.apy.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    # Cache projections

    async def protocols_projection(self) -> list[dict[str, Any]]:
        async with self.read() as session:
            result = await session.execute(
                select(Protocol.id, Protocol.name, Protocol.slug, Protocol.tvl, Protocol.category)
            )
            return [dict(row._mapping) for row in result]

    async def high_yield_pools_projection(self, limit: int = 100) -> list[dict[str, Any]]:
        async with self.read() as session:
            result = await session.execute(
                select(Pool.id, Pool.chain, Pool.project, Pool.symbol, Pool.tvl_usd, Pool.apy)
                .where(Pool.apy > 0)
                .order_by(Pool.apy.desc())
                .limit(limit)
            )
            return [dict(row._mapping) for row in result]

    async def stablecoins_projection(self) -> list[dict[str, Any]]:
        async with self.read() as session:
            result = await session.execute(
                select(Stablecoin.id, Stablecoin.name, Stablecoin.symbol, Stablecoin.circulating, Stablecoin.price)
            )
            return [dict(row._mapping) for row in result]

    # Query paths

    async def find_pools(
        self,
        *,
        chain: str | None,
        min_tvl_usd: float,
        min_apy: float,
        limit: int,
        stablecoin_only: bool = False,
    ) -> list[dict[str, Any]]:
        stmt = select(Pool).where(Pool.tvl_usd >= min_tvl_usd, Pool.apy >= min_apy)
        if chain:
            stmt = stmt.where(Pool.chain == chain.lower())
        if stablecoin_only:
            stmt = stmt.where(Pool.stablecoin.is_(True))
        stmt = stmt.order_by(Pool.apy.desc()).limit(limit)
        async with self.read() as session:
            result = await session.execute(stmt)
            return [_pool_dict(p) for p in result.scalars().all()]

    async def search_protocols(
        self,
        *,
        name_query: str | None = None,
        category: str | None = None,
        min_tvl: float | None = None,
        limit: int = 10,
    ) -> list[dict[str, Any]]:
        stmt = select(
            Protocol.id,
            Protocol.name,
            Protocol.slug,
            Protocol.category,
            Protocol.chain,
            Protocol.chains,
            Protocol.tvl,
            Protocol.url,
        )
        if name_query:
            pattern = f"%{name_query}%"
            stmt = stmt.where(or_(Protocol.name.ilike(pattern), Protocol.slug.ilike(pattern)))
        if category:
            stmt = stmt.where(Protocol.category.ilike(category))
        if min_tvl is not None:
            stmt = stmt.where(Protocol.tvl >= min_tvl)
        stmt = stmt.order_by(Protocol.tvl.desc().nulls_last()).limit(limit)
        async with self.read() as session:
            result = await session.execute(stmt)
            return [dict(row._mapping) for row in result]
