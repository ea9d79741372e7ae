"""Store access for the CoinGecko token registry."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Sequence

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert

from defi_radar.models.coingecko import CoinDetails, CoinIndex, CoinPlatform
from defi_radar.repositories.base import BaseRepository
from defi_radar.schemas.coingecko import CoinListItem


def build_platform_rows(items: Sequence[CoinListItem]) -> list[dict[str, Any]]:
    """Platform rows with lower-cased addresses, de-duplicated."""
    seen: set[tuple[str, str, str]] = set()
    rows: list[dict[str, Any]] = []
    for item in items:
        for platform_id, address in item.platform_addresses():
            key = (item.id, platform_id, address)
            if key in seen:
                continue
            seen.add(key)
            rows.append({"cg_id": item.id, "platform_id": platform_id, "contract_address": address})
    return rows


def _details_dict(row: CoinDetails) -> dict[str, Any]:
    return {c.key: getattr(row, c.key) for c in CoinDetails.__table__.columns}


class CoinGeckoRepository(BaseRepository):
    async def load_coin_ids(self) -> set[str]:
        async with self.read() as session:
            return set((await session.execute(select(CoinIndex.cg_id))).scalars().all())

    async def _insert_platforms(self, session: Any, items: Sequence[CoinListItem]) -> None:
        rows = build_platform_rows(items)
        if not rows:
            return
        stmt = insert(CoinPlatform).values(rows).on_conflict_do_nothing(
            constraint="uq_cg_coin_platforms_cg_platform_address"
        )
        await session.execute(stmt)

    async def create_coins(self, items: Sequence[CoinListItem]) -> None:
        rows = [{"cg_id": i.id, "symbol": i.symbol, "name": i.name} for i in items]
        async with self.write_batch("cg_coins_index", len(rows)) as session:
            await session.execute(insert(CoinIndex).values(rows).on_conflict_do_nothing(index_elements=[CoinIndex.cg_id]))
            await self._insert_platforms(session, items)

    async def update_coins(self, items: Sequence[CoinListItem]) -> None:
        """Refresh symbol/name; platform rows are insert-only."""
        now = datetime.now(timezone.utc)
        rows = [{"cg_id": i.id, "symbol": i.symbol, "name": i.name, "updated_at": now} for i in items]
        async with self.write_batch("cg_coins_index", len(rows)) as session:
            await session.execute(update(CoinIndex), rows)
            await self._insert_platforms(session, items)

    async def find_cg_id_by_platform(self, platform_id: str, contract_address: str) -> str | None:
        async with self.read() as session:
            result = await session.execute(
                select(CoinPlatform.cg_id)
                .where(
                    CoinPlatform.platform_id == platform_id,
                    CoinPlatform.contract_address == contract_address.lower(),
                )
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def get_coin_index(self, cg_id: str) -> dict[str, Any] | None:
        async with self.read() as session:
            row = await session.get(CoinIndex, cg_id)
            if row is None:
                return None
            return {"cg_id": row.cg_id, "symbol": row.symbol, "name": row.name}

    async def get_contract_addresses(self, cg_id: str) -> list[dict[str, str]]:
        async with self.read() as session:
            result = await session.execute(
                select(CoinPlatform.platform_id, CoinPlatform.contract_address)
                .where(CoinPlatform.cg_id == cg_id)
                .order_by(CoinPlatform.platform_id)
            )
            return [{"platform_id": p, "contract_address": a} for p, a in result.all()]

    async def get_coin_details(self, cg_id: str) -> dict[str, Any] | None:
        async with self.read() as session:
            row = await session.get(CoinDetails, cg_id)
            return _details_dict(row) if row is not None else None

    async def upsert_coin_details(self, row: dict[str, Any]) -> None:
        """Write a details row, creating the index row first if the coin is unknown."""
        async with self.write_batch("cg_coin_details", 1) as session:
            await session.execute(
                insert(CoinIndex)
                .values(cg_id=row["cg_id"], symbol=row["symbol"], name=row["name"])
                .on_conflict_do_nothing(index_elements=[CoinIndex.cg_id])
            )
            stmt = insert(CoinDetails).values(row)
            stmt = stmt.on_conflict_do_update(
                index_elements=[CoinDetails.cg_id],
                set_={k: stmt.excluded[k] for k in row if k != "cg_id"},
            )
            await session.execute(stmt)
