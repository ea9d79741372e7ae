"""Full sync pass: protocols -> pools -> stablecoins, then top pool charts.

Entity types run in dependency order and are isolated from each other: a
failure is logged and recorded in the run summary, and the next type still
runs. Chart refreshes only run when the pools pass succeeded and are done one
pool at a time to bound upstream call volume.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from defi_radar.core.config import settings
from defi_radar.core.errors import AllOperationsFailedError
from defi_radar.core.log import get_logger
from defi_radar.pipelines.defillama_sync import DefiLlamaSyncService


ENTITY_ORDER = ("protocols", "pools", "stablecoins")


@dataclass
class EntityOutcome:
    entity: str
    ok: bool
    summary: dict[str, Any] | None = None
    error: str | None = None


@dataclass
class SyncRunSummary:
    started_at: datetime
    finished_at: datetime | None = None
    chain_allowlist_version: int | None = None
    entities: dict[str, EntityOutcome] = field(default_factory=dict)
    charts: list[dict[str, Any]] = field(default_factory=list)
    chart_failures: dict[str, str] = field(default_factory=dict)

    def succeeded(self, entity: str) -> bool:
        outcome = self.entities.get(entity)
        return bool(outcome and outcome.ok)

    @property
    def all_failed(self) -> bool:
        return bool(self.entities) and not any(o.ok for o in self.entities.values())

    def as_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "chain_allowlist_version": self.chain_allowlist_version,
            "entities": {
                name: {"ok": o.ok, "summary": o.summary, "error": o.error} for name, o in self.entities.items()
            },
            "charts": self.charts,
            "chart_failures": self.chart_failures,
        }


class SyncOrchestrator:
    def __init__(
        self,
        service: DefiLlamaSyncService,
        *,
        refresh_charts: bool = True,
        top_pool_min_tvl_usd: float = settings.TOP_POOL_MIN_TVL_USD,
        top_pool_min_apy: float = settings.TOP_POOL_MIN_APY,
        top_pool_limit: int = settings.TOP_POOL_LIMIT,
    ) -> None:
        self.service = service
        self.refresh_charts = refresh_charts
        self.top_pool_min_tvl_usd = top_pool_min_tvl_usd
        self.top_pool_min_apy = top_pool_min_apy
        self.top_pool_limit = top_pool_limit

    def _passes(self) -> dict[str, Callable[[], Awaitable[Any]]]:
        return {
            "protocols": self.service.sync_protocols,
            "pools": self.service.sync_pools,
            "stablecoins": self.service.sync_stablecoins,
        }

    async def sync_entity(self, entity: str, run: SyncRunSummary) -> EntityOutcome:
        """Run one entity pass, recording instead of raising its failure."""
        logger = get_logger(__name__)
        try:
            summary = await self._passes()[entity]()
        except AllOperationsFailedError as exc:
            logger.error(f"{entity} sync failed: {exc}")
            outcome = EntityOutcome(entity=entity, ok=False, summary=exc.summary.as_dict(), error=str(exc))
        except Exception as exc:
            logger.exception(f"{entity} sync failed: {exc}")
            outcome = EntityOutcome(entity=entity, ok=False, error=str(exc))
        else:
            outcome = EntityOutcome(entity=entity, ok=True, summary=summary.as_dict())
        run.entities[entity] = outcome
        return outcome

    async def refresh_top_pool_charts(self, run: SyncRunSummary) -> None:
        logger = get_logger(__name__)
        try:
            pool_ids = await self.service.repository.top_pools_for_chart(
                min_tvl_usd=self.top_pool_min_tvl_usd,
                min_apy=self.top_pool_min_apy,
                limit=self.top_pool_limit,
            )
        except Exception as exc:
            logger.error(f"Could not select pools for chart refresh: {exc}")
            return
        logger.info(f"Refreshing charts of {len(pool_ids)} top pool(s)")

        for pool_id in pool_ids:
            try:
                summary = await self.service.sync_pool_chart(pool_id)
            except Exception as exc:
                logger.error(f"Chart refresh of pool {pool_id} failed: {exc}")
                run.chart_failures[pool_id] = str(exc)
                continue
            run.charts.append(summary.as_dict())

    async def sync_all(self) -> SyncRunSummary:
        """Run every entity pass in order; always returns a run summary."""
        logger = get_logger(__name__)
        run = SyncRunSummary(
            started_at=datetime.now(timezone.utc),
            chain_allowlist_version=self.service.allowlist_version,
        )
        logger.info("Starting full DeFi Llama sync")

        for entity in ENTITY_ORDER:
            await self.sync_entity(entity, run)

        if not self.refresh_charts:
            logger.info("Chart refresh disabled for this run")
        elif run.succeeded("pools"):
            await self.refresh_top_pool_charts(run)
        else:
            logger.warning("Skipping top pool chart refresh because the pools sync failed")

        run.finished_at = datetime.now(timezone.utc)
        for entity, outcome in run.entities.items():
            logger.info(f"{entity}: {'ok' if outcome.ok else 'failed'}")
        if run.all_failed:
            logger.error("Every entity sync failed")
        return run
