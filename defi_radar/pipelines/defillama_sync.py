"""DeFi Llama entity sync passes.

Each pass walks Idle -> Fetching -> Filtering -> Reconciling -> CacheRefresh
-> Done, or ends in Failed when the fetch fails or every write fails. A pass
returns a `ReconcileSummary`; partial write failures are logged, not raised.
"""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable

from sqlalchemy.exc import SQLAlchemyError

from defi_radar.core.config import settings
from defi_radar.core.log import get_logger
from defi_radar.pipelines.filters import CHAIN_ALLOWLIST_VERSION, SUPPORTED_CHAINS, filter_pools, filter_protocols, missing_projects
from defi_radar.pipelines.reconcile import ReconcileSummary, reconcile
from defi_radar.pipelines.retention import ChartRefreshSummary, ChartRetentionManager
from defi_radar.repositories.defillama_repository import DefiLlamaRepository
from defi_radar.services.cache import BestEffortCache, CacheKeys, CacheTTL
from defi_radar.services.defillama_client import DefiLlamaClient

if TYPE_CHECKING:
    from defi_radar.pipelines.orchestrator import SyncRunSummary


class SyncStage(str, enum.Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    FILTERING = "filtering"
    RECONCILING = "reconciling"
    CACHE_REFRESH = "cache_refresh"
    DONE = "done"
    FAILED = "failed"


class DefiLlamaSyncService:
    """Reconciles DeFi Llama protocols, pools, stablecoins and pool charts into the store."""

    def __init__(
        self,
        client: DefiLlamaClient,
        repository: DefiLlamaRepository,
        cache: BestEffortCache,
        *,
        retention: ChartRetentionManager | None = None,
        batch_size: int = settings.SYNC_BATCH_SIZE,
        allowlist: Iterable[str] = SUPPORTED_CHAINS,
    ) -> None:
        self.client = client
        self.repository = repository
        self.cache = cache
        self.retention = retention or ChartRetentionManager(client, repository, cache)
        self.batch_size = batch_size
        self.allowlist = frozenset(allowlist)
        # None for a caller-supplied allowlist
        self.allowlist_version = CHAIN_ALLOWLIST_VERSION if self.allowlist == SUPPORTED_CHAINS else None
        self.stages: dict[str, SyncStage] = {
            "protocols": SyncStage.IDLE,
            "pools": SyncStage.IDLE,
            "stablecoins": SyncStage.IDLE,
        }

    @classmethod
    def from_settings(cls, cache: BestEffortCache) -> "DefiLlamaSyncService":
        return cls(DefiLlamaClient(), DefiLlamaRepository(), cache)

    def _enter(self, entity: str, stage: SyncStage) -> None:
        self.stages[entity] = stage
        get_logger(__name__).debug(f"{entity}: {stage.value}")

    async def _run(self, entity: str, body: Callable[[ReconcileSummary], Awaitable[None]]) -> ReconcileSummary:
        summary = ReconcileSummary(entity=entity)
        try:
            await body(summary)
        except Exception:
            self._enter(entity, SyncStage.FAILED)
            raise
        self._enter(entity, SyncStage.DONE)
        get_logger(__name__).info(f"{entity}: sync finished {summary.as_dict()}")
        return summary

    async def _refresh_projection(
        self, key: str, ttl: int, projection: Callable[[], Awaitable[list[dict[str, Any]]]]
    ) -> None:
        logger = get_logger(__name__)
        try:
            rows = await projection()
        except SQLAlchemyError as exc:
            logger.warning(f"Could not read projection for {key}; cache left as is: {exc}")
            return
        if await self.cache.set(key, rows, ttl):
            logger.info(f"Cached {len(rows)} rows under {key}")

    async def sync_protocols(self) -> ReconcileSummary:
        """Create unseen active protocols on supported chains and refresh metrics of known ones."""

        async def body(summary: ReconcileSummary) -> None:
            logger = get_logger(__name__)
            self._enter("protocols", SyncStage.FETCHING)
            records = await self.client.get_protocols()
            summary.fetched = len(records)
            logger.info(f"Fetched {len(records)} protocols")
            if not records:
                return

            self._enter("protocols", SyncStage.FILTERING)
            result = filter_protocols(records, self.allowlist)
            summary.skipped_inactive = result.skipped_inactive
            summary.skipped_incompatible = result.skipped_incompatible
            logger.info(
                f"protocols: {len(result.accepted)} accepted, {result.skipped_inactive} inactive, "
                f"{result.skipped_incompatible} on unsupported chains"
            )

            self._enter("protocols", SyncStage.RECONCILING)
            existing = await self.repository.load_protocol_ids()
            await reconcile(
                result.accepted,
                existing_keys=existing,
                key=lambda r: r.id,
                create=self.repository.create_protocols,
                update=self.repository.update_protocols,
                batch_size=self.batch_size,
                summary=summary,
                logger=logger,
            )

            if summary.succeeded:
                self._enter("protocols", SyncStage.CACHE_REFRESH)
                await self._refresh_projection(
                    CacheKeys.PROTOCOLS_LIST, CacheTTL.PROTOCOLS_LIST, self.repository.protocols_projection
                )

        return await self._run("protocols", body)

    async def sync_pools(self) -> ReconcileSummary:
        """Create pools (with underlying tokens) and refresh metrics of known pools.

        Pools whose protocol is not stored yet are skipped. Underlying tokens
        are only written when a pool is first created.
        """

        async def body(summary: ReconcileSummary) -> None:
            logger = get_logger(__name__)
            self._enter("pools", SyncStage.FETCHING)
            known_slugs = await self.repository.load_protocol_slugs()
            records = await self.client.get_pools()
            summary.fetched = len(records)
            logger.info(f"Fetched {len(records)} pools ({len(known_slugs)} known protocols)")
            if not records:
                return

            self._enter("pools", SyncStage.FILTERING)
            result = filter_pools(records, known_slugs, self.allowlist)
            summary.skipped_incompatible = result.skipped_incompatible
            logger.info(f"pools: {len(result.accepted)} accepted, {result.skipped_incompatible} incompatible")
            for project, count in missing_projects(records, known_slugs):
                logger.warning(f"pools: protocol {project!r} not stored, skipped {count} pool(s)")

            self._enter("pools", SyncStage.RECONCILING)
            existing = await self.repository.load_pool_ids()
            await reconcile(
                result.accepted,
                existing_keys=existing,
                key=lambda r: r.pool,
                create=self.repository.create_pools,
                update=self.repository.update_pools,
                batch_size=self.batch_size,
                summary=summary,
                logger=logger,
            )

            if summary.succeeded:
                self._enter("pools", SyncStage.CACHE_REFRESH)
                await self._refresh_projection(
                    CacheKeys.HIGH_YIELD_POOLS, CacheTTL.HIGH_YIELD_POOLS, self.repository.high_yield_pools_projection
                )

        return await self._run("pools", body)

    async def sync_stablecoins(self) -> ReconcileSummary:
        """Upsert every stablecoin wholesale."""

        async def body(summary: ReconcileSummary) -> None:
            logger = get_logger(__name__)
            self._enter("stablecoins", SyncStage.FETCHING)
            records = await self.client.get_stablecoins()
            summary.fetched = len(records)
            logger.info(f"Fetched {len(records)} stablecoins")
            if not records:
                return

            # No filter for stablecoins
            self._enter("stablecoins", SyncStage.FILTERING)

            self._enter("stablecoins", SyncStage.RECONCILING)
            existing = await self.repository.load_stablecoin_ids()
            await reconcile(
                records,
                existing_keys=existing,
                key=lambda r: r.id,
                create=self.repository.upsert_stablecoins,
                update=self.repository.upsert_stablecoins,
                batch_size=self.batch_size,
                summary=summary,
                logger=logger,
            )

            if summary.succeeded:
                self._enter("stablecoins", SyncStage.CACHE_REFRESH)
                await self._refresh_projection(
                    CacheKeys.STABLECOINS_LIST, CacheTTL.STABLECOINS_LIST, self.repository.stablecoins_projection
                )

        return await self._run("stablecoins", body)

    async def sync_pool_chart(self, pool_id: str) -> ChartRefreshSummary:
        return await self.retention.refresh_chart(pool_id)

    async def sync_all(self) -> "SyncRunSummary":
        from defi_radar.pipelines.orchestrator import SyncOrchestrator

        return await SyncOrchestrator(self).sync_all()
