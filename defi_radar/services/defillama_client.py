"""DeFi Llama API client.

Thin async wrapper around the DeFi Llama endpoints the sync engine consumes:

  GET {api}/protocols           -> list of protocol objects
  GET {yields}/pools            -> {"data": [pool, ...]}
  GET {yields}/chart/{pool_id}  -> {"data": [{timestamp, tvlUsd, apy, ...}]}
  GET {stablecoins}/stablecoins -> {"peggedAssets": [...]}

DeFi Llama does not enforce strict per-second limits, so each fetch is wrapped
in a plain bounded retry with exponential backoff. After the last attempt the
error is raised as `UpstreamFetchError` so the caller can skip that entity type.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import httpx

from defi_radar.core.config import settings
from defi_radar.core.errors import UpstreamFetchError
from defi_radar.core.log import get_logger
from defi_radar.schemas.defillama import ChartPoint, PoolRecord, ProtocolRecord, StablecoinRecord
from defi_radar.schemas.parsing import parse_records


class DefiLlamaClient:
    """Async client for the DeFi Llama protocol, yields and stablecoin endpoints."""

    def __init__(
        self,
        *,
        timeout_seconds: float = settings.HTTP_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
        max_retries: int = settings.BULK_RETRY_MAX_RETRIES,
        initial_delay: float = settings.BULK_RETRY_INITIAL_DELAY_SECONDS,
        backoff_factor: float = settings.BULK_RETRY_BACKOFF_FACTOR,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        api_url: str = settings.DEFILLAMA_API_URL,
        yields_url: str = settings.DEFILLAMA_YIELDS_URL,
        stablecoins_url: str = settings.DEFILLAMA_STABLECOINS_URL,
    ) -> None:
        """Create a new client.

        Args:
            timeout_seconds: Request timeout.
            transport: Optional httpx transport override (used for unit tests).
            max_retries: Retries after the first attempt.
            initial_delay: Seconds to wait before the first retry.
            backoff_factor: Multiplier applied to the delay per attempt.
            sleep: Awaitable sleep, overridable in tests.
        """
        self._timeout = httpx.Timeout(timeout_seconds)
        self._transport = transport
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.backoff_factor = backoff_factor
        self._sleep = sleep
        self.api_url = api_url.rstrip("/")
        self.yields_url = yields_url.rstrip("/")
        self.stablecoins_url = stablecoins_url.rstrip("/")

    def retry_delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number `attempt` (0-based)."""
        return self.initial_delay * (self.backoff_factor ** attempt)

    async def _get_json(self, url: str, *, label: str) -> Any:
        logger = get_logger(__name__)
        last_error: Exception | None = None
        for attempt in range(self.max_retries + 1):
            try:
                async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                    response = await client.get(url)
                    response.raise_for_status()
                    return response.json()
            except (httpx.HTTPError, ValueError) as exc:
                last_error = exc
                if attempt >= self.max_retries:
                    break
                delay = self.retry_delay(attempt)
                logger.warning(
                    f"DeFi Llama {label} fetch failed (attempt {attempt + 1}/{self.max_retries + 1}): "
                    f"{exc}; retrying in {delay:.1f}s"
                )
                await self._sleep(delay)

        status_code = None
        if isinstance(last_error, httpx.HTTPStatusError):
            status_code = last_error.response.status_code
        raise UpstreamFetchError(
            f"DeFi Llama {label} fetch failed after {self.max_retries + 1} attempts: {last_error}",
            status_code=status_code,
        ) from last_error

    async def get_protocols(self) -> list[ProtocolRecord]:
        """Fetch all protocols.

        Raises:
            UpstreamFetchError: When every attempt failed.
        """
        payload = await self._get_json(f"{self.api_url}/protocols", label="protocols")
        if not isinstance(payload, list):
            return []
        return parse_records(ProtocolRecord, payload, label="protocol", logger=get_logger(__name__))

    async def get_pools(self) -> list[PoolRecord]:
        """Fetch all yield pools."""
        payload = await self._get_json(f"{self.yields_url}/pools", label="pools")
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            return []
        return parse_records(PoolRecord, data, label="pool", logger=get_logger(__name__))

    async def get_pool_chart(self, pool_id: str) -> list[ChartPoint]:
        """Fetch the full time series of one pool."""
        payload = await self._get_json(f"{self.yields_url}/chart/{pool_id}", label=f"chart {pool_id}")
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            return []
        return parse_records(ChartPoint, data, label="chart point", logger=get_logger(__name__))

    async def get_stablecoins(self) -> list[StablecoinRecord]:
        """Fetch pegged assets."""
        payload = await self._get_json(f"{self.stablecoins_url}/stablecoins", label="stablecoins")
        data = payload.get("peggedAssets") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            return []
        return parse_records(StablecoinRecord, data, label="stablecoin", logger=get_logger(__name__))
