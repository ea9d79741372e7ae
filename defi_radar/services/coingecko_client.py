"""CoinGecko API client.

Every request goes through a shared `RateLimitedClient`, so concurrent callers
are serialized against the one rate budget of the API key. Failures never
raise out of this client: list endpoints return `[]` and the detail endpoint
returns `None`. Callers treat an empty result as "no data this time".

Endpoints:
  GET /coins/list?include_platform=true
  GET /coins/{id}
  GET /search/trending
"""

from __future__ import annotations

from typing import Any

import httpx
from pydantic import ValidationError

from defi_radar.core.config import settings
from defi_radar.core.errors import QueueFullError, RateLimitedError, UpstreamFetchError
from defi_radar.core.log import get_logger
from defi_radar.schemas.coingecko import CoinDetail, CoinListItem, TrendingCoin
from defi_radar.schemas.parsing import parse_records
from defi_radar.services.rate_limiter import RateLimitedClient


def parse_retry_after(value: str | None) -> float | None:
    """Parse a `Retry-After` header given in seconds; HTTP dates are ignored."""
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return max(0.0, seconds)


class CoinGeckoClient:
    """Async client for the CoinGecko public/demo API."""

    def __init__(
        self,
        limiter: RateLimitedClient,
        *,
        base_url: str = settings.COINGECKO_API_URL,
        api_key: str | None = settings.COINGECKO_API_KEY,
        timeout_seconds: float = settings.HTTP_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._limiter = limiter
        self.base_url = base_url.rstrip("/")
        self._timeout = httpx.Timeout(timeout_seconds)
        self._transport = transport
        self._headers = {"Accept": "application/json"}
        if api_key:
            self._headers["x-cg-demo-api-key"] = api_key

    async def _request(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """Perform one GET, translating failures into the sync error taxonomy."""
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport, headers=self._headers
            ) as client:
                response = await client.get(url, params=params)
        except httpx.TransportError as exc:
            # Timeouts, resets and refused connections
            raise UpstreamFetchError(f"GET {path}: {exc!r}", retryable=True) from exc

        if response.status_code == 429:
            raise RateLimitedError(
                f"GET {path}: 429 Too Many Requests",
                retry_after=parse_retry_after(response.headers.get("retry-after")),
            )
        if response.status_code >= 500:
            raise UpstreamFetchError(
                f"GET {path}: HTTP {response.status_code}", retryable=True, status_code=response.status_code
            )
        if response.status_code >= 400:
            raise UpstreamFetchError(f"GET {path}: HTTP {response.status_code}", status_code=response.status_code)
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamFetchError(f"GET {path}: invalid JSON body") from exc

    async def _get(self, path: str, *, params: dict[str, Any] | None = None, fallback: Any) -> Any:
        logger = get_logger(__name__)
        try:
            return await self._limiter.enqueue(
                lambda: self._request(path, params), fallback=fallback, label=f"CoinGecko {path}"
            )
        except (UpstreamFetchError, QueueFullError) as exc:
            logger.error(f"CoinGecko {path} failed: {exc}")
            return fallback

    async def get_coins_list(self, include_platform: bool = True) -> list[CoinListItem]:
        """Return every listed coin, with per-platform contract addresses when requested."""
        payload = await self._get(
            "/coins/list",
            params={"include_platform": "true" if include_platform else "false"},
            fallback=None,
        )
        if not isinstance(payload, list):
            return []
        return parse_records(CoinListItem, payload, label="CoinGecko coin", logger=get_logger(__name__))

    async def get_coin_details(self, cg_id: str) -> CoinDetail | None:
        payload = await self._get(f"/coins/{cg_id}", fallback=None)
        if not isinstance(payload, dict):
            return None
        try:
            return CoinDetail.model_validate(payload)
        except ValidationError as exc:
            get_logger(__name__).error(f"CoinGecko details for {cg_id} did not validate: {exc.error_count()} error(s)")
            return None

    async def get_trending_coins(self) -> list[TrendingCoin]:
        payload = await self._get("/search/trending", fallback=None)
        coins = payload.get("coins") if isinstance(payload, dict) else None
        if not isinstance(coins, list):
            return []
        items = [c.get("item") for c in coins if isinstance(c, dict)]
        return parse_records(TrendingCoin, items, label="trending coin", logger=get_logger(__name__))
