"""Pydantic schemas for DeFi Llama payloads.

Records are validated at the client boundary; anything that does not match is
dropped there instead of reaching reconciliation as a half-empty dict.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _none_to_list(value: Any) -> Any:
    # DeFi Llama sends null for empty list fields.
    return [] if value is None else value


def timestamp_to_datetime_utc(value: Any) -> Any:
    """Convert a DeFi Llama timestamp to a timezone-aware UTC datetime.

    Chart payloads use ISO strings; other endpoints use epoch seconds or
    milliseconds. Strings are left for pydantic to parse.
    """
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, (int, float)):
        ts = float(value)
        # Heuristic: treat very large values as milliseconds.
        if ts > 1e12:
            ts = ts / 1000.0
        return datetime.fromtimestamp(ts, tz=timezone.utc)
    return value


class _LlamaModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)


class ProtocolRecord(_LlamaModel):
    """Entry of `GET /protocols`."""

    id: str
    name: str
    slug: str
    address: str | None = None
    symbol: str | None = None
    description: str | None = None
    chain: str | None = None
    chains: list[str] = Field(default_factory=list)
    logo: str | None = None
    audits: str | None = None
    audit_links: list[str] = Field(default_factory=list)
    github: list[str] = Field(default_factory=list)
    category: str | None = None
    tvl: float | None = None
    change_1h: float | None = None
    change_1d: float | None = None
    change_7d: float | None = None
    mcap: float | None = None
    twitter: str | None = None
    url: str | None = None
    # Set once a protocol has ceased activity
    dead_from: Any = Field(default=None, alias="deadFrom")

    @field_validator("chains", "audit_links", "github", mode="before")
    @classmethod
    def lists_default(cls, value: Any) -> Any:
        return _none_to_list(value)

    @property
    def is_dead(self) -> bool:
        return bool(self.dead_from)


class PoolRecord(_LlamaModel):
    """Entry of `GET /pools` (`data` list)."""

    pool: str
    chain: str
    project: str
    symbol: str
    tvl_usd: float = Field(alias="tvlUsd")
    apy: float | None = None
    apy_base: float | None = Field(default=None, alias="apyBase")
    apy_reward: float | None = Field(default=None, alias="apyReward")
    reward_tokens: list[Any] | None = Field(default=None, alias="rewardTokens")
    stablecoin: bool = False
    il_risk: str | None = Field(default=None, alias="ilRisk")
    exposure: str | None = None
    pool_meta: str | None = Field(default=None, alias="poolMeta")
    # Entries are validated one by one when pool tokens are written.
    underlying_tokens: list[Any] = Field(default_factory=list, alias="underlyingTokens")

    @field_validator("underlying_tokens", mode="before")
    @classmethod
    def tokens_default(cls, value: Any) -> Any:
        return _none_to_list(value)

    @field_validator("stablecoin", mode="before")
    @classmethod
    def stablecoin_default(cls, value: Any) -> Any:
        return False if value is None else value


class ChartPoint(_LlamaModel):
    """Entry of `GET /chart/{pool}` (`data` list)."""

    timestamp: datetime
    tvl_usd: float = Field(alias="tvlUsd")
    apy: float | None = None
    apy_base: float | None = Field(default=None, alias="apyBase")
    apy_reward: float | None = Field(default=None, alias="apyReward")

    @field_validator("timestamp", mode="before")
    @classmethod
    def parse_timestamp(cls, value: Any) -> Any:
        return timestamp_to_datetime_utc(value)

    @field_validator("timestamp")
    @classmethod
    def ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class StablecoinRecord(_LlamaModel):
    """Entry of `GET /stablecoins` (`peggedAssets` list)."""

    id: str
    name: str
    symbol: str
    gecko_id: str | None = None
    peg_type: str = Field(alias="pegType")
    peg_mechanism: str | None = Field(default=None, alias="pegMechanism")
    # Keyed by peg type, e.g. {"peggedUSD": 123.0}
    circulating: dict[str, float | None] = Field(default_factory=dict)
    price: float | None = None
    chains: list[str] = Field(default_factory=list)

    @field_validator("chains", mode="before")
    @classmethod
    def chains_default(cls, value: Any) -> Any:
        return _none_to_list(value)

    @field_validator("circulating", mode="before")
    @classmethod
    def circulating_default(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def circulating_amount(self) -> float:
        amount = self.circulating.get(self.peg_type)
        if amount is None:
            amount = self.circulating.get("peggedUSD")
        return float(amount or 0)
