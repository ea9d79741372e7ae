"""Pydantic schemas for CoinGecko payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _GeckoModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class CoinListItem(_GeckoModel):
    """Entry of `GET /coins/list?include_platform=true`."""

    id: str
    symbol: str
    name: str
    # platform id -> contract address; empty strings and nulls are common
    platforms: dict[str, str | None] = Field(default_factory=dict)

    @field_validator("platforms", mode="before")
    @classmethod
    def platforms_default(cls, value: Any) -> Any:
        return {} if value is None else value

    def platform_addresses(self) -> list[tuple[str, str]]:
        """Return `(platform_id, lower-cased address)` pairs with a non-empty address."""
        out: list[tuple[str, str]] = []
        for platform_id, address in self.platforms.items():
            if not platform_id or not address or not address.strip():
                continue
            out.append((platform_id, address.strip().lower()))
        return out


class UsdValue(_GeckoModel):
    usd: float | None = None


class UsdDate(_GeckoModel):
    usd: datetime | None = None


class CoinDescription(_GeckoModel):
    en: str | None = None


class CoinImage(_GeckoModel):
    thumb: str | None = None
    small: str | None = None
    large: str | None = None


class CoinRepos(_GeckoModel):
    github: list[str] = Field(default_factory=list)


class CoinLinks(_GeckoModel):
    homepage: list[str | None] = Field(default_factory=list)
    whitepaper: str | None = None
    twitter_screen_name: str | None = None
    telegram_channel_identifier: str | None = None
    repos_url: CoinRepos = Field(default_factory=CoinRepos)


class MarketData(_GeckoModel):
    current_price: UsdValue = Field(default_factory=UsdValue)
    market_cap: UsdValue = Field(default_factory=UsdValue)
    fully_diluted_valuation: UsdValue = Field(default_factory=UsdValue)
    total_volume: UsdValue = Field(default_factory=UsdValue)
    ath: UsdValue = Field(default_factory=UsdValue)
    ath_date: UsdDate = Field(default_factory=UsdDate)
    atl: UsdValue = Field(default_factory=UsdValue)
    atl_date: UsdDate = Field(default_factory=UsdDate)
    circulating_supply: float | None = None
    total_supply: float | None = None
    max_supply: float | None = None
    price_change_percentage_24h: float | None = None
    price_change_percentage_7d: float | None = None
    price_change_percentage_14d: float | None = None
    price_change_percentage_30d: float | None = None
    price_change_percentage_60d: float | None = None
    price_change_percentage_200d: float | None = None
    price_change_percentage_1y: float | None = None

    @field_validator(
        "current_price",
        "market_cap",
        "fully_diluted_valuation",
        "total_volume",
        "ath",
        "ath_date",
        "atl",
        "atl_date",
        mode="before",
    )
    @classmethod
    def empty_usd_mapping(cls, value: Any) -> Any:
        # Delisted coins send `{}` or null instead of `{"usd": ...}`.
        return {} if value is None else value


class CoinDetail(_GeckoModel):
    """Body of `GET /coins/{id}`."""

    id: str
    symbol: str
    name: str
    asset_platform_id: str | None = None
    description: CoinDescription = Field(default_factory=CoinDescription)
    image: CoinImage = Field(default_factory=CoinImage)
    categories: list[str | None] = Field(default_factory=list)
    links: CoinLinks = Field(default_factory=CoinLinks)
    market_cap_rank: int | None = None
    market_data: MarketData = Field(default_factory=MarketData)
    last_updated: datetime | None = None

    @field_validator("description", "image", "links", "market_data", mode="before")
    @classmethod
    def empty_section(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("categories", mode="before")
    @classmethod
    def categories_default(cls, value: Any) -> Any:
        return [] if value is None else value

    def to_row(self, fetched_at: datetime) -> dict[str, Any]:
        """Flatten into a `cg_coin_details` row."""
        md = self.market_data
        homepage = next((h for h in self.links.homepage if h), None)
        github = [r for r in self.links.repos_url.github if r]
        return {
            "cg_id": self.id,
            "name": self.name,
            "symbol": self.symbol,
            "asset_platform_id": self.asset_platform_id,
            "description_en": self.description.en,
            "image_thumb_url": self.image.thumb,
            "image_small_url": self.image.small,
            "image_large_url": self.image.large,
            "categories": [c for c in self.categories if c],
            "links_homepage": homepage,
            "links_whitepaper_url": self.links.whitepaper,
            "links_twitter_screen_name": self.links.twitter_screen_name,
            "links_telegram_channel_identifier": self.links.telegram_channel_identifier,
            "links_github_repos": ",".join(github) if github else None,
            "market_cap_rank": self.market_cap_rank,
            "current_price_usd": md.current_price.usd,
            "market_cap_usd": md.market_cap.usd,
            "fully_diluted_valuation_usd": md.fully_diluted_valuation.usd,
            "total_volume_usd": md.total_volume.usd,
            "ath_usd": md.ath.usd,
            "ath_date_usd": md.ath_date.usd,
            "atl_usd": md.atl.usd,
            "atl_date_usd": md.atl_date.usd,
            "circulating_supply": md.circulating_supply,
            "total_supply": md.total_supply,
            "max_supply": md.max_supply,
            "price_change_percentage_24h_usd": md.price_change_percentage_24h,
            "price_change_percentage_7d_usd": md.price_change_percentage_7d,
            "price_change_percentage_14d_usd": md.price_change_percentage_14d,
            "price_change_percentage_30d_usd": md.price_change_percentage_30d,
            "price_change_percentage_60d_usd": md.price_change_percentage_60d,
            "price_change_percentage_200d_usd": md.price_change_percentage_200d,
            "price_change_percentage_1y_usd": md.price_change_percentage_1y,
            "cg_last_updated": self.last_updated,
            "data_fetched_at": fetched_at,
        }


class TrendingCoin(_GeckoModel):
    """`item` of one `GET /search/trending` coin entry."""

    id: str
    coin_id: int
    name: str
    symbol: str
    market_cap_rank: int | None = None
    score: int | None = None
    thumb: str | None = None
