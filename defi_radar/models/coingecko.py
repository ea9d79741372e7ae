"""SQLAlchemy models for the CoinGecko token registry.

- cg_coins_index: one row per CoinGecko id (symbol, name)
- cg_coin_platforms: per-chain contract address of a coin; this is the join
  used to correlate pool underlying tokens with token metadata
- cg_coin_details: lazily fetched detail rows stamped with `data_fetched_at`
"""

from __future__ import annotations

from sqlalchemy import Column, DateTime, Integer, Numeric, String, ForeignKey, Index, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func

from defi_radar.core.database import Base
from defi_radar.models.defillama import SCHEMA_NAME


class CoinIndex(Base):
    __tablename__ = "cg_coins_index"
    __table_args__ = {"schema": SCHEMA_NAME}

    cg_id = Column(String(255), primary_key=True)
    symbol = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class CoinPlatform(Base):
    __tablename__ = "cg_coin_platforms"
    __table_args__ = (
        UniqueConstraint("cg_id", "platform_id", "contract_address", name="uq_cg_coin_platforms_cg_platform_address"),
        Index("ix_cg_coin_platforms_platform_address", "platform_id", "contract_address"),
        {"schema": SCHEMA_NAME},
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    cg_id = Column(String(255), ForeignKey(f"{SCHEMA_NAME}.cg_coins_index.cg_id"), nullable=False)
    platform_id = Column(String(255), nullable=False)
    # Stored lower-cased
    contract_address = Column(String(255), nullable=False)


class CoinDetails(Base):
    __tablename__ = "cg_coin_details"
    __table_args__ = {"schema": SCHEMA_NAME}

    cg_id = Column(String(255), ForeignKey(f"{SCHEMA_NAME}.cg_coins_index.cg_id"), primary_key=True)
    name = Column(String(255), nullable=False)
    symbol = Column(String(255), nullable=False)
    asset_platform_id = Column(String(255))
    description_en = Column(Text)
    image_thumb_url = Column(Text)
    image_small_url = Column(Text)
    image_large_url = Column(Text)
    categories = Column(JSONB)
    links_homepage = Column(Text)
    links_whitepaper_url = Column(Text)
    links_twitter_screen_name = Column(String(255))
    links_telegram_channel_identifier = Column(String(255))
    links_github_repos = Column(Text)
    market_cap_rank = Column(Integer)

    current_price_usd = Column(Numeric(38, 18))
    market_cap_usd = Column(Numeric(38, 2))
    fully_diluted_valuation_usd = Column(Numeric(38, 2))
    total_volume_usd = Column(Numeric(38, 2))
    ath_usd = Column(Numeric(38, 18))
    ath_date_usd = Column(DateTime(timezone=True))
    atl_usd = Column(Numeric(38, 18))
    atl_date_usd = Column(DateTime(timezone=True))
    circulating_supply = Column(Numeric(38, 6))
    total_supply = Column(Numeric(38, 6))
    max_supply = Column(Numeric(38, 6))
    price_change_percentage_24h_usd = Column(Numeric(20, 6))
    price_change_percentage_7d_usd = Column(Numeric(20, 6))
    price_change_percentage_14d_usd = Column(Numeric(20, 6))
    price_change_percentage_30d_usd = Column(Numeric(20, 6))
    price_change_percentage_60d_usd = Column(Numeric(20, 6))
    price_change_percentage_200d_usd = Column(Numeric(20, 6))
    price_change_percentage_1y_usd = Column(Numeric(20, 6))

    cg_last_updated = Column(DateTime(timezone=True))
    # Staleness checks compare against this stamp
    data_fetched_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
