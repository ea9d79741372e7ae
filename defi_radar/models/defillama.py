"""SQLAlchemy models for DeFi Llama protocols, pools and stablecoins.

We persist five tables:
- protocols: protocol metadata + dynamic metrics (unique per slug)
- pools: yield pools, each referencing a protocol slug
- pool_tokens: underlying assets of a pool, written only when the pool is created
- pool_charts: time-series points keyed by (pool_id, time), pruned to a 7-day window
- stablecoins: pegged assets, upserted wholesale every pass
"""

from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, Numeric, String, ForeignKey, Text, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import ARRAY, UUID
from sqlalchemy.sql import func

from defi_radar.core.database import Base


# Define the schema name
SCHEMA_NAME = "defi_radar"


class Protocol(Base):
    """DeFi Llama protocol."""

    __tablename__ = "protocols"
    __table_args__ = {"schema": SCHEMA_NAME}

    # Upstream-assigned identifier
    id = Column(String(64), primary_key=True)
    slug = Column(String(255), unique=True, nullable=False, index=True)

    name = Column(String(255), nullable=False)
    address = Column(String(255))
    symbol = Column(String(64))
    description = Column(Text)
    chain = Column(String(64))
    logo = Column(Text)
    audits = Column(String(16))
    audit_links = Column(ARRAY(Text), nullable=False, server_default=text("'{}'"))
    github = Column(String(255))
    category = Column(String(64), index=True)
    # Lower-cased chain names
    chains = Column(ARRAY(String(64)), nullable=False, server_default=text("'{}'"))
    twitter = Column(String(255))
    url = Column(Text)

    # Dynamic metrics: the only columns refreshed on re-sync
    tvl = Column(Numeric(30, 2))
    change_1h = Column(Numeric(20, 6))
    change_1d = Column(Numeric(20, 6))
    change_7d = Column(Numeric(20, 6))
    mcap = Column(Numeric(30, 2))

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Pool(Base):
    """DeFi Llama yield pool."""

    __tablename__ = "pools"
    __table_args__ = {"schema": SCHEMA_NAME}

    # DeFi Llama's unique pool identifier
    id = Column(String(255), primary_key=True)
    project = Column(
        String(255),
        ForeignKey(f"{SCHEMA_NAME}.protocols.slug"),
        nullable=False,
        index=True,
    )
    chain = Column(String(64), nullable=False, index=True)
    symbol = Column(String(255), nullable=False)

    tvl_usd = Column(Numeric(30, 2), nullable=False)
    # APYs can exceed 10,000 (percent) for some pools.
    apy = Column(Numeric(24, 6), index=True)
    apy_base = Column(Numeric(24, 6))
    apy_reward = Column(Numeric(24, 6))

    reward_tokens = Column(ARRAY(String(255)))
    stablecoin = Column(Boolean, nullable=False, server_default=text("false"))
    il_risk = Column(String(16))
    exposure = Column(String(16))
    pool_meta = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class PoolToken(Base):
    """One underlying asset of a pool."""

    __tablename__ = "pool_tokens"
    __table_args__ = (
        UniqueConstraint("pool_id", "token_address", name="uq_pool_tokens_pool_id_token_address"),
        {"schema": SCHEMA_NAME},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, server_default=func.gen_random_uuid())
    pool_id = Column(String(255), ForeignKey(f"{SCHEMA_NAME}.pools.id"), nullable=False)
    token_address = Column(String(255), nullable=False, index=True)
    chain = Column(String(64), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())


class PoolChart(Base):
    """Time-series point for a pool."""

    __tablename__ = "pool_charts"
    __table_args__ = {"schema": SCHEMA_NAME}

    pool_id = Column(
        String(255),
        ForeignKey(f"{SCHEMA_NAME}.pools.id"),
        primary_key=True,
    )
    timestamp = Column("time", DateTime(timezone=True), primary_key=True)

    tvl_usd = Column(Numeric(30, 2), nullable=False)
    apy = Column(Numeric(24, 6))
    apy_base = Column(Numeric(24, 6))
    apy_reward = Column(Numeric(24, 6))


class Stablecoin(Base):
    """DeFi Llama pegged asset."""

    __tablename__ = "stablecoins"
    __table_args__ = {"schema": SCHEMA_NAME}

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    symbol = Column(String(64), nullable=False, index=True)
    gecko_id = Column(String(255))
    peg_type = Column(String(64), nullable=False)
    peg_mechanism = Column(String(64))
    circulating = Column(Numeric(30, 2), nullable=False)
    price = Column(Numeric(24, 8))
    chains = Column(ARRAY(String(64)), nullable=False, server_default=text("'{}'"))

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
