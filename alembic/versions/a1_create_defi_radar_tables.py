"""Create defi_radar tables.

Revision ID: a1createdefiradar
Revises:
Create Date: 2026-10-18

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "a1createdefiradar"
down_revision = None
branch_labels = None
depends_on = None


SCHEMA = "defi_radar"


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    op.execute(f"CREATE SCHEMA IF NOT EXISTS {SCHEMA}")

    op.create_table(
        "protocols",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("slug", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("address", sa.String(255)),
        sa.Column("symbol", sa.String(64)),
        sa.Column("description", sa.Text()),
        sa.Column("chain", sa.String(64)),
        sa.Column("logo", sa.Text()),
        sa.Column("audits", sa.String(16)),
        sa.Column("audit_links", postgresql.ARRAY(sa.Text()), nullable=False, server_default=sa.text("'{}'")),
        sa.Column("github", sa.String(255)),
        sa.Column("category", sa.String(64)),
        sa.Column("chains", postgresql.ARRAY(sa.String(64)), nullable=False, server_default=sa.text("'{}'")),
        sa.Column("twitter", sa.String(255)),
        sa.Column("url", sa.Text()),
        sa.Column("tvl", sa.Numeric(30, 2)),
        sa.Column("change_1h", sa.Numeric(20, 6)),
        sa.Column("change_1d", sa.Numeric(20, 6)),
        sa.Column("change_7d", sa.Numeric(20, 6)),
        sa.Column("mcap", sa.Numeric(30, 2)),
        *_timestamps(),
        schema=SCHEMA,
    )
    op.create_index("ix_defi_radar_protocols_slug", "protocols", ["slug"], unique=True, schema=SCHEMA)
    op.create_index("ix_defi_radar_protocols_category", "protocols", ["category"], schema=SCHEMA)

    op.create_table(
        "pools",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column("project", sa.String(255), sa.ForeignKey(f"{SCHEMA}.protocols.slug"), nullable=False),
        sa.Column("chain", sa.String(64), nullable=False),
        sa.Column("symbol", sa.String(255), nullable=False),
        sa.Column("tvl_usd", sa.Numeric(30, 2), nullable=False),
        sa.Column("apy", sa.Numeric(24, 6)),
        sa.Column("apy_base", sa.Numeric(24, 6)),
        sa.Column("apy_reward", sa.Numeric(24, 6)),
        sa.Column("reward_tokens", postgresql.ARRAY(sa.String(255))),
        sa.Column("stablecoin", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("il_risk", sa.String(16)),
        sa.Column("exposure", sa.String(16)),
        sa.Column("pool_meta", sa.Text()),
        *_timestamps(),
        schema=SCHEMA,
    )
    op.create_index("ix_defi_radar_pools_project", "pools", ["project"], schema=SCHEMA)
    op.create_index("ix_defi_radar_pools_chain", "pools", ["chain"], schema=SCHEMA)
    op.create_index("ix_defi_radar_pools_apy", "pools", ["apy"], schema=SCHEMA)

    op.create_table(
        "pool_tokens",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("pool_id", sa.String(255), sa.ForeignKey(f"{SCHEMA}.pools.id"), nullable=False),
        sa.Column("token_address", sa.String(255), nullable=False),
        sa.Column("chain", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
        sa.UniqueConstraint("pool_id", "token_address", name="uq_pool_tokens_pool_id_token_address"),
        schema=SCHEMA,
    )
    op.create_index("ix_defi_radar_pool_tokens_token_address", "pool_tokens", ["token_address"], schema=SCHEMA)

    op.create_table(
        "pool_charts",
        sa.Column("pool_id", sa.String(255), sa.ForeignKey(f"{SCHEMA}.pools.id"), primary_key=True),
        sa.Column("time", sa.DateTime(timezone=True), primary_key=True),
        sa.Column("tvl_usd", sa.Numeric(30, 2), nullable=False),
        sa.Column("apy", sa.Numeric(24, 6)),
        sa.Column("apy_base", sa.Numeric(24, 6)),
        sa.Column("apy_reward", sa.Numeric(24, 6)),
        schema=SCHEMA,
    )

    op.create_table(
        "stablecoins",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("symbol", sa.String(64), nullable=False),
        sa.Column("gecko_id", sa.String(255)),
        sa.Column("peg_type", sa.String(64), nullable=False),
        sa.Column("peg_mechanism", sa.String(64)),
        sa.Column("circulating", sa.Numeric(30, 2), nullable=False),
        sa.Column("price", sa.Numeric(24, 8)),
        sa.Column("chains", postgresql.ARRAY(sa.String(64)), nullable=False, server_default=sa.text("'{}'")),
        *_timestamps(),
        schema=SCHEMA,
    )
    op.create_index("ix_defi_radar_stablecoins_symbol", "stablecoins", ["symbol"], schema=SCHEMA)

    op.create_table(
        "cg_coins_index",
        sa.Column("cg_id", sa.String(255), primary_key=True),
        sa.Column("symbol", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        *_timestamps(),
        schema=SCHEMA,
    )

    op.create_table(
        "cg_coin_platforms",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("cg_id", sa.String(255), sa.ForeignKey(f"{SCHEMA}.cg_coins_index.cg_id"), nullable=False),
        sa.Column("platform_id", sa.String(255), nullable=False),
        sa.Column("contract_address", sa.String(255), nullable=False),
        sa.UniqueConstraint(
            "cg_id", "platform_id", "contract_address", name="uq_cg_coin_platforms_cg_platform_address"
        ),
        schema=SCHEMA,
    )
    op.create_index(
        "ix_cg_coin_platforms_platform_address",
        "cg_coin_platforms",
        ["platform_id", "contract_address"],
        schema=SCHEMA,
    )

    op.create_table(
        "cg_coin_details",
        sa.Column("cg_id", sa.String(255), sa.ForeignKey(f"{SCHEMA}.cg_coins_index.cg_id"), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("symbol", sa.String(255), nullable=False),
        sa.Column("asset_platform_id", sa.String(255)),
        sa.Column("description_en", sa.Text()),
        sa.Column("image_thumb_url", sa.Text()),
        sa.Column("image_small_url", sa.Text()),
        sa.Column("image_large_url", sa.Text()),
        sa.Column("categories", postgresql.JSONB()),
        sa.Column("links_homepage", sa.Text()),
        sa.Column("links_whitepaper_url", sa.Text()),
        sa.Column("links_twitter_screen_name", sa.String(255)),
        sa.Column("links_telegram_channel_identifier", sa.String(255)),
        sa.Column("links_github_repos", sa.Text()),
        sa.Column("market_cap_rank", sa.Integer()),
        sa.Column("current_price_usd", sa.Numeric(38, 18)),
        sa.Column("market_cap_usd", sa.Numeric(38, 2)),
        sa.Column("fully_diluted_valuation_usd", sa.Numeric(38, 2)),
        sa.Column("total_volume_usd", sa.Numeric(38, 2)),
        sa.Column("ath_usd", sa.Numeric(38, 18)),
        sa.Column("ath_date_usd", sa.DateTime(timezone=True)),
        sa.Column("atl_usd", sa.Numeric(38, 18)),
        sa.Column("atl_date_usd", sa.DateTime(timezone=True)),
        sa.Column("circulating_supply", sa.Numeric(38, 6)),
        sa.Column("total_supply", sa.Numeric(38, 6)),
        sa.Column("max_supply", sa.Numeric(38, 6)),
        sa.Column("price_change_percentage_24h_usd", sa.Numeric(20, 6)),
        sa.Column("price_change_percentage_7d_usd", sa.Numeric(20, 6)),
        sa.Column("price_change_percentage_14d_usd", sa.Numeric(20, 6)),
        sa.Column("price_change_percentage_30d_usd", sa.Numeric(20, 6)),
        sa.Column("price_change_percentage_60d_usd", sa.Numeric(20, 6)),
        sa.Column("price_change_percentage_200d_usd", sa.Numeric(20, 6)),
        sa.Column("price_change_percentage_1y_usd", sa.Numeric(20, 6)),
        sa.Column("cg_last_updated", sa.DateTime(timezone=True)),
        sa.Column("data_fetched_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        schema=SCHEMA,
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("cg_coin_details", schema=SCHEMA)
    op.drop_index("ix_cg_coin_platforms_platform_address", table_name="cg_coin_platforms", schema=SCHEMA)
    op.drop_table("cg_coin_platforms", schema=SCHEMA)
    op.drop_table("cg_coins_index", schema=SCHEMA)
    op.drop_index("ix_defi_radar_stablecoins_symbol", table_name="stablecoins", schema=SCHEMA)
    op.drop_table("stablecoins", schema=SCHEMA)
    op.drop_table("pool_charts", schema=SCHEMA)
    op.drop_index("ix_defi_radar_pool_tokens_token_address", table_name="pool_tokens", schema=SCHEMA)
    op.drop_table("pool_tokens", schema=SCHEMA)
    op.drop_index("ix_defi_radar_pools_apy", table_name="pools", schema=SCHEMA)
    op.drop_index("ix_defi_radar_pools_chain", table_name="pools", schema=SCHEMA)
    op.drop_index("ix_defi_radar_pools_project", table_name="pools", schema=SCHEMA)
    op.drop_table("pools", schema=SCHEMA)
    op.drop_index("ix_defi_radar_protocols_category", table_name="protocols", schema=SCHEMA)
    op.drop_index("ix_defi_radar_protocols_slug", table_name="protocols", schema=SCHEMA)
    op.drop_table("protocols", schema=SCHEMA)
