import asyncio
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from alembic import context

import sys
import os

# Add the project root to python path so we can import 'defi_radar'
sys.path.insert(0, os.getcwd())

from defi_radar.core.database import Base, _get_database_url
from defi_radar.models.defillama import SCHEMA_NAME

# Imported for their side effect of registering tables on Base.metadata
import defi_radar.models.defillama  # noqa: F401
import defi_radar.models.coingecko  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

# The URL always comes from DATABASE_URL (or its Prefect Secret block),
# forced onto the asyncpg driver.
config.set_main_option("sqlalchemy.url", _get_database_url())


def include_name(name, type_, parent_names) -> bool:
    if type_ == "schema":
        return name == SCHEMA_NAME
    return True


def run_migrations_offline() -> None:
    """Emit SQL without connecting."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        include_schemas=True,
        include_name=include_name,
        version_table_schema=SCHEMA_NAME,
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    connection.exec_driver_sql(f"CREATE SCHEMA IF NOT EXISTS {SCHEMA_NAME}")
    context.configure(
        connection=connection,
        include_schemas=True,
        include_name=include_name,
        target_metadata=target_metadata,
        version_table_schema=SCHEMA_NAME,
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)
        await connection.commit()

    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
