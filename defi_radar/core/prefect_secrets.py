from __future__ import annotations

import os
from typing import Mapping, Optional


# Env var -> Prefect Secret block holding its value in Prefect-managed runs.
SECRET_BLOCKS: dict[str, str] = {
    "DATABASE_URL": "database-url",
    "REDIS_URL": "redis-url",
    "COINGECKO_API_KEY": "coingecko-api-key",
}


def load_prefect_secret(block_name: str) -> Optional[str]:
    """Load a Prefect Secret block value by name.

    Returns None if Prefect isn't available, credentials are missing, or the block
    does not exist.
    """
    try:
        from prefect.blocks.system import Secret
        from prefect.utilities.asyncutils import run_coro_as_sync

        # `load()` may return an awaitable depending on the Prefect runner.
        if hasattr(Secret, "aload"):
            block = run_coro_as_sync(Secret.aload(block_name))
        else:
            block = Secret.load(block_name)

        value = block.get()
        if value is None:
            return None
        value = str(value).strip()
        return value or None
    except Exception:
        return None


def env_or_prefect_secret(env_key: str, block_name: str, *, strip: bool = True) -> Optional[str]:
    """Return an env var if present, else try a Prefect Secret block."""
    value = os.getenv(env_key)
    if value is not None:
        value = str(value)
        return value.strip() if strip else value
    return load_prefect_secret(block_name)


def apply_prefect_secrets_to_env(
    mapping: Mapping[str, str] = SECRET_BLOCKS, *, overwrite: bool = False
) -> list[str]:
    """Set env vars from Prefect Secret blocks.

    mapping: {ENV_VAR_NAME: prefect_secret_block_name}

    Returns the env var names that were populated from a block.
    """
    applied: list[str] = []
    for env_key, block_name in mapping.items():
        if not overwrite and os.getenv(env_key):
            continue
        value = load_prefect_secret(block_name)
        if value:
            os.environ[env_key] = value
            applied.append(env_key)
    return applied
