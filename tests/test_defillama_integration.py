"""Integration tests for the public DeFi Llama endpoints.

These tests call public endpoints and validate only stable invariants.
"""

from __future__ import annotations

import pytest

from defi_radar.pipelines.filters import filter_protocols
from defi_radar.services.defillama_client import DefiLlamaClient


@pytest.mark.asyncio
@pytest.mark.integration
async def test_pools_endpoint_parses_into_records() -> None:
  """Sanity-check the public yields endpoint against our schema."""
  pools = await DefiLlamaClient(max_retries=1).get_pools()

  assert len(pools) > 0
  sample = pools[0]
  assert sample.pool
  assert sample.project
  assert sample.tvl_usd >= 0


@pytest.mark.asyncio
@pytest.mark.integration
async def test_protocols_filter_keeps_ethereum_protocols() -> None:
  protocols = await DefiLlamaClient(max_retries=1).get_protocols()
  result = filter_protocols(protocols)

  assert result.total == len(protocols)
  assert any(p.chain and p.chain.lower() == "ethereum" for p in result.accepted)
