"""Compatibility filters applied before reconciliation.

All functions here are pure. A filter pass splits its input into three
disjoint groups (accepted, skipped inactive, skipped incompatible) whose sizes
always add up to the input size.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, Iterable, Sequence, TypeVar

from defi_radar.schemas.defillama import PoolRecord, ProtocolRecord

T = TypeVar("T")


# Bump when the membership below changes.
CHAIN_ALLOWLIST_VERSION = 1

# Protocols tagged with this chain span many chains and are always kept.
MULTI_CHAIN = "multi-chain"

SUPPORTED_CHAINS: frozenset[str] = frozenset(
    {
        "ethereum",
        "bsc",
        "polygon",
        "arbitrum",
        "optimism",
        "avalanche",
        "base",
        "sonic",
        "berachain",
        "zksync",
        "zksync era",
        "fantom",
        "cronos",
        "gnosis",
        "moonbeam",
        "moonriver",
        "rootstock",
        "linea",
        "kava",
        "metis",
        "celo",
        "blast",
        "scroll",
        "mode",
        "mantle",
        "manta",
        "fraxtal",
        "unichain",
        "polygon zkevm",
        "sei",
        "swellchain",
        "taiko",
        MULTI_CHAIN,
    }
)


@dataclass
class FilterResult(Generic[T]):
    accepted: list[T] = field(default_factory=list)
    skipped_inactive: int = 0
    skipped_incompatible: int = 0

    @property
    def total(self) -> int:
        return len(self.accepted) + self.skipped_inactive + self.skipped_incompatible


def normalize_allowlist(chains: Iterable[str]) -> frozenset[str]:
    return frozenset(c.strip().lower() for c in chains if c and c.strip())


def is_supported_chain(chain: str | None, allowlist: frozenset[str] = SUPPORTED_CHAINS) -> bool:
    """Case-insensitive allow-list check; the multi-chain sentinel always passes."""
    if not chain:
        return False
    name = chain.strip().lower()
    return name == MULTI_CHAIN or name in allowlist


def is_compatible(
    chain: str | None,
    chains: Sequence[str] = (),
    allowlist: frozenset[str] = SUPPORTED_CHAINS,
) -> bool:
    """True when the primary chain or any listed chain is supported."""
    if is_supported_chain(chain, allowlist):
        return True
    return any(is_supported_chain(c, allowlist) for c in chains)


def filter_protocols(
    records: Sequence[ProtocolRecord],
    allowlist: Iterable[str] = SUPPORTED_CHAINS,
) -> FilterResult[ProtocolRecord]:
    """Drop dead protocols, then protocols on no supported chain."""
    allowed = normalize_allowlist(allowlist)
    result: FilterResult[ProtocolRecord] = FilterResult()
    for record in records:
        if record.is_dead:
            result.skipped_inactive += 1
        elif not is_compatible(record.chain, record.chains, allowed):
            result.skipped_incompatible += 1
        else:
            result.accepted.append(record)
    return result


def filter_pools(
    records: Sequence[PoolRecord],
    known_protocol_slugs: set[str],
    allowlist: Iterable[str] = SUPPORTED_CHAINS,
) -> FilterResult[PoolRecord]:
    """Keep pools whose protocol is already stored and whose chain is supported.

    Both an unknown parent protocol and an unsupported chain count as
    incompatible.
    """
    allowed = normalize_allowlist(allowlist)
    result: FilterResult[PoolRecord] = FilterResult()
    for record in records:
        if record.project not in known_protocol_slugs or not is_supported_chain(record.chain, allowed):
            result.skipped_incompatible += 1
        else:
            result.accepted.append(record)
    return result


def missing_projects(records: Sequence[PoolRecord], known_protocol_slugs: set[str], top: int = 10) -> list[tuple[str, int]]:
    """Most frequent unknown parent protocols, for the skip report."""
    counts: dict[str, int] = {}
    for record in records:
        if record.project not in known_protocol_slugs:
            counts[record.project] = counts.get(record.project, 0) + 1
    return sorted(counts.items(), key=lambda kv: kv[1], reverse=True)[:top]
