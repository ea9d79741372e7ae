"""Batched insert-or-update reconciliation.

Given upstream records and the set of keys already stored:

1. de-duplicate by key (the last occurrence wins),
2. partition into `to_create` (key absent) and `to_update` (key present),
3. write each partition in fixed-size chunks, every create chunk before any
   update chunk,
4. count a chunk rejected by the store as failed and continue.

The pass raises `AllOperationsFailedError` only when records were attempted
and none of them were written.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Hashable, Iterator, Sequence, TypeVar

from defi_radar.core.errors import AllOperationsFailedError, ReconciliationBatchError

T = TypeVar("T")

BatchWriter = Callable[[Sequence[T]], Awaitable[Any]]


@dataclass
class ReconcileSummary:
    """Per-entity counts of one pass."""

    entity: str
    fetched: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0
    skipped_inactive: int = 0
    skipped_incompatible: int = 0
    duplicates: int = 0

    @property
    def succeeded(self) -> int:
        return self.created + self.updated

    @property
    def attempted(self) -> int:
        return self.succeeded + self.failed

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def dedupe(records: Sequence[T], key: Callable[[T], Hashable]) -> list[T]:
    """Keep the last record per key, at the position the key was first seen."""
    by_key: dict[Hashable, T] = {}
    for record in records:
        by_key[key(record)] = record
    return list(by_key.values())


def partition(
    records: Sequence[T], existing_keys: set[Any], key: Callable[[T], Hashable]
) -> tuple[list[T], list[T]]:
    """Split de-duplicated records into `(to_create, to_update)`."""
    to_create: list[T] = []
    to_update: list[T] = []
    for record in dedupe(records, key):
        (to_update if key(record) in existing_keys else to_create).append(record)
    return to_create, to_update


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    if size < 1:
        raise ValueError("chunk size must be >= 1")
    for i in range(0, len(items), size):
        yield items[i : i + size]


async def _write_chunks(
    items: Sequence[T],
    writer: BatchWriter,
    *,
    batch_size: int,
    action: str,
    summary: ReconcileSummary,
    logger: logging.Logger,
) -> int:
    written = 0
    chunks = list(chunked(items, batch_size))
    for index, chunk in enumerate(chunks, start=1):
        logger.info(f"{summary.entity}: {action} batch {index}/{len(chunks)} ({len(chunk)} records)")
        try:
            await writer(chunk)
        except ReconciliationBatchError as exc:
            summary.failed += len(chunk)
            logger.error(f"{summary.entity}: {action} batch {index}/{len(chunks)} failed: {exc}")
            continue
        written += len(chunk)
    return written


async def reconcile(
    records: Sequence[T],
    *,
    existing_keys: set[Any],
    key: Callable[[T], Hashable],
    create: BatchWriter,
    update: BatchWriter,
    batch_size: int,
    summary: ReconcileSummary,
    logger: logging.Logger | None = None,
) -> ReconcileSummary:
    """Create unseen records and update known ones, chunk by chunk.

    `create` receives full records and must write every field; `update`
    receives existing records and must only touch volatile fields. Each call
    writes one atomic batch and raises `ReconciliationBatchError` on failure.

    Raises:
        AllOperationsFailedError: Every attempted record failed.
    """
    log = logger or logging.getLogger(__name__)
    to_create, to_update = partition(records, existing_keys, key)
    summary.duplicates += len(records) - len(to_create) - len(to_update)
    log.info(f"{summary.entity}: {len(to_create)} to create, {len(to_update)} to update")

    summary.created += await _write_chunks(
        to_create, create, batch_size=batch_size, action="create", summary=summary, logger=log
    )
    summary.updated += await _write_chunks(
        to_update, update, batch_size=batch_size, action="update", summary=summary, logger=log
    )

    if summary.failed and not summary.succeeded:
        raise AllOperationsFailedError(summary.entity, summary)
    if summary.failed:
        log.warning(
            f"{summary.entity}: partial success: {summary.succeeded} written "
            f"({summary.created} created, {summary.updated} updated), {summary.failed} failed"
        )
    return summary
