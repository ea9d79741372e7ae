"""Unit tests for the batched create/update reconciliation engine."""

from __future__ import annotations

from typing import Sequence

import pytest

from defi_radar.core.errors import AllOperationsFailedError, ReconciliationBatchError
from defi_radar.pipelines.reconcile import ReconcileSummary, chunked, dedupe, partition, reconcile


class Recorder:
    """Batch writer that records chunks and fails the configured call numbers."""

    def __init__(self, name: str, log: list, fail: Sequence[int] = ()) -> None:
        self.name = name
        self.log = log
        self.fail = set(fail)
        self.calls = 0

    async def __call__(self, chunk: Sequence[dict]) -> None:
        self.calls += 1
        self.log.append((self.name, [r["id"] for r in chunk]))
        if self.calls in self.fail:
            raise ReconciliationBatchError(self.name, len(chunk), "duplicate key")


def _records(*ids: str) -> list[dict]:
    return [{"id": i, "v": n} for n, i in enumerate(ids)]


def test_dedupe_keeps_last_occurrence_at_first_position() -> None:
    records = [{"id": "a", "v": 1}, {"id": "b", "v": 2}, {"id": "a", "v": 3}]

    assert dedupe(records, key=lambda r: r["id"]) == [{"id": "a", "v": 3}, {"id": "b", "v": 2}]


def test_partition_is_disjoint_and_complete() -> None:
    records = _records("a", "b", "c", "b", "d")
    existing = {"b", "d", "zz"}

    to_create, to_update = partition(records, existing, key=lambda r: r["id"])

    create_ids = {r["id"] for r in to_create}
    update_ids = {r["id"] for r in to_update}
    assert create_ids == {"a", "c"}
    assert update_ids == {"b", "d"}
    assert not create_ids & update_ids
    assert create_ids | update_ids == {r["id"] for r in records}
    assert all(r["id"] not in existing for r in to_create)


def test_chunked_rejects_non_positive_size() -> None:
    with pytest.raises(ValueError):
        list(chunked([1, 2], 0))
    assert [list(c) for c in chunked([1, 2, 3], 2)] == [[1, 2], [3]]


@pytest.mark.asyncio
async def test_creates_run_before_updates() -> None:
    log: list = []
    summary = ReconcileSummary(entity="things")

    await reconcile(
        _records("old1", "new1", "old2", "new2"),
        existing_keys={"old1", "old2"},
        key=lambda r: r["id"],
        create=Recorder("create", log),
        update=Recorder("update", log),
        batch_size=10,
        summary=summary,
    )

    assert [name for name, _ in log] == ["create", "update"]
    assert summary.created == 2
    assert summary.updated == 2
    assert summary.failed == 0


@pytest.mark.asyncio
async def test_failed_chunk_is_counted_and_remaining_chunks_continue() -> None:
    log: list = []
    summary = ReconcileSummary(entity="things")
    create = Recorder("create", log, fail=[2])

    await reconcile(
        _records(*[f"r{i}" for i in range(8)]),
        existing_keys=set(),
        key=lambda r: r["id"],
        create=create,
        update=Recorder("update", log),
        batch_size=2,
        summary=summary,
    )

    assert create.calls == 4
    assert summary.created == 6
    assert summary.failed == 2
    assert summary.created + summary.updated + summary.failed == 8


@pytest.mark.asyncio
async def test_every_chunk_failing_raises_all_operations_failed() -> None:
    log: list = []
    summary = ReconcileSummary(entity="things")

    with pytest.raises(AllOperationsFailedError) as exc_info:
        await reconcile(
            _records("a", "b", "c"),
            existing_keys={"c"},
            key=lambda r: r["id"],
            create=Recorder("create", log, fail=[1]),
            update=Recorder("update", log, fail=[1]),
            batch_size=5,
            summary=summary,
        )

    assert exc_info.value.entity == "things"
    assert exc_info.value.summary.failed == 3


@pytest.mark.asyncio
async def test_empty_input_is_not_a_failure() -> None:
    summary = await reconcile(
        [],
        existing_keys={"a"},
        key=lambda r: r["id"],
        create=Recorder("create", []),
        update=Recorder("update", []),
        batch_size=5,
        summary=ReconcileSummary(entity="things"),
    )

    assert summary.attempted == 0


@pytest.mark.asyncio
async def test_duplicates_are_counted_once() -> None:
    summary = await reconcile(
        _records("a", "a", "b"),
        existing_keys=set(),
        key=lambda r: r["id"],
        create=Recorder("create", []),
        update=Recorder("update", []),
        batch_size=5,
        summary=ReconcileSummary(entity="things"),
    )

    assert summary.duplicates == 1
    assert summary.created == 2
