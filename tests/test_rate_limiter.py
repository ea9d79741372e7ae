"""Unit tests for the serialized rate-limited request queue.

Time is simulated with `FakeClock`; no test sleeps for real.
"""

from __future__ import annotations

import asyncio

import pytest

from defi_radar.core.errors import QueueFullError, RateLimitedError, UpstreamFetchError
from defi_radar.services.rate_limiter import RateLimitedClient
from fakes import FakeClock


def _limiter(clock: FakeClock, **overrides) -> RateLimitedClient:
    options = dict(
        min_interval=2.0,
        max_queue_size=10,
        max_attempts=3,
        reset_retry_delay=1.0,
        default_retry_after=60.0,
        safety_margin=1.0,
        clock=clock.time,
        sleep=clock.sleep,
    )
    options.update(overrides)
    return RateLimitedClient(**options)


@pytest.mark.asyncio
async def test_calls_are_spaced_by_min_interval() -> None:
    clock = FakeClock()
    starts: list[float] = []

    async def call() -> int:
        starts.append(clock.now)
        return len(starts)

    async with _limiter(clock) as limiter:
        results = await asyncio.gather(*[limiter.enqueue(call) for _ in range(4)])

    assert sorted(results) == [1, 2, 3, 4]
    assert starts == [0.0, 2.0, 4.0, 6.0]
    assert all(b - a >= 2.0 for a, b in zip(starts, starts[1:]))


@pytest.mark.asyncio
async def test_429_with_retry_after_delays_next_call() -> None:
    clock = FakeClock()
    attempts: list[float] = []

    async def flaky() -> str:
        attempts.append(clock.now)
        if len(attempts) == 1:
            raise RateLimitedError("429", retry_after=5)
        return "ok"

    async with _limiter(clock) as limiter:
        result = await limiter.enqueue(flaky)

    assert result == "ok"
    assert len(attempts) == 2
    # retry_after + safety margin
    assert attempts[1] - attempts[0] >= 6.0


@pytest.mark.asyncio
async def test_backoff_applies_to_every_queued_caller() -> None:
    clock = FakeClock()
    starts: dict[str, float] = {}

    async def limited() -> str:
        starts["a"] = clock.now
        raise RateLimitedError("429", retry_after=5)

    async def other() -> str:
        starts["b"] = clock.now
        return "b"

    async with _limiter(clock, max_attempts=1) as limiter:
        a, b = await asyncio.gather(
            limiter.enqueue(limited, fallback="fallback"),
            limiter.enqueue(other),
        )

    assert a == "fallback"
    assert b == "b"
    assert starts["b"] >= starts["a"] + 6.0


@pytest.mark.asyncio
async def test_429_without_hint_uses_default_retry_after() -> None:
    clock = FakeClock()
    attempts: list[float] = []

    async def flaky() -> str:
        attempts.append(clock.now)
        if len(attempts) == 1:
            raise RateLimitedError("429")
        return "ok"

    async with _limiter(clock, default_retry_after=30.0) as limiter:
        assert await limiter.enqueue(flaky) == "ok"

    assert attempts[1] - attempts[0] >= 31.0


@pytest.mark.asyncio
async def test_connection_reset_is_retried_after_fixed_delay() -> None:
    clock = FakeClock()
    calls: list[float] = []

    async def flaky() -> str:
        calls.append(clock.now)
        if len(calls) < 3:
            raise ConnectionResetError("reset by peer")
        return "ok"

    async with _limiter(clock) as limiter:
        assert await limiter.enqueue(flaky) == "ok"

    assert len(calls) == 3
    assert clock.sleeps.count(1.0) >= 2


@pytest.mark.asyncio
async def test_exhausted_attempts_resolve_with_fallback() -> None:
    clock = FakeClock()
    calls = 0

    async def always_down() -> str:
        nonlocal calls
        calls += 1
        raise UpstreamFetchError("timeout", retryable=True)

    async with _limiter(clock, max_attempts=3) as limiter:
        result = await limiter.enqueue(always_down, fallback=[])

    assert result == []
    assert calls == 3


@pytest.mark.asyncio
async def test_non_retryable_error_reaches_caller_without_retry() -> None:
    clock = FakeClock()
    calls = 0

    async def not_found() -> str:
        nonlocal calls
        calls += 1
        raise UpstreamFetchError("404", status_code=404)

    async with _limiter(clock) as limiter:
        with pytest.raises(UpstreamFetchError) as exc_info:
            await limiter.enqueue(not_found)

    assert exc_info.value.status_code == 404
    assert calls == 1


@pytest.mark.asyncio
async def test_unexpected_exception_is_propagated() -> None:
    clock = FakeClock()

    async def broken() -> str:
        raise ValueError("bad payload")

    async with _limiter(clock) as limiter:
        with pytest.raises(ValueError):
            await limiter.enqueue(broken)
        # The worker keeps serving later calls
        assert await limiter.enqueue(lambda: asyncio.sleep(0, result="next")) == "next"


@pytest.mark.asyncio
async def test_full_queue_rejects_immediately() -> None:
    clock = FakeClock()
    gate = asyncio.Event()

    async def blocked() -> str:
        await gate.wait()
        return "first"

    async def quick() -> str:
        return "queued"

    limiter = _limiter(clock, min_interval=0.0, max_queue_size=2)
    try:
        first = asyncio.create_task(limiter.enqueue(blocked))
        for _ in range(5):
            await asyncio.sleep(0)
        queued = [asyncio.create_task(limiter.enqueue(quick)) for _ in range(2)]
        for _ in range(5):
            await asyncio.sleep(0)
        assert limiter.pending == 2

        with pytest.raises(QueueFullError):
            await limiter.enqueue(quick)

        gate.set()
        assert await first == "first"
        assert await asyncio.gather(*queued) == ["queued", "queued"]
    finally:
        await limiter.aclose()


@pytest.mark.asyncio
async def test_aclose_cancels_calls_that_never_started() -> None:
    clock = FakeClock()
    gate = asyncio.Event()

    async def blocked() -> str:
        await gate.wait()
        return "never"

    limiter = _limiter(clock, min_interval=0.0)
    running = asyncio.create_task(limiter.enqueue(blocked))
    waiting = asyncio.create_task(limiter.enqueue(blocked))
    for _ in range(5):
        await asyncio.sleep(0)

    await limiter.aclose()

    with pytest.raises(asyncio.CancelledError):
        await waiting
    with pytest.raises(asyncio.CancelledError):
        await running


@pytest.mark.asyncio
async def test_aclose_releases_the_caller_of_the_in_flight_call() -> None:
    clock = FakeClock()
    started = asyncio.Event()

    async def slow() -> str:
        started.set()
        await asyncio.sleep(10)
        return "late"

    limiter = _limiter(clock, min_interval=0.0)
    caller = asyncio.create_task(limiter.enqueue(slow))
    await asyncio.wait_for(started.wait(), timeout=1.0)

    await limiter.aclose()

    done, _ = await asyncio.wait({caller}, timeout=1.0)
    assert caller in done
    assert caller.cancelled()
    assert limiter.pending == 0


def test_max_attempts_must_be_positive() -> None:
    with pytest.raises(ValueError):
        RateLimitedClient(max_attempts=0)
