"""Serialized access to a rate-limited upstream provider.

One worker drains a FIFO of pending calls, so at most one request is in flight.
Before each call the worker waits

    max(0, backoff_until - now, min_interval - (now - last_call))

A `RateLimitedError` pushes `backoff_until` forward for every caller and the
call is retried; retryable transport errors are retried after a fixed delay.
Other exceptions reach the caller unchanged. When attempts run out the caller
gets its `fallback` value instead of an exception.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from defi_radar.core.config import settings
from defi_radar.core.errors import QueueFullError, RateLimitedError, UpstreamFetchError
from defi_radar.core.log import get_logger


@dataclass
class _Job:
    call: Callable[[], Awaitable[Any]]
    fallback: Any
    label: str
    future: asyncio.Future = field(repr=False)


class RateLimitedClient:
    """Single-worker request queue sharing one rate budget between callers.

    Construct one per provider and close it with `aclose()` (or use it as an
    async context manager). `clock` and `sleep` are injectable for tests.
    """

    def __init__(
        self,
        *,
        min_interval: float = settings.CG_MIN_INTERVAL_SECONDS,
        max_queue_size: int = settings.CG_MAX_QUEUE_SIZE,
        max_attempts: int = settings.CG_MAX_ATTEMPTS,
        reset_retry_delay: float = settings.CG_RESET_RETRY_DELAY_SECONDS,
        default_retry_after: float = settings.CG_DEFAULT_RETRY_AFTER_SECONDS,
        safety_margin: float = settings.CG_BACKOFF_SAFETY_MARGIN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.min_interval = min_interval
        self.max_queue_size = max_queue_size
        self.max_attempts = max_attempts
        self.reset_retry_delay = reset_retry_delay
        self.default_retry_after = default_retry_after
        self.safety_margin = safety_margin
        self._clock = clock
        self._sleep = sleep

        self._queue: asyncio.Queue[_Job] = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._last_call: float | None = None
        self.backoff_until: float = 0.0

    @property
    def pending(self) -> int:
        """Calls waiting in the queue (the one being executed is not counted)."""
        return self._queue.qsize()

    async def __aenter__(self) -> "RateLimitedClient":
        self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._drain())

    async def aclose(self) -> None:
        """Stop the worker; the in-flight call and calls that never started are cancelled."""
        worker, self._worker = self._worker, None
        if worker is not None:
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass
        while not self._queue.empty():
            job = self._queue.get_nowait()
            if not job.future.done():
                job.future.cancel()

    async def enqueue(
        self,
        call: Callable[[], Awaitable[Any]],
        *,
        fallback: Any = None,
        label: str = "request",
    ) -> Any:
        """Queue `call` and return its result once the worker has run it.

        Raises:
            QueueFullError: `max_queue_size` calls are already pending.
        """
        if self._queue.qsize() >= self.max_queue_size:
            raise QueueFullError(
                f"Rate-limited queue is full ({self.max_queue_size} pending); rejected {label}"
            )
        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait(_Job(call=call, fallback=fallback, label=label, future=future))
        self.start()
        return await future

    def _wait_time(self) -> float:
        now = self._clock()
        wait = max(0.0, self.backoff_until - now)
        if self._last_call is not None:
            wait = max(wait, self.min_interval - (now - self._last_call))
        return wait

    async def _drain(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                if not job.future.done():
                    await self._run(job)
            finally:
                # Cancelled mid-call: release the caller awaiting this job.
                if not job.future.done():
                    job.future.cancel()
                self._queue.task_done()

    async def _run(self, job: _Job) -> None:
        logger = get_logger(__name__)
        for attempt in range(1, self.max_attempts + 1):
            wait = self._wait_time()
            if wait > 0:
                await self._sleep(wait)
            try:
                result = await job.call()
            except RateLimitedError as exc:
                self._last_call = self._clock()
                retry_after = exc.retry_after if exc.retry_after is not None else self.default_retry_after
                self.backoff_until = self._last_call + retry_after + self.safety_margin
                logger.warning(
                    f"{job.label}: rate limited (attempt {attempt}/{self.max_attempts}); "
                    f"backing off {retry_after + self.safety_margin:.1f}s"
                )
            except (UpstreamFetchError, ConnectionResetError) as exc:
                self._last_call = self._clock()
                if isinstance(exc, UpstreamFetchError) and not exc.retryable:
                    self._resolve_error(job, exc)
                    return
                logger.warning(f"{job.label}: transient error (attempt {attempt}/{self.max_attempts}): {exc}")
                if attempt < self.max_attempts:
                    await self._sleep(self.reset_retry_delay)
            except Exception as exc:
                self._last_call = self._clock()
                self._resolve_error(job, exc)
                return
            else:
                self._last_call = self._clock()
                if not job.future.done():
                    job.future.set_result(result)
                return

        logger.error(f"{job.label}: giving up after {self.max_attempts} attempts")
        if not job.future.done():
            job.future.set_result(job.fallback)

    @staticmethod
    def _resolve_error(job: _Job, exc: BaseException) -> None:
        if not job.future.done():
            job.future.set_exception(exc)
