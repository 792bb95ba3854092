"""Bounded-concurrency task pool with burst pauses and rate-limit backoff."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Scheduler:
    """Run one worker call per item, at most ``max_concurrency`` at a time.

    Items are dispatched in insertion order. After every ``batch_size``
    dispatches the pool pauses for ``batch_pause`` seconds. If a worker
    raises, nothing further is dispatched; workers already running are left
    to finish, then the first exception is re-raised from :meth:`run`.
    """

    def __init__(self, max_concurrency: int = 10, batch_size: int = 20, batch_pause: float = 0.5):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.max_concurrency = max_concurrency
        self.batch_size = max(batch_size, 1)
        self.batch_pause = batch_pause
        self.in_flight = 0
        self.peak_in_flight = 0
        self.dispatched = 0
        self._halted = False
        self._failure: Optional[BaseException] = None
        self._resume_at = 0.0
        self._stopped = asyncio.Event()

    @property
    def halted(self) -> bool:
        return self._halted

    def cancel(self) -> None:
        """Stop dispatching; running workers are not interrupted."""
        self._halted = True
        self._stopped.set()

    def backoff(self, delay: float) -> None:
        """Hold further dispatches for at least *delay* seconds."""
        loop = asyncio.get_running_loop()
        self._resume_at = max(self._resume_at, loop.time() + delay)

    async def _wait_for_backoff(self) -> None:
        loop = asyncio.get_running_loop()
        # a running worker may extend the window while we sleep
        while not self._halted:
            delay = self._resume_at - loop.time()
            if delay <= 0:
                return
            logger.info("Dispatch paused %.1fs for rate limiting", delay)
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

    async def _run_one(self, worker: Callable[[T], Awaitable[None]], item: T,
                       semaphore: asyncio.Semaphore) -> None:
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await worker(item)
        except Exception as exc:
            if self._failure is None:
                self._failure = exc
                logger.warning("Worker failed on %r (%s); halting dispatch", item, exc)
            self.cancel()
        finally:
            self.in_flight -= 1
            semaphore.release()

    async def run(self, items: Iterable[T], worker: Callable[[T], Awaitable[None]]) -> None:
        semaphore = asyncio.Semaphore(self.max_concurrency)
        tasks: list[asyncio.Task] = []
        for index, item in enumerate(items):
            if self._halted:
                break
            if index and index % self.batch_size == 0 and self.batch_pause:
                await asyncio.sleep(self.batch_pause)
            await semaphore.acquire()
            await self._wait_for_backoff()
            if self._halted:
                semaphore.release()
                break
            self.dispatched += 1
            tasks.append(asyncio.create_task(self._run_one(worker, item, semaphore)))

        if tasks:
            await asyncio.gather(*tasks)
        if self._failure is not None:
            raise self._failure
