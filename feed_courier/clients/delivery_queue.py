"""Process-wide FIFO that spaces out webhook sends."""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from ..utils.logging import setup_logger

logger = setup_logger(__name__, context={"component": "delivery_queue"})

T = TypeVar("T")

Job = Callable[[], Awaitable[Any]]


class DeliveryQueue:
    """
    Serializes delivery jobs with a fixed minimum gap between them.

    Every send in the process goes through one queue. A single drain task
    runs jobs in submission order and waits until at least ``min_interval``
    seconds have passed since the previous job *started* before starting the
    next one. Each submitter awaits its own future and receives the job's
    result or exception; a failing job never blocks the ones behind it.
    """

    def __init__(
        self,
        min_interval: float = 1.0,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the queue.

        Args:
            min_interval: Minimum seconds between the start of consecutive jobs
            sleep: Awaitable sleep used while waiting for the next slot
        """
        self.min_interval = max(min_interval, 0.0)
        self._sleep = sleep
        self._pending: deque[tuple[Job, asyncio.Future[Any]]] = deque()
        self._drainer: asyncio.Task[None] | None = None
        self._last_started: float | None = None

    @property
    def pending(self) -> int:
        return len(self._pending)

    @property
    def is_draining(self) -> bool:
        return self._drainer is not None and not self._drainer.done()

    async def submit(self, job: Callable[[], Awaitable[T]]) -> T:
        """Enqueue ``job`` and wait for it to run."""

        loop = asyncio.get_running_loop()
        future: asyncio.Future[T] = loop.create_future()
        self._pending.append((job, future))
        if not self.is_draining:
            self._drainer = loop.create_task(self._drain())
        return await future

    async def _wait_turn(self) -> None:
        if self._last_started is None:
            return
        remaining = self._last_started + self.min_interval - asyncio.get_running_loop().time()
        if remaining > 0:
            await self._sleep(remaining)

    async def _drain(self) -> None:
        loop = asyncio.get_running_loop()
        while self._pending:
            job, future = self._pending.popleft()
            if future.cancelled():
                continue
            await self._wait_turn()
            self._last_started = loop.time()
            try:
                result = await job()
            except asyncio.CancelledError:
                if not future.done():
                    future.cancel()
                raise
            except Exception as exc:
                logger.debug("Delivery job failed: %s", exc, extra={"status": "failure"})
                if not future.done():
                    future.set_exception(exc)
            else:
                if not future.done():
                    future.set_result(result)

    async def join(self) -> None:
        """Wait until every job submitted so far has run."""

        while self.is_draining:
            assert self._drainer is not None
            await asyncio.shield(self._drainer)
