"""Async concurrency primitives shared by the scheduler and sandbox layers."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")


class CancellationToken:
    """Run-wide stop signal; the first reason given is the one reported."""

    def __init__(self) -> None:
        self._stopped = asyncio.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        if self.reason is None:
            self.reason = reason
        self._stopped.set()

    @property
    def is_cancelled(self) -> bool:
        return self._stopped.is_set()

    async def wait(self) -> None:
        await self._stopped.wait()


class BoundedSemaphore:
    """Concurrency cap that also records occupancy for run summaries."""

    def __init__(self, limit: int) -> None:
        if limit <= 0:
            raise ValueError("limit must be > 0")
        self.limit = limit
        self.in_use = 0
        self.peak = 0
        self._permits = asyncio.Semaphore(limit)

    @property
    def available(self) -> int:
        return self.limit - self.in_use

    async def acquire(self) -> None:
        # A waiter cancelled here never held a permit.
        await self._permits.acquire()
        self.in_use += 1
        self.peak = max(self.peak, self.in_use)

    def release(self) -> None:
        if not self.in_use:
            raise RuntimeError("release called more times than acquire")
        self.in_use -= 1
        self._permits.release()


class SerialChain:
    """
    Run operations strictly one after another, in call order.

    Each call waits for the previous link to settle, whether it succeeded or
    raised, so one failed operation never blocks the next. The failure still
    propagates to the caller that submitted it.
    """

    def __init__(self) -> None:
        self._tail: asyncio.Future[None] | None = None
        self._active = 0
        self._peak_active = 0

    @property
    def peak_active(self) -> int:
        return self._peak_active

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        loop = asyncio.get_running_loop()
        previous = self._tail
        link: asyncio.Future[None] = loop.create_future()
        self._tail = link
        try:
            if previous is not None:
                await asyncio.shield(previous)
            self._active += 1
            self._peak_active = max(self._peak_active, self._active)
            try:
                return await operation()
            finally:
                self._active -= 1
        finally:
            if previous is not None and not previous.done():
                # Cancelled while queued: release the next caller only once the
                # predecessor has settled.
                previous.add_done_callback(lambda _: _settle(link))
            else:
                _settle(link)
            if self._tail is link and link.done():
                self._tail = None


def _settle(link: asyncio.Future[None]) -> None:
    if not link.done():
        link.set_result(None)


__all__ = [
    "BoundedSemaphore",
    "CancellationToken",
    "SerialChain",
]
