"""Async producer/consumer queue bridging subprocess readers and event consumers."""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Generic, TypeVar

T = TypeVar("T")


class AsyncEventQueue(Generic[T]):
    """
    Unbounded, ordered queue consumed with ``async for``.

    The producer side never blocks (``push`` is synchronous). ``close`` ends
    iteration once buffered items are drained; ``fail`` ends it by raising the
    given exception after buffered items are drained. Pushes after either are
    dropped.
    """

    def __init__(self) -> None:
        self._items: deque[T] = deque()
        self._wakeup = asyncio.Event()
        self._closed = False
        self._error: BaseException | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, item: T) -> bool:
        if self._closed:
            return False
        self._items.append(item)
        self._wakeup.set()
        return True

    def close(self) -> None:
        self._closed = True
        self._wakeup.set()

    def fail(self, error: BaseException) -> None:
        if self._closed:
            return
        self._error = error
        self.close()

    def __aiter__(self) -> AsyncEventQueue[T]:
        return self

    async def __anext__(self) -> T:
        while True:
            if self._items:
                return self._items.popleft()
            if self._closed:
                if self._error is not None:
                    error, self._error = self._error, None
                    raise error
                raise StopAsyncIteration
            self._wakeup.clear()
            await self._wakeup.wait()


__all__ = ["AsyncEventQueue"]
