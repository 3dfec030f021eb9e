"""Push-based prompt stream feeding one engine invocation.

The engine treats the end of its input stream as "conversation turn complete",
so an open stream must never finish just because its queue is momentarily
empty. Consumers suspend until the next ``push()`` or ``close()``.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import AsyncIterator


class PushStream:
    def __init__(self) -> None:
        self._queue: deque[str] = deque()
        self._waiter: asyncio.Future[None] | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._queue)

    def push(self, text: str) -> None:
        if self._closed:
            raise RuntimeError("cannot push into a closed stream")
        self._queue.append(text)
        self._wake()

    def close(self) -> None:
        self._closed = True
        self._wake()

    def take_pending(self) -> list[str]:
        """Remove and return prompts that were pushed but never consumed."""
        pending = list(self._queue)
        self._queue.clear()
        return pending

    def _wake(self) -> None:
        waiter, self._waiter = self._waiter, None
        if waiter is not None and not waiter.done():
            waiter.set_result(None)

    async def __aiter__(self) -> AsyncIterator[str]:
        while True:
            while self._queue:
                yield self._queue.popleft()
            if self._closed:
                return
            self._waiter = asyncio.get_running_loop().create_future()
            await self._waiter
