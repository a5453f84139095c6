"""
Bounded task queue with close semantics.

The dispatcher is the only producer. Workers receive integer tokens until
the queue is closed and drained, at which point get() returns None.
"""

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Optional
import structlog

logger = structlog.get_logger()


@dataclass
class QueueStats:
    produced: int = 0
    consumed: int = 0
    closed: bool = False

    @property
    def pending(self) -> int:
        return self.produced - self.consumed


class TaskQueue:
    """
    Multi-consumer channel of opaque task tokens.

    Features:
    - put() blocks when full instead of dropping
    - close() wakes every consumer once the queue is drained
    - Each token is handed to exactly one consumer
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self._items: deque[int] = deque()
        self._cond = asyncio.Condition()
        self._stats = QueueStats()

    @property
    def closed(self) -> bool:
        return self._stats.closed

    async def put(self, token: int) -> None:
        async with self._cond:
            if self._stats.closed:
                raise RuntimeError("put() on a closed TaskQueue")
            await self._cond.wait_for(lambda: len(self._items) < self.capacity)
            self._items.append(token)
            self._stats.produced += 1
            self._cond.notify_all()

    async def close(self) -> None:
        """Signal end-of-stream. Tokens already queued are still delivered."""
        async with self._cond:
            if self._stats.closed:
                return
            self._stats.closed = True
            self._cond.notify_all()
        logger.debug("Task queue closed", produced=self._stats.produced)

    async def get(self) -> Optional[int]:
        """
        Receive the next token.

        Returns None once the queue is closed and empty.
        """
        async with self._cond:
            await self._cond.wait_for(lambda: self._items or self._stats.closed)
            if not self._items:
                return None
            token = self._items.popleft()
            self._stats.consumed += 1
            # Wake a producer waiting for space
            self._cond.notify_all()
            return token

    def get_stats(self) -> QueueStats:
        return QueueStats(
            produced=self._stats.produced,
            consumed=self._stats.consumed,
            closed=self._stats.closed,
        )
