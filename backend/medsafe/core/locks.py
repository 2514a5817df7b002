"""Per-entity asyncio locks for single-writer mutation of prescriptions and stock."""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class KeyedLock:
    """Hand out one ``asyncio.Lock`` per key; unrelated keys never contend."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._locks: dict[uuid.UUID, asyncio.Lock] = {}
        self._waiters: dict[uuid.UUID, int] = {}

    @asynccontextmanager
    async def hold(self, key: uuid.UUID) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._waiters[key] - 1
            if remaining:
                self._waiters[key] = remaining
            else:
                # last holder drops the entry
                self._waiters.pop(key, None)
                self._locks.pop(key, None)


prescription_locks = KeyedLock("prescription")
stock_item_locks = KeyedLock("stock_item")

__all__ = ["KeyedLock", "prescription_locks", "stock_item_locks"]
