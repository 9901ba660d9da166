# chatsync/services/locks.py

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


class KeyedLocks:
    """
    Serializes coroutines that share a key, within this process.

    Read-then-write operations (private room dedup, pending request check,
    last-message repair) hold the lock for their key while enabled. This
    closes their race windows for callers going through the same process; it
    does nothing for writers on other instances.

    With ``enabled=False`` ``hold`` is a no-op and the operations keep their
    optimistic read-then-write behaviour.
    """

    def __init__(self, enabled: bool = False) -> None:
        self.enabled = enabled
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        if not self.enabled:
            yield
            return

        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if not self._waiters[key]:
                del self._waiters[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
