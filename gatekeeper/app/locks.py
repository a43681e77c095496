"""Per-key asyncio locks that are dropped once no task needs them."""
from __future__ import annotations

import asyncio
import contextlib
from typing import AsyncIterator, Dict, Hashable, Tuple


class KeyedLocks:
    """Serializes work per key without keeping a lock for every key ever seen.

    Each entry counts the tasks holding or waiting on its lock and is removed
    when the last of them leaves, so callers that wait on the same key always
    share one lock.
    """

    def __init__(self) -> None:
        self._entries: Dict[Hashable, Tuple[asyncio.Lock, int]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    @contextlib.asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock, users = self._entries.get(key, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._entries[key] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._entries[key]
            if users <= 1:
                del self._entries[key]
            else:
                self._entries[key] = (lock, users - 1)
