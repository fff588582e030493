"""
KeyedLock - one asyncio.Lock per key, dropped when nobody holds or waits on it

Serializes aggregate recomputation per (provider, plan) inside one process.
Cross-process serialization is the repository's job (advisory transaction
lock), see AcceptanceRepository.pair_transaction().
"""
import asyncio
from contextlib import asynccontextmanager
from typing import Dict, Hashable, Tuple


class KeyedLock:

    def __init__(self):
        self._locks: Dict[Hashable, Tuple[asyncio.Lock, int]] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable):
        lock, users = self._locks.get(key, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[key] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[key]
            if users <= 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, users - 1)

    def is_locked(self, key: Hashable) -> bool:
        entry = self._locks.get(key)
        return bool(entry and entry[0].locked())

    def __len__(self):
        return len(self._locks)
