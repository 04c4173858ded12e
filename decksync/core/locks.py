"""
Per-key asyncio locks.
"""
import asyncio
from collections.abc import Hashable


class KeyedLock:
    """
    Hands out one asyncio.Lock per key.

    Usage:
        locks = KeyedLock()

        async with locks(("limitless", "1234")):
            ...  # no other holder of the same key runs here
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}

    def __call__(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def __len__(self) -> int:
        return len(self._locks)
