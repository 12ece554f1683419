"""In-process keyed locks serialising mutations on the same account, voucher or case."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator
from weakref import WeakValueDictionary


class KeyedLockRegistry:
    """Hands out one ``asyncio.Lock`` per key while somebody holds a reference to it.

    The database constraints remain the cross-process guarantee; these locks keep
    concurrent requests inside one worker from contending on the same rows.
    """

    def __init__(self) -> None:
        self._locks: WeakValueDictionary[str, asyncio.Lock] = WeakValueDictionary()

    def _get(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._get(key)
        async with lock:
            yield

    def __len__(self) -> int:
        return len(self._locks)


_REGISTRY = KeyedLockRegistry()


def get_lock_registry() -> KeyedLockRegistry:
    return _REGISTRY


def account_key(account_id: object) -> str:
    return f"account:{account_id}"


def voucher_key(code: str) -> str:
    return f"voucher:{code}"


def case_key(case_id: object) -> str:
    return f"case:{case_id}"


def flag_key(account_id: object) -> str:
    return f"flag:{account_id}"


__all__ = ["KeyedLockRegistry", "account_key", "case_key", "flag_key", "get_lock_registry", "voucher_key"]
