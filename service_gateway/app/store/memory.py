"""
In-process key-value store.

Single-process reference backend for tests and local development. Increments are
atomic only with respect to other coroutines on the same event loop; several
worker processes each get their own counters, so this backend must not be used
for multi-process deployments.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set, Union

from shared.errors import StoreError
from .base import KeyValueStore


@dataclass
class _Entry:
    value: Union[str, Set[str]]
    expires_at: Optional[float] = None


class InMemoryKeyValueStore(KeyValueStore):
    """Dict-backed store with lazy expiry."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._data: Dict[str, _Entry] = {}
        self._lock = asyncio.Lock()

    def _live(self, key: str) -> Optional[_Entry]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and self._clock() >= entry.expires_at:
            del self._data[key]
            return None
        return entry

    async def get(self, key: str) -> Optional[str]:
        entry = self._live(key)
        if entry is None:
            return None
        if not isinstance(entry.value, str):
            raise StoreError("get", f"key {key!r} holds a set")
        return entry.value

    async def set(self, key: str, value: str) -> None:
        self._data[key] = _Entry(str(value))

    async def set_with_expiry(self, key: str, value: str, ttl_seconds: int) -> None:
        self._data[key] = _Entry(str(value), self._clock() + ttl_seconds)

    async def increment(self, key: str, ttl_seconds: Optional[int] = None, amount: int = 1) -> int:
        async with self._lock:
            entry = self._live(key)
            if entry is None:
                expires_at = self._clock() + ttl_seconds if ttl_seconds else None
                self._data[key] = _Entry(str(amount), expires_at)
                return amount
            try:
                new_value = int(entry.value) + amount
            except (TypeError, ValueError) as exc:
                raise StoreError("increment", f"key {key!r} is not an integer") from exc
            entry.value = str(new_value)
            return new_value

    async def expire(self, key: str, ttl_seconds: int) -> None:
        entry = self._live(key)
        if entry is None:
            return
        if ttl_seconds <= 0:
            del self._data[key]
            return
        entry.expires_at = self._clock() + ttl_seconds

    async def set_members(self, key: str) -> List[str]:
        entry = self._live(key)
        if entry is None:
            return []
        if not isinstance(entry.value, set):
            raise StoreError("set_members", f"key {key!r} is not a set")
        return sorted(entry.value)

    async def set_size(self, key: str) -> int:
        entry = self._live(key)
        if entry is None:
            return 0
        if not isinstance(entry.value, set):
            raise StoreError("set_size", f"key {key!r} is not a set")
        return len(entry.value)

    async def set_add(self, key: str, member: str) -> None:
        entry = self._live(key)
        if entry is None:
            self._data[key] = _Entry({member})
            return
        if not isinstance(entry.value, set):
            raise StoreError("set_add", f"key {key!r} is not a set")
        entry.value.add(member)

    def ttl(self, key: str) -> Optional[float]:
        """Seconds until ``key`` expires, ``None`` for persistent or missing keys."""
        entry = self._live(key)
        if entry is None or entry.expires_at is None:
            return None
        return entry.expires_at - self._clock()

    def keys(self) -> List[str]:
        return [key for key in list(self._data) if self._live(key) is not None]
