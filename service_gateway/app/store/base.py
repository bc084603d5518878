"""
Key-value store interface consumed by the gateway.
"""

from abc import ABC, abstractmethod
from typing import List, Optional


class KeyValueStore(ABC):
    """Narrow counter/set store with expiring keys.

    Every method may raise ``shared.errors.StoreError``; the gateway decides per
    call site whether to fail open or closed.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store ``value`` without expiry."""

    @abstractmethod
    async def set_with_expiry(self, key: str, value: str, ttl_seconds: int) -> None:
        """Overwrite ``key`` and (re)set its TTL."""

    @abstractmethod
    async def increment(self, key: str, ttl_seconds: Optional[int] = None, amount: int = 1) -> int:
        """Atomically add ``amount`` (default 1) and return the new value.

        A missing key starts at ``amount``. When ``ttl_seconds`` is given it is applied
        only when the increment created the key, so repeated increments inside
        a window never extend that window.
        """

    @abstractmethod
    async def expire(self, key: str, ttl_seconds: int) -> None:
        """Set or refresh the TTL of an existing key; a TTL <= 0 deletes it."""

    @abstractmethod
    async def set_members(self, key: str) -> List[str]:
        ...

    @abstractmethod
    async def set_size(self, key: str) -> int:
        """Number of members; 0 for a missing key."""

    @abstractmethod
    async def set_add(self, key: str, member: str) -> None:
        ...

    async def get_many(self, keys: List[str]) -> List[Optional[str]]:
        """Fetch several keys; backends may override with a batched call."""
        return [await self.get(key) for key in keys]

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None
