"""
Key-value store backends for gateway counters, sets and cached config.

``build_store`` picks the backend from a URL: ``memory://`` selects the
in-process store, anything else is handed to Redis.
"""

from .base import KeyValueStore
from .memory import InMemoryKeyValueStore
from .redis_store import RedisKeyValueStore

MEMORY_URL = "memory://"


def build_store(url: str) -> KeyValueStore:
    if url.startswith(MEMORY_URL):
        return InMemoryKeyValueStore()
    return RedisKeyValueStore(url)


__all__ = [
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "RedisKeyValueStore",
    "build_store",
    "MEMORY_URL",
]
