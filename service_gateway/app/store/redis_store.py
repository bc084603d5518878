"""
Redis-backed key-value store for distributed gateway deployments.
"""

from contextlib import asynccontextmanager
from typing import List, Optional

import redis.asyncio as redis

from shared.errors import StoreError
from shared.logging import get_logger
from .base import KeyValueStore


class RedisKeyValueStore(KeyValueStore):
    """KeyValueStore over ``redis.asyncio`` with a lazily created client."""

    def __init__(self, redis_url: str, client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.logger = get_logger("gateway.store.redis")
        self._redis: Optional[redis.Redis] = client

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                health_check_interval=30
            )
        return self._redis

    @asynccontextmanager
    async def _guard(self, operation: str, key: str):
        try:
            yield
        except StoreError:
            raise
        except Exception as exc:
            self.logger.warning("Redis operation failed", operation=operation, key=key, error=str(exc))
            raise StoreError(operation, str(exc)) from exc

    @staticmethod
    def _decode(value):
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def get(self, key: str) -> Optional[str]:
        async with self._guard("get", key):
            client = await self._get_redis()
            return self._decode(await client.get(key))

    async def get_many(self, keys: List[str]) -> List[Optional[str]]:
        if not keys:
            return []
        async with self._guard("mget", keys[0]):
            client = await self._get_redis()
            return [self._decode(value) for value in await client.mget(keys)]

    async def set(self, key: str, value: str) -> None:
        async with self._guard("set", key):
            client = await self._get_redis()
            await client.set(key, value)

    async def set_with_expiry(self, key: str, value: str, ttl_seconds: int) -> None:
        async with self._guard("setex", key):
            client = await self._get_redis()
            await client.setex(key, ttl_seconds, value)

    async def increment(self, key: str, ttl_seconds: Optional[int] = None, amount: int = 1) -> int:
        async with self._guard("incr", key):
            client = await self._get_redis()
            if not ttl_seconds:
                return int(await client.incrby(key, amount))

            # SET NX EX seeds the key with its TTL only when absent; INCRBY keeps
            # the TTL. MULTI makes the pair atomic across gateway instances.
            async with client.pipeline(transaction=True) as pipe:
                pipe.set(key, 0, ex=ttl_seconds, nx=True)
                pipe.incrby(key, amount)
                results = await pipe.execute()
            return int(results[-1])

    async def expire(self, key: str, ttl_seconds: int) -> None:
        async with self._guard("expire", key):
            client = await self._get_redis()
            if ttl_seconds <= 0:
                await client.delete(key)
            else:
                await client.expire(key, ttl_seconds)

    async def set_members(self, key: str) -> List[str]:
        async with self._guard("smembers", key):
            client = await self._get_redis()
            members = await client.smembers(key)
            return sorted(self._decode(member) for member in members)

    async def set_size(self, key: str) -> int:
        async with self._guard("scard", key):
            client = await self._get_redis()
            return int(await client.scard(key))

    async def set_add(self, key: str, member: str) -> None:
        async with self._guard("sadd", key):
            client = await self._get_redis()
            await client.sadd(key, member)

    async def ping(self) -> bool:
        try:
            client = await self._get_redis()
            return bool(await client.ping())
        except Exception as exc:
            self.logger.error("Redis ping failed", error=str(exc))
            return False

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            self.logger.info("Redis store closed")
