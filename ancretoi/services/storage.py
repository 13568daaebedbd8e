"""
Key-Value Storage
=================

Small async string storage used by the learner day-state cache and the
admin toolbar preferences. Handlers receive an instance through the
``KVStorage`` dependency instead of reaching for a global.
"""

import logging
from typing import Optional, Protocol, runtime_checkable

from redis.asyncio import Redis

from ancretoi.services.cache import get_redis

logger = logging.getLogger(__name__)


@runtime_checkable
class KeyValueStorage(Protocol):
    """Async string key-value store."""

    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...


class RedisStorage:
    """
    Storage backed by Redis.

    Keys are namespaced with ``prefix`` so they never collide with the
    ``cache:*`` and ``ratelimit:*`` entries. With ``ttl`` set, every write
    refreshes the key expiry.
    """

    def __init__(self, client: Optional[Redis] = None, prefix: str = "kv:", ttl: Optional[int] = None):
        self._client = client
        self.prefix = prefix
        self.ttl = ttl

    async def _redis(self) -> Redis:
        if self._client is None:
            self._client = await get_redis()
        return self._client

    async def get(self, key: str) -> Optional[str]:
        client = await self._redis()
        return await client.get(self.prefix + key)

    async def set(self, key: str, value: str) -> None:
        client = await self._redis()
        if self.ttl:
            await client.setex(self.prefix + key, self.ttl, value)
        else:
            await client.set(self.prefix + key, value)

    async def delete(self, key: str) -> None:
        client = await self._redis()
        await client.delete(self.prefix + key)

