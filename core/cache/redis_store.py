from __future__ import annotations

import logging
from typing import Optional

import redis.asyncio as redis_async
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class RedisCacheStore:
    """CacheStore backed by Redis (redis-py asyncio client)."""

    def __init__(self, client: redis_async.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCacheStore":
        return cls(redis_async.from_url(url, decode_responses=True))

    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(key)

    async def set(self, key: str, value: str, ttl: float) -> None:
        await self._client.set(key, value, ex=max(1, int(ttl)))

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def push_bounded(self, key: str, value: str, max_len: int, ttl: float) -> None:
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.lpush(key, value)
            pipe.ltrim(key, 0, max_len - 1)
            pipe.expire(key, max(1, int(ttl)))
            await pipe.execute()

    async def get_list(self, key: str, start: int = 0, end: int = -1) -> list[str]:
        return await self._client.lrange(key, start, end)

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as e:
            logger.warning("Redis ping failed: %s", e)
            return False

    async def close(self) -> None:
        await self._client.aclose()
