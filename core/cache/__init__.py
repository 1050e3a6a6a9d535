"""Short-TTL key/value store for pulse snapshots, universe and derivatives."""

from __future__ import annotations

from core.cache.memory import InMemoryCacheStore
from core.cache.redis_store import RedisCacheStore
from core.cache.store import CacheStore

__all__ = ["CacheStore", "InMemoryCacheStore", "RedisCacheStore", "create_cache_store"]


def create_cache_store(redis_url: str | None) -> CacheStore:
    """Redis when a URL is configured, otherwise a process-local store."""
    if redis_url:
        return RedisCacheStore.from_url(redis_url)
    return InMemoryCacheStore()
