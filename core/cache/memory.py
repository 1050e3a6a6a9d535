from __future__ import annotations

import asyncio
import time
from typing import Optional, Union


class InMemoryCacheStore:
    """Process-local CacheStore with monotonic-clock expiry."""

    def __init__(self) -> None:
        self._data: dict[str, tuple[Union[str, list[str]], float]] = {}
        self._lock = asyncio.Lock()

    def _live(self, key: str) -> Optional[Union[str, list[str]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if time.monotonic() >= expires_at:
            del self._data[key]
            return None
        return value

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            value = self._live(key)
        if isinstance(value, list):
            raise TypeError(f"key {key!r} holds a list")
        return value

    async def set(self, key: str, value: str, ttl: float) -> None:
        async with self._lock:
            self._data[key] = (value, time.monotonic() + ttl)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    async def push_bounded(self, key: str, value: str, max_len: int, ttl: float) -> None:
        async with self._lock:
            current = self._live(key)
            items = list(current) if isinstance(current, list) else []
            items.insert(0, value)
            self._data[key] = (items[:max_len], time.monotonic() + ttl)

    async def get_list(self, key: str, start: int = 0, end: int = -1) -> list[str]:
        async with self._lock:
            value = self._live(key)
        if not isinstance(value, list):
            return []
        # Inclusive end, like LRANGE
        stop = None if end == -1 else end + 1
        return value[start:stop]

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        async with self._lock:
            self._data.clear()
