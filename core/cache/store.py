from __future__ import annotations

from typing import Optional, Protocol


class CacheStore(Protocol):
    """Key/value store with per-key TTL. Values are JSON strings."""

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl: float) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def push_bounded(self, key: str, value: str, max_len: int, ttl: float) -> None:
        """Prepend `value` to a list, keep the newest `max_len` entries, refresh TTL."""
        ...

    async def get_list(self, key: str, start: int = 0, end: int = -1) -> list[str]: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...
