from __future__ import annotations

"""Key-value stores with per-key expiry backing the session cache."""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from src.rag.errors import CacheError, NewsRAGError


class CacheDependencyError(NewsRAGError):
    """Raised when cache dependencies are missing."""
    pass


class CacheStore(Protocol):
    """Protocol for expiring key-value stores."""

    async def get(self, key: str) -> str | None:
        ...

    async def set(self, key: str, value: str, ttl: int) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...


@dataclass
class InMemoryCacheStore:
    """Process-local store; expired keys are dropped on read and purged on write."""
    clock: Callable[[], float] = time.monotonic
    _data: dict[str, tuple[float, str]] = field(default_factory=dict, repr=False)

    async def get(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self.clock() >= expires_at:
            self._data.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: str, ttl: int) -> None:
        now = self.clock()
        self._purge(now)
        self._data[key] = (now + ttl, value)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)

    def _purge(self, now: float) -> None:
        expired = [key for key, (expires_at, _) in self._data.items() if now >= expires_at]
        for key in expired:
            del self._data[key]


@dataclass
class RedisCacheStore:
    """Redis-backed store using SETEX for expiry."""
    url: str = "redis://localhost:6379/0"
    client: Any = field(default=None, repr=False)

    def __post_init__(self) -> None:
        """Create an asyncio Redis client unless one was supplied."""
        try:
            from redis import asyncio as redis_asyncio
            from redis.exceptions import RedisError
        except ImportError as exc:
            raise CacheDependencyError("redis is required for RedisCacheStore") from exc
        self._errors: tuple[type[BaseException], ...] = (RedisError, OSError)
        if self.client is None:
            self.client = redis_asyncio.Redis.from_url(self.url, decode_responses=True)

    async def get(self, key: str) -> str | None:
        try:
            value = await self.client.get(key)
        except self._errors as exc:
            raise CacheError(f"Redis GET failed: {exc}") from exc
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set(self, key: str, value: str, ttl: int) -> None:
        try:
            await self.client.setex(key, ttl, value)
        except self._errors as exc:
            raise CacheError(f"Redis SETEX failed: {exc}") from exc

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(key)
        except self._errors as exc:
            raise CacheError(f"Redis DEL failed: {exc}") from exc

    async def close(self) -> None:
        await self.client.aclose()
