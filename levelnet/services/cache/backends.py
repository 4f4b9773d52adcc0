"""
Result cache backends.

A backend stores opaque string payloads with a per-key TTL and supports
prefix invalidation. Expiry is lazy: expired entries are dropped when
read and by sweep().
"""

import asyncio
import time
from collections.abc import Callable
from typing import Protocol

import redis.asyncio as redis
from loguru import logger
from redis.exceptions import RedisError

from levelnet.config.settings import settings


class CacheBackend(Protocol):
    """Key/value store with TTL used by ResultCache."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl: int) -> None: ...

    async def delete_prefix(self, prefix: str) -> int: ...

    async def sweep(self) -> int: ...


class MemoryCacheBackend:
    """
    In-process backend.

    The clock is injectable (seconds, monotonic) so tests can move time
    deterministically. A single asyncio lock makes get/set atomic per key.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        """Initialize empty store."""
        self._clock = clock
        self._entries: dict[str, tuple[float, str]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> str | None:
        """Get payload, evicting it if expired."""
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return value

    async def set(self, key: str, value: str, ttl: int) -> None:
        """Store payload for ttl seconds."""
        async with self._lock:
            self._entries[key] = (self._clock() + ttl, value)

    async def delete_prefix(self, prefix: str) -> int:
        """Delete all keys starting with prefix."""
        async with self._lock:
            keys = [key for key in self._entries if key.startswith(prefix)]
            for key in keys:
                del self._entries[key]
            return len(keys)

    async def sweep(self) -> int:
        """Drop expired entries. Returns number removed."""
        async with self._lock:
            now = self._clock()
            expired = [
                key
                for key, (expires_at, _) in self._entries.items()
                if expires_at <= now
            ]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def __len__(self) -> int:
        """Number of stored entries, expired included."""
        return len(self._entries)


class RedisCacheBackend:
    """
    Redis backend.

    TTL is native (SET EX), so sweep() has nothing to do. Redis errors are
    logged and treated as misses so queries still fall through to the
    database.
    """

    def __init__(self, client: redis.Redis) -> None:
        """
        Initialize backend.

        Args:
            client: Redis client created with decode_responses=True
        """
        self.client = client

    @classmethod
    def from_settings(cls) -> "RedisCacheBackend":
        """Create backend with a client built from settings."""
        client = redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            password=settings.redis_password,
            db=settings.redis_db,
            decode_responses=True,
        )
        return cls(client)

    async def get(self, key: str) -> str | None:
        """Get payload."""
        try:
            value = await self.client.get(key)
        except RedisError as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            return None

        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set(self, key: str, value: str, ttl: int) -> None:
        """Store payload with expiry."""
        try:
            await self.client.set(key, value, ex=ttl)
        except RedisError as e:
            logger.warning(f"Cache write failed for {key}: {e}")

    async def delete_prefix(self, prefix: str) -> int:
        """Delete keys matching prefix using SCAN."""
        try:
            keys = [key async for key in self.client.scan_iter(match=f"{prefix}*")]
            if not keys:
                return 0
            return await self.client.delete(*keys)
        except RedisError as e:
            logger.warning(f"Cache invalidation failed for {prefix}*: {e}")
            return 0

    async def sweep(self) -> int:
        """Redis expires keys itself."""
        return 0

    async def close(self) -> None:
        """Close the client connection."""
        await self.client.aclose()


def create_backend(name: str | None = None) -> CacheBackend:
    """Create the configured backend (memory or redis)."""
    name = name or settings.cache_backend
    if name == "redis":
        return RedisCacheBackend.from_settings()
    return MemoryCacheBackend()
