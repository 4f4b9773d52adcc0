"""
Result cache.

Memoizes aggregation results under keys of the form
levelnet:{kind}:{wallet}:{params...}. Two TTL tiers: short for per-user
statistics that change with every deposit, long for whole-tree results.

There is no invalidation on write; a hit may be stale for up to the
tier's TTL and is flagged with cached=True.
"""

import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any, Generic, TypeVar

from loguru import logger
from pydantic import TypeAdapter, ValidationError

from levelnet.config.constants import CACHE_NAMESPACE
from levelnet.config.settings import settings
from levelnet.services.cache.backends import CacheBackend
from levelnet.utils.datetime_utils import utc_now
from levelnet.utils.validation import normalize_address


T = TypeVar("T")

# Key segment used for queries that are not scoped to one wallet
NETWORK_SCOPE = "network"


class CacheTier(StrEnum):
    """TTL tier."""

    SHORT = "short"
    LONG = "long"


@dataclass
class CachedResult(Generic[T]):
    """Query result with cache provenance."""

    value: T
    cached: bool
    cached_at: datetime


class ResultCache:
    """Tiered memoization layer in front of the aggregation engine."""

    def __init__(
        self,
        backend: CacheBackend,
        short_ttl: int | None = None,
        long_ttl: int | None = None,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        """
        Initialize result cache.

        Args:
            backend: Storage backend
            short_ttl: Short tier TTL, seconds (settings by default)
            long_ttl: Long tier TTL, seconds (settings by default)
            now: Clock used for cached_at
        """
        self.backend = backend
        self.ttls = {
            CacheTier.SHORT: short_ttl or settings.cache_short_ttl,
            CacheTier.LONG: long_ttl or settings.cache_long_ttl,
        }
        self._now = now
        self._adapters: dict[Any, TypeAdapter] = {}

    @staticmethod
    def build_key(kind: str, wallet: str | None = None, *params: Any) -> str:
        """
        Build cache key.

        Wallets are normalized so differently-cased addresses share a key.
        None parameters are rendered as empty segments.
        """
        scope = normalize_address(wallet) if wallet else NETWORK_SCOPE
        parts = [CACHE_NAMESPACE, kind, scope]
        parts.extend("" if p is None else str(p) for p in params)
        return ":".join(parts)

    def _adapter(self, result_type: Any) -> TypeAdapter:
        adapter = self._adapters.get(result_type)
        if adapter is None:
            adapter = TypeAdapter(result_type)
            self._adapters[result_type] = adapter
        return adapter

    async def get_or_compute(
        self,
        kind: str,
        wallet: str | None,
        params: tuple,
        compute: Callable[[], Awaitable[T]],
        result_type: Any,
        tier: CacheTier = CacheTier.SHORT,
    ) -> CachedResult[T]:
        """
        Return cached result or compute and store it.

        Args:
            kind: Query kind (first key segment)
            wallet: Wallet the query is scoped to, or None
            params: Extra key segments
            compute: Coroutine factory producing the fresh result
            result_type: Type of the result, used for (de)serialization
            tier: TTL tier

        Returns:
            CachedResult; cached=True means the value may be stale
        """
        key = self.build_key(kind, wallet, *params)
        adapter = self._adapter(result_type)

        payload = await self.backend.get(key)
        if payload is not None:
            try:
                data = json.loads(payload)
                return CachedResult(
                    value=adapter.validate_python(data["value"]),
                    cached=True,
                    cached_at=datetime.fromisoformat(data["cached_at"]),
                )
            except (ValueError, KeyError, ValidationError) as e:
                logger.warning(f"Discarding unreadable cache entry {key}: {e}")

        value = await compute()
        cached_at = self._now()
        await self.backend.set(
            key,
            json.dumps(
                {
                    "cached_at": cached_at.isoformat(),
                    "value": adapter.dump_python(value, mode="json"),
                }
            ),
            self.ttls[tier],
        )
        return CachedResult(value=value, cached=False, cached_at=cached_at)

    async def invalidate(self, kind: str, wallet: str | None = None) -> int:
        """Drop every entry of one query kind for one wallet (or network)."""
        return await self.invalidate_prefix(self.build_key(kind, wallet))

    async def invalidate_prefix(self, prefix: str) -> int:
        """Drop entries whose key starts with prefix."""
        deleted = await self.backend.delete_prefix(prefix)
        if deleted:
            logger.info(f"Cache invalidated: {deleted} entries under {prefix}")
        return deleted

    async def sweep(self) -> int:
        """Evict expired entries from backends with lazy expiry."""
        return await self.backend.sweep()
