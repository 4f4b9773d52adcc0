"""Result cache for aggregation queries."""

from levelnet.services.cache.backends import (
    CacheBackend,
    MemoryCacheBackend,
    RedisCacheBackend,
    create_backend,
)
from levelnet.services.cache.result_cache import CachedResult, CacheTier, ResultCache


__all__ = [
    "CacheBackend",
    "MemoryCacheBackend",
    "RedisCacheBackend",
    "create_backend",
    "CachedResult",
    "CacheTier",
    "ResultCache",
]
