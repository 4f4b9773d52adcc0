"""Unit tests for the tiered result cache."""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from levelnet.services.cache.backends import MemoryCacheBackend
from levelnet.services.cache.result_cache import CacheTier, ResultCache
from levelnet.services.network.results import LevelStats


WALLET = "0x742d35Cc6634C0532925a3b844Bc9e7595f0bEb0"


@pytest.fixture
def backend(clock):
    """Memory backend on the fake clock."""
    return MemoryCacheBackend(clock=clock)


@pytest.fixture
def cache(backend, fixed_now):
    """ResultCache with 60s / 1800s tiers."""
    return ResultCache(backend, short_ttl=60, long_ttl=1800, now=fixed_now)


def sample_stats(count: int = 3) -> LevelStats:
    return LevelStats(
        level=2,
        user_count=count,
        total_investment=Decimal("300.000000"),
        total_earnings=Decimal("15.000000"),
        average_investment=Decimal("100.000000"),
        average_earnings=Decimal("5.000000"),
    )


class TestKeys:
    """Tests for cache key layout."""

    def test_key_layout(self):
        """Namespace, kind, normalized wallet, params."""
        key = ResultCache.build_key("level_stats", WALLET, 2, None)
        assert key == f"levelnet:level_stats:{WALLET.lower()}:2:"

    def test_network_scope(self):
        """Queries without a wallet use the network scope."""
        assert ResultCache.build_key("network_levels") == "levelnet:network_levels:network"

    def test_case_insensitive_wallet(self):
        """Differently-cased wallets share a key."""
        assert ResultCache.build_key("t", WALLET) == ResultCache.build_key(
            "t", WALLET.lower()
        )


class TestGetOrCompute:
    """Tests for memoization behavior."""

    @pytest.mark.asyncio
    async def test_miss_then_hit(self, cache, fixed_now):
        """First call computes, second returns the cached value flagged."""
        compute = AsyncMock(return_value=sample_stats())

        first = await cache.get_or_compute("level_stats", WALLET, (2,), compute, LevelStats)
        second = await cache.get_or_compute("level_stats", WALLET, (2,), compute, LevelStats)

        assert first.cached is False
        assert second.cached is True
        assert second.value == first.value
        assert second.cached_at == fixed_now()
        compute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_hit_returns_stale_value(self, cache):
        """No invalidation on write: the old value is served until expiry."""
        await cache.get_or_compute(
            "level_stats", WALLET, (2,), AsyncMock(return_value=sample_stats(3)), LevelStats
        )

        result = await cache.get_or_compute(
            "level_stats", WALLET, (2,), AsyncMock(return_value=sample_stats(4)), LevelStats
        )

        assert result.cached is True
        assert result.value.user_count == 3

    @pytest.mark.asyncio
    async def test_short_tier_expiry(self, cache, clock):
        """Short tier recomputes after 60 seconds."""
        compute = AsyncMock(return_value=sample_stats())
        await cache.get_or_compute("s", WALLET, (), compute, LevelStats)

        clock.advance(61)
        result = await cache.get_or_compute("s", WALLET, (), compute, LevelStats)

        assert result.cached is False
        assert compute.await_count == 2

    @pytest.mark.asyncio
    async def test_long_tier_survives_short_ttl(self, cache, clock):
        """Long tier is still cached after the short TTL."""
        compute = AsyncMock(return_value=sample_stats())
        await cache.get_or_compute(
            "tree", WALLET, (), compute, LevelStats, tier=CacheTier.LONG
        )

        clock.advance(600)
        result = await cache.get_or_compute(
            "tree", WALLET, (), compute, LevelStats, tier=CacheTier.LONG
        )

        assert result.cached is True
        compute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_list_results_round_trip(self, cache):
        """Generic list types are restored from the payload."""
        stats = [sample_stats(1), sample_stats(2)]
        await cache.get_or_compute(
            "all", WALLET, (), AsyncMock(return_value=stats), list[LevelStats]
        )

        result = await cache.get_or_compute(
            "all", WALLET, (), AsyncMock(), list[LevelStats]
        )

        assert result.value == stats

    @pytest.mark.asyncio
    async def test_unreadable_entry_recomputed(self, cache, backend):
        """A corrupt payload is treated as a miss."""
        key = ResultCache.build_key("s", WALLET)
        await backend.set(key, "not json", ttl=60)
        compute = AsyncMock(return_value=sample_stats())

        result = await cache.get_or_compute("s", WALLET, (), compute, LevelStats)

        assert result.cached is False
        compute.assert_awaited_once()


class TestInvalidation:
    """Tests for operator invalidation."""

    @pytest.mark.asyncio
    async def test_invalidate_kind_for_wallet(self, cache):
        """All params of one kind for one wallet are dropped."""
        compute = AsyncMock(return_value=sample_stats())
        await cache.get_or_compute("level_stats", WALLET, (1,), compute, LevelStats)
        await cache.get_or_compute("level_stats", WALLET, (2,), compute, LevelStats)
        await cache.get_or_compute("team", WALLET, (), compute, LevelStats)

        assert await cache.invalidate("level_stats", WALLET) == 2

        result = await cache.get_or_compute("team", WALLET, (), compute, LevelStats)
        assert result.cached is True

    @pytest.mark.asyncio
    async def test_sweep_delegates(self, cache, clock):
        """sweep() evicts expired entries from the backend."""
        await cache.get_or_compute(
            "s", WALLET, (), AsyncMock(return_value=sample_stats()), LevelStats
        )
        clock.advance(61)

        assert await cache.sweep() == 1
