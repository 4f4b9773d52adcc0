"""
Shared fixtures for unit tests.

- Fake monotonic clock for cache TTL tests
- Mock redis client
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest


class FakeClock:
    """Monotonic clock moved by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    """Fake monotonic clock starting at t=1000s."""
    return FakeClock()


@pytest.fixture
def fixed_now():
    """Wall clock returning a fixed UTC datetime."""
    moment = datetime(2024, 1, 15, 12, 0, tzinfo=UTC)
    return lambda: moment


@pytest.fixture
def mock_redis():
    """
    Mock redis.asyncio client.

    scan_iter is an async generator over `scan_keys`.
    """
    client = AsyncMock()
    client.get = AsyncMock(return_value=None)
    client.set = AsyncMock(return_value=True)
    client.delete = AsyncMock(return_value=0)
    client.scan_keys = []

    async def scan_iter(match=None):
        prefix = match.rstrip("*") if match else ""
        for key in client.scan_keys:
            if key.startswith(prefix):
                yield key

    client.scan_iter = scan_iter
    return client
