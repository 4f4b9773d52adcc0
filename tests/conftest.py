"""Pytest configuration and shared fixtures for all tests."""

import os
import sys
from pathlib import Path

# Minimal environment for settings validation
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CACHE_BACKEND", "memory")
os.environ.setdefault("LOG_FILE", "logs/test.log")

# Add project root to PYTHONPATH
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from levelnet.config.database import create_session_maker
from levelnet.models.base import Base
from levelnet.services.network.aggregation import AggregationEngine
from levelnet.services.network.locks import KeyedLock
from levelnet.services.network.materializer import GraphMaterializer


def make_address(n: int) -> str:
    """Deterministic lowercase wallet address for index n."""
    return f"0x{n:040x}"


@pytest.fixture
def addr():
    """Address factory: addr(1) -> 0x000...001."""
    return make_address


@pytest.fixture
def mock_session():
    """Mock AsyncSession for tests without a database."""
    session = AsyncMock()
    session.execute = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture
async def db_engine(tmp_path):
    """
    SQLite engine with all tables created.

    A file database lets several sessions (and connections) see the same
    data, as they would on PostgreSQL.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'levelnet.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(db_engine):
    """Session factory bound to the test database."""
    return create_session_maker(db_engine)


@pytest.fixture
def locks():
    """Fresh per-descendant lock map for each test."""
    return KeyedLock()


@pytest.fixture
async def materializer(session_maker, locks):
    """GraphMaterializer on its own session."""
    async with session_maker() as session:
        yield GraphMaterializer(session, locks)


@pytest.fixture
def read(session_maker):
    """
    Run a query against a fresh AggregationEngine.

    Usage:
        stats = await read(lambda engine: engine.team_summary(address))
    """
    async def _read(query):
        async with session_maker() as session:
            return await query(AggregationEngine(session))

    return _read


@pytest.fixture
def build_chain(materializer, addr):
    """
    Register addr(1) as root and addr(2..length) each under the previous.

    Returns:
        List of addresses, root first
    """
    async def _build(length: int, start: int = 1) -> list[str]:
        addresses = [addr(start + i) for i in range(length)]
        referrer = None
        for address in addresses:
            await materializer.register_user(address, referrer)
            referrer = address
        return addresses

    return _build


@pytest.fixture
def rows_of(session_maker):
    """Load a descendant's relationship rows on a fresh session."""
    from levelnet.repositories.level_repository import LevelRelationshipRepository

    async def _rows(descendant: str):
        async with session_maker() as session:
            return await LevelRelationshipRepository(session).get_by_descendant(
                descendant
            )

    return _rows
