"""
Database configuration.

Async engine and session factory built from settings.
"""

from loguru import logger
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from levelnet.config.settings import settings
from levelnet.models.base import Base


def create_engine(database_url: str | None = None, **kwargs) -> AsyncEngine:
    """Create async engine for the configured database."""
    return create_async_engine(
        database_url or settings.database_url,
        echo=settings.database_echo,
        **kwargs,
    )


def create_session_maker(
    engine: AsyncEngine,
) -> async_sessionmaker[AsyncSession]:
    """Create session maker bound to engine."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Create all tables (checkfirst=True)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all, checkfirst=True)

    logger.info("Database tables ensured")
