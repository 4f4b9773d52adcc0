"""Database session factory for tasks."""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from levelnet.config.database import create_engine, create_session_maker


def create_task_engine() -> AsyncEngine:
    """Create engine for tasks (no pooling across worker threads)."""
    return create_engine(poolclass=NullPool)


def create_task_session_maker(
    engine: AsyncEngine | None = None,
) -> async_sessionmaker[AsyncSession]:
    """Create session maker for tasks."""
    if engine is None:
        engine = create_task_engine()
    return create_session_maker(engine)
