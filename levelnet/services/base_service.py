"""
Base service class.

Session ownership and loguru binding shared by the materializer, the
aggregation engine, the downline walker and housekeeping, plus the
decorators batch operations use for commit/rollback and timing.
"""

import functools
import time
from collections.abc import Callable
from typing import Any, TypeVar

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession


T = TypeVar("T")


class BaseService:
    """
    Base service class.

    Each service works on exactly one session, which it does not share
    with concurrent tasks. Log records carry the service name.
    """

    def __init__(self, session: AsyncSession) -> None:
        """
        Initialize base service.

        Args:
            session: Async database session
        """
        self.session = session
        self.logger = logger.bind(service=self.__class__.__name__)

    async def commit(self) -> None:
        """Commit current transaction."""
        await self.session.commit()

    async def rollback(self) -> None:
        """Rollback current transaction."""
        await self.session.rollback()


def transaction(func: Callable[..., T]) -> Callable[..., T]:
    """
    Run a service method as one unit of work.

    Commits when the method returns and rolls back when it raises; the
    exception is logged with the method name and re-raised.

    Usage:
        @transaction
        async def deactivate_dormant_users(self, now=None):
            ...
    """
    @functools.wraps(func)
    async def wrapper(self: BaseService, *args: Any, **kwargs: Any) -> Any:
        try:
            result = await func(self, *args, **kwargs)
        except Exception as e:
            await self.rollback()
            self.logger.error(
                "{} rolled back: {}",
                func.__name__,
                e,
                extra={"operation": func.__name__},
            )
            raise

        await self.commit()
        return result

    return wrapper


def log_operation(func: Callable[..., T]) -> Callable[..., T]:
    """
    Log start, completion and failure of a long-running operation.

    Completion and failure records include the elapsed seconds.
    """
    @functools.wraps(func)
    async def wrapper(self: BaseService, *args: Any, **kwargs: Any) -> Any:
        started = time.monotonic()
        self.logger.info(f"Starting {func.__name__}")

        try:
            result = await func(self, *args, **kwargs)
        except Exception as e:
            self.logger.error(
                "{} failed after {:.3f}s: {}",
                func.__name__,
                time.monotonic() - started,
                e,
                extra={"operation": func.__name__, "success": False},
            )
            raise

        self.logger.info(
            "{} completed in {:.3f}s",
            func.__name__,
            time.monotonic() - started,
            extra={"operation": func.__name__, "success": True},
        )
        return result

    return wrapper
