"""
Base repository.

Shared lookups and inserts for the directory, ledger and relationship
repositories. Repositories flush but never commit; the calling service
owns the transaction.
"""

from collections.abc import Sequence
from typing import Any, Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from levelnet.models.base import Base

# Generic type for model
ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """
    Base repository bound to one model and one session.

    Type Parameters:
        ModelType: SQLAlchemy model class

    Example:
        class InvestmentRepository(BaseRepository[Investment]):
            def __init__(self, session: AsyncSession):
                super().__init__(Investment, session)
    """

    def __init__(
        self, model: type[ModelType], session: AsyncSession
    ) -> None:
        """
        Initialize repository.

        Args:
            model: SQLAlchemy model class
            session: Async database session
        """
        self.model = model
        self.session = session

    async def get_by(self, **filters: Any) -> ModelType | None:
        """
        Get single entity by a unique combination of columns.

        Args:
            **filters: Column filters (address, tx_id, relationship key)

        Returns:
            Matching entity or None
        """
        stmt = select(self.model).filter_by(**filters)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_in(
        self, column: str, values: Sequence[Any]
    ) -> dict[Any, ModelType]:
        """
        Load entities whose column is in values, in one query.

        Returns:
            Mapping column value -> entity; missing values are absent
        """
        if not values:
            return {}

        attribute = getattr(self.model, column)
        stmt = select(self.model).where(attribute.in_(values))
        result = await self.session.execute(stmt)
        return {getattr(entity, column): entity for entity in result.scalars().all()}

    async def create(self, **data: Any) -> ModelType:
        """
        Create new entity.

        Defaults are applied client-side, so a flush is enough to
        populate the primary key. Unique violations surface here as
        IntegrityError.

        Args:
            **data: Entity data

        Returns:
            Created entity
        """
        entity = self.model(**data)
        self.session.add(entity)
        await self.session.flush()
        return entity
