"""
Level relationship repository.

Data access layer for the materialized (descendant, ancestor, level) store.
Aggregations run as SQL GROUP BY so large downlines are never loaded.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from levelnet.models.enums import UserStatus
from levelnet.models.level_relationship import LevelRelationship
from levelnet.models.user import User
from levelnet.repositories.base import BaseRepository


@dataclass
class LevelAggregate:
    """Raw per-level totals from the store."""

    level: int
    user_count: int
    total_investment: Decimal
    total_earnings: Decimal


@dataclass
class AncestorAggregate:
    """Raw per-ancestor totals from the store."""

    ancestor_address: str
    user_count: int
    total_investment: Decimal
    total_earnings: Decimal
    active_levels: int


class LevelRelationshipRepository(BaseRepository[LevelRelationship]):
    """Level relationship repository with closure-specific queries."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize level relationship repository."""
        super().__init__(LevelRelationship, session)

    async def get_by_key(
        self, descendant_address: str, ancestor_address: str, level: int
    ) -> LevelRelationship | None:
        """Get relationship by its unique key."""
        return await self.get_by(
            descendant_address=descendant_address,
            ancestor_address=ancestor_address,
            level=level,
        )

    async def get_by_descendant(
        self, descendant_address: str
    ) -> list[LevelRelationship]:
        """
        Get every upline row of a descendant, ordered by level.
        """
        stmt = (
            select(LevelRelationship)
            .where(LevelRelationship.descendant_address == descendant_address)
            .order_by(LevelRelationship.level)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_descendant_addresses(self, ancestor_address: str) -> list[str]:
        """
        Descendants materialized under an ancestor, nearest levels first.
        """
        stmt = (
            select(LevelRelationship.descendant_address)
            .where(LevelRelationship.ancestor_address == ancestor_address)
            .order_by(LevelRelationship.level, LevelRelationship.id)
        )
        result = await self.session.execute(stmt)
        return [row[0] for row in result.all()]

    async def create_relationship(
        self,
        descendant_address: str,
        ancestor_address: str,
        level: int,
        registration_time: datetime,
        total_investment: Decimal = Decimal("0"),
        is_active: bool = True,
    ) -> LevelRelationship:
        """Insert a relationship row."""
        return await self.create(
            descendant_address=descendant_address,
            ancestor_address=ancestor_address,
            level=level,
            registration_time=registration_time,
            total_investment=total_investment,
            total_earnings=Decimal("0"),
            is_active=is_active,
        )

    async def add_investment(
        self, descendant_address: str, amount: Decimal
    ) -> list[LevelRelationship]:
        """
        Add amount to total_investment of every upline row of a descendant.

        A descendant has at most one row per level, so this touches at most
        MAX_REFERRAL_DEPTH rows.

        Returns:
            Updated rows
        """
        rows = await self.get_by_descendant(descendant_address)
        for row in rows:
            row.total_investment = row.total_investment + amount
        await self.session.flush()
        return rows

    async def add_earnings(
        self, relationship: LevelRelationship, amount: Decimal
    ) -> LevelRelationship:
        """Add amount to total_earnings of one row."""
        relationship.total_earnings = relationship.total_earnings + amount
        await self.session.flush()
        return relationship

    async def get_level_aggregates(
        self,
        ancestor_address: str | None = None,
        level: int | None = None,
        registered_since: datetime | None = None,
        max_level: int | None = None,
    ) -> dict[int, LevelAggregate]:
        """
        Per-level totals over active rows in a single query.

        Args:
            ancestor_address: Restrict to one ancestor (None = whole network)
            level: Restrict to one level
            registered_since: Only descendants registered at or after this time
            max_level: Only levels up to this depth

        Returns:
            Mapping level -> LevelAggregate for levels that have rows
        """
        stmt = select(
            LevelRelationship.level,
            func.count(LevelRelationship.id).label("user_count"),
            func.coalesce(
                func.sum(LevelRelationship.total_investment), Decimal("0")
            ).label("total_investment"),
            func.coalesce(
                func.sum(LevelRelationship.total_earnings), Decimal("0")
            ).label("total_earnings"),
        ).where(LevelRelationship.is_active.is_(True))

        if ancestor_address is not None:
            stmt = stmt.where(LevelRelationship.ancestor_address == ancestor_address)
        if level is not None:
            stmt = stmt.where(LevelRelationship.level == level)
        if registered_since is not None:
            stmt = stmt.where(LevelRelationship.registration_time >= registered_since)
        if max_level is not None:
            stmt = stmt.where(LevelRelationship.level <= max_level)

        stmt = stmt.group_by(LevelRelationship.level)

        result = await self.session.execute(stmt)
        return {
            row.level: LevelAggregate(
                level=row.level,
                user_count=row.user_count or 0,
                total_investment=Decimal(row.total_investment or 0),
                total_earnings=Decimal(row.total_earnings or 0),
            )
            for row in result.all()
        }

    async def get_members(
        self, ancestor_address: str, max_level: int, level: int | None = None
    ) -> list[LevelRelationship]:
        """
        Active downline rows of an ancestor, ordered by level then join time.
        """
        stmt = select(LevelRelationship).where(
            LevelRelationship.ancestor_address == ancestor_address,
            LevelRelationship.is_active.is_(True),
            LevelRelationship.level <= max_level,
        )
        if level is not None:
            stmt = stmt.where(LevelRelationship.level == level)
        stmt = stmt.order_by(
            LevelRelationship.level,
            LevelRelationship.registration_time,
            LevelRelationship.id,
        )

        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_top_ancestors(
        self, level: int | None = None, limit: int = 10
    ) -> list[AncestorAggregate]:
        """
        Ancestors ranked by earnings from their active downline rows.
        """
        total_earnings = func.coalesce(
            func.sum(LevelRelationship.total_earnings), Decimal("0")
        )
        stmt = select(
            LevelRelationship.ancestor_address,
            func.count(LevelRelationship.id).label("user_count"),
            func.coalesce(
                func.sum(LevelRelationship.total_investment), Decimal("0")
            ).label("total_investment"),
            total_earnings.label("total_earnings"),
            func.count(func.distinct(LevelRelationship.level)).label("active_levels"),
        ).where(LevelRelationship.is_active.is_(True))

        if level is not None:
            stmt = stmt.where(LevelRelationship.level == level)

        stmt = (
            stmt.group_by(LevelRelationship.ancestor_address)
            .order_by(
                total_earnings.desc(),
                func.count(LevelRelationship.id).desc(),
                LevelRelationship.ancestor_address,
            )
            .limit(limit)
        )

        result = await self.session.execute(stmt)
        return [
            AncestorAggregate(
                ancestor_address=row.ancestor_address,
                user_count=row.user_count or 0,
                total_investment=Decimal(row.total_investment or 0),
                total_earnings=Decimal(row.total_earnings or 0),
                active_levels=row.active_levels or 0,
            )
            for row in result.all()
        ]

    async def deactivate_for_addresses(self, addresses: list[str]) -> int:
        """
        Deactivate rows where either endpoint is in addresses.

        Returns:
            Number of rows updated
        """
        if not addresses:
            return 0

        stmt = (
            update(LevelRelationship)
            .where(
                LevelRelationship.is_active.is_(True),
                or_(
                    LevelRelationship.descendant_address.in_(addresses),
                    LevelRelationship.ancestor_address.in_(addresses),
                ),
            )
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0

    async def reactivate_for_address(self, address: str) -> int:
        """
        Re-activate rows touching address whose other endpoint is not
        inactive or suspended.

        Returns:
            Number of rows updated
        """
        non_active = select(User.address).where(
            User.status != UserStatus.ACTIVE.value
        )
        stmt = (
            update(LevelRelationship)
            .where(
                LevelRelationship.is_active.is_(False),
                or_(
                    LevelRelationship.descendant_address == address,
                    LevelRelationship.ancestor_address == address,
                ),
                and_(
                    LevelRelationship.descendant_address.not_in(non_active),
                    LevelRelationship.ancestor_address.not_in(non_active),
                ),
            )
            .values(is_active=True)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0
