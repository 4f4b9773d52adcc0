"""
Investment repository.

Data access layer for the append-only deposit ledger.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from levelnet.models.enums import AssetType, InvestmentStatus
from levelnet.models.investment import Investment
from levelnet.repositories.base import BaseRepository


@dataclass
class LedgerTotals:
    """Raw totals over confirmed ledger entries."""

    total_amount: Decimal
    entry_count: int
    unique_investors: int
    max_amount: Decimal
    min_amount: Decimal


@dataclass
class AssetTotals:
    """Confirmed totals for one asset type."""

    asset_type: str
    total_amount: Decimal
    entry_count: int


@dataclass
class InvestorAggregate:
    """Confirmed totals for one depositor."""

    user_address: str
    total_amount: Decimal
    entry_count: int
    last_investment: datetime | None


class InvestmentRepository(BaseRepository[Investment]):
    """Investment ledger repository."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize investment repository."""
        super().__init__(Investment, session)

    async def get_by_tx_id(self, tx_id: str) -> Investment | None:
        """Get ledger entry by transaction id."""
        return await self.get_by(tx_id=tx_id)

    async def create_entry(
        self,
        user_address: str,
        amount: Decimal,
        tx_id: str,
        block_height: int | None,
        investment_time: datetime,
        asset_type: str = AssetType.USDT.value,
        status: str = InvestmentStatus.CONFIRMED.value,
    ) -> Investment:
        """
        Append ledger entry.

        Raises:
            IntegrityError: On duplicate tx_id (at flush)
        """
        return await self.create(
            user_address=user_address,
            amount=amount,
            tx_id=tx_id,
            block_height=block_height,
            asset_type=asset_type,
            status=status,
            investment_time=investment_time,
        )

    async def confirmed_total(self, user_address: str) -> Decimal:
        """Sum of confirmed entries for one depositor."""
        totals = await self.confirmed_totals([user_address])
        return totals.get(user_address, (Decimal("0"), 0))[0]

    async def confirmed_totals(
        self, user_addresses: list[str]
    ) -> dict[str, tuple[Decimal, int]]:
        """
        Confirmed deposit sum and count per depositor, in one query.

        Returns:
            Mapping address -> (total amount, entry count); depositors
            without confirmed entries are absent
        """
        if not user_addresses:
            return {}

        stmt = (
            select(
                Investment.user_address,
                func.coalesce(func.sum(Investment.amount), Decimal("0")),
                func.count(Investment.id),
            )
            .where(
                Investment.user_address.in_(user_addresses),
                Investment.status == InvestmentStatus.CONFIRMED.value,
            )
            .group_by(Investment.user_address)
        )
        result = await self.session.execute(stmt)
        return {
            address: (Decimal(total or 0), count or 0)
            for address, total, count in result.all()
        }

    async def get_user_history(
        self,
        user_address: str,
        limit: int,
        status: str | None = InvestmentStatus.CONFIRMED.value,
    ) -> list[Investment]:
        """
        Depositor's ledger entries, newest first.

        Args:
            user_address: Depositor address
            limit: Maximum number of entries
            status: Only entries with this status; None for all
        """
        stmt = select(Investment).where(Investment.user_address == user_address)
        if status is not None:
            stmt = stmt.where(Investment.status == status)
        stmt = stmt.order_by(
            Investment.investment_time.desc(), Investment.id.desc()
        ).limit(limit)

        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def ledger_totals(self) -> LedgerTotals:
        """Sum, count, distinct depositors and extremes of confirmed entries."""
        stmt = select(
            func.coalesce(func.sum(Investment.amount), Decimal("0")),
            func.count(Investment.id),
            func.count(func.distinct(Investment.user_address)),
            func.max(Investment.amount),
            func.min(Investment.amount),
        ).where(Investment.status == InvestmentStatus.CONFIRMED.value)

        total, count, investors, highest, lowest = (
            await self.session.execute(stmt)
        ).one()
        return LedgerTotals(
            total_amount=Decimal(total or 0),
            entry_count=count or 0,
            unique_investors=investors or 0,
            max_amount=Decimal(highest or 0),
            min_amount=Decimal(lowest or 0),
        )

    async def totals_by_asset_type(self) -> list[AssetTotals]:
        """Confirmed totals grouped by asset type, largest first."""
        total = func.coalesce(func.sum(Investment.amount), Decimal("0"))
        stmt = (
            select(Investment.asset_type, total, func.count(Investment.id))
            .where(Investment.status == InvestmentStatus.CONFIRMED.value)
            .group_by(Investment.asset_type)
            .order_by(total.desc(), Investment.asset_type)
        )
        result = await self.session.execute(stmt)
        return [
            AssetTotals(
                asset_type=asset_type,
                total_amount=Decimal(amount or 0),
                entry_count=count or 0,
            )
            for asset_type, amount, count in result.all()
        ]

    def _investor_select(self):
        total = func.coalesce(func.sum(Investment.amount), Decimal("0"))
        count = func.count(Investment.id)
        stmt = (
            select(
                Investment.user_address,
                total.label("total_amount"),
                count.label("entry_count"),
                func.max(Investment.investment_time).label("last_investment"),
            )
            .where(Investment.status == InvestmentStatus.CONFIRMED.value)
            .group_by(Investment.user_address)
        )
        return stmt, total, count

    async def _investor_aggregates(self, stmt) -> list[InvestorAggregate]:
        result = await self.session.execute(stmt)
        return [
            InvestorAggregate(
                user_address=row.user_address,
                total_amount=Decimal(row.total_amount or 0),
                entry_count=row.entry_count or 0,
                last_investment=row.last_investment,
            )
            for row in result.all()
        ]

    async def get_top_investors(self, limit: int) -> list[InvestorAggregate]:
        """
        Depositors ranked by confirmed total; ties by count, then address.
        """
        stmt, total, count = self._investor_select()
        stmt = stmt.order_by(
            total.desc(), count.desc(), Investment.user_address
        ).limit(limit)
        return await self._investor_aggregates(stmt)

    async def get_investor_aggregates(
        self, user_addresses: list[str]
    ) -> dict[str, InvestorAggregate]:
        """
        Confirmed totals and latest deposit time per depositor.

        Returns:
            Mapping address -> aggregate; depositors without confirmed
            entries are absent
        """
        if not user_addresses:
            return {}

        stmt, _, _ = self._investor_select()
        stmt = stmt.where(Investment.user_address.in_(user_addresses))
        return {
            aggregate.user_address: aggregate
            for aggregate in await self._investor_aggregates(stmt)
        }

    async def get_confirmed_between(
        self, start: datetime, end: datetime
    ) -> list[Investment]:
        """Confirmed entries with start <= investment_time < end."""
        stmt = (
            select(Investment)
            .where(
                Investment.status == InvestmentStatus.CONFIRMED.value,
                Investment.investment_time >= start,
                Investment.investment_time < end,
            )
            .order_by(Investment.investment_time, Investment.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def set_status(self, entry: Investment, status: str) -> Investment:
        """Update entry status."""
        entry.status = status
        await self.session.flush()
        return entry
