"""
Ledger report service.

Read-only views over the deposit ledger: single-entry lookup, per-user
history and totals, platform statistics, top investors and daily
reports. Only confirmed entries count towards totals. Days are UTC
calendar days.
"""

from collections import defaultdict
from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from levelnet.config.constants import (
    DEFAULT_HISTORY_LIMIT,
    DEFAULT_REPORT_DAYS,
    DEFAULT_TOP_INVESTORS_LIMIT,
    MAX_HISTORY_LIMIT,
    MAX_REPORT_DAYS,
    MAX_TOP_INVESTORS_LIMIT,
)
from levelnet.models.enums import InvestmentStatus
from levelnet.models.investment import Investment
from levelnet.repositories.investment_repository import InvestmentRepository
from levelnet.repositories.user_repository import UserRepository
from levelnet.services.base_service import BaseService
from levelnet.services.network.results import (
    AssetBreakdown,
    DailyInvestment,
    DailyReport,
    InvestorSummary,
    LedgerEntry,
    PlatformStatistics,
    TopInvestor,
)
from levelnet.utils.datetime_utils import ensure_utc, utc_now
from levelnet.utils.exceptions import InvalidRangeError, NotFoundError
from levelnet.utils.formatters import ZERO, round_money, safe_divide
from levelnet.utils.validation import normalize_address


def _check_range(name: str, value: int, maximum: int) -> int:
    if value < 1 or value > maximum:
        raise InvalidRangeError(f"{name} must be between 1 and {maximum}")
    return value


def _day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=UTC)
    return start, start + timedelta(days=1)


def to_ledger_entry(entry: Investment) -> LedgerEntry:
    """Detach a ledger row into its result model."""
    return LedgerEntry(
        tx_id=entry.tx_id,
        user_address=entry.user_address,
        amount=round_money(entry.amount),
        asset_type=entry.asset_type,
        status=entry.status,
        block_height=entry.block_height,
        investment_time=ensure_utc(entry.investment_time),
    )


class LedgerReportService(BaseService):
    """Deposit ledger queries. Never writes."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize ledger report service."""
        super().__init__(session)
        self.investment_repo = InvestmentRepository(session)
        self.user_repo = UserRepository(session)

    async def get_deposit(self, tx_id: str) -> LedgerEntry:
        """
        Look up one ledger entry by transaction id, whatever its status.

        Raises:
            ValueError: If tx_id is empty
            NotFoundError: If no entry has this tx_id
        """
        if not tx_id:
            raise ValueError("Transaction id is required")

        entry = await self.investment_repo.get_by_tx_id(tx_id)
        if entry is None:
            raise NotFoundError(f"Transaction {tx_id} not found")
        return to_ledger_entry(entry)

    async def user_history(
        self,
        address: str,
        limit: int = DEFAULT_HISTORY_LIMIT,
        status: str | None = InvestmentStatus.CONFIRMED.value,
    ) -> list[LedgerEntry]:
        """
        A user's ledger entries, newest first.

        Unknown users have an empty history.

        Args:
            address: Depositor address
            limit: Maximum number of entries, 1-500
            status: Only entries with this status; None for all

        Raises:
            InvalidRangeError: If limit is out of range
        """
        address = normalize_address(address)
        limit = _check_range("Limit", limit, MAX_HISTORY_LIMIT)
        if status is not None:
            status = InvestmentStatus(status).value

        entries = await self.investment_repo.get_user_history(address, limit, status)
        return [to_ledger_entry(entry) for entry in entries]

    async def investor_summary(self, address: str) -> InvestorSummary:
        """Confirmed total, count, average and latest deposit time for a user."""
        address = normalize_address(address)
        aggregates = await self.investment_repo.get_investor_aggregates([address])
        aggregate = aggregates.get(address)
        if aggregate is None:
            return InvestorSummary(address=address)

        return InvestorSummary(
            address=address,
            total_amount=round_money(aggregate.total_amount),
            deposit_count=aggregate.entry_count,
            average_amount=round_money(
                safe_divide(aggregate.total_amount, aggregate.entry_count)
            ),
            last_investment=ensure_utc(aggregate.last_investment),
        )

    async def platform_statistics(self) -> PlatformStatistics:
        """Totals, extremes and per-asset breakdown of confirmed deposits."""
        totals = await self.investment_repo.ledger_totals()
        by_asset = await self.investment_repo.totals_by_asset_type()

        return PlatformStatistics(
            total_amount=round_money(totals.total_amount),
            total_deposits=totals.entry_count,
            unique_investors=totals.unique_investors,
            average_amount=round_money(
                safe_divide(totals.total_amount, totals.entry_count)
            ),
            max_amount=round_money(totals.max_amount),
            min_amount=round_money(totals.min_amount),
            by_asset_type=[
                AssetBreakdown(
                    asset_type=asset.asset_type,
                    total_amount=round_money(asset.total_amount),
                    deposit_count=asset.entry_count,
                )
                for asset in by_asset
            ],
        )

    async def top_investors(
        self, limit: int = DEFAULT_TOP_INVESTORS_LIMIT
    ) -> list[TopInvestor]:
        """
        Depositors ranked by confirmed total.

        Raises:
            InvalidRangeError: If limit is not 1-100
        """
        limit = _check_range("Limit", limit, MAX_TOP_INVESTORS_LIMIT)
        ranking = await self.investment_repo.get_top_investors(limit)
        return [
            TopInvestor(
                rank=rank,
                address=entry.user_address,
                total_amount=round_money(entry.total_amount),
                deposit_count=entry.entry_count,
                last_investment=(
                    ensure_utc(entry.last_investment)
                    if entry.last_investment is not None
                    else None
                ),
            )
            for rank, entry in enumerate(ranking, start=1)
        ]

    async def daily_investments(
        self, days: int = DEFAULT_REPORT_DAYS, now: datetime | None = None
    ) -> list[DailyInvestment]:
        """
        Confirmed deposits per day for the last `days` days, oldest first.

        The window ends with the current day; days without deposits are
        included with zero totals.

        Raises:
            InvalidRangeError: If days is not 1-366
        """
        days = _check_range("Days", days, MAX_REPORT_DAYS)
        today = ensure_utc(now).date()
        first_day = today - timedelta(days=days - 1)
        start, _ = _day_bounds(first_day)
        _, end = _day_bounds(today)

        amounts: dict[date, Decimal] = defaultdict(lambda: ZERO)
        counts: dict[date, int] = defaultdict(int)
        investors: dict[date, set[str]] = defaultdict(set)
        for entry in await self.investment_repo.get_confirmed_between(start, end):
            day = ensure_utc(entry.investment_time).date()
            amounts[day] += Decimal(entry.amount)
            counts[day] += 1
            investors[day].add(entry.user_address)

        return [
            DailyInvestment(
                day=day,
                total_amount=round_money(amounts[day]),
                deposit_count=counts[day],
                unique_investors=len(investors[day]),
            )
            for day in (first_day + timedelta(days=i) for i in range(days))
        ]

    async def daily_report(self, day: date | None = None) -> DailyReport:
        """
        New registrations and confirmed deposits for one day, with
        platform totals at the time of the call.

        Args:
            day: UTC calendar day; defaults to today
        """
        day = day or utc_now().date()
        start, end = _day_bounds(day)

        new_users = await self.user_repo.count_registered_between(start, end)
        entries = await self.investment_repo.get_confirmed_between(start, end)
        totals = await self.investment_repo.ledger_totals()
        active_users = await self.user_repo.count_by_status()

        return DailyReport(
            day=day,
            new_users=new_users,
            day_amount=round_money(sum((Decimal(e.amount) for e in entries), ZERO)),
            day_deposits=len(entries),
            active_users=active_users,
            total_amount=round_money(totals.total_amount),
            total_deposits=totals.entry_count,
            unique_investors=totals.unique_investors,
        )
