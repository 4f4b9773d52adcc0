"""
Housekeeping service.

Periodic maintenance: marks dormant users inactive (deactivating their
relationship rows), logs a network-wide per-level snapshot and the daily
registration and deposit report.
"""

from datetime import date, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from levelnet.config.settings import settings
from levelnet.repositories.level_repository import LevelRelationshipRepository
from levelnet.repositories.user_repository import UserRepository
from levelnet.services.base_service import BaseService, log_operation, transaction
from levelnet.services.ledger_reports import LedgerReportService
from levelnet.services.network.aggregation import AggregationEngine
from levelnet.services.network.results import DailyReport, LevelStats
from levelnet.utils.datetime_utils import ensure_utc


class HousekeepingService(BaseService):
    """Dormant-user deactivation, level snapshots and daily reports."""

    def __init__(
        self, session: AsyncSession, inactivity_days: int | None = None
    ) -> None:
        """
        Initialize housekeeping service.

        Args:
            session: Async database session
            inactivity_days: Days without deposits before deactivation
        """
        super().__init__(session)
        self.inactivity_days = inactivity_days or settings.inactivity_days
        self.user_repo = UserRepository(session)
        self.level_repo = LevelRelationshipRepository(session)

    @log_operation
    @transaction
    async def deactivate_dormant_users(self, now: datetime | None = None) -> int:
        """
        Mark active users without deposits inactive after the grace period.

        Relationship rows where such a user is either endpoint are
        deactivated in the same transaction.

        Returns:
            Number of users marked inactive
        """
        cutoff = ensure_utc(now) - timedelta(days=self.inactivity_days)
        addresses = await self.user_repo.find_dormant_addresses(cutoff)
        if not addresses:
            return 0

        marked = await self.user_repo.mark_inactive(addresses)
        rows = await self.level_repo.deactivate_for_addresses(addresses)

        self.logger.info(
            "Marked {} dormant users inactive",
            marked,
            extra={
                "users": marked,
                "relationships": rows,
                "cutoff": cutoff.isoformat(),
            },
        )
        return marked

    async def level_snapshot(self) -> list[LevelStats]:
        """Network per-level statistics, logged for operators."""
        stats = await AggregationEngine(self.session).network_level_statistics()

        for level_stats in stats:
            if level_stats.user_count:
                self.logger.info(
                    f"Level {level_stats.level}: {level_stats.user_count} users, "
                    f"investment {level_stats.total_investment}, "
                    f"earnings {level_stats.total_earnings}"
                )

        total = sum(s.user_count for s in stats)
        self.logger.info(f"Level snapshot: {total} active relationships")
        return stats

    async def daily_report(self, day: date | None = None) -> DailyReport:
        """Registrations and deposits for one UTC day, logged for operators."""
        report = await LedgerReportService(self.session).daily_report(day)

        self.logger.info(
            "Daily report {}: {} new users, {} deposits totalling {}",
            report.day.isoformat(),
            report.new_users,
            report.day_deposits,
            report.day_amount,
            extra={
                "active_users": report.active_users,
                "total_amount": str(report.total_amount),
                "total_deposits": report.total_deposits,
                "unique_investors": report.unique_investors,
            },
        )
        return report
