"""
Network query service.

Cached facade over the aggregation engine and the deposit ledger reports
for the presentation layer.
Every query opens its own session, so queries run concurrently and never
share ORM state.
"""

from collections.abc import Awaitable, Callable
from datetime import date, datetime
from typing import Any, TypeVar

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from levelnet.config.constants import (
    DEFAULT_HISTORY_LIMIT,
    DEFAULT_REPORT_DAYS,
    DEFAULT_TOP_INVESTORS_LIMIT,
    DEFAULT_TOP_REFERRERS_LIMIT,
    MAX_REFERRAL_DEPTH,
)
from levelnet.models.enums import InvestmentStatus
from levelnet.services.cache.result_cache import CachedResult, CacheTier, ResultCache
from levelnet.services.ledger_reports import LedgerReportService
from levelnet.services.network.aggregation import (
    AggregationEngine,
    build_commission_table,
)
from levelnet.services.network.downline_walker import DownlineWalker
from levelnet.services.network.results import (
    CommissionRateTable,
    DailyInvestment,
    DailyReport,
    InvestorSummary,
    LedgerEntry,
    LevelMember,
    LevelStats,
    PlatformStatistics,
    ReferralTree,
    TeamSummary,
    TopInvestor,
    TopReferrer,
    UplineEntry,
    VerificationReport,
    WalkMember,
)
from levelnet.utils.datetime_utils import utc_now
from levelnet.utils.validation import normalize_address, validate_level


T = TypeVar("T")


class NetworkQueryService:
    """Read-side entry point: validation, one session per query, caching."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        cache: ResultCache,
    ) -> None:
        """
        Initialize query service.

        Args:
            session_maker: Factory for per-query sessions
            cache: Result cache
        """
        self.session_maker = session_maker
        self.cache = cache
        self.logger = logger.bind(service=self.__class__.__name__)

    async def _run(
        self, query: Callable[[Any], Awaitable[T]], engine_type: type = AggregationEngine
    ) -> T:
        async with self.session_maker() as session:
            return await query(engine_type(session))

    async def _cached(
        self,
        kind: str,
        wallet: str | None,
        params: tuple,
        query: Callable[[Any], Awaitable[T]],
        result_type: Any,
        tier: CacheTier = CacheTier.SHORT,
        engine_type: type = AggregationEngine,
    ) -> CachedResult[T]:
        result = await self.cache.get_or_compute(
            kind,
            wallet,
            params,
            lambda: self._run(query, engine_type),
            result_type,
            tier=tier,
        )
        if result.cached:
            self.logger.debug(
                "Cache hit for {}",
                kind,
                extra={"wallet": wallet, "cached_at": result.cached_at.isoformat()},
            )
        return result

    async def level_statistics(
        self,
        ancestor: str,
        level: int,
        registered_since: datetime | None = None,
    ) -> CachedResult[LevelStats]:
        """Cached per-level statistics. Level is checked before the cache."""
        level = validate_level(level)
        ancestor = normalize_address(ancestor)
        since = registered_since.isoformat() if registered_since else None
        return await self._cached(
            "level_stats",
            ancestor,
            (level, since),
            lambda engine: engine.level_statistics(ancestor, level, registered_since),
            LevelStats,
        )

    async def all_levels_statistics(self, ancestor: str) -> CachedResult[list[LevelStats]]:
        """Cached statistics for all 21 levels."""
        ancestor = normalize_address(ancestor)
        return await self._cached(
            "all_levels",
            ancestor,
            (),
            lambda engine: engine.all_levels_statistics(ancestor),
            list[LevelStats],
        )

    async def network_level_statistics(self) -> CachedResult[list[LevelStats]]:
        """Cached whole-network per-level statistics."""
        return await self._cached(
            "network_levels",
            None,
            (),
            lambda engine: engine.network_level_statistics(),
            list[LevelStats],
            tier=CacheTier.LONG,
        )

    async def upline_chain(
        self, user: str, max_levels: int = MAX_REFERRAL_DEPTH
    ) -> CachedResult[list[UplineEntry]]:
        """Cached upline chain."""
        max_levels = validate_level(max_levels)
        user = normalize_address(user)
        return await self._cached(
            "upline",
            user,
            (max_levels,),
            lambda engine: engine.upline_chain(user, max_levels),
            list[UplineEntry],
        )

    async def team_summary(self, ancestor: str) -> CachedResult[TeamSummary]:
        """Cached team summary."""
        ancestor = normalize_address(ancestor)
        return await self._cached(
            "team_summary",
            ancestor,
            (),
            lambda engine: engine.team_summary(ancestor),
            TeamSummary,
        )

    async def level_members(
        self, ancestor: str, level: int
    ) -> CachedResult[list[LevelMember]]:
        """Cached member list for one level."""
        level = validate_level(level)
        ancestor = normalize_address(ancestor)
        return await self._cached(
            "level_members",
            ancestor,
            (level,),
            lambda engine: engine.level_members(ancestor, level),
            list[LevelMember],
        )

    async def referral_tree(
        self, ancestor: str, max_levels: int = MAX_REFERRAL_DEPTH
    ) -> CachedResult[ReferralTree]:
        """Cached referral tree (long tier)."""
        max_levels = validate_level(max_levels)
        ancestor = normalize_address(ancestor)
        return await self._cached(
            "referral_tree",
            ancestor,
            (max_levels,),
            lambda engine: engine.referral_tree(ancestor, max_levels),
            ReferralTree,
            tier=CacheTier.LONG,
        )

    async def top_referrers(
        self,
        level: int | None = None,
        limit: int = DEFAULT_TOP_REFERRERS_LIMIT,
    ) -> CachedResult[list[TopReferrer]]:
        """Cached top referrers ranking (long tier)."""
        if level is not None:
            level = validate_level(level)
        return await self._cached(
            "top_referrers",
            None,
            (level, limit),
            lambda engine: engine.top_referrers(level, limit),
            list[TopReferrer],
            tier=CacheTier.LONG,
        )

    def commission_rates(self) -> CommissionRateTable:
        """Static commission table; not cached."""
        return build_commission_table()

    async def users_at_level(self, root: str, level: int) -> list[WalkMember]:
        """Slow-path members at one level, bypassing the store and cache."""
        async with self.session_maker() as session:
            return await DownlineWalker(session).users_at_level(root, level)

    async def verify_materialization(self, root: str) -> VerificationReport:
        """Compare store and walk for one root; never cached."""
        async with self.session_maker() as session:
            return await DownlineWalker(session).verify_materialization(root)

    # ------------------------------------------------------------------
    # Deposit ledger
    # ------------------------------------------------------------------

    async def deposit(self, tx_id: str) -> LedgerEntry:
        """Ledger entry by transaction id; not cached since status can change."""
        async with self.session_maker() as session:
            return await LedgerReportService(session).get_deposit(tx_id)

    async def user_history(
        self,
        address: str,
        limit: int = DEFAULT_HISTORY_LIMIT,
        status: str | None = InvestmentStatus.CONFIRMED.value,
    ) -> CachedResult[list[LedgerEntry]]:
        """Cached deposit history of one user, newest first."""
        address = normalize_address(address)
        return await self._cached(
            "deposit_history",
            address,
            (limit, status),
            lambda reports: reports.user_history(address, limit, status),
            list[LedgerEntry],
            engine_type=LedgerReportService,
        )

    async def investor_summary(self, address: str) -> CachedResult[InvestorSummary]:
        """Cached confirmed deposit totals of one user."""
        address = normalize_address(address)
        return await self._cached(
            "investor_summary",
            address,
            (),
            lambda reports: reports.investor_summary(address),
            InvestorSummary,
            engine_type=LedgerReportService,
        )

    async def platform_statistics(self) -> CachedResult[PlatformStatistics]:
        """Cached platform-wide deposit statistics (long tier)."""
        return await self._cached(
            "platform_stats",
            None,
            (),
            lambda reports: reports.platform_statistics(),
            PlatformStatistics,
            tier=CacheTier.LONG,
            engine_type=LedgerReportService,
        )

    async def top_investors(
        self, limit: int = DEFAULT_TOP_INVESTORS_LIMIT
    ) -> CachedResult[list[TopInvestor]]:
        """Cached top investors ranking (long tier)."""
        return await self._cached(
            "top_investors",
            None,
            (limit,),
            lambda reports: reports.top_investors(limit),
            list[TopInvestor],
            tier=CacheTier.LONG,
            engine_type=LedgerReportService,
        )

    async def daily_investments(
        self, days: int = DEFAULT_REPORT_DAYS
    ) -> CachedResult[list[DailyInvestment]]:
        """Cached per-day deposit totals ending today (long tier)."""
        today = utc_now().date()
        return await self._cached(
            "daily_investments",
            None,
            (days, today.isoformat()),
            lambda reports: reports.daily_investments(days),
            list[DailyInvestment],
            tier=CacheTier.LONG,
            engine_type=LedgerReportService,
        )

    async def daily_report(self, day: date | None = None) -> CachedResult[DailyReport]:
        """Cached daily report; defaults to today (UTC)."""
        day = day or utc_now().date()
        return await self._cached(
            "daily_report",
            None,
            (day.isoformat(),),
            lambda reports: reports.daily_report(day),
            DailyReport,
            engine_type=LedgerReportService,
        )
