"""
Aggregation engine.

Answers per-level, team and upline queries from the materialized
relationship store. All aggregates are SQL GROUP BY over active rows;
the only per-hop work is the upline walk, which is bounded by the depth
limit.
"""

from collections import defaultdict
from datetime import datetime
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from levelnet.config.constants import (
    COMMISSION_RATES,
    DEFAULT_TOP_REFERRERS_LIMIT,
    LEVEL_RANGE,
    MAX_REFERRAL_DEPTH,
    MAX_TOP_REFERRERS_LIMIT,
)
from levelnet.models.user import User
from levelnet.repositories.level_repository import (
    LevelAggregate,
    LevelRelationshipRepository,
)
from levelnet.repositories.user_repository import UserRepository
from levelnet.services.base_service import BaseService
from levelnet.services.network.results import (
    CommissionRate,
    CommissionRateTable,
    LevelMember,
    LevelStats,
    ReferralTree,
    TeamSummary,
    TopReferrer,
    TreeLevel,
    UplineEntry,
)
from levelnet.utils.datetime_utils import ensure_utc
from levelnet.utils.exceptions import InvalidRangeError, NotFoundError
from levelnet.utils.formatters import (
    ZERO,
    percentage,
    round_money,
    round_ratio,
    safe_divide,
)
from levelnet.utils.validation import normalize_address, validate_level


def build_level_stats(
    level: int,
    user_count: int = 0,
    total_investment: Decimal = ZERO,
    total_earnings: Decimal = ZERO,
) -> LevelStats:
    """Build rounded LevelStats from raw totals."""
    return LevelStats(
        level=level,
        user_count=user_count,
        total_investment=round_money(total_investment),
        total_earnings=round_money(total_earnings),
        average_investment=round_money(safe_divide(total_investment, user_count)),
        average_earnings=round_money(safe_divide(total_earnings, user_count)),
    )


def _from_aggregate(level: int, aggregate: LevelAggregate | None) -> LevelStats:
    if aggregate is None:
        return build_level_stats(level)
    return build_level_stats(
        level,
        aggregate.user_count,
        aggregate.total_investment,
        aggregate.total_earnings,
    )


def build_commission_table() -> CommissionRateTable:
    """Display-only commission table with summary figures."""
    rates = [
        CommissionRate(level=level, rate=rate, description=f"Level {level} commission")
        for level, rate in sorted(COMMISSION_RATES.items())
    ]
    values = [rate.rate for rate in rates]
    total = sum(values, ZERO)

    return CommissionRateTable(
        rates=rates,
        total_rate=total,
        average_rate=round_ratio(safe_divide(total, len(values))),
        highest_rate=max(values),
        lowest_rate=min(values),
    )


class AggregationEngine(BaseService):
    """
    Aggregation engine (fast path).

    Read-only: callers give each engine its own session so queries run
    concurrently without sharing state.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize aggregation engine."""
        super().__init__(session)
        self.user_repo = UserRepository(session)
        self.level_repo = LevelRelationshipRepository(session)

    async def _require_user(self, address: str) -> User:
        user = await self.user_repo.get_by_address(address)
        if user is None:
            raise NotFoundError(f"User {address} not found")
        return user

    async def level_statistics(
        self,
        ancestor: str,
        level: int,
        registered_since: datetime | None = None,
    ) -> LevelStats:
        """
        Statistics for one level of an ancestor's downline.

        Args:
            ancestor: Ancestor address
            level: Level 1-21
            registered_since: Only descendants registered at or after this time

        Returns:
            LevelStats (zeros when the level is empty)

        Raises:
            InvalidRangeError: If level is outside [1, 21]
        """
        level = validate_level(level)
        ancestor = normalize_address(ancestor)
        since = ensure_utc(registered_since) if registered_since else None

        aggregates = await self.level_repo.get_level_aggregates(
            ancestor_address=ancestor, level=level, registered_since=since
        )
        return _from_aggregate(level, aggregates.get(level))

    async def all_levels_statistics(self, ancestor: str) -> list[LevelStats]:
        """
        Statistics for all 21 levels of an ancestor's downline.

        Levels without rows report zeros.
        """
        ancestor = normalize_address(ancestor)
        aggregates = await self.level_repo.get_level_aggregates(
            ancestor_address=ancestor
        )
        return [_from_aggregate(level, aggregates.get(level)) for level in LEVEL_RANGE]

    async def network_level_statistics(self) -> list[LevelStats]:
        """Per-level statistics across the whole network."""
        aggregates = await self.level_repo.get_level_aggregates()
        return [_from_aggregate(level, aggregates.get(level)) for level in LEVEL_RANGE]

    async def upline_chain(
        self, user: str, max_levels: int = MAX_REFERRAL_DEPTH
    ) -> list[UplineEntry]:
        """
        Walk a user's referrers, nearest first.

        Stops at a root, at max_levels, at an ancestor missing from the
        directory (broken chain) or at an address already visited. Each hop
        carries the totals of the matching relationship row, or zeros when
        no row is materialized.

        Raises:
            NotFoundError: If the user is not in the directory
            InvalidRangeError: If max_levels is outside [1, 21]
        """
        max_levels = validate_level(max_levels)
        address = normalize_address(user)
        record = await self._require_user(address)

        rows = {
            row.level: row
            for row in await self.level_repo.get_by_descendant(address)
        }

        chain: list[UplineEntry] = []
        seen = {address}
        current = record.referrer_address
        level = 1

        while current is not None and level <= max_levels:
            if current in seen:
                self.logger.warning(
                    "Referral cycle in upline chain",
                    extra={"user": address, "address": current, "level": level},
                )
                break
            seen.add(current)

            ancestor = await self.user_repo.get_by_address(current)
            if ancestor is None:
                self.logger.warning(
                    "Broken upline chain: ancestor not registered",
                    extra={"user": address, "ancestor": current, "level": level},
                )
                break

            row = rows.get(level)
            has_relationship = row is not None and row.ancestor_address == current
            chain.append(
                UplineEntry(
                    level=level,
                    ancestor_address=current,
                    registration_time=ensure_utc(ancestor.registration_time),
                    status=ancestor.status,
                    relationship_investment=round_money(
                        row.total_investment if has_relationship else ZERO
                    ),
                    relationship_earnings=round_money(
                        row.total_earnings if has_relationship else ZERO
                    ),
                    has_relationship=has_relationship,
                )
            )

            current = ancestor.referrer_address
            level += 1

        return chain

    async def team_summary(self, ancestor: str) -> TeamSummary:
        """
        Summary of an ancestor's whole downline.

        A user without downline gets all-zero figures and
        top_performing_level None.

        Raises:
            NotFoundError: If the user is not in the directory
        """
        address = normalize_address(ancestor)
        user = await self._require_user(address)
        levels = await self.all_levels_statistics(address)

        populated = [stats for stats in levels if stats.user_count > 0]
        team_size = sum(stats.user_count for stats in levels)
        team_investment = sum((stats.total_investment for stats in levels), ZERO)
        team_earnings = sum((stats.total_earnings for stats in levels), ZERO)

        top_level = None
        if populated:
            # Ties go to the shallower level
            top_level = max(
                populated, key=lambda stats: (stats.total_earnings, -stats.level)
            ).level

        return TeamSummary(
            address=address,
            total_team_size=team_size,
            total_team_investment=round_money(team_investment),
            total_team_earnings=round_money(team_earnings),
            active_levels=len(populated),
            max_level=max((stats.level for stats in populated), default=0),
            roi=percentage(team_earnings, team_investment),
            average_investment_per_user=round_money(
                safe_divide(team_investment, team_size)
            ),
            average_earnings_per_user=round_money(
                safe_divide(team_earnings, team_size)
            ),
            level_distribution_efficiency=percentage(
                len(populated), MAX_REFERRAL_DEPTH
            ),
            top_performing_level=top_level,
            personal_investment=round_money(user.total_deposits),
            levels=levels,
        )

    async def _members(
        self, ancestor: str, max_levels: int, level: int | None = None
    ) -> list[LevelMember]:
        rows = await self.level_repo.get_members(ancestor, max_levels, level=level)
        users = await self.user_repo.get_many_by_address(
            [row.descendant_address for row in rows]
        )

        members = []
        for row in rows:
            user = users.get(row.descendant_address)
            members.append(
                LevelMember(
                    address=row.descendant_address,
                    level=row.level,
                    registration_time=ensure_utc(row.registration_time),
                    status=user.status if user else None,
                    relationship_investment=round_money(row.total_investment),
                    relationship_earnings=round_money(row.total_earnings),
                    deposit_count=user.deposit_count if user else 0,
                    personal_deposits=round_money(
                        user.total_deposits if user else ZERO
                    ),
                )
            )
        return members

    async def level_members(self, ancestor: str, level: int) -> list[LevelMember]:
        """
        Active members at exactly one level, in join order.

        Raises:
            InvalidRangeError: If level is outside [1, 21]
            NotFoundError: If the ancestor is not in the directory
        """
        level = validate_level(level)
        address = normalize_address(ancestor)
        await self._require_user(address)
        return await self._members(address, level, level=level)

    async def referral_tree(
        self, ancestor: str, max_levels: int = MAX_REFERRAL_DEPTH
    ) -> ReferralTree:
        """
        Downline grouped by level, with per-level totals.

        Raises:
            InvalidRangeError: If max_levels is outside [1, 21]
            NotFoundError: If the ancestor is not in the directory
        """
        max_levels = validate_level(max_levels)
        address = normalize_address(ancestor)
        await self._require_user(address)

        grouped: dict[int, list[LevelMember]] = defaultdict(list)
        for member in await self._members(address, max_levels):
            grouped[member.level].append(member)

        tree_levels = []
        for level in sorted(grouped):
            members = grouped[level]
            tree_levels.append(
                TreeLevel(
                    stats=build_level_stats(
                        level,
                        len(members),
                        sum((m.relationship_investment for m in members), ZERO),
                        sum((m.relationship_earnings for m in members), ZERO),
                    ),
                    members=members,
                )
            )

        return ReferralTree(
            root=address,
            max_levels=max_levels,
            total_members=sum(tl.stats.user_count for tl in tree_levels),
            total_investment=round_money(
                sum((tl.stats.total_investment for tl in tree_levels), ZERO)
            ),
            total_earnings=round_money(
                sum((tl.stats.total_earnings for tl in tree_levels), ZERO)
            ),
            levels=tree_levels,
        )

    async def top_referrers(
        self,
        level: int | None = None,
        limit: int = DEFAULT_TOP_REFERRERS_LIMIT,
    ) -> list[TopReferrer]:
        """
        Ancestors ranked by earnings from their active downline.

        Args:
            level: Only count rows at this level
            limit: Number of entries, 1-100

        Raises:
            InvalidRangeError: If level or limit is out of range
        """
        if level is not None:
            level = validate_level(level)
        if limit < 1 or limit > MAX_TOP_REFERRERS_LIMIT:
            raise InvalidRangeError(
                f"Limit must be between 1 and {MAX_TOP_REFERRERS_LIMIT}"
            )

        ranking = await self.level_repo.get_top_ancestors(level=level, limit=limit)
        return [
            TopReferrer(
                rank=rank,
                address=entry.ancestor_address,
                team_size=entry.user_count,
                total_investment=round_money(entry.total_investment),
                total_earnings=round_money(entry.total_earnings),
                active_levels=entry.active_levels,
            )
            for rank, entry in enumerate(ranking, start=1)
        ]

    def commission_rates(self) -> CommissionRateTable:
        """Display-only commission table. Never used for stored earnings."""
        return build_commission_table()
