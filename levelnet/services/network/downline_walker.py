"""
Downline walker (slow path).

Rebuilds a root's downline from direct-referral edges in the user
directory, without touching the materialized store. Used to verify the
store or to answer queries when it is believed stale.

The walk is a single breadth-first expansion per root: one query per
level, a global visited set, and a hard depth cap.
"""

from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from levelnet.config.constants import LEVEL_RANGE, MAX_REFERRAL_DEPTH
from levelnet.models.user import User
from levelnet.repositories.investment_repository import InvestmentRepository
from levelnet.repositories.level_repository import LevelRelationshipRepository
from levelnet.repositories.user_repository import UserRepository
from levelnet.services.base_service import BaseService
from levelnet.services.network.results import (
    LevelDiscrepancy,
    VerificationReport,
    WalkMember,
)
from levelnet.utils.datetime_utils import ensure_utc
from levelnet.utils.exceptions import NotFoundError
from levelnet.utils.formatters import ZERO, round_money
from levelnet.utils.validation import normalize_address, validate_level


class DownlineWalker(BaseService):
    """Breadth-first downline expansion over the user directory."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize downline walker."""
        super().__init__(session)
        self.user_repo = UserRepository(session)
        self.level_repo = LevelRelationshipRepository(session)
        self.investment_repo = InvestmentRepository(session)

    async def users_by_level(
        self, root: str, max_levels: int = MAX_REFERRAL_DEPTH
    ) -> dict[int, list[WalkMember]]:
        """
        Active downline of root grouped by depth.

        Inactive users are walked through but not reported, matching the
        activity rule of materialized rows. An inactive root has no active
        downline.

        Returns:
            Mapping level -> members for levels 1..max_levels

        Raises:
            NotFoundError: If root is not in the directory
            InvalidRangeError: If max_levels is outside [1, 21]
        """
        max_levels = validate_level(max_levels)
        root = normalize_address(root)

        root_user = await self.user_repo.get_by_address(root)
        if root_user is None:
            raise NotFoundError(f"User {root} not found")

        by_level: dict[int, list[User]] = {
            level: [] for level in range(1, max_levels + 1)
        }
        if not root_user.is_active:
            return {level: [] for level in by_level}

        visited = {root}
        frontier = [root]
        depth = 0

        while frontier and depth < max_levels:
            depth += 1
            children = await self.user_repo.get_direct_referrals(
                frontier, active_only=False
            )

            next_frontier = []
            for child in children:
                if child.address in visited:
                    self.logger.warning(
                        "Referral cycle during downline walk",
                        extra={"root": root, "address": child.address},
                    )
                    continue
                visited.add(child.address)
                next_frontier.append(child.address)
                if child.is_active:
                    by_level[depth].append(child)

            frontier = next_frontier

        addresses = [user.address for users in by_level.values() for user in users]
        totals = await self.investment_repo.confirmed_totals(addresses)

        self.logger.debug(
            "Downline walk for {} visited {} users",
            root,
            len(visited) - 1,
            extra={"root": root, "depth": depth, "reported": len(addresses)},
        )

        return {
            level: [
                WalkMember(
                    address=user.address,
                    level=level,
                    referrer_address=user.referrer_address,
                    registration_time=ensure_utc(user.registration_time),
                    status=user.status,
                    total_deposits=round_money(
                        totals.get(user.address, (ZERO, 0))[0]
                    ),
                    deposit_count=totals.get(user.address, (ZERO, 0))[1],
                )
                for user in users
            ]
            for level, users in by_level.items()
        }

    async def users_at_level(self, root: str, level: int) -> list[WalkMember]:
        """
        Active users at exactly `level` below root.

        Raises:
            InvalidRangeError: If level is outside [1, 21]
            NotFoundError: If root is not in the directory
        """
        level = validate_level(level)
        by_level = await self.users_by_level(root, max_levels=level)
        return by_level[level]

    async def verify_materialization(self, root: str) -> VerificationReport:
        """
        Compare the materialized store with a fresh walk for one root.

        Per level, member count and investment must match; descendants
        present on only one side are listed.

        Raises:
            NotFoundError: If root is not in the directory
        """
        root = normalize_address(root)
        walked = await self.users_by_level(root)
        rows = await self.level_repo.get_members(root, MAX_REFERRAL_DEPTH)

        stored_count: dict[int, int] = {level: 0 for level in LEVEL_RANGE}
        stored_investment: dict[int, Decimal] = {level: ZERO for level in LEVEL_RANGE}
        stored_addresses: set[tuple[int, str]] = set()
        for row in rows:
            stored_count[row.level] += 1
            stored_investment[row.level] += Decimal(row.total_investment)
            stored_addresses.add((row.level, row.descendant_address))

        walked_addresses: set[tuple[int, str]] = set()
        discrepancies = []
        for level in LEVEL_RANGE:
            members = walked[level]
            walked_addresses.update((level, m.address) for m in members)
            walked_investment = sum((m.total_deposits for m in members), ZERO)
            materialized_investment = round_money(stored_investment[level])

            if (
                stored_count[level] != len(members)
                or materialized_investment != round_money(walked_investment)
            ):
                discrepancies.append(
                    LevelDiscrepancy(
                        level=level,
                        materialized_count=stored_count[level],
                        walked_count=len(members),
                        materialized_investment=materialized_investment,
                        walked_investment=round_money(walked_investment),
                    )
                )

        missing = sorted(addr for _, addr in walked_addresses - stored_addresses)
        unexpected = sorted(addr for _, addr in stored_addresses - walked_addresses)
        consistent = not (discrepancies or missing or unexpected)

        if not consistent:
            self.logger.warning(
                "Materialized store out of sync for {}",
                root,
                extra={
                    "root": root,
                    "levels": [d.level for d in discrepancies],
                    "missing": len(missing),
                    "unexpected": len(unexpected),
                },
            )

        return VerificationReport(
            root=root,
            consistent=consistent,
            levels_checked=len(LEVEL_RANGE),
            discrepancies=discrepancies,
            missing_rows=missing,
            unexpected_rows=unexpected,
        )
