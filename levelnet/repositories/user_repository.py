"""
User repository.

Data access layer for the User Directory.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from levelnet.models.enums import UserStatus
from levelnet.models.user import User, UserDeposit
from levelnet.repositories.base import BaseRepository


class UserRepository(BaseRepository[User]):
    """User repository with directory-specific queries."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize user repository."""
        super().__init__(User, session)

    async def get_by_address(self, address: str) -> User | None:
        """
        Get user by canonical address.

        Args:
            address: Lowercase wallet address

        Returns:
            User or None
        """
        return await self.get_by(address=address)

    async def get_many_by_address(
        self, addresses: list[str]
    ) -> dict[str, User]:
        """
        Load several users in one query.

        Returns:
            Mapping address -> User for the addresses that exist
        """
        return await self.get_in("address", addresses)

    async def create_user(
        self,
        address: str,
        referrer_address: str | None,
        registration_time: datetime,
        status: str = UserStatus.ACTIVE.value,
    ) -> User:
        """
        Create directory record.

        The deposits collection is initialized explicitly so that it can be
        appended to without a lazy load.
        """
        return await self.create(
            address=address,
            referrer_address=referrer_address,
            registration_time=registration_time,
            status=status,
            deposits=[],
        )

    async def append_deposit(
        self,
        user: User,
        amount: Decimal,
        tx_id: str,
        block_height: int | None,
        timestamp: datetime,
    ) -> UserDeposit:
        """Append deposit to the user's ordered deposit list."""
        deposit = UserDeposit(
            amount=amount,
            tx_id=tx_id,
            block_height=block_height,
            timestamp=timestamp,
        )
        user.deposits.append(deposit)
        await self.session.flush()
        return deposit

    async def get_direct_referrals(
        self, referrer_addresses: list[str], active_only: bool = True
    ) -> list[User]:
        """
        Get direct referrals of several referrers in one query.

        Args:
            referrer_addresses: Parent addresses
            active_only: Only users with status active

        Returns:
            Users whose referrer is in referrer_addresses
        """
        if not referrer_addresses:
            return []

        stmt = select(User).where(User.referrer_address.in_(referrer_addresses))
        if active_only:
            stmt = stmt.where(User.status == UserStatus.ACTIVE.value)
        stmt = stmt.order_by(User.registration_time, User.id)

        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_dormant_addresses(self, registered_before: datetime) -> list[str]:
        """
        Active users without any deposit registered before the cutoff.
        """
        stmt = select(User.address).where(
            User.status == UserStatus.ACTIVE.value,
            User.registration_time < registered_before,
            ~User.deposits.any(),
        )
        result = await self.session.execute(stmt)
        return [row[0] for row in result.all()]

    async def count_registered_between(
        self, start: datetime, end: datetime
    ) -> int:
        """Users with start <= registration_time < end."""
        stmt = select(func.count(User.id)).where(
            User.registration_time >= start,
            User.registration_time < end,
        )
        return (await self.session.execute(stmt)).scalar_one() or 0

    async def count_by_status(self, status: str = UserStatus.ACTIVE.value) -> int:
        """Number of users with the given status."""
        stmt = select(func.count(User.id)).where(User.status == status)
        return (await self.session.execute(stmt)).scalar_one() or 0

    async def mark_inactive(self, addresses: list[str]) -> int:
        """
        Mark users inactive.

        Returns:
            Number of users updated
        """
        if not addresses:
            return 0

        stmt = (
            update(User)
            .where(User.address.in_(addresses))
            .values(status=UserStatus.INACTIVE.value)
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0
