"""
Graph materializer.

Maintains the (descendant, ancestor, level) closure of the referral forest
and keeps the running totals on its rows current as registrations,
deposits and commission events arrive.

Every write runs inside descendant_transaction(), which serializes writers
per descendant address and commits the ledger append together with the
propagation to relationship rows.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from levelnet.config.constants import MAX_REFERRAL_DEPTH
from levelnet.models.enums import AssetType, InvestmentStatus, UserStatus
from levelnet.models.investment import Investment
from levelnet.models.level_relationship import LevelRelationship
from levelnet.models.user import User
from levelnet.repositories.investment_repository import InvestmentRepository
from levelnet.repositories.level_repository import LevelRelationshipRepository
from levelnet.repositories.user_repository import UserRepository
from levelnet.services.base_service import BaseService
from levelnet.services.network.locks import (
    KeyedLock,
    acquire_advisory_lock,
    descendant_locks,
)
from levelnet.utils.datetime_utils import ensure_utc
from levelnet.utils.exceptions import (
    ConflictError,
    InconsistentError,
    NotFoundError,
)
from levelnet.utils.validation import (
    normalize_address,
    normalize_optional_address,
    validate_amount,
    validate_level,
)


@dataclass
class UplineHop:
    """Ancestor found by the upline walk; user is None past the known forest."""

    address: str
    user: User | None


class GraphMaterializer(BaseService):
    """
    Graph materializer.

    Builds relationship rows on registration, backfills them when an
    ancestor's own upline becomes known, and propagates deposits and
    commissions to the rows of the affected descendant.
    """

    def __init__(
        self, session: AsyncSession, locks: KeyedLock | None = None
    ) -> None:
        """
        Initialize materializer.

        Args:
            session: Async database session
            locks: Per-descendant lock map (process-wide map by default)
        """
        super().__init__(session)
        self.locks = locks if locks is not None else descendant_locks
        self.user_repo = UserRepository(session)
        self.level_repo = LevelRelationshipRepository(session)
        self.investment_repo = InvestmentRepository(session)

    @asynccontextmanager
    async def descendant_transaction(self, address: str) -> AsyncIterator[None]:
        """
        Serialize writes for one descendant and run them as one transaction.

        Commits on success, rolls back on exception.
        """
        async with self.locks.hold(address):
            try:
                await acquire_advisory_lock(self.session, address)
                yield
                await self.session.commit()
            except Exception:
                await self.session.rollback()
                raise

    # ------------------------------------------------------------------
    # Upline walks
    # ------------------------------------------------------------------

    async def _walk_upline(
        self, descendant: str, referrer: str | None
    ) -> list[UplineHop]:
        """
        Collect [referrer, referrer's referrer, ...] up to the depth limit.

        The walk stops after an address unknown to the directory (that
        address is still part of the chain since the edge to it is known)
        and before an address it has already visited.
        """
        chain: list[UplineHop] = []
        seen = {descendant}
        current = referrer

        while current is not None and len(chain) < MAX_REFERRAL_DEPTH:
            if current in seen:
                self.logger.warning(
                    "Referral cycle detected during upline walk",
                    extra={"descendant": descendant, "address": current},
                )
                break
            seen.add(current)

            user = await self.user_repo.get_by_address(current)
            chain.append(UplineHop(address=current, user=user))
            if user is None:
                self.logger.debug(
                    "Upline walk reached unregistered ancestor",
                    extra={"descendant": descendant, "ancestor": current},
                )
                break
            current = user.referrer_address

        return chain

    async def _creates_cycle(self, address: str, referrer: str) -> bool:
        """Whether address already appears in referrer's upline."""
        seen: set[str] = set()
        current: str | None = referrer

        while current is not None and current not in seen:
            if current == address:
                return True
            seen.add(current)
            user = await self.user_repo.get_by_address(current)
            current = user.referrer_address if user else None

        return False

    async def _materialize(
        self,
        descendant: str,
        referrer: str | None,
        registration_time: datetime,
        seed_investment: Decimal,
        descendant_active: bool,
    ) -> int:
        """
        Create missing rows for descendant along referrer's upline.

        Rows that already exist are left untouched. New rows start with the
        descendant's confirmed deposit total.

        Returns:
            Number of rows created
        """
        chain = await self._walk_upline(descendant, referrer)
        if not chain:
            return 0

        existing = {
            row.level: row
            for row in await self.level_repo.get_by_descendant(descendant)
        }

        created = 0
        for level, hop in enumerate(chain, start=1):
            row = existing.get(level)
            if row is not None:
                if row.ancestor_address != hop.address:
                    self.logger.warning(
                        "Materialized ancestor differs from upline walk",
                        extra={
                            "descendant": descendant,
                            "level": level,
                            "stored": row.ancestor_address,
                            "walked": hop.address,
                        },
                    )
                continue

            ancestor_active = hop.user is None or hop.user.is_active
            await self.level_repo.create_relationship(
                descendant_address=descendant,
                ancestor_address=hop.address,
                level=level,
                registration_time=registration_time,
                total_investment=seed_investment,
                is_active=descendant_active and ancestor_active,
            )
            created += 1

        if created:
            self.logger.info(
                "Created {} level relationships for {}",
                created,
                descendant,
                extra={
                    "descendant": descendant,
                    "created": created,
                    "chain_length": len(chain),
                },
            )
        return created

    async def _materialize_user(self, user: User) -> int:
        """Create missing rows for an existing directory record."""
        return await self._materialize(
            descendant=user.address,
            referrer=user.referrer_address,
            registration_time=ensure_utc(user.registration_time),
            seed_investment=user.total_deposits,
            descendant_active=user.is_active,
        )

    # ------------------------------------------------------------------
    # Relationship materialization
    # ------------------------------------------------------------------

    async def create_relationships(
        self, new_user: str, referrer: str | None
    ) -> int:
        """
        Materialize rows for new_user along referrer's existing upline.

        Idempotent: rows are looked up by level before insert. For a user
        already in the directory the recorded referrer is authoritative;
        passing None walks it, passing another address is a conflict
        (referrers are set through register_user only).

        Args:
            new_user: Descendant address
            referrer: Direct referrer address (None for roots)

        Returns:
            Number of rows created

        Raises:
            ConflictError: If referrer differs from the recorded referrer
        """
        new_user = normalize_address(new_user)
        referrer = normalize_optional_address(referrer)

        async with self.descendant_transaction(new_user):
            user = await self.user_repo.get_by_address(new_user)
            if user is None:
                return await self._materialize(
                    descendant=new_user,
                    referrer=referrer,
                    registration_time=ensure_utc(None),
                    seed_investment=Decimal("0"),
                    descendant_active=True,
                )

            if referrer is not None and referrer != user.referrer_address:
                raise ConflictError(
                    f"User {new_user} has referrer {user.referrer_address}, "
                    f"not {referrer}"
                )
            return await self._materialize_user(user)

    async def ensure_upline(self, address: str) -> int:
        """
        Re-walk a user's upline and backfill missing rows.

        Used when ancestors registered out of order (late-binding referrer).

        Returns:
            Number of rows created

        Raises:
            NotFoundError: If the user is not in the directory
        """
        address = normalize_address(address)

        async with self.descendant_transaction(address):
            user = await self.user_repo.get_by_address(address)
            if user is None:
                raise NotFoundError(f"User {address} not found")
            return await self._materialize_user(user)

    async def backfill_downline(self, address: str) -> int:
        """
        Run ensure_upline for every descendant materialized under address.

        Each descendant is repaired in its own transaction so one failure
        does not block the others.

        Returns:
            Total number of rows created
        """
        address = normalize_address(address)
        descendants = await self.level_repo.get_descendant_addresses(address)
        # Release the read transaction before taking per-descendant locks
        await self.session.commit()

        created = 0
        for descendant in descendants:
            try:
                created += await self.ensure_upline(descendant)
            except NotFoundError:
                self.logger.warning(
                    "Skipping backfill for descendant without directory record",
                    extra={"ancestor": address, "descendant": descendant},
                )

        if created:
            self.logger.info(
                "Backfilled {} rows under {}",
                created,
                address,
                extra={"ancestor": address, "descendants": len(descendants)},
            )
        return created

    async def register_user(
        self,
        address: str,
        referrer: str | None = None,
        timestamp: datetime | None = None,
    ) -> User:
        """
        Register a user and materialize its upline.

        Creates the directory record, or sets the referrer of a record that
        was created without one (e.g. by an earlier deposit). Then extends
        the rows of every descendant already materialized under the user.

        Args:
            address: User address
            referrer: Direct referrer address (None or zero address for roots)
            timestamp: Registration time (defaults to now)

        Returns:
            Directory record

        Raises:
            ConflictError: On self-referral, a referral cycle, or a
                referrer different from the one already recorded
        """
        address = normalize_address(address)
        referrer = normalize_optional_address(referrer)

        if referrer == address:
            raise ConflictError(f"User {address} cannot refer itself")

        async with self.descendant_transaction(address):
            user = await self.user_repo.get_by_address(address)

            if (
                user is not None
                and referrer is not None
                and user.referrer_address not in (None, referrer)
            ):
                raise ConflictError(
                    f"User {address} already has referrer {user.referrer_address}"
                )

            needs_referrer = referrer is not None and (
                user is None or user.referrer_address is None
            )
            if needs_referrer and await self._creates_cycle(address, referrer):
                raise ConflictError(
                    f"Referrer {referrer} is in the downline of {address}"
                )

            if user is None:
                user = await self.user_repo.create_user(
                    address=address,
                    referrer_address=referrer,
                    registration_time=ensure_utc(timestamp),
                )
                self.logger.info(
                    "User registered: {}",
                    address,
                    extra={"address": address, "referrer": referrer},
                )
            elif needs_referrer:
                user.referrer_address = referrer
                await self.session.flush()
                self.logger.info(
                    "Referrer set for existing user {}",
                    address,
                    extra={"address": address, "referrer": referrer},
                )

            await self._materialize_user(user)

        await self.backfill_downline(address)
        return user

    # ------------------------------------------------------------------
    # Deposits
    # ------------------------------------------------------------------

    async def _apply_deposit(self, user: User, entry: Investment) -> None:
        """Append confirmed entry to the user's deposits and propagate it."""
        await self.user_repo.append_deposit(
            user,
            amount=entry.amount,
            tx_id=entry.tx_id,
            block_height=entry.block_height,
            timestamp=ensure_utc(entry.investment_time),
        )
        rows = await self.level_repo.add_investment(user.address, entry.amount)

        self.logger.info(
            "Deposit {} propagated to {} relationships",
            entry.tx_id,
            len(rows),
            extra={
                "address": user.address,
                "tx_id": entry.tx_id,
                "amount": str(entry.amount),
                "rows": len(rows),
            },
        )

    async def record_deposit(
        self,
        depositor: str,
        amount: Decimal | int | str,
        tx_id: str,
        block_height: int | None = None,
        asset_type: str = AssetType.USDT.value,
        timestamp: datetime | None = None,
        status: str = InvestmentStatus.CONFIRMED.value,
    ) -> Investment:
        """
        Record a deposit and propagate it to the depositor's upline rows.

        Ledger append and propagation commit together. Unknown depositors
        are created as root users. A pending deposit only writes the
        ledger entry; confirm_deposit() applies it later.

        Returns:
            Ledger entry

        Raises:
            InvalidAmountError: If amount is negative or not a number
            ConflictError: If tx_id was already recorded
        """
        depositor = normalize_address(depositor)
        value = validate_amount(amount)
        if not tx_id:
            raise ValueError("Transaction id is required")
        status = InvestmentStatus(status).value
        asset_type = AssetType(asset_type).value
        recorded_at = ensure_utc(timestamp)

        async with self.descendant_transaction(depositor):
            if await self.investment_repo.get_by_tx_id(tx_id) is not None:
                raise ConflictError(f"Transaction {tx_id} already recorded")

            user = await self.user_repo.get_by_address(depositor)
            if user is None:
                user = await self.user_repo.create_user(
                    address=depositor,
                    referrer_address=None,
                    registration_time=recorded_at,
                )
                self.logger.info(
                    "Created root user {} from deposit",
                    depositor,
                    extra={"address": depositor, "tx_id": tx_id},
                )

            try:
                entry = await self.investment_repo.create_entry(
                    user_address=depositor,
                    amount=value,
                    tx_id=tx_id,
                    block_height=block_height,
                    investment_time=recorded_at,
                    asset_type=asset_type,
                    status=status,
                )
            except IntegrityError as e:
                raise ConflictError(f"Transaction {tx_id} already recorded") from e

            if entry.is_confirmed:
                await self._apply_deposit(user, entry)

        return entry

    async def _transition_deposit(self, tx_id: str, status: str) -> Investment:
        """Move a pending entry to confirmed or failed."""
        entry = await self.investment_repo.get_by_tx_id(tx_id)
        if entry is None:
            raise NotFoundError(f"Transaction {tx_id} not found")

        async with self.descendant_transaction(entry.user_address):
            await self.session.refresh(entry)
            if entry.status != InvestmentStatus.PENDING.value:
                raise ConflictError(
                    f"Transaction {tx_id} is {entry.status}, expected pending"
                )

            await self.investment_repo.set_status(entry, status)
            if status == InvestmentStatus.CONFIRMED.value:
                user = await self.user_repo.get_by_address(entry.user_address)
                if user is None:
                    raise InconsistentError(
                        f"Depositor {entry.user_address} missing for {tx_id}"
                    )
                await self._apply_deposit(user, entry)

        return entry

    async def confirm_deposit(self, tx_id: str) -> Investment:
        """
        Confirm a pending deposit and propagate it.

        Raises:
            NotFoundError: If tx_id is unknown
            ConflictError: If the entry is not pending
        """
        return await self._transition_deposit(
            tx_id, InvestmentStatus.CONFIRMED.value
        )

    async def fail_deposit(self, tx_id: str) -> Investment:
        """
        Mark a pending deposit failed. Totals are not touched.

        Raises:
            NotFoundError: If tx_id is unknown
            ConflictError: If the entry is not pending
        """
        return await self._transition_deposit(tx_id, InvestmentStatus.FAILED.value)

    # ------------------------------------------------------------------
    # Commissions
    # ------------------------------------------------------------------

    async def _apply_commission(
        self, beneficiary: str, source: str, amount: Decimal, level: int
    ) -> LevelRelationship | None:
        """Add amount to the matching row; None if the row is missing."""
        async with self.descendant_transaction(source):
            relationship = await self.level_repo.get_by_key(
                descendant_address=source,
                ancestor_address=beneficiary,
                level=level,
            )
            if relationship is None:
                return None
            return await self.level_repo.add_earnings(relationship, amount)

    async def record_commission(
        self,
        beneficiary: str,
        source: str,
        amount: Decimal | int | str,
        level: int,
    ) -> LevelRelationship:
        """
        Add a commission to the (source, beneficiary, level) row.

        A missing row triggers ensure_upline(source) once before giving up.

        Returns:
            Updated relationship row

        Raises:
            InvalidRangeError: If level is outside [1, 21]
            InconsistentError: If the row still does not exist after repair
        """
        level = validate_level(level)
        beneficiary = normalize_address(beneficiary)
        source = normalize_address(source)
        value = validate_amount(amount)

        relationship = await self._apply_commission(beneficiary, source, value, level)
        if relationship is not None:
            return relationship

        try:
            repaired = await self.ensure_upline(source)
        except NotFoundError:
            repaired = 0

        relationship = await self._apply_commission(beneficiary, source, value, level)
        if relationship is None:
            raise InconsistentError(
                f"No level {level} relationship between {source} and {beneficiary}"
            )

        self.logger.info(
            "Commission applied after upline repair",
            extra={
                "beneficiary": beneficiary,
                "source": source,
                "level": level,
                "rows_created": repaired,
            },
        )
        return relationship

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def set_user_status(self, address: str, status: str) -> User:
        """
        Change directory status and sync relationship activity.

        Rows touching a non-active user are deactivated; rows are
        re-activated once both endpoints are active again.

        Raises:
            NotFoundError: If the user is not in the directory
        """
        address = normalize_address(address)
        status = UserStatus(status).value

        async with self.descendant_transaction(address):
            user = await self.user_repo.get_by_address(address)
            if user is None:
                raise NotFoundError(f"User {address} not found")

            user.status = status
            await self.session.flush()

            if status == UserStatus.ACTIVE.value:
                changed = await self.level_repo.reactivate_for_address(address)
            else:
                changed = await self.level_repo.deactivate_for_addresses([address])

        self.logger.info(
            "User {} status set to {}",
            address,
            status,
            extra={"address": address, "status": status, "rows_changed": changed},
        )
        return user
