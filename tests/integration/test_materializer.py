"""Integration tests for GraphMaterializer against SQLite."""

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from levelnet.models.enums import InvestmentStatus, UserStatus
from levelnet.models.investment import Investment
from levelnet.models.level_relationship import LevelRelationship
from levelnet.models.user import User
from levelnet.repositories.user_repository import UserRepository
from levelnet.services.network.materializer import GraphMaterializer
from levelnet.utils.datetime_utils import utc_now
from levelnet.utils.exceptions import (
    ConflictError,
    InconsistentError,
    InvalidAmountError,
    InvalidRangeError,
    NotFoundError,
)


def keys(rows):
    return [(r.descendant_address, r.ancestor_address, r.level) for r in rows]


class TestDepositPropagation:
    """Root, child, grandchild and one deposit."""

    @pytest.mark.asyncio
    async def test_rows_and_propagation(self, materializer, build_chain, rows_of, read):
        """U2's deposit reaches both of its upline rows."""
        root, u1, u2 = await build_chain(3)

        assert keys(await rows_of(u1)) == [(u1, root, 1)]
        assert keys(await rows_of(u2)) == [(u2, u1, 1), (u2, root, 2)]

        await materializer.record_deposit(u2, 100, "0xtx-a")

        rows = await rows_of(u2)
        assert [r.total_investment for r in rows] == [Decimal("100"), Decimal("100")]
        assert (await rows_of(u1))[0].total_investment == Decimal("0")

        summary = await read(lambda engine: engine.team_summary(root))
        assert summary.total_team_size == 2
        assert summary.total_team_investment == Decimal("100")


class TestDepositReplay:
    """Deposit replay with the same transaction id."""

    @pytest.mark.asyncio
    async def test_replay_conflicts_and_does_not_double_count(
        self, materializer, build_chain, rows_of, session_maker
    ):
        """Second call raises ConflictError and changes nothing."""
        root, u1 = await build_chain(2)
        await materializer.record_deposit(u1, 100, "0xtx-b")

        with pytest.raises(ConflictError):
            await materializer.record_deposit(u1, 100, "0xtx-b")

        assert (await rows_of(u1))[0].total_investment == Decimal("100")
        async with session_maker() as session:
            count = await session.scalar(
                select(func.count()).select_from(Investment).where(
                    Investment.tx_id == "0xtx-b"
                )
            )
            user = await UserRepository(session).get_by_address(u1)
        assert count == 1
        assert user.deposit_count == 1


class TestLateReferrer:
    """Late-binding referrer."""

    @pytest.mark.asyncio
    async def test_referrer_registers_later(self, materializer, addr, rows_of):
        """Rows for U extend through X's upline once X registers."""
        root, x, u = addr(1), addr(2), addr(3)
        await materializer.register_user(root)
        await materializer.register_user(u, x)

        # X unknown: the direct edge is still materialized
        assert keys(await rows_of(u)) == [(u, x, 1)]

        await materializer.register_user(x, root)

        assert keys(await rows_of(u)) == [(u, x, 1), (u, root, 2)]
        assert await materializer.ensure_upline(u) == 0

    @pytest.mark.asyncio
    async def test_late_rows_carry_earlier_deposits(self, materializer, addr, rows_of):
        """Backfilled rows start with deposits made before they existed."""
        root, x, u = addr(1), addr(2), addr(3)
        await materializer.register_user(root)
        await materializer.register_user(u, x)
        await materializer.record_deposit(u, 50, "0xtx-d")

        await materializer.register_user(x, root)

        rows = await rows_of(u)
        assert [r.total_investment for r in rows] == [Decimal("50"), Decimal("50")]

    @pytest.mark.asyncio
    async def test_ensure_upline_repairs_directory_only_users(
        self, materializer, addr, rows_of, session_maker
    ):
        """Users written straight to the directory get their rows on repair."""
        root, child = addr(1), addr(2)
        async with session_maker() as session:
            repo = UserRepository(session)
            await repo.create_user(root, None, utc_now())
            await repo.create_user(child, root, utc_now())
            await session.commit()

        assert await materializer.ensure_upline(child) == 1
        assert keys(await rows_of(child)) == [(child, root, 1)]

    @pytest.mark.asyncio
    async def test_ensure_upline_unknown_user(self, materializer, addr):
        """Unknown users raise NotFoundError."""
        with pytest.raises(NotFoundError):
            await materializer.ensure_upline(addr(99))


class TestMaterializationProperties:
    """Uniqueness, chain integrity, idempotence and depth bound."""

    @pytest.mark.asyncio
    async def test_depth_bounded_at_21(self, build_chain, rows_of):
        """A 25-deep chain yields exactly levels 1..21 for the leaf."""
        chain = await build_chain(25)
        leaf = chain[-1]

        rows = await rows_of(leaf)

        assert [r.level for r in rows] == list(range(1, 22))
        for row in rows:
            assert row.ancestor_address == chain[-1 - row.level]

    @pytest.mark.asyncio
    async def test_create_relationships_idempotent(
        self, materializer, build_chain, rows_of
    ):
        """Second call creates nothing and leaves totals alone."""
        root, u1, u2 = await build_chain(3)
        await materializer.record_deposit(u2, 10, "0xtx-deep")
        before = [(r.id, r.total_investment) for r in await rows_of(u2)]

        assert await materializer.create_relationships(u2, u1) == 0

        after = [(r.id, r.total_investment) for r in await rows_of(u2)]
        assert after == before

    @pytest.mark.asyncio
    async def test_create_relationships_rejects_foreign_referrer(
        self, materializer, addr, rows_of
    ):
        """A referrer other than the recorded one writes no rows."""
        a, b, c, u = addr(1), addr(2), addr(3), addr(4)
        await materializer.register_user(a)
        await materializer.register_user(c)
        await materializer.register_user(b, c)
        await materializer.register_user(u, a)

        with pytest.raises(ConflictError):
            await materializer.create_relationships(u, b)

        assert keys(await rows_of(u)) == [(u, a, 1)]

    @pytest.mark.asyncio
    async def test_create_relationships_rejects_referrer_for_root(
        self, materializer, addr, rows_of
    ):
        """A recorded root cannot gain ancestors through materialization."""
        root, other = addr(1), addr(2)
        await materializer.register_user(root)
        await materializer.register_user(other)

        with pytest.raises(ConflictError):
            await materializer.create_relationships(root, other)

        assert await rows_of(root) == []

    @pytest.mark.asyncio
    async def test_create_relationships_walks_recorded_referrer(
        self, materializer, build_chain, rows_of
    ):
        """Without a referrer argument the recorded upline is used."""
        root, u1, u2 = await build_chain(3)

        assert await materializer.create_relationships(u2, None) == 0
        assert keys(await rows_of(u2)) == [(u2, u1, 1), (u2, root, 2)]

    @pytest.mark.asyncio
    async def test_keys_unique(self, build_chain, session_maker):
        """No duplicate (descendant, ancestor, level) keys."""
        await build_chain(6)

        async with session_maker() as session:
            duplicates = await session.execute(
                select(
                    LevelRelationship.descendant_address,
                    LevelRelationship.ancestor_address,
                    LevelRelationship.level,
                )
                .group_by(
                    LevelRelationship.descendant_address,
                    LevelRelationship.ancestor_address,
                    LevelRelationship.level,
                )
                .having(func.count() > 1)
            )
        assert duplicates.all() == []

    @pytest.mark.asyncio
    async def test_investment_conservation(self, materializer, addr, session_maker):
        """Sum of an ancestor's row investment equals its downline deposits."""
        root, a, b, c, d = (addr(i) for i in range(1, 6))
        await materializer.register_user(root)
        await materializer.register_user(a, root)
        await materializer.register_user(b, root)
        await materializer.register_user(c, a)
        await materializer.register_user(d, c)

        deposits = {a: 10, b: 20, c: 30, d: 40}
        for i, (address, amount) in enumerate(deposits.items()):
            await materializer.record_deposit(address, amount, f"0xtx-{i}")
        await materializer.record_deposit(root, 1000, "0xtx-root")

        async with session_maker() as session:
            total = await session.scalar(
                select(func.sum(LevelRelationship.total_investment)).where(
                    LevelRelationship.ancestor_address == root
                )
            )
            a_total = await session.scalar(
                select(func.sum(LevelRelationship.total_investment)).where(
                    LevelRelationship.ancestor_address == a
                )
            )
        assert Decimal(total) == Decimal("100")
        assert Decimal(a_total) == Decimal("70")

    @pytest.mark.asyncio
    async def test_concurrent_materialization_same_user(
        self, session_maker, locks, addr, rows_of
    ):
        """Parallel writers for one descendant create each row once."""
        root, u1, u2 = addr(1), addr(2), addr(3)
        async with session_maker() as session:
            repo = UserRepository(session)
            await repo.create_user(root, None, utc_now())
            await repo.create_user(u1, root, utc_now())
            await repo.create_user(u2, u1, utc_now())
            await session.commit()

        async def run():
            async with session_maker() as session:
                return await GraphMaterializer(session, locks).ensure_upline(u2)

        results = await asyncio.gather(run(), run(), run())

        assert sorted(results) == [0, 0, 2]
        assert len(await rows_of(u2)) == 2
        assert len(locks) == 0


class TestRegistration:
    """Directory rules on registration."""

    @pytest.mark.asyncio
    async def test_self_referral_rejected(self, materializer, addr):
        """A user cannot refer itself."""
        with pytest.raises(ConflictError):
            await materializer.register_user(addr(1), addr(1))

    @pytest.mark.asyncio
    async def test_referrer_change_rejected(self, materializer, build_chain, addr):
        """An existing referrer cannot be replaced."""
        root, u1 = await build_chain(2)
        await materializer.register_user(addr(50))

        with pytest.raises(ConflictError):
            await materializer.register_user(u1, addr(50))

    @pytest.mark.asyncio
    async def test_cycle_rejected(self, materializer, build_chain):
        """A root cannot be placed under its own descendant."""
        root, u1, u2 = await build_chain(3)

        with pytest.raises(ConflictError):
            await materializer.register_user(root, u2)

    @pytest.mark.asyncio
    async def test_re_registration_is_idempotent(self, materializer, build_chain, rows_of):
        """Registering again with the same referrer changes nothing."""
        root, u1 = await build_chain(2)

        await materializer.register_user(u1, root)

        assert len(await rows_of(u1)) == 1

    @pytest.mark.asyncio
    async def test_referrer_set_after_deposit(self, materializer, addr, rows_of):
        """A user first seen via deposit can get its referrer later."""
        root, u = addr(1), addr(2)
        await materializer.register_user(root)
        await materializer.record_deposit(u, 25, "0xtx-first")

        await materializer.register_user(u, root)

        rows = await rows_of(u)
        assert keys(rows) == [(u, root, 1)]
        assert rows[0].total_investment == Decimal("25")


class TestDeposits:
    """Ledger and propagation rules."""

    @pytest.mark.asyncio
    async def test_negative_amount_rejected(self, materializer, addr):
        """Negative amounts are rejected before any write."""
        with pytest.raises(InvalidAmountError):
            await materializer.record_deposit(addr(1), -5, "0xtx-neg")

    @pytest.mark.asyncio
    async def test_unknown_depositor_becomes_root(self, materializer, addr, session_maker):
        """First deposit creates the directory record."""
        await materializer.record_deposit(addr(7), 10, "0xtx-new")

        async with session_maker() as session:
            user = await UserRepository(session).get_by_address(addr(7))
        assert user is not None
        assert user.referrer_address is None
        assert user.total_deposits == Decimal("10")

    @pytest.mark.asyncio
    async def test_braced_tx_id_is_recorded(
        self, materializer, build_chain, rows_of
    ):
        """Transaction ids containing braces are stored and propagated as-is."""
        root, u1 = await build_chain(2)

        entry = await materializer.record_deposit(u1, 5, "tx-{abc}")

        assert entry.tx_id == "tx-{abc}"
        assert (await rows_of(u1))[0].total_investment == Decimal("5")

    @pytest.mark.asyncio
    async def test_braced_tx_id_for_unknown_depositor(
        self, materializer, addr, rows_of, session_maker
    ):
        """Creating a root user from a braced tx id commits normally."""
        await materializer.record_deposit(addr(9), 8, "{0}-{tx}")

        async with session_maker() as session:
            user = await UserRepository(session).get_by_address(addr(9))
        assert user is not None
        assert user.total_deposits == Decimal("8")

    @pytest.mark.asyncio
    async def test_pending_then_confirmed(self, materializer, build_chain, rows_of):
        """Pending deposits propagate only when confirmed."""
        root, u1 = await build_chain(2)
        entry = await materializer.record_deposit(
            u1, 40, "0xtx-pending", status=InvestmentStatus.PENDING.value
        )
        assert entry.status == InvestmentStatus.PENDING.value
        assert (await rows_of(u1))[0].total_investment == Decimal("0")

        confirmed = await materializer.confirm_deposit("0xtx-pending")

        assert confirmed.status == InvestmentStatus.CONFIRMED.value
        assert (await rows_of(u1))[0].total_investment == Decimal("40")

        with pytest.raises(ConflictError):
            await materializer.confirm_deposit("0xtx-pending")

    @pytest.mark.asyncio
    async def test_failed_deposit_not_propagated(self, materializer, build_chain, rows_of):
        """pending -> failed leaves totals untouched and is final."""
        root, u1 = await build_chain(2)
        await materializer.record_deposit(
            u1, 40, "0xtx-fail", status=InvestmentStatus.PENDING.value
        )

        entry = await materializer.fail_deposit("0xtx-fail")

        assert entry.status == InvestmentStatus.FAILED.value
        assert (await rows_of(u1))[0].total_investment == Decimal("0")
        with pytest.raises(ConflictError):
            await materializer.confirm_deposit("0xtx-fail")

    @pytest.mark.asyncio
    async def test_confirm_unknown_tx(self, materializer):
        """Unknown transaction ids raise NotFoundError."""
        with pytest.raises(NotFoundError):
            await materializer.confirm_deposit("0xmissing")


class TestCommissions:
    """Commission application and repair."""

    @pytest.mark.asyncio
    async def test_commission_added_to_matching_row(
        self, materializer, build_chain, rows_of
    ):
        """Earnings land on (source, beneficiary, level)."""
        root, u1, u2 = await build_chain(3)

        await materializer.record_commission(root, u2, 5, 2)
        await materializer.record_commission(root, u2, Decimal("2.5"), 2)

        rows = {r.level: r for r in await rows_of(u2)}
        assert rows[2].total_earnings == Decimal("7.5")
        assert rows[1].total_earnings == Decimal("0")

    @pytest.mark.asyncio
    async def test_level_checked_first(self, materializer, addr):
        """Level 22 is rejected before any lookup."""
        with pytest.raises(InvalidRangeError):
            await materializer.record_commission(addr(1), addr(2), 1, 22)

    @pytest.mark.asyncio
    async def test_missing_relationship_is_inconsistent(
        self, materializer, build_chain
    ):
        """Wrong level for the pair cannot be repaired."""
        root, u1, u2 = await build_chain(3)

        with pytest.raises(InconsistentError):
            await materializer.record_commission(root, u2, 5, 1)

    @pytest.mark.asyncio
    async def test_missing_relationship_repaired(
        self, materializer, addr, rows_of, session_maker
    ):
        """A row missing only because of event order is created, then credited."""
        root, child = addr(1), addr(2)
        async with session_maker() as session:
            repo = UserRepository(session)
            await repo.create_user(root, None, utc_now())
            await repo.create_user(child, root, utc_now())
            await session.commit()

        relationship = await materializer.record_commission(root, child, 3, 1)

        assert relationship.total_earnings == Decimal("3")
        assert (await rows_of(child))[0].total_earnings == Decimal("3")


class TestUserStatus:
    """Status changes and relationship activity."""

    @pytest.mark.asyncio
    async def test_suspend_and_reactivate(self, materializer, build_chain, rows_of, read):
        """Rows touching a suspended user are inactive until reactivation."""
        root, u1, u2 = await build_chain(3)

        await materializer.set_user_status(u1, UserStatus.SUSPENDED.value)

        assert [r.is_active for r in await rows_of(u1)] == [False]
        assert [r.is_active for r in await rows_of(u2)] == [False, True]
        level1 = await read(lambda engine: engine.level_statistics(root, 1))
        assert level1.user_count == 0

        await materializer.set_user_status(u1, UserStatus.ACTIVE.value)

        assert [r.is_active for r in await rows_of(u2)] == [True, True]

    @pytest.mark.asyncio
    async def test_reactivation_respects_other_endpoint(
        self, materializer, build_chain, rows_of
    ):
        """A row stays inactive while its other endpoint is inactive."""
        root, u1, u2 = await build_chain(3)
        await materializer.set_user_status(root, UserStatus.INACTIVE.value)
        await materializer.set_user_status(u2, UserStatus.INACTIVE.value)

        await materializer.set_user_status(u2, UserStatus.ACTIVE.value)

        assert [r.is_active for r in await rows_of(u2)] == [True, False]

    @pytest.mark.asyncio
    async def test_unknown_user(self, materializer, addr):
        """Unknown users raise NotFoundError."""
        with pytest.raises(NotFoundError):
            await materializer.set_user_status(addr(5), UserStatus.ACTIVE.value)

    @pytest.mark.asyncio
    async def test_registration_under_inactive_ancestor(
        self, materializer, build_chain, addr, rows_of
    ):
        """New rows pointing at an inactive ancestor start inactive."""
        root, u1 = await build_chain(2)
        await materializer.set_user_status(root, UserStatus.INACTIVE.value)

        await materializer.register_user(addr(10), u1)

        assert [r.is_active for r in await rows_of(addr(10))] == [True, False]


@pytest.mark.asyncio
async def test_users_table_has_one_record_per_address(build_chain, session_maker):
    """Registration never duplicates directory records."""
    chain = await build_chain(4)

    async with session_maker() as session:
        count = await session.scalar(select(func.count()).select_from(User))
    assert count == len(chain)
