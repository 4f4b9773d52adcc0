"""Unit tests for per-key locking."""

import asyncio
import threading
from unittest.mock import MagicMock

import pytest

from jobs.async_runner import run_async
from levelnet.services.network.locks import KeyedLock, acquire_advisory_lock


class TestKeyedLock:
    """Tests for KeyedLock."""

    @pytest.mark.asyncio
    async def test_same_key_serialized(self):
        """Holders of one key never overlap."""
        locks = KeyedLock()
        active = 0
        max_active = 0

        async def worker():
            nonlocal active, max_active
            async with locks.hold("0xa"):
                active += 1
                max_active = max(max_active, active)
                await asyncio.sleep(0.01)
                active -= 1

        await asyncio.gather(*(worker() for _ in range(5)))

        assert max_active == 1

    @pytest.mark.asyncio
    async def test_different_keys_parallel(self):
        """Different keys can be held at the same time."""
        locks = KeyedLock()
        entered = asyncio.Event()

        async def first():
            async with locks.hold("0xa"):
                await entered.wait()

        async def second():
            async with locks.hold("0xb"):
                entered.set()

        await asyncio.wait_for(asyncio.gather(first(), second()), timeout=1)

    @pytest.mark.asyncio
    async def test_locks_released_after_use(self):
        """Lock map is empty once nobody holds or waits."""
        locks = KeyedLock()

        async with locks.hold("0xa"):
            assert locks.locked("0xa")
            assert len(locks) == 1

        assert not locks.locked("0xa")
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_released_on_exception(self):
        """Errors inside the block release the lock."""
        locks = KeyedLock()

        with pytest.raises(RuntimeError):
            async with locks.hold("0xa"):
                raise RuntimeError("boom")

        assert len(locks) == 0


class TestKeyedLockAcrossThreads:
    """Worker threads each run their own event loop."""

    def test_same_key_from_worker_threads(self):
        """Contending threads neither hang nor touch a foreign loop's lock."""
        locks = KeyedLock()
        held = threading.Event()
        results: dict[str, str] = {}

        async def hold_for(seconds: float) -> None:
            async with locks.hold("0xkey"):
                held.set()
                await asyncio.sleep(seconds)

        def worker(name: str, seconds: float, wait_for_holder: bool) -> None:
            if wait_for_holder:
                held.wait(timeout=2)
            try:
                run_async(hold_for(seconds))
                results[name] = "done"
            except Exception as e:
                results[name] = f"{type(e).__name__}: {e}"

        threads = [
            threading.Thread(target=worker, args=("A", 0.3, False)),
            threading.Thread(target=worker, args=("B", 0.0, True)),
            threading.Thread(target=worker, args=("C", 0.0, True)),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=3)

        assert not any(thread.is_alive() for thread in threads)
        assert results == {"A": "done", "B": "done", "C": "done"}
        assert len(locks) == 0

    def test_threads_get_separate_maps(self):
        """A key held on one loop is not reported as held on another."""
        locks = KeyedLock()
        seen: list[bool] = []

        async def check_inside() -> None:
            async with locks.hold("0xkey"):
                seen.append(locks.locked("0xkey"))
                other = threading.Thread(
                    target=lambda: seen.append(run_async(check_outside()))
                )
                other.start()
                await asyncio.to_thread(other.join, 2)

        async def check_outside() -> bool:
            return locks.locked("0xkey")

        thread = threading.Thread(target=lambda: run_async(check_inside()))
        thread.start()
        thread.join(timeout=3)

        assert seen == [True, False]


class TestAdvisoryLock:
    """Tests for the database advisory lock helper."""

    @pytest.mark.asyncio
    async def test_skipped_on_sqlite(self, mock_session):
        """Non-PostgreSQL dialects take no database lock."""
        mock_session.get_bind = MagicMock()
        mock_session.get_bind.return_value.dialect.name = "sqlite"

        assert await acquire_advisory_lock(mock_session, "0xa") is False
        mock_session.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_taken_on_postgresql(self, mock_session):
        """PostgreSQL takes a transaction-scoped advisory lock."""
        mock_session.get_bind = MagicMock()
        mock_session.get_bind.return_value.dialect.name = "postgresql"

        assert await acquire_advisory_lock(mock_session, "0xa") is True
        statement, params = mock_session.execute.call_args.args
        assert "pg_advisory_xact_lock" in str(statement)
        assert params == {"key": "0xa"}
