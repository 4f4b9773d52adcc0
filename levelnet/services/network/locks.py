"""
Per-descendant write serialization.

Writes touching one descendant's relationship rows run one at a time:
an asyncio lock per address within an event loop, plus a
transaction-scoped PostgreSQL advisory lock on the same key, which also
covers other worker threads (each runs its own loop) and other processes.
Writes for different descendants proceed in parallel.
"""

import asyncio
import threading
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession


class _KeyEntry:
    """Lock for one key plus the number of tasks holding or awaiting it."""

    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class KeyedLock:
    """
    One asyncio.Lock per key and event loop, created on demand.

    asyncio locks belong to the loop that awaits them, so every loop
    (one per dramatiq worker thread) gets its own key map. A map is only
    touched from its loop's thread; the registry of maps is guarded by a
    threading lock and forgets loops that are garbage collected.

    Locks are reference counted and dropped once no task holds or waits
    for them, so each map stays bounded by the number of in-flight keys.
    """

    def __init__(self) -> None:
        """Initialize empty registry."""
        self._maps: weakref.WeakKeyDictionary[
            asyncio.AbstractEventLoop, dict[str, _KeyEntry]
        ] = weakref.WeakKeyDictionary()
        self._registry_lock = threading.Lock()

    def _loop_map(self) -> dict[str, _KeyEntry]:
        loop = asyncio.get_running_loop()
        with self._registry_lock:
            entries = self._maps.get(loop)
            if entries is None:
                entries = {}
                self._maps[loop] = entries
            return entries

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Hold the lock for key for the duration of the block."""
        entries = self._loop_map()
        entry = entries.get(key)
        if entry is None:
            entry = _KeyEntry()
            entries[key] = entry
        entry.users += 1

        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del entries[key]

    def locked(self, key: str) -> bool:
        """Whether some task on the running loop currently holds key."""
        entry = self._loop_map().get(key)
        return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        """Number of keys currently held or awaited, across all loops."""
        with self._registry_lock:
            return sum(len(entries) for entries in self._maps.values())


# Shared by every materializer in the process
descendant_locks = KeyedLock()


async def acquire_advisory_lock(session: AsyncSession, key: str) -> bool:
    """
    Take a transaction-scoped advisory lock on key.

    Released automatically at commit or rollback. No-op on databases
    without advisory locks.

    Returns:
        True if a database lock was taken
    """
    if session.get_bind().dialect.name != "postgresql":
        return False

    await session.execute(
        text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
        {"key": key},
    )
    return True
