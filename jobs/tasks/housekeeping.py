"""
Housekeeping task.

Marks dormant users inactive, sweeps expired cache entries and logs a
per-level network snapshot and the daily report. Scheduled daily.
"""

from dataclasses import dataclass
from datetime import date

import dramatiq
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobs.async_runner import run_async
from jobs.broker import MAINTENANCE_QUEUE
from jobs.utils.database import create_task_engine, create_task_session_maker
from levelnet.services.cache.result_cache import ResultCache
from levelnet.services.housekeeping import HousekeepingService


@dataclass
class HousekeepingReport:
    """Counters from one housekeeping run."""

    users_deactivated: int = 0
    cache_entries_swept: int = 0
    active_relationships: int = 0
    new_users: int = 0
    deposits: int = 0


@dramatiq.actor(queue_name=MAINTENANCE_QUEUE, time_limit=300_000)  # 5 min timeout
def run_housekeeping() -> None:
    """Periodic referral network maintenance."""
    logger.info("Starting housekeeping task...")

    try:
        report = run_async(_run_housekeeping_async())
        logger.info(
            f"Housekeeping complete: {report.users_deactivated} users deactivated, "
            f"{report.cache_entries_swept} cache entries swept"
        )
    except Exception as e:
        logger.exception(f"Housekeeping task failed: {e}")


async def _run_housekeeping_async() -> HousekeepingReport:
    """Run housekeeping on a task-local engine."""
    engine = create_task_engine()
    try:
        return await housekeep(create_task_session_maker(engine))
    finally:
        await engine.dispose()


async def housekeep(
    session_maker: async_sessionmaker[AsyncSession],
    cache: ResultCache | None = None,
    report_day: date | None = None,
) -> HousekeepingReport:
    """
    Run all housekeeping steps.

    Args:
        session_maker: Session factory
        cache: Result cache to sweep (skipped when None)
        report_day: Day for the daily report; defaults to today (UTC)
    """
    report = HousekeepingReport()

    async with session_maker() as session:
        service = HousekeepingService(session)
        report.users_deactivated = await service.deactivate_dormant_users()
        snapshot = await service.level_snapshot()
        report.active_relationships = sum(s.user_count for s in snapshot)
        daily = await service.daily_report(report_day)
        report.new_users = daily.new_users
        report.deposits = daily.day_deposits

    if cache is not None:
        report.cache_entries_swept = await cache.sweep()

    return report
