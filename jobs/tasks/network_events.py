"""
Network event task.

Consumes events published by the blockchain ingestion adapter and applies
them to the referral graph.
"""

from typing import Any

import dramatiq
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobs.async_runner import run_async
from jobs.broker import EVENT_QUEUE, RetryableEventError
from jobs.utils.database import create_task_engine, create_task_session_maker
from levelnet.services.events.handler import (
    EventOutcome,
    EventStatus,
    NetworkEventHandler,
)


@dramatiq.actor(queue_name=EVENT_QUEUE, time_limit=60_000)  # 1 min timeout
def process_network_event(payload: dict[str, Any]) -> None:
    """
    Apply one adapter event.

    Duplicates and dropped commissions complete normally; unexpected
    failures raise so the Retries middleware re-delivers the message.
    """
    outcome = run_async(_process_network_event_async(payload))

    if outcome.status == EventStatus.FAILED and outcome.retryable:
        raise RetryableEventError(outcome.detail or "event processing failed")

    logger.info(
        "Network event {}: {}",
        outcome.event_type,
        outcome.status,
        extra={"detail": outcome.detail},
    )


async def _process_network_event_async(payload: dict[str, Any]) -> EventOutcome:
    """Run the handler on a task-local engine."""
    engine = create_task_engine()
    try:
        return await handle_payload(payload, create_task_session_maker(engine))
    finally:
        await engine.dispose()


async def handle_payload(
    payload: dict[str, Any],
    session_maker: async_sessionmaker[AsyncSession],
) -> EventOutcome:
    """Apply a raw payload with the given session factory."""
    return await NetworkEventHandler(session_maker).handle(payload)
