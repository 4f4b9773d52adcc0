"""
Dramatiq broker configuration.

Redis broker carrying two queues: adapter events for the referral graph
and periodic maintenance. Only failures the event handler marks as
transient are redelivered.
"""

import dramatiq
from dramatiq.brokers.redis import RedisBroker
from dramatiq.middleware import CurrentMessage, Retries, ShutdownNotifications
from loguru import logger

from levelnet.config.settings import settings

EVENT_QUEUE = settings.event_queue_name
MAINTENANCE_QUEUE = settings.maintenance_queue_name


class RetryableEventError(Exception):
    """Event failed for a transient reason; dramatiq retries it."""


def should_retry(retries_so_far: int, exception: BaseException) -> bool:
    """Retry transient event failures up to the configured limit."""
    return (
        isinstance(exception, RetryableEventError)
        and retries_so_far < settings.event_max_retries
    )


redis_broker = RedisBroker(
    host=settings.redis_host,
    port=settings.redis_port,
    password=settings.redis_password if settings.redis_password else None,
    db=settings.redis_db,
)

# ShutdownNotifications: lets workers finish the current event on shutdown
# CurrentMessage: exposes the message to actors
# Retries: exponential backoff, transient event failures only
redis_broker.add_middleware(ShutdownNotifications())
redis_broker.add_middleware(CurrentMessage())
redis_broker.add_middleware(
    Retries(
        max_retries=settings.event_max_retries,
        min_backoff=settings.event_min_backoff_ms,
        max_backoff=settings.event_max_backoff_ms,
        retry_when=should_retry,
    )
)

for queue_name in (EVENT_QUEUE, MAINTENANCE_QUEUE):
    redis_broker.declare_queue(queue_name)

dramatiq.set_broker(redis_broker)

broker = redis_broker

logger.info(
    "Dramatiq broker on redis://{}:{}/{} with queues {}, {}",
    settings.redis_host,
    settings.redis_port,
    settings.redis_db,
    EVENT_QUEUE,
    MAINTENANCE_QUEUE,
)
