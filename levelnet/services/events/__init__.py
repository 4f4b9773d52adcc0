"""Event adapter interface."""

from levelnet.services.events.events import (
    CommissionPaid,
    DepositConfirmed,
    NetworkEvent,
    UserRegistered,
    dump_event,
    parse_event,
)
from levelnet.services.events.handler import (
    EventOutcome,
    EventStatus,
    NetworkEventHandler,
)


__all__ = [
    "CommissionPaid",
    "DepositConfirmed",
    "NetworkEvent",
    "UserRegistered",
    "dump_event",
    "parse_event",
    "EventOutcome",
    "EventStatus",
    "NetworkEventHandler",
]
