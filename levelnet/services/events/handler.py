"""
Network event handler.

Applies adapter events to the store through the graph materializer. Each
event gets its own session and transaction, so a failing event never
blocks the ones after it.
"""

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from loguru import logger
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from levelnet.services.events.events import (
    CommissionPaid,
    DepositConfirmed,
    NetworkEvent,
    UserRegistered,
    parse_event,
)
from levelnet.services.network.locks import KeyedLock
from levelnet.services.network.materializer import GraphMaterializer
from levelnet.utils.exceptions import ConflictError, InconsistentError, NetworkError


class EventStatus(StrEnum):
    """How an event ended."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    DROPPED = "dropped"
    FAILED = "failed"


@dataclass
class EventOutcome:
    """Result of handling one event."""

    event_type: str
    status: EventStatus
    detail: str | None = None
    retryable: bool = False


class NetworkEventHandler:
    """Dispatches events to the materializer."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        locks: KeyedLock | None = None,
    ) -> None:
        """
        Initialize handler.

        Args:
            session_maker: Factory for per-event sessions
            locks: Per-descendant lock map shared by materializers
        """
        self.session_maker = session_maker
        self.locks = locks
        self.logger = logger.bind(service=self.__class__.__name__)

    async def _apply(self, materializer: GraphMaterializer, event: NetworkEvent) -> str:
        if isinstance(event, UserRegistered):
            await materializer.register_user(
                event.address, event.referrer_address, event.timestamp
            )
            return f"registered {event.address}"

        if isinstance(event, DepositConfirmed):
            entry = await materializer.record_deposit(
                depositor=event.address,
                amount=event.amount,
                tx_id=event.tx_id,
                block_height=event.block_height,
                asset_type=event.asset_type.value,
                timestamp=event.timestamp,
            )
            return f"deposit {entry.tx_id} recorded"

        relationship = await materializer.record_commission(
            beneficiary=event.beneficiary,
            source=event.source,
            amount=event.amount,
            level=event.level,
        )
        return f"commission applied at level {relationship.level}"

    async def handle(self, event: NetworkEvent | dict[str, Any] | str | bytes) -> EventOutcome:
        """
        Apply one event.

        Duplicate deposits and unresolvable commissions are logged and
        reported, never raised. Unexpected errors are reported as failed
        and retryable.
        """
        if not isinstance(event, (UserRegistered, DepositConfirmed, CommissionPaid)):
            try:
                event = parse_event(event)
            except (ValidationError, ValueError) as e:
                self.logger.error(f"Rejected malformed event: {e}")
                return EventOutcome("unknown", EventStatus.FAILED, str(e))

        async with self.session_maker() as session:
            materializer = GraphMaterializer(session, self.locks)
            try:
                detail = await self._apply(materializer, event)
            except ConflictError as e:
                if isinstance(event, DepositConfirmed):
                    self.logger.info(f"Duplicate deposit ignored: {e}")
                    return EventOutcome(event.type, EventStatus.DUPLICATE, str(e))
                self.logger.warning(f"Event conflicts with directory: {e}")
                return EventOutcome(event.type, EventStatus.DROPPED, str(e))
            except InconsistentError as e:
                self.logger.warning(
                    "Commission dropped: {}",
                    e,
                    extra={"event": event.model_dump(mode="json")},
                )
                return EventOutcome(event.type, EventStatus.DROPPED, str(e))
            except NetworkError as e:
                self.logger.error(f"Event rejected: {e}")
                return EventOutcome(event.type, EventStatus.FAILED, str(e))
            except Exception as e:
                self.logger.exception(f"Unexpected error handling {event.type}: {e}")
                return EventOutcome(
                    event.type, EventStatus.FAILED, str(e), retryable=True
                )

        return EventOutcome(event.type, EventStatus.APPLIED, detail)

    async def handle_many(
        self, events: list[NetworkEvent | dict[str, Any] | str | bytes]
    ) -> list[EventOutcome]:
        """Apply events in order; every event gets an outcome."""
        outcomes = [await self.handle(event) for event in events]

        applied = sum(1 for o in outcomes if o.status == EventStatus.APPLIED)
        self.logger.info(
            "Processed {} events, {} applied",
            len(outcomes),
            applied,
            extra={"total": len(outcomes), "applied": applied},
        )
        return outcomes
