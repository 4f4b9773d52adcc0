"""
Network events.

The three event shapes the ingestion adapter delivers, as pydantic models
discriminated on `type`. Addresses are normalized on parse.
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from levelnet.models.enums import AssetType
from levelnet.utils.validation import normalize_address, normalize_optional_address


class UserRegistered(BaseModel):
    """A user joined under an optional referrer."""

    model_config = ConfigDict(frozen=True)

    type: Literal["user_registered"] = "user_registered"
    address: str
    referrer_address: str | None = None
    timestamp: datetime | None = None

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        """Normalize address."""
        return normalize_address(v)

    @field_validator("referrer_address")
    @classmethod
    def validate_referrer(cls, v: str | None) -> str | None:
        """Normalize referrer; empty or zero address means root."""
        return normalize_optional_address(v)


class DepositConfirmed(BaseModel):
    """A deposit was confirmed on-chain."""

    model_config = ConfigDict(frozen=True)

    type: Literal["deposit_confirmed"] = "deposit_confirmed"
    address: str
    amount: Decimal = Field(..., ge=0)
    tx_id: str = Field(..., min_length=1)
    block_height: int | None = Field(default=None, ge=0)
    asset_type: AssetType = AssetType.USDT
    timestamp: datetime | None = None

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        """Normalize address."""
        return normalize_address(v)


class CommissionPaid(BaseModel):
    """A commission was paid to an upline beneficiary."""

    model_config = ConfigDict(frozen=True)

    type: Literal["commission_paid"] = "commission_paid"
    beneficiary: str
    source: str
    amount: Decimal = Field(..., ge=0)
    level: int
    timestamp: datetime | None = None

    @field_validator("beneficiary", "source")
    @classmethod
    def validate_addresses(cls, v: str) -> str:
        """Normalize addresses."""
        return normalize_address(v)


NetworkEvent = Annotated[
    UserRegistered | DepositConfirmed | CommissionPaid,
    Field(discriminator="type"),
]

_event_adapter: TypeAdapter[NetworkEvent] = TypeAdapter(NetworkEvent)


def parse_event(payload: dict[str, Any] | str | bytes) -> NetworkEvent:
    """
    Parse a raw payload into a typed event.

    Raises:
        pydantic.ValidationError: If the payload does not match any event
    """
    if isinstance(payload, (str, bytes)):
        payload = json.loads(payload)
    return _event_adapter.validate_python(payload)


def dump_event(event: NetworkEvent) -> dict[str, Any]:
    """JSON-safe dict for queueing."""
    return _event_adapter.dump_python(event, mode="json")
