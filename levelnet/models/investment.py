"""
Investment model.

Append-only ledger of on-chain deposits, keyed by transaction id.
"""

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Index,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from levelnet.models.base import Base
from levelnet.models.enums import AssetType, InvestmentStatus
from levelnet.models.types import ADDRESS_LENGTH, TX_ID_LENGTH, TokenAmountType


class Investment(Base):
    """Investment ledger entry - one per unique transaction id."""

    __tablename__ = "investments"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="check_investment_amount_non_negative"),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'failed')",
            name="check_investment_status",
        ),
        Index("idx_investment_user_status", "user_address", "status"),
        Index("idx_investment_block_height", "block_height"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    user_address: Mapped[str] = mapped_column(
        String(ADDRESS_LENGTH), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(TokenAmountType, nullable=False)

    # Idempotency key
    tx_id: Mapped[str] = mapped_column(
        String(TX_ID_LENGTH), nullable=False, unique=True, index=True
    )
    block_height: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    asset_type: Mapped[str] = mapped_column(
        String(10), default=AssetType.USDT.value, nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), default=InvestmentStatus.CONFIRMED.value, nullable=False
    )

    investment_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

    @property
    def is_confirmed(self) -> bool:
        """Whether the entry counts towards totals."""
        return self.status == InvestmentStatus.CONFIRMED.value

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<Investment(tx_id={self.tx_id}, user={self.user_address}, "
            f"amount={self.amount}, status={self.status})>"
        )
