"""
User model.

Represents a participant of the referral network (User Directory).
"""

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from levelnet.models.base import Base
from levelnet.models.enums import UserStatus
from levelnet.models.types import ADDRESS_LENGTH, TX_ID_LENGTH, TokenAmountType


class User(Base):
    """User model - one record per wallet address."""

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'inactive', 'suspended')",
            name="check_user_status",
        ),
        Index("idx_user_referrer_status", "referrer_address", "status"),
        Index("idx_user_status_registration", "status", "registration_time"),
    )

    # Primary key
    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )

    # Identity (canonical lowercase)
    address: Mapped[str] = mapped_column(
        String(ADDRESS_LENGTH), unique=True, index=True, nullable=False
    )

    # Parent pointer; null for forest roots. Not a foreign key: the referrer
    # may register after the user (late binding).
    referrer_address: Mapped[str | None] = mapped_column(
        String(ADDRESS_LENGTH), nullable=True, index=True
    )

    registration_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20), default=UserStatus.ACTIVE.value, nullable=False
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

    # Deposits in arrival order
    deposits: Mapped[list["UserDeposit"]] = relationship(
        "UserDeposit",
        back_populates="user",
        order_by="UserDeposit.id",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    @property
    def total_deposits(self) -> Decimal:
        """Sum of deposit amounts."""
        return sum((d.amount for d in self.deposits), Decimal("0"))

    @property
    def deposit_count(self) -> int:
        """Number of deposits."""
        return len(self.deposits)

    @property
    def is_active(self) -> bool:
        """Whether user status is active."""
        return self.status == UserStatus.ACTIVE.value

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<User(address={self.address}, "
            f"referrer={self.referrer_address}, status={self.status})>"
        )


class UserDeposit(Base):
    """Confirmed deposit attached to a user record."""

    __tablename__ = "user_deposits"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="check_user_deposit_amount_non_negative"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    amount: Mapped[Decimal] = mapped_column(TokenAmountType, nullable=False)
    tx_id: Mapped[str] = mapped_column(String(TX_ID_LENGTH), nullable=False)
    block_height: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )

    user: Mapped["User"] = relationship("User", back_populates="deposits")

    def __repr__(self) -> str:
        """String representation."""
        return f"<UserDeposit(tx_id={self.tx_id}, amount={self.amount})>"
