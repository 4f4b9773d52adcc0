"""
Level relationship model.

Materialized closure row: descendant D sits at `level` below ancestor A.
"""

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from levelnet.config.constants import MAX_REFERRAL_DEPTH
from levelnet.models.base import Base
from levelnet.models.types import ADDRESS_LENGTH, TokenAmountType


class LevelRelationship(Base):
    """One (descendant, ancestor, level) triple with running totals."""

    __tablename__ = "level_relationships"
    __table_args__ = (
        UniqueConstraint(
            "descendant_address",
            "ancestor_address",
            "level",
            name="uq_level_relationship_key",
        ),
        UniqueConstraint(
            "descendant_address", "level", name="uq_level_relationship_depth"
        ),
        CheckConstraint(
            f"level >= 1 AND level <= {MAX_REFERRAL_DEPTH}",
            name="check_level_relationship_range",
        ),
        CheckConstraint(
            "total_investment >= 0",
            name="check_level_relationship_investment_non_negative",
        ),
        CheckConstraint(
            "total_earnings >= 0",
            name="check_level_relationship_earnings_non_negative",
        ),
        # Range scans for the fast aggregation path
        Index("idx_level_ancestor_level", "ancestor_address", "level"),
        Index("idx_level_descendant_level", "descendant_address", "level"),
        Index("idx_level_level_active", "level", "is_active"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    descendant_address: Mapped[str] = mapped_column(
        String(ADDRESS_LENGTH), nullable=False
    )
    ancestor_address: Mapped[str] = mapped_column(
        String(ADDRESS_LENGTH), nullable=False
    )
    level: Mapped[int] = mapped_column(Integer, nullable=False)

    # Running totals attributed to this specific relationship
    total_investment: Mapped[Decimal] = mapped_column(
        TokenAmountType, default=Decimal("0"), nullable=False
    )
    total_earnings: Mapped[Decimal] = mapped_column(
        TokenAmountType, default=Decimal("0"), nullable=False
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )

    # Copied from the descendant, used by time-windowed queries
    registration_time: Mapped[datetime] = mapped_column(
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

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<LevelRelationship(descendant={self.descendant_address}, "
            f"ancestor={self.ancestor_address}, level={self.level})>"
        )
