"""
Model enumerations.
"""

from enum import StrEnum


class UserStatus(StrEnum):
    """User directory status."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class InvestmentStatus(StrEnum):
    """Ledger entry status."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class AssetType(StrEnum):
    """Deposited token."""

    USDT = "USDT"
    BDC = "BDC"
