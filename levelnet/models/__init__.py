"""
Database models.

Exports all SQLAlchemy models for easy imports.
"""

from levelnet.models.base import Base
from levelnet.models.enums import AssetType, InvestmentStatus, UserStatus
from levelnet.models.investment import Investment
from levelnet.models.level_relationship import LevelRelationship
from levelnet.models.user import User, UserDeposit


__all__ = [
    "Base",
    "User",
    "UserDeposit",
    "LevelRelationship",
    "Investment",
    "UserStatus",
    "InvestmentStatus",
    "AssetType",
]
