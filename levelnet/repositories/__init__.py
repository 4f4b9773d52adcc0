"""
Repositories.

Data access layer for the referral network store.
"""

from levelnet.repositories.base import BaseRepository
from levelnet.repositories.investment_repository import InvestmentRepository
from levelnet.repositories.level_repository import (
    AncestorAggregate,
    LevelAggregate,
    LevelRelationshipRepository,
)
from levelnet.repositories.user_repository import UserRepository


__all__ = [
    "BaseRepository",
    "UserRepository",
    "LevelRelationshipRepository",
    "InvestmentRepository",
    "LevelAggregate",
    "AncestorAggregate",
]
