"""Database models."""

from pokerleague.models.base import Base, TimestampMixin
from pokerleague.models.round import RoundRecord, RoundResultRecord

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    # Round
    "RoundRecord",
    "RoundResultRecord",
]
