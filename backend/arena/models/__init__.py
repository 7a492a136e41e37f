"""Database models."""

from arena.models.base import Base, TimestampMixin, UUIDMixin
from arena.models.entry import GameScore, ParticipantEntry, Payout, PayoutKind
from arena.models.tournament import Tournament
from arena.models.user import User

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDMixin",
    "Tournament",
    "User",
    "ParticipantEntry",
    "GameScore",
    "Payout",
    "PayoutKind",
]
