"""Participant entries, per-game score log and payouts."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from arena.models.base import Base, TimestampMixin, UUIDMixin
from arena.models.tournament import MONEY


class ParticipantEntry(Base, UUIDMixin, TimestampMixin):
    """One row per (user, tournament).

    ``highest_score`` only ever moves up. ``first_score_at`` is the moment
    the current highest score was first reached and breaks ties (earlier
    wins); it stays NULL until the first accepted submission.
    """

    __tablename__ = "participant_entries"

    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    tournament_id: Mapped[str] = mapped_column(
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    wallet: Mapped[str] = mapped_column(String(64), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(50), nullable=True)

    highest_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    first_score_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    total_games_played: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Payment state (verified and standard paths are tracked separately)
    verified_paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    standard_paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    verified_paid_amount: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    standard_paid_amount: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    continue_paid_amount: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    verified_at_entry: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "tournament_id", name="uq_entry_user_tournament"),
        Index(
            "ix_entry_standings",
            "tournament_id",
            "highest_score",
            "first_score_at",
        ),
    )

    @property
    def total_paid(self) -> Decimal:
        return self.verified_paid_amount + self.standard_paid_amount + self.continue_paid_amount

    def __repr__(self) -> str:
        return f"<ParticipantEntry user={self.user_id} score={self.highest_score}>"


class GameScore(Base):
    """Append-only log of accepted submissions."""

    __tablename__ = "game_scores"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    tournament_id: Mapped[str] = mapped_column(
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    game_duration_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    session_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class PayoutKind(str, Enum):
    PRIZE = "prize"
    REFUND = "refund"


class Payout(Base, UUIDMixin, TimestampMixin):
    """A prize or refund owed to a player, marked paid by an operator."""

    __tablename__ = "payouts"

    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    tournament_id: Mapped[str] = mapped_column(
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    kind: Mapped[str] = mapped_column(String(10), nullable=False)
    rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    payout_reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "tournament_id", "kind", name="uq_payout_user_tournament_kind"),
    )
