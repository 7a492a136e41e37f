"""Tournament (one row per weekly cycle)."""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Date, DateTime, Index, Integer, Numeric, text
from sqlalchemy.orm import Mapped, mapped_column

from arena.models.base import Base, TimestampMixin, UUIDMixin

MONEY = Numeric(12, 4)


class Tournament(Base, UUIDMixin, TimestampMixin):
    """Weekly tournament record.

    ``cycle_key`` is the boundary date that closes the cycle and uniquely
    names it. Records are deactivated at rollover, never deleted.
    """

    __tablename__ = "tournaments"

    cycle_key: Mapped[date] = mapped_column(
        Date,
        unique=True,
        nullable=False,
        comment="Boundary date closing the cycle",
    )
    start_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    end_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    # Aggregates, rewritten by sync_aggregates
    player_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_collected: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    prize_pool: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    admin_fee: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    guarantee_amount: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    total_games_played: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        # At most one active row
        Index(
            "uq_tournaments_single_active",
            "is_active",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    @property
    def day(self) -> str:
        """Cycle key as an ISO date string (cache and API key)."""
        return self.cycle_key.isoformat()

    def __repr__(self) -> str:
        return f"<Tournament day={self.day} active={self.is_active}>"
