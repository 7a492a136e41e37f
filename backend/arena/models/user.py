"""Player identity as seen by the tournament service."""

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from arena.models.base import Base, TimestampMixin, UUIDMixin


class User(Base, UUIDMixin, TimestampMixin):
    """Player account.

    ``id`` is the actor id carried in the identity service's tokens.
    Verification is weekly-scoped: the linkage is cleared at rollover.
    """

    __tablename__ = "users"

    wallet: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
        index=True,
    )
    username: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )
    last_verified_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    last_verified_tournament_id: Mapped[str | None] = mapped_column(
        String(36),
        nullable=True,
    )

    def is_verified_for(self, tournament_id: str) -> bool:
        return (
            self.last_verified_date is not None
            and self.last_verified_tournament_id == tournament_id
        )

    def __repr__(self) -> str:
        return f"<User {self.id} wallet={self.wallet}>"
