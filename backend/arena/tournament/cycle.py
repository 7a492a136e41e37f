"""Weekly cycle arithmetic.

Pure functions over wall-clock time. A cycle is named by its *closing*
boundary date: before this week's boundary the current cycle key is this
week's boundary date, from the boundary onwards it is next week's.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from arena.config import Settings
    from arena.models.tournament import Tournament

CYCLE_LENGTH = timedelta(days=7)


class TournamentPhase(str, Enum):
    """Lifecycle states."""

    PENDING = "pending"  # no active tournament
    ACTIVE = "active"
    GRACE = "grace"  # entries closed, scores still accepted
    ROLLED_OVER = "rolled_over"


@dataclass(frozen=True)
class CycleBoundary:
    """Fixed weekday/time-of-day (UTC) that ends every cycle."""

    weekday: int = 6
    at: time = time(15, 30)
    grace: timedelta = timedelta(minutes=30)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "CycleBoundary":
        return cls(
            weekday=settings.cycle_boundary_weekday,
            at=settings.cycle_boundary_time,
            grace=timedelta(minutes=settings.grace_period_minutes),
        )


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite returns them naive)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def boundary_on(day: date, boundary: CycleBoundary) -> datetime:
    """The boundary instant on ``day``."""
    return datetime.combine(day, boundary.at, tzinfo=timezone.utc)


def current_cycle_key(now: datetime, boundary: CycleBoundary) -> date:
    """Cycle key for the instant ``now``."""
    now = ensure_utc(now)
    days_ahead = (boundary.weekday - now.weekday()) % 7
    this_week = boundary_on(now.date() + timedelta(days=days_ahead), boundary)
    if now < this_week:
        return this_week.date()
    return (this_week + CYCLE_LENGTH).date()


def cycle_window(cycle_key: date, boundary: CycleBoundary) -> tuple[datetime, datetime]:
    """(start, end) of the cycle closing on ``cycle_key``."""
    end = boundary_on(cycle_key, boundary)
    return end - CYCLE_LENGTH, end


def is_grace_period(end_time: datetime, now: datetime, grace: timedelta) -> bool:
    """True inside the final window before the boundary."""
    end_time = ensure_utc(end_time)
    now = ensure_utc(now)
    return end_time - grace <= now < end_time


def entries_closed(end_time: datetime, now: datetime, grace: timedelta) -> bool:
    """Entries close at the start of grace and stay closed until rollover."""
    return ensure_utc(now) >= ensure_utc(end_time) - grace


def phase_for(
    tournament: "Tournament | None",
    now: datetime,
    grace: timedelta,
) -> TournamentPhase:
    if tournament is None:
        return TournamentPhase.PENDING
    if not tournament.is_active:
        return TournamentPhase.ROLLED_OVER
    if entries_closed(tournament.end_time, now, grace):
        return TournamentPhase.GRACE
    return TournamentPhase.ACTIVE


def parse_cycle_key(value: str | date) -> date:
    """Accept ``YYYY-MM-DD`` strings or dates."""
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)
