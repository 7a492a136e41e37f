"""Tests for weekly cycle arithmetic."""

from datetime import date, datetime, time, timedelta, timezone

import pytest
from hypothesis import given, strategies as st

from arena.tournament.cycle import (
    CycleBoundary,
    TournamentPhase,
    current_cycle_key,
    cycle_window,
    entries_closed,
    is_grace_period,
    parse_cycle_key,
    phase_for,
)
from arena.models import Tournament

BOUNDARY = CycleBoundary()  # Sunday 15:30 UTC, 30 minute grace


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestCurrentCycleKey:
    def test_midweek(self):
        assert current_cycle_key(utc(2026, 10, 14, 12, 0), BOUNDARY) == date(2026, 10, 18)

    def test_boundary_day_before_boundary(self):
        assert current_cycle_key(utc(2026, 10, 18, 15, 29, 59), BOUNDARY) == date(2026, 10, 18)

    def test_at_boundary_moves_to_next_week(self):
        assert current_cycle_key(utc(2026, 10, 18, 15, 30), BOUNDARY) == date(2026, 10, 25)

    def test_day_after_boundary(self):
        assert current_cycle_key(utc(2026, 10, 19, 0, 0), BOUNDARY) == date(2026, 10, 25)

    def test_naive_datetimes_are_utc(self):
        assert current_cycle_key(datetime(2026, 10, 14, 12, 0), BOUNDARY) == date(2026, 10, 18)

    def test_custom_boundary(self):
        friday_noon = CycleBoundary(weekday=4, at=time(12, 0))
        assert current_cycle_key(utc(2026, 10, 16, 11, 0), friday_noon) == date(2026, 10, 16)
        assert current_cycle_key(utc(2026, 10, 16, 12, 0), friday_noon) == date(2026, 10, 23)

    @given(st.datetimes(min_value=datetime(2000, 1, 1), max_value=datetime(2100, 1, 1)))
    def test_now_is_inside_its_window(self, naive):
        now = naive.replace(tzinfo=timezone.utc)
        key = current_cycle_key(now, BOUNDARY)
        start, end = cycle_window(key, BOUNDARY)
        assert key.weekday() == BOUNDARY.weekday
        assert start <= now < end


class TestCycleWindow:
    def test_window_is_one_week_ending_at_boundary(self):
        start, end = cycle_window(date(2026, 10, 18), BOUNDARY)
        assert end == utc(2026, 10, 18, 15, 30)
        assert start == utc(2026, 10, 11, 15, 30)

    def test_parse_cycle_key(self):
        assert parse_cycle_key("2026-10-18") == date(2026, 10, 18)
        assert parse_cycle_key(date(2026, 10, 18)) == date(2026, 10, 18)
        with pytest.raises(ValueError):
            parse_cycle_key("not-a-day")


class TestGracePeriod:
    END = utc(2026, 10, 18, 15, 30)

    def test_grace_window(self):
        grace = BOUNDARY.grace
        assert not is_grace_period(self.END, self.END - timedelta(minutes=31), grace)
        assert is_grace_period(self.END, self.END - timedelta(minutes=30), grace)
        assert is_grace_period(self.END, self.END - timedelta(seconds=1), grace)
        assert not is_grace_period(self.END, self.END, grace)

    def test_entries_stay_closed_after_end(self):
        grace = BOUNDARY.grace
        assert not entries_closed(self.END, self.END - timedelta(minutes=31), grace)
        assert entries_closed(self.END, self.END - timedelta(minutes=30), grace)
        assert entries_closed(self.END, self.END + timedelta(hours=1), grace)

    def test_phases(self):
        grace = BOUNDARY.grace
        active = Tournament(
            cycle_key=date(2026, 10, 18),
            start_time=self.END - timedelta(days=7),
            end_time=self.END,
            is_active=True,
        )
        closed = Tournament(
            cycle_key=date(2026, 10, 11),
            start_time=self.END - timedelta(days=14),
            end_time=self.END - timedelta(days=7),
            is_active=False,
        )
        assert phase_for(None, self.END, grace) == TournamentPhase.PENDING
        assert phase_for(active, self.END - timedelta(hours=1), grace) == TournamentPhase.ACTIVE
        assert phase_for(active, self.END - timedelta(minutes=10), grace) == TournamentPhase.GRACE
        assert phase_for(closed, self.END, grace) == TournamentPhase.ROLLED_OVER
