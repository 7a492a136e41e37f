"""Tests for the tiered leaderboard read path."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio

from arena.models import Tournament
from arena.services.records import RecordStore
from arena.tournament.cycle import ensure_utc
from arena.tournament.prizes import compute_prizes
from arena.utils.errors import NoActiveTournamentError, TournamentNotFoundError


@pytest.fixture
def play(database):
    async def submit(tournament, user_id, score, at):
        async with database.session() as session:
            records = RecordStore(session)
            entry = await records.get_entry(user_id, tournament.id)
            await records.record_score(entry, score, 5000, None, at)

    return submit


@pytest_asyncio.fixture
async def standings(tournament, make_entry, play):
    """Five players; two tie on 900 and the earlier one ranks first."""
    base = datetime.now(timezone.utc) - timedelta(hours=1)
    rows = [("carol", 900, 30), ("dave", 400, 10), ("alice", 900, 5), ("erin", 100, 1), ("bob", 700, 20)]
    for user_id, score, minute in rows:
        await make_entry(tournament, user_id)
        await play(tournament, user_id, score, base + timedelta(minutes=minute))
    await make_entry(tournament, "idle")
    return tournament


class TestGetLeaderboard:
    @pytest.mark.asyncio
    async def test_source_chain(self, context, standings):
        first = await context.leaderboard.get_leaderboard()
        assert first["source"] == "database"
        assert await context.ranked_store.is_loaded(standings.day)

        second = await context.leaderboard.get_leaderboard()
        assert second["source"] == "cache"

        third = await context.leaderboard.get_leaderboard(bypass_cache=True)
        assert third["source"] == "ranked_store"
        assert third["players"] == first["players"]

    @pytest.mark.asyncio
    async def test_ordering_and_tie_break(self, context, standings):
        board = await context.leaderboard.get_leaderboard()

        assert [p["display_name"] for p in board["players"]] == ["alice", "carol", "bob", "dave", "erin"]
        assert [p["rank"] for p in board["players"]] == [1, 2, 3, 4, 5]
        assert board["total_players"] == 5
        assert board["players"][0]["wallet"] == "wallet-alice"

    @pytest.mark.asyncio
    async def test_database_and_ranked_store_agree_on_pages(self, context, standings):
        from_db = await context.leaderboard.get_leaderboard(standings.day, offset=2, limit=2, bypass_cache=True)
        from_store = await context.leaderboard.get_leaderboard(standings.day, offset=2, limit=2, bypass_cache=True)

        assert from_db["source"] == "database"
        assert from_store["source"] == "ranked_store"
        assert from_db["players"] == from_store["players"]
        assert [p["rank"] for p in from_store["players"]] == [3, 4]

    @pytest.mark.asyncio
    async def test_page_limits_are_clamped(self, context, standings):
        board = await context.leaderboard.get_leaderboard(offset=-5, limit=1000)
        assert len(board["players"]) == 5
        assert board["players"][0]["rank"] == 1

    @pytest.mark.asyncio
    async def test_alias_and_day_keys_both_written(self, context, standings, mock_redis):
        await context.leaderboard.get_leaderboard()
        assert await mock_redis.hget("cache:leaderboard:current", "0:50") is not None
        assert await mock_redis.hget(f"cache:leaderboard:{standings.day}", "0:50") is not None

    @pytest.mark.asyncio
    async def test_serves_from_database_when_redis_is_down(self, context, standings, mock_redis):
        mock_redis.fail = True
        board = await context.leaderboard.get_leaderboard()
        assert board["source"] == "database"
        assert len(board["players"]) == 5

    @pytest.mark.asyncio
    async def test_unknown_day(self, context, standings):
        with pytest.raises(TournamentNotFoundError):
            await context.leaderboard.get_leaderboard("2001-01-07")

    @pytest.mark.asyncio
    async def test_new_best_is_visible_after_rewarm(self, context, standings, eventually):
        await context.leaderboard.get_leaderboard()

        await context.scores.submit("erin", 1000, 120_000, session_id="comeback")
        await context.coordinator.flush(timeout=2.0)

        async def erin_leads():
            board = await context.leaderboard.get_leaderboard()
            return board["players"][0]["display_name"] == "erin"

        assert await eventually(erin_leads)


class TestStatsAndPrizes:
    @pytest.mark.asyncio
    async def test_no_tournament_stats(self, context, mock_redis):
        stats = await context.leaderboard.get_stats()

        assert stats["active"] is False
        assert stats["tournament_day"] is None
        assert stats["phase"] == "pending"
        assert mock_redis.expirations["cache:stats:current"] == 300

    @pytest.mark.asyncio
    async def test_no_tournament_prizes(self, context):
        with pytest.raises(NoActiveTournamentError):
            await context.leaderboard.get_prizes()

    @pytest.mark.asyncio
    async def test_stats_of_active_tournament(self, context, standings):
        await context.lifecycle.sync_aggregates(standings.day, invalidate=False)

        stats = await context.leaderboard.get_stats()

        assert stats["active"] is True
        assert stats["phase"] == "active"
        assert stats["entries_open"] is True
        assert stats["player_count"] == 6
        assert stats["total_collected"] == 6.0
        assert stats["total_games_played"] == 5
        assert stats["prizes"]["refund"] is False
        assert stats["seconds_remaining"] > 0

    @pytest.mark.asyncio
    async def test_refund_notice_below_minimum(self, context, tournament, make_entry):
        for user_id in ("a", "b"):
            await make_entry(tournament, user_id)
        await context.lifecycle.sync_aggregates(tournament.day, invalidate=False)

        prizes = await context.leaderboard.get_prizes()

        assert prizes["refund"] is True
        assert "refunded" in prizes["refund_notice"]
        assert prizes["ranks"] == []

    @pytest.mark.asyncio
    async def test_prizes_are_cached(self, context, standings, make_entry, mock_redis):
        await context.lifecycle.sync_aggregates(standings.day, invalidate=False)
        first = await context.leaderboard.get_prizes()

        # Changes underneath stay invisible until invalidation
        await make_entry(standings, "latecomer")
        await context.lifecycle.sync_aggregates(standings.day, invalidate=False)
        assert await context.leaderboard.get_prizes() == first
        assert mock_redis.expirations["cache:prizes:current"] == 180

    @pytest.mark.asyncio
    async def test_tournament_summary(self, context, tournament):
        summary = await context.leaderboard.get_tournament()
        assert summary["is_active"] is True
        assert summary["tournament_day"] == tournament.day
        assert "prizes" not in summary
        assert summary["prize_pool"] == 0.0


class TestRewarm:
    @pytest.mark.asyncio
    async def test_rewarm_refills_every_scope(self, context, standings, mock_redis):
        await context.leaderboard.rewarm(standings.day)

        assert await context.ranked_store.is_loaded(standings.day)
        assert await mock_redis.hget("cache:leaderboard:current", "0:50") is not None
        assert await mock_redis.get("cache:stats:current") is not None
        assert await mock_redis.get(f"cache:prizes:{standings.day}") is not None


async def add_past_week(database, current: Tournament, weeks_back: int) -> Tournament:
    shift = timedelta(days=7 * weeks_back)
    async with database.session() as session:
        past = Tournament(
            cycle_key=current.cycle_key - shift,
            start_time=current.start_time - shift,
            end_time=current.end_time - shift,
            is_active=False,
        )
        session.add(past)
        await session.flush()
    return past


@pytest_asyncio.fixture
async def past_weeks(context, database, tournament, make_entry, play):
    """Last week paid out to six players; the week before was refunded."""
    last = await add_past_week(database, tournament, 1)
    base = ensure_utc(last.start_time) + timedelta(hours=1)
    for i in range(6):
        await make_entry(last, f"p{i + 1}")
        await play(last, f"p{i + 1}", 100 * (i + 1), base + timedelta(minutes=i))
    await context.lifecycle.sync_aggregates(last.day, invalidate=False)

    older = await add_past_week(database, tournament, 2)
    for user_id in ("q1", "q2"):
        await make_entry(older, user_id)
    await play(older, "q1", 50, ensure_utc(older.start_time) + timedelta(hours=1))
    await context.lifecycle.sync_aggregates(older.day, invalidate=False)
    return last, older


class TestHistory:
    @pytest.mark.asyncio
    async def test_newest_first_without_active(self, context, tournament, past_weeks):
        last, older = past_weeks

        history = await context.leaderboard.get_history()

        assert [t["tournament_day"] for t in history["tournaments"]] == [last.day, older.day]
        assert history["total"] == 2
        assert tournament.day not in [t["tournament_day"] for t in history["tournaments"]]

    @pytest.mark.asyncio
    async def test_summary_and_top_finishers(self, context, past_weeks):
        history = await context.leaderboard.get_history()
        last_week, older_week = history["tournaments"]

        assert last_week["player_count"] == 6
        assert last_week["total_collected"] == 6.0
        assert last_week["refunded"] is False
        assert [w["user_id"] for w in last_week["winners"]] == ["p6", "p5", "p4"]
        breakdown = compute_prizes(Decimal("6"), 6)
        assert [w["prize_amount"] for w in last_week["winners"]] == [
            float(breakdown.payout_for_rank(rank)) for rank in (1, 2, 3)
        ]

        assert older_week["refunded"] is True
        assert [w["user_id"] for w in older_week["winners"]] == ["q1"]
        assert older_week["winners"][0]["prize_amount"] is None

    @pytest.mark.asyncio
    async def test_paging(self, context, past_weeks):
        _, older = past_weeks
        page = await context.leaderboard.get_history(offset=1, limit=1)
        assert [t["tournament_day"] for t in page["tournaments"]] == [older.day]
        assert page["total"] == 2

        clamped = await context.leaderboard.get_history(offset=-3, limit=500)
        assert clamped["offset"] == 0
        assert clamped["limit"] == 50

    @pytest.mark.asyncio
    async def test_past_tournament_lists_ranked_winners(self, context, past_weeks):
        last, _ = past_weeks

        detail = await context.leaderboard.get_past_tournament(last.day)

        assert detail["tournament_day"] == last.day
        assert [w["rank"] for w in detail["winners"]] == [1, 2, 3, 4, 5, 6]
        assert detail["winners"][0]["highest_score"] == 600

    @pytest.mark.asyncio
    async def test_previous_is_most_recent(self, context, past_weeks):
        last, _ = past_weeks
        previous = await context.leaderboard.get_past_tournament()
        assert previous["tournament_day"] == last.day

    @pytest.mark.asyncio
    @pytest.mark.parametrize("key", ["active", "2001-01-07", "not-a-date"])
    async def test_active_or_unknown_is_not_found(self, context, tournament, key):
        if key == "active":
            key = tournament.day
        with pytest.raises(TournamentNotFoundError):
            await context.leaderboard.get_past_tournament(key)

    @pytest.mark.asyncio
    async def test_no_previous_yet(self, context, tournament):
        with pytest.raises(TournamentNotFoundError):
            await context.leaderboard.get_past_tournament()
        assert (await context.leaderboard.get_history())["tournaments"] == []
