"""
Leaderboard and tournament read path.

Tiered lookup for every read:

    response cache  ->  ranked store (only once seeded)  ->  database

A database read also reseeds the ranked store with ``bulk_load`` so the next
miss is served from Redis. Responses for the ``current`` alias are written
under both the alias and the day key; invalidation always clears both.

Past tournaments (``get_history``, ``get_past_tournament``) are read straight
from the database; they no longer change once rolled over.

``rewarm`` reseeds the ranked store from the database and then runs the
same reads with the cache bypassed. The cache coordinator calls it after
invalidations.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from arena.leaderboard import cache_keys
from arena.leaderboard.cache_keys import CURRENT, CacheScope
from arena.leaderboard.ranked_store import RankedParticipant, RankedStore
from arena.leaderboard.response_cache import ResponseCache
from arena.logging_config import get_logger
from arena.middleware.prometheus import LEADERBOARD_READ_SOURCE
from arena.models.tournament import Tournament
from arena.services.records import RecordStore
from arena.tournament.cycle import (
    TournamentPhase,
    ensure_utc,
    entries_closed,
    phase_for,
    utcnow,
)
from arena.tournament.prizes import (
    MAX_WINNERS,
    MIN_PLAYERS_FOR_PAYOUT,
    compute_prizes,
    should_refund,
)
from arena.utils.errors import NoActiveTournamentError, TournamentNotFoundError

if TYPE_CHECKING:
    from arena.tournament.lifecycle import TournamentLifecycleManager
    from arena.utils.db import Database

logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100
DEFAULT_HISTORY_PAGE_SIZE = 10
MAX_HISTORY_PAGE_SIZE = 50
HISTORY_TOP_FINISHERS = 3

REFUND_NOTICE = (
    f"Fewer than {MIN_PLAYERS_FOR_PAYOUT} players entered. "
    "All entries will be refunded."
)


def _is_alias(tournament_key: Optional[str]) -> bool:
    return tournament_key is None or tournament_key == CURRENT


class LeaderboardService:
    """Cached leaderboard, stats and prize reads."""

    def __init__(
        self,
        database: "Database",
        lifecycle: "TournamentLifecycleManager",
        ranked_store: RankedStore,
        response_cache: ResponseCache,
        leaderboard_ttl: int = 15,
        stats_ttl: int = 180,
        prizes_ttl: int = 180,
        no_tournament_ttl: int = 300,
    ):
        self.database = database
        self.lifecycle = lifecycle
        self.ranked_store = ranked_store
        self.cache = response_cache
        self.leaderboard_ttl = leaderboard_ttl
        self.stats_ttl = stats_ttl
        self.prizes_ttl = prizes_ttl
        self.no_tournament_ttl = no_tournament_ttl

    @staticmethod
    def _request_key(scope: CacheScope, tournament_key: Optional[str]) -> str:
        if _is_alias(tournament_key):
            return cache_keys.current_key(scope)
        return cache_keys.day_key(scope, tournament_key)

    async def _store(
        self,
        scope: CacheScope,
        tournament_key: Optional[str],
        day: str,
        payload: dict[str, Any],
        ttl: int,
        field: Optional[str] = None,
    ) -> None:
        await self.cache.set(cache_keys.day_key(scope, day), payload, ttl, field=field)
        if _is_alias(tournament_key):
            await self.cache.set(cache_keys.current_key(scope), payload, ttl, field=field)

    # =========================================================================
    # Leaderboard
    # =========================================================================

    async def get_leaderboard(
        self,
        tournament_key: Optional[str] = None,
        offset: int = 0,
        limit: int = DEFAULT_PAGE_SIZE,
        bypass_cache: bool = False,
    ) -> dict[str, Any]:
        offset = max(0, offset)
        limit = min(max(1, limit), MAX_PAGE_SIZE)
        field = cache_keys.page_field(offset, limit)

        if not bypass_cache:
            cached = await self.cache.get(self._request_key(CacheScope.LEADERBOARD, tournament_key), field)
            if cached is not None:
                LEADERBOARD_READ_SOURCE.labels(source="cache").inc()
                return {**cached, "source": "cache"}

        async with self.database.session() as session:
            tournament = await self.lifecycle.resolve(session, tournament_key)
            day = tournament.day

            players, total = await self._from_ranked_store(day, offset, limit)
            source = "ranked_store"
            if players is None:
                source = "database"
                players, total = await self._from_database(session, tournament, offset, limit)

        LEADERBOARD_READ_SOURCE.labels(source=source).inc()
        payload = {
            "players": players,
            "total_players": total,
            "tournament_day": day,
            "source": source,
        }
        await self._store(CacheScope.LEADERBOARD, tournament_key, day, payload, self.leaderboard_ttl, field)
        return payload

    async def _from_ranked_store(
        self,
        day: str,
        offset: int,
        limit: int,
    ) -> tuple[Optional[list[dict[str, Any]]], int]:
        if not await self.ranked_store.is_loaded(day):
            return None, 0
        page = await self.ranked_store.get_top_range(day, offset, limit)
        total = await self.ranked_store.size(day)
        if page is None or total is None:
            return None, 0
        players = [
            {
                "rank": entry.rank,
                "display_name": entry.display_name,
                "wallet": entry.wallet,
                "score": entry.score,
            }
            for entry in page
        ]
        return players, total

    async def _from_database(
        self,
        session,
        tournament: Tournament,
        offset: int,
        limit: int,
    ) -> tuple[list[dict[str, Any]], int]:
        records = RecordStore(session)
        page = await records.list_standings(tournament.id, offset, limit)
        total = await records.count_ranked(tournament.id)
        players = [
            {
                "rank": rank,
                "display_name": entry.display_name,
                "wallet": entry.wallet,
                "score": entry.highest_score,
            }
            for rank, entry in enumerate(page, start=offset + 1)
        ]

        # No reseed while Redis is unreachable
        if await self.ranked_store.size(tournament.day) is not None:
            await self._reseed(records, tournament, source="read_miss")
        return players, total

    async def _reseed(self, records: RecordStore, tournament: Tournament, source: str) -> bool:
        standings = await records.all_standings(tournament.id)
        return await self.ranked_store.bulk_load(
            tournament.day,
            [
                RankedParticipant(
                    participant_id=entry.user_id,
                    score=entry.highest_score,
                    achieved_at=ensure_utc(entry.first_score_at),
                    display_name=entry.display_name,
                    wallet=entry.wallet,
                )
                for entry in standings
            ],
            source=source,
        )

    async def reseed(self, tournament_key: str) -> bool:
        """Rebuild the ranked store for one day from the database."""
        async with self.database.session() as session:
            tournament = await self.lifecycle.resolve(session, tournament_key)
            return await self._reseed(RecordStore(session), tournament, source="rewarm")

    # =========================================================================
    # Stats and prizes
    # =========================================================================

    @staticmethod
    def _prizes_payload(tournament: Tournament) -> dict[str, Any]:
        player_count = tournament.player_count
        if should_refund(player_count):
            return {
                "tournament_day": tournament.day,
                "refund": True,
                "refund_notice": REFUND_NOTICE,
                "min_players": MIN_PLAYERS_FOR_PAYOUT,
                "player_count": player_count,
                "prize_pool": 0.0,
                "ranks": [],
            }
        breakdown = compute_prizes(tournament.total_collected, player_count)
        return {
            "tournament_day": tournament.day,
            "refund": False,
            "refund_notice": None,
            "min_players": MIN_PLAYERS_FOR_PAYOUT,
            "player_count": player_count,
            "prize_pool": float(breakdown.prize_pool),
            "guarantee_applied": breakdown.guarantee_applied,
            "winner_count": breakdown.winner_count,
            "ranks": [r.to_dict() for r in breakdown.ranks],
        }

    def _stats_payload(self, tournament: Tournament, now: datetime) -> dict[str, Any]:
        grace = self.lifecycle.boundary.grace
        end_time = ensure_utc(tournament.end_time)
        return {
            "active": tournament.is_active,
            "tournament_day": tournament.day,
            "phase": phase_for(tournament, now, grace).value,
            "start_time": ensure_utc(tournament.start_time).isoformat(),
            "end_time": end_time.isoformat(),
            "entries_open": tournament.is_active and not entries_closed(end_time, now, grace),
            "seconds_remaining": max(0, int((end_time - now).total_seconds())),
            "player_count": tournament.player_count,
            "total_collected": float(tournament.total_collected),
            "total_games_played": tournament.total_games_played,
            "prizes": self._prizes_payload(tournament),
        }

    @staticmethod
    def _no_tournament_payload() -> dict[str, Any]:
        return {
            "active": False,
            "tournament_day": None,
            "phase": TournamentPhase.PENDING.value,
            "player_count": 0,
            "total_collected": 0.0,
            "total_games_played": 0,
            "prizes": None,
        }

    async def get_stats(
        self,
        tournament_key: Optional[str] = None,
        bypass_cache: bool = False,
    ) -> dict[str, Any]:
        if not bypass_cache:
            cached = await self.cache.get(self._request_key(CacheScope.STATS, tournament_key))
            if cached is not None:
                return cached

        async with self.database.session() as session:
            try:
                tournament = await self.lifecycle.resolve(session, tournament_key)
            except NoActiveTournamentError:
                if not _is_alias(tournament_key):
                    raise
                payload = self._no_tournament_payload()
                await self.cache.set(
                    cache_keys.current_key(CacheScope.STATS),
                    payload,
                    self.no_tournament_ttl,
                )
                return payload

        payload = self._stats_payload(tournament, utcnow())
        await self._store(CacheScope.STATS, tournament_key, tournament.day, payload, self.stats_ttl)
        return payload

    async def get_prizes(
        self,
        tournament_key: Optional[str] = None,
        bypass_cache: bool = False,
    ) -> dict[str, Any]:
        if not bypass_cache:
            cached = await self.cache.get(self._request_key(CacheScope.PRIZES, tournament_key))
            if cached is not None:
                return cached

        async with self.database.session() as session:
            tournament = await self.lifecycle.resolve(session, tournament_key)

        payload = self._prizes_payload(tournament)
        await self._store(CacheScope.PRIZES, tournament_key, tournament.day, payload, self.prizes_ttl)
        return payload

    async def get_tournament(self, tournament_key: Optional[str] = None) -> dict[str, Any]:
        """Uncached tournament summary (current alias requires an active one)."""
        async with self.database.session() as session:
            tournament = await self.lifecycle.resolve(session, tournament_key)
        stats = self._stats_payload(tournament, utcnow())
        stats["prize_pool"] = float(tournament.prize_pool)
        stats["is_active"] = stats.pop("active")
        stats.pop("prizes")
        return stats

    # =========================================================================
    # History
    # =========================================================================

    @staticmethod
    def _finishers(tournament: Tournament, standings: list) -> list[dict[str, Any]]:
        """Final ranks; prize amounts follow the prize table unless refunded."""
        breakdown = None
        if not should_refund(tournament.player_count):
            breakdown = compute_prizes(tournament.total_collected, tournament.player_count)
        return [
            {
                "rank": rank,
                "user_id": entry.user_id,
                "display_name": entry.display_name,
                "wallet": entry.wallet,
                "highest_score": entry.highest_score,
                "prize_amount": float(breakdown.payout_for_rank(rank)) if breakdown else None,
            }
            for rank, entry in enumerate(standings, start=1)
        ]

    @staticmethod
    def _past_summary(tournament: Tournament) -> dict[str, Any]:
        return {
            "tournament_day": tournament.day,
            "start_time": ensure_utc(tournament.start_time).isoformat(),
            "end_time": ensure_utc(tournament.end_time).isoformat(),
            "player_count": tournament.player_count,
            "total_collected": float(tournament.total_collected),
            "prize_pool": float(tournament.prize_pool),
            "total_games_played": tournament.total_games_played,
            "refunded": should_refund(tournament.player_count),
        }

    async def get_history(
        self,
        offset: int = 0,
        limit: int = DEFAULT_HISTORY_PAGE_SIZE,
    ) -> dict[str, Any]:
        """Rolled-over tournaments, newest first, each with its top finishers."""
        offset = max(0, offset)
        limit = min(max(1, limit), MAX_HISTORY_PAGE_SIZE)

        async with self.database.session() as session:
            records = RecordStore(session)
            tournaments = await records.list_past_tournaments(offset, limit)
            total = await records.count_past_tournaments()
            items = []
            for tournament in tournaments:
                standings = await records.list_standings(tournament.id, 0, HISTORY_TOP_FINISHERS)
                items.append({
                    **self._past_summary(tournament),
                    "winners": self._finishers(tournament, standings),
                })

        return {"tournaments": items, "total": total, "offset": offset, "limit": limit}

    async def get_past_tournament(self, tournament_key: Optional[str] = None) -> dict[str, Any]:
        """One rolled-over tournament with its ranked winners.

        Without a key, the most recent one. Active or unknown days are
        TournamentNotFoundError.
        """
        async with self.database.session() as session:
            records = RecordStore(session)
            if tournament_key is None:
                latest = await records.list_past_tournaments(0, 1)
                tournament = latest[0] if latest else None
            else:
                try:
                    tournament = await self.lifecycle.get_by_key(session, tournament_key)
                except ValueError:
                    tournament = None
            if tournament is None or tournament.is_active:
                raise TournamentNotFoundError(tournament_key or "previous")
            standings = await records.list_standings(tournament.id, 0, MAX_WINNERS)

        return {
            **self._past_summary(tournament),
            "winners": self._finishers(tournament, standings),
        }

    # =========================================================================
    # Rewarm
    # =========================================================================

    async def rewarm(self, tournament_key: str) -> None:
        """Reseed the ranked store, then refill every scope for one day.

        The alias keys are refilled too when the day is the active one.
        Reseeding from the database bounds the damage of a read-miss reseed
        that raced a score write to one debounce window.
        """
        await self.reseed(tournament_key)

        target: Optional[str] = tournament_key
        if await self.lifecycle.active_key() == tournament_key:
            target = None

        await self.get_leaderboard(target, 0, DEFAULT_PAGE_SIZE, bypass_cache=True)
        await self.get_stats(target, bypass_cache=True)
        await self.get_prizes(target, bypass_cache=True)
        logger.debug("leaderboard_rewarmed", tournament_day=tournament_key)
