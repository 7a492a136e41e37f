"""
Score submission write path.

Order of operations:

    rate limit -> idempotency -> plausibility -> tournament -> entry
    -> database write (committed) -> ranked store -> cache invalidation

The database is the record of truth and is written first; the ranked store
is only touched once the write is durable, and invalidation comes last so a
reader never falls back to a ranked store that is older than the cache it
just lost.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from arena.guards.idempotency import IdempotencyGuard, score_submission_key
from arena.guards.rate_limit import LimiterClass, RateLimiter
from arena.guards.score_validation import validate_score
from arena.leaderboard.cache_keys import CURRENT, CacheScope
from arena.leaderboard.ranked_store import RankedStore
from arena.logging_config import get_logger
from arena.middleware.prometheus import SCORE_SUBMISSIONS
from arena.services.records import RecordStore
from arena.tournament.cycle import ensure_utc, utcnow
from arena.utils.errors import (
    DuplicateSubmissionError,
    EntryNotFoundError,
    InvalidScoreError,
    RateLimitExceededError,
    TournamentClosedError,
)

if TYPE_CHECKING:
    from arena.leaderboard.coordinator import CacheCoordinator
    from arena.tournament.lifecycle import TournamentLifecycleManager
    from arena.utils.db import Database

logger = get_logger(__name__)


class ScoreSubmissionService:
    """Accepts finished games and keeps every leaderboard tier in step."""

    def __init__(
        self,
        database: "Database",
        lifecycle: "TournamentLifecycleManager",
        rate_limiter: RateLimiter,
        idempotency: IdempotencyGuard,
        ranked_store: RankedStore,
        coordinator: "CacheCoordinator",
        idempotency_ttl: int = 300,
    ):
        self.database = database
        self.lifecycle = lifecycle
        self.rate_limiter = rate_limiter
        self.idempotency = idempotency
        self.ranked_store = ranked_store
        self.coordinator = coordinator
        self.idempotency_ttl = idempotency_ttl

    async def submit(
        self,
        actor_id: str,
        score: Any,
        game_duration_ms: Any,
        tournament_key: Optional[str] = None,
        session_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> dict[str, Any]:
        """
        Record one game result.

        Returns:
            rank, is_new_high_score, previous/current highest score, tournament_day

        Raises:
            RateLimitExceededError, DuplicateSubmissionError, InvalidScoreError,
            EntryNotFoundError, TournamentClosedError, TournamentNotFoundError,
            NoActiveTournamentError
        """
        now = ensure_utc(now or utcnow())

        limit = await self.rate_limiter.check_limit(actor_id, LimiterClass.SCORE_SUBMISSION)
        if not limit.allowed:
            SCORE_SUBMISSIONS.labels(outcome="rate_limited").inc()
            raise RateLimitExceededError(
                LimiterClass.SCORE_SUBMISSION.value,
                limit.limit,
                limit.retry_after,
            )

        lock_key = score_submission_key(
            actor_id,
            tournament_key or CURRENT,
            score,
            game_duration_ms,
            session_id,
            now.timestamp(),
        )
        if not await self.idempotency.acquire_lock(lock_key, self.idempotency_ttl):
            SCORE_SUBMISSIONS.labels(outcome="duplicate").inc()
            raise DuplicateSubmissionError()

        try:
            validation = validate_score(score, game_duration_ms)
            if not validation.valid:
                SCORE_SUBMISSIONS.labels(outcome="invalid").inc()
                logger.info(
                    "score_rejected",
                    actor_id=actor_id,
                    score=score,
                    game_duration_ms=game_duration_ms,
                    reason=validation.reason,
                )
                raise InvalidScoreError(
                    validation.reason,
                    details={"max_possible": validation.max_possible},
                )

            async with self.database.session() as session:
                tournament = await self.lifecycle.resolve(session, tournament_key)
                if not tournament.is_active:
                    raise TournamentClosedError(tournament.day)

                records = RecordStore(session)
                entry = await records.get_entry(actor_id, tournament.id)
                if entry is None:
                    SCORE_SUBMISSIONS.labels(outcome="no_entry").inc()
                    raise EntryNotFoundError(tournament.day)

                write = await records.record_score(
                    entry,
                    int(score),
                    int(game_duration_ms),
                    session_id,
                    now,
                )
                day = tournament.day
                tournament_id = tournament.id
                details = {"display_name": entry.display_name, "wallet": entry.wallet}
        except Exception:
            await self.idempotency.release_lock(lock_key)
            raise

        SCORE_SUBMISSIONS.labels(
            outcome="personal_best" if write.is_new_high_score else "accepted"
        ).inc()

        loaded = await self.ranked_store.is_loaded(day)
        if loaded and write.is_new_high_score:
            stored = await self.ranked_store.upsert_score(
                day,
                actor_id,
                write.current,
                details,
                write.first_score_at,
            )
            if not stored:
                # Drop the projection so the next read reseeds it
                await self.ranked_store.clear(day)
                loaded = False

        rank = await self.ranked_store.get_rank(day, actor_id) if loaded else None
        if rank is None and write.first_score_at is not None:
            async with self.database.session() as session:
                rank = await RecordStore(session).rank_of(tournament_id, write.current, write.first_score_at)

        await self.coordinator.invalidate(
            [CacheScope.LEADERBOARD, CacheScope.STATS],
            day,
            source="score_submission",
        )

        logger.info(
            "score_submitted",
            actor_id=actor_id,
            tournament_day=day,
            score=int(score),
            highest_score=write.current,
            new_high_score=write.is_new_high_score,
            rank=rank,
        )

        return {
            "rank": rank,
            "is_new_high_score": write.is_new_high_score,
            "previous_highest_score": write.previous,
            "current_highest_score": write.current,
            "tournament_day": day,
        }
