"""
Tournament Lifecycle Manager.

Weekly state machine: PENDING -> ACTIVE -> GRACE -> ROLLED_OVER.

``ensure_current_tournament`` is the only transition driver. It is called by
the scheduled trigger (Celery beat) and by the HTTP cron endpoint, possibly
at the same moment, so it must be idempotent:

1. A best-effort Redis lock serialises concurrent runs. If Redis is down or
   the wait times out the run proceeds anyway.
2. The unique constraint on ``cycle_key`` is the real guard: a losing
   inserter gets an IntegrityError and activates the winner's row.
3. Activation always deactivates the other rows first. A failure between
   deactivation and creation leaves no active tournament (PENDING), never
   two; the partial unique index on ``is_active`` backs this up.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING, Optional

from redis.exceptions import RedisError
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from arena.leaderboard.cache_keys import CURRENT, CacheScope
from arena.logging_config import get_logger
from arena.middleware.prometheus import LIFECYCLE_RUNS
from arena.models.tournament import Tournament
from arena.services.records import RecordStore
from arena.tournament.cycle import (
    CycleBoundary,
    TournamentPhase,
    current_cycle_key,
    cycle_window,
    ensure_utc,
    parse_cycle_key,
    phase_for,
    utcnow,
)
from arena.tournament.prizes import compute_prizes
from arena.utils.distributed_lock import DistributedLockManager, LockAcquisitionError, LockInfo
from arena.utils.errors import (
    AmbiguousActiveTournamentError,
    LifecycleError,
    NoActiveTournamentError,
    TournamentNotFoundError,
)

if TYPE_CHECKING:
    from arena.leaderboard.coordinator import CacheCoordinator
    from arena.utils.db import Database

logger = get_logger(__name__)


@dataclass
class LifecycleResult:
    """Outcome of one ensure_current_tournament run."""

    tournament: Tournament
    created: bool
    changed: bool
    previous_keys: list[str] = field(default_factory=list)

    @property
    def outcome(self) -> str:
        if self.created:
            return "created"
        if self.changed:
            return "reactivated"
        return "unchanged"

    def to_dict(self) -> dict:
        return {
            "tournament_day": self.tournament.day,
            "outcome": self.outcome,
            "created": self.created,
            "previous_days": self.previous_keys,
            "start_time": ensure_utc(self.tournament.start_time).isoformat(),
            "end_time": ensure_utc(self.tournament.end_time).isoformat(),
        }


class TournamentLifecycleManager:
    """Creates, activates and reconciles weekly tournaments."""

    LOCK_NAME = "tournament:lifecycle"

    def __init__(
        self,
        database: "Database",
        coordinator: "CacheCoordinator",
        boundary: CycleBoundary,
        lock_manager: Optional[DistributedLockManager] = None,
        lock_timeout_ms: int = 30000,
        lock_wait_ms: int = 10000,
    ):
        self.database = database
        self.coordinator = coordinator
        self.boundary = boundary
        self.lock_manager = lock_manager
        self.lock_timeout_ms = lock_timeout_ms
        self.lock_wait_ms = lock_wait_ms

    # =========================================================================
    # Lookups
    # =========================================================================

    async def get_current_active(self, session: AsyncSession) -> Optional[Tournament]:
        """The active tournament, or None.

        Raises:
            AmbiguousActiveTournamentError: More than one row is active
        """
        result = await session.execute(
            select(Tournament)
            .where(Tournament.is_active.is_(True))
            .execution_options(populate_existing=True)
        )
        active = list(result.scalars().all())
        if len(active) > 1:
            days = sorted(t.day for t in active)
            logger.error("multiple_active_tournaments", tournament_days=days)
            raise AmbiguousActiveTournamentError(days)
        return active[0] if active else None

    async def require_current_active(self, session: AsyncSession) -> Tournament:
        tournament = await self.get_current_active(session)
        if tournament is None:
            logger.error("no_active_tournament")
            raise NoActiveTournamentError()
        return tournament

    async def get_by_key(self, session: AsyncSession, cycle_key: str | date) -> Optional[Tournament]:
        result = await session.execute(
            select(Tournament)
            .where(Tournament.cycle_key == parse_cycle_key(cycle_key))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def resolve(self, session: AsyncSession, tournament_key: Optional[str]) -> Tournament:
        """Resolve a day key, the ``current`` alias or None to a record."""
        if tournament_key is None or tournament_key == CURRENT:
            return await self.require_current_active(session)
        try:
            tournament = await self.get_by_key(session, tournament_key)
        except ValueError:
            raise TournamentNotFoundError(tournament_key)
        if tournament is None:
            raise TournamentNotFoundError(tournament_key)
        return tournament

    async def active_key(self) -> Optional[str]:
        async with self.database.session() as session:
            tournament = await self.get_current_active(session)
        return tournament.day if tournament else None

    async def phase(self, now: Optional[datetime] = None) -> TournamentPhase:
        async with self.database.session() as session:
            tournament = await self.get_current_active(session)
        return phase_for(tournament, now or utcnow(), self.boundary.grace)

    # =========================================================================
    # Transitions
    # =========================================================================

    async def ensure_current_tournament(self, now: Optional[datetime] = None) -> LifecycleResult:
        """Make the tournament for ``now``'s cycle the single active one.

        Raises:
            LifecycleError: The new record could not be created
        """
        now = ensure_utc(now or utcnow())
        lock_info = await self._acquire_lock()
        try:
            result = await self._ensure(now)
        except LifecycleError:
            LIFECYCLE_RUNS.labels(outcome="failed").inc()
            raise
        finally:
            await self._release_lock(lock_info)

        LIFECYCLE_RUNS.labels(outcome=result.outcome).inc()

        if result.changed:
            logger.info(
                "tournament_rolled_over",
                tournament_day=result.tournament.day,
                created=result.created,
                previous_days=result.previous_keys,
            )
            await self.coordinator.reset(
                [*result.previous_keys, result.tournament.day],
                rewarm_key=result.tournament.day,
            )
        return result

    async def _ensure(self, now: datetime) -> LifecycleResult:
        cycle_key = current_cycle_key(now, self.boundary)

        async with self.database.session() as session:
            existing = await self.get_by_key(session, cycle_key)
            if existing is not None:
                others = await self._active_days(session, exclude_id=existing.id)
                if existing.is_active and not others:
                    return LifecycleResult(tournament=existing, created=False, changed=False)
                await self._activate(session, existing.id)
                tournament = await self.get_by_key(session, cycle_key)
                return LifecycleResult(
                    tournament=tournament,
                    created=False,
                    changed=True,
                    previous_keys=others,
                )

        # Transaction 1: nothing stays active while the new cycle is created
        async with self.database.session() as session:
            previous = await self._active_days(session)
            await session.execute(
                update(Tournament)
                .where(Tournament.is_active.is_(True))
                .values(is_active=False)
                .execution_options(synchronize_session=False)
            )

        await self._reset_verification()

        # Transaction 2: create, or activate whoever won the race
        start, end = cycle_window(cycle_key, self.boundary)
        try:
            async with self.database.session() as session:
                tournament = Tournament(
                    cycle_key=cycle_key,
                    start_time=start,
                    end_time=end,
                    is_active=True,
                )
                session.add(tournament)
                await session.flush()
            logger.info(
                "tournament_created",
                tournament_day=tournament.day,
                start_time=start.isoformat(),
                end_time=end.isoformat(),
            )
            return LifecycleResult(
                tournament=tournament,
                created=True,
                changed=True,
                previous_keys=previous,
            )
        except IntegrityError:
            logger.info("tournament_already_exists", tournament_day=cycle_key.isoformat())
        except SQLAlchemyError as e:
            logger.error(
                "tournament_create_failed",
                tournament_day=cycle_key.isoformat(),
                error_type=type(e).__name__,
                error=str(e),
            )
            raise LifecycleError(details={"tournament_day": cycle_key.isoformat()}) from e

        async with self.database.session() as session:
            existing = await self.get_by_key(session, cycle_key)
            if existing is None:
                raise LifecycleError(
                    message="Tournament insert conflicted but no record exists",
                    details={"tournament_day": cycle_key.isoformat()},
                )
            await self._activate(session, existing.id)
            tournament = await self.get_by_key(session, cycle_key)
        return LifecycleResult(
            tournament=tournament,
            created=False,
            changed=True,
            previous_keys=previous,
        )

    async def _active_days(self, session: AsyncSession, exclude_id: Optional[str] = None) -> list[str]:
        stmt = select(Tournament.cycle_key).where(Tournament.is_active.is_(True))
        if exclude_id is not None:
            stmt = stmt.where(Tournament.id != exclude_id)
        result = await session.execute(stmt)
        return sorted(key.isoformat() for key in result.scalars().all())

    async def _activate(self, session: AsyncSession, tournament_id: str) -> None:
        """Deactivate everyone else, then activate the target."""
        await session.execute(
            update(Tournament)
            .where(Tournament.is_active.is_(True), Tournament.id != tournament_id)
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        await session.execute(
            update(Tournament)
            .where(Tournament.id == tournament_id)
            .values(is_active=True)
            .execution_options(synchronize_session=False)
        )

    async def _reset_verification(self) -> None:
        try:
            async with self.database.session() as session:
                reset = await RecordStore(session).reset_weekly_verification()
            logger.info("weekly_verification_reset", users=reset)
        except SQLAlchemyError as e:
            logger.error("weekly_verification_reset_failed", error=str(e))

    # =========================================================================
    # Lock
    # =========================================================================

    async def _acquire_lock(self) -> Optional[LockInfo]:
        if self.lock_manager is None:
            return None
        try:
            return await self.lock_manager.acquire(
                self.LOCK_NAME,
                lock_timeout_ms=self.lock_timeout_ms,
                acquire_timeout_ms=self.lock_wait_ms,
            )
        except LockAcquisitionError:
            logger.warning("lifecycle_lock_wait_timeout_proceeding")
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            logger.warning("lifecycle_lock_unavailable_proceeding", error=str(e))
        return None

    async def _release_lock(self, lock_info: Optional[LockInfo]) -> None:
        if lock_info is None or self.lock_manager is None:
            return
        try:
            released = await self.lock_manager.release(lock_info)
            if not released:
                logger.warning("lifecycle_lock_expired_before_release")
        except (RedisError, OSError) as e:
            logger.warning("lifecycle_lock_release_failed", error=str(e))

    # =========================================================================
    # Reconciliation
    # =========================================================================

    async def sync_aggregates(self, tournament_key: Optional[str] = None, invalidate: bool = True) -> Tournament:
        """Recompute counters and prize figures from participant entries."""
        async with self.database.session() as session:
            tournament = await self.resolve(session, tournament_key)
            totals = await RecordStore(session).aggregate_totals(tournament.id)
            breakdown = compute_prizes(totals.total_collected, totals.player_count)
            await session.execute(
                update(Tournament)
                .where(Tournament.id == tournament.id)
                .values(
                    player_count=totals.player_count,
                    total_collected=totals.total_collected,
                    total_games_played=totals.total_games_played,
                    prize_pool=breakdown.prize_pool,
                    admin_fee=breakdown.admin_fee,
                    guarantee_amount=breakdown.guarantee_amount,
                )
                .execution_options(synchronize_session=False)
            )
            tournament = await self.get_by_key(session, tournament.cycle_key)

        logger.info(
            "tournament_aggregates_synced",
            tournament_day=tournament.day,
            player_count=totals.player_count,
            total_collected=str(totals.total_collected),
        )

        if invalidate:
            await self.coordinator.invalidate(
                [CacheScope.STATS, CacheScope.PRIZES],
                tournament.day,
                source="sync_aggregates",
            )
        return tournament
