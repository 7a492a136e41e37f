"""Application context: every long-lived component, wired once.

Built in the FastAPI lifespan (or by a Celery task) from settings and the
two backend handles. Components receive their dependencies explicitly; there
are no module-level clients.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from arena.config import Settings
from arena.guards.idempotency import IdempotencyGuard
from arena.guards.rate_limit import RateLimiter, rules_from_settings
from arena.leaderboard.coordinator import CacheCoordinator
from arena.leaderboard.events import LeaderboardEventPublisher
from arena.leaderboard.ranked_store import RankedStore
from arena.leaderboard.response_cache import ResponseCache
from arena.leaderboard.warmer import CacheWarmer
from arena.logging_config import get_logger
from arena.services.entries import EntryService
from arena.services.leaderboard import LeaderboardService
from arena.services.scores import ScoreSubmissionService
from arena.tournament.cycle import CycleBoundary
from arena.tournament.lifecycle import TournamentLifecycleManager
from arena.tournament.payouts import PayoutService
from arena.utils.db import Database
from arena.utils.distributed_lock import DistributedLockManager
from arena.utils.redis_client import RedisClient

logger = get_logger(__name__)


@dataclass
class AppContext:
    settings: Settings
    database: Database
    redis: RedisClient
    boundary: CycleBoundary
    ranked_store: RankedStore
    response_cache: ResponseCache
    publisher: LeaderboardEventPublisher
    coordinator: CacheCoordinator
    rate_limiter: RateLimiter
    idempotency: IdempotencyGuard
    lifecycle: TournamentLifecycleManager
    leaderboard: LeaderboardService
    scores: ScoreSubmissionService
    entries: EntryService
    payouts: PayoutService
    warmer: Optional[CacheWarmer] = None

    @classmethod
    def build(
        cls,
        settings: Settings,
        database: Optional[Database] = None,
        redis: Optional[RedisClient] = None,
    ) -> "AppContext":
        database = database or Database.from_settings(settings)
        redis = redis or RedisClient.from_settings(settings)
        client = redis.client
        op_timeout = settings.cache_op_timeout_seconds

        boundary = CycleBoundary.from_settings(settings)
        ranked_store = RankedStore(
            client,
            boundary,
            ttl_margin=timedelta(hours=settings.ranked_store_ttl_margin_hours),
            op_timeout=op_timeout,
        )
        response_cache = ResponseCache(client, op_timeout=op_timeout)
        publisher = LeaderboardEventPublisher(client, op_timeout=op_timeout)
        coordinator = CacheCoordinator(
            client,
            ranked_store,
            publisher,
            burst_threshold=settings.rewarm_burst_threshold_seconds,
            quiet_period=settings.rewarm_quiet_period_seconds,
            burst_quiet_period=settings.rewarm_burst_quiet_period_seconds,
            op_timeout=op_timeout,
            rewarm_timeout=settings.cache_rewarm_timeout_seconds,
        )
        rate_limiter = RateLimiter(client, rules_from_settings(settings), op_timeout=op_timeout)
        idempotency = IdempotencyGuard(
            client,
            default_ttl_seconds=settings.idempotency_ttl_seconds,
            op_timeout=op_timeout,
        )
        lifecycle = TournamentLifecycleManager(
            database,
            coordinator,
            boundary,
            lock_manager=DistributedLockManager(client),
            lock_timeout_ms=settings.lifecycle_lock_timeout_ms,
            lock_wait_ms=settings.lifecycle_lock_wait_ms,
        )
        leaderboard = LeaderboardService(
            database,
            lifecycle,
            ranked_store,
            response_cache,
            leaderboard_ttl=settings.cache_leaderboard_ttl_seconds,
            stats_ttl=settings.cache_stats_ttl_seconds,
            prizes_ttl=settings.cache_prizes_ttl_seconds,
            no_tournament_ttl=settings.cache_no_tournament_ttl_seconds,
        )
        coordinator.set_rewarmer(leaderboard.rewarm)

        scores = ScoreSubmissionService(
            database,
            lifecycle,
            rate_limiter,
            idempotency,
            ranked_store,
            coordinator,
            idempotency_ttl=settings.idempotency_ttl_seconds,
        )
        entries = EntryService(
            database,
            lifecycle,
            rate_limiter,
            idempotency,
            coordinator,
            idempotency_ttl=settings.idempotency_ttl_seconds,
        )
        payouts = PayoutService(database, lifecycle, idempotency)

        warmer = None
        if settings.cache_warm_interval_seconds > 0:
            warmer = CacheWarmer(
                coordinator,
                lifecycle.active_key,
                interval_seconds=settings.cache_warm_interval_seconds,
            )

        return cls(
            settings=settings,
            database=database,
            redis=redis,
            boundary=boundary,
            ranked_store=ranked_store,
            response_cache=response_cache,
            publisher=publisher,
            coordinator=coordinator,
            rate_limiter=rate_limiter,
            idempotency=idempotency,
            lifecycle=lifecycle,
            leaderboard=leaderboard,
            scores=scores,
            entries=entries,
            payouts=payouts,
            warmer=warmer,
        )

    async def close(self) -> None:
        """Stop background work, then release the backends."""
        if self.warmer is not None:
            await self.warmer.stop()
        await self.coordinator.flush(timeout=self.settings.cache_rewarm_timeout_seconds)
        await self.coordinator.close()
        await self.redis.close()
        await self.database.close()
        logger.info("app_context_closed")
