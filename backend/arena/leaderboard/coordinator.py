"""
Cache Coordinator.

Keeps the response cache and ranked store from diverging from the database
after writes:

1. ``invalidate`` deletes every key of the touched scopes (alias and day keys
   together) in one MULTI. If the batch fails it falls back to deleting key
   by key, logging and continuing on each failure. A fully stale set heals on
   TTL expiry; a half-invalidated one would mix old and new views.
2. If asked, a rewarm is scheduled through the same read path clients use so
   the next reader finds a warm cache.

Rewarm debounce
---------------
State: the running rewarm task (in-flight flag), a set of pending
tournament keys and the time of the last invalidation.

- An invalidation while a rewarm is running only adds to the pending set.
- The rewarm waits for a quiet period after the last invalidation: short
  when invalidations are sparse, long when they arrive closer together than
  the burst threshold. The wait is capped so a steady stream of submissions
  cannot postpone the rewarm forever.
- After each rewarm a LEADERBOARD_UPDATED event is published.

Nothing here raises into the write path.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from arena.leaderboard import cache_keys
from arena.leaderboard.cache_keys import ALL_SCOPES, CacheScope
from arena.leaderboard.events import (
    LEADERBOARD_UPDATED,
    TOURNAMENT_ROLLED_OVER,
    LeaderboardEventPublisher,
)
from arena.leaderboard.ranked_store import RankedStore
from arena.logging_config import get_logger
from arena.middleware.prometheus import REWARM_DURATION, REWARMS
from arena.utils.async_utils import cancel_task_safe, create_safe_task

logger = get_logger(__name__)

Rewarmer = Callable[[str], Awaitable[None]]

BACKEND_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


@dataclass
class InvalidationResult:
    tournament_key: Optional[str]
    keys: list[str]
    deleted: int = 0
    failed: list[str] = field(default_factory=list)
    rewarm_scheduled: bool = False

    def to_dict(self) -> dict:
        return {
            "tournament_day": self.tournament_key,
            "keys": self.keys,
            "deleted": self.deleted,
            "failed": self.failed,
            "rewarm_scheduled": self.rewarm_scheduled,
        }


class CacheCoordinator:
    """Invalidation, debounced rewarm and full resets."""

    # Upper bound on debounce waiting, in multiples of the burst quiet period
    MAX_WAIT_FACTOR = 3

    def __init__(
        self,
        redis_client: redis.Redis,
        ranked_store: RankedStore,
        publisher: LeaderboardEventPublisher,
        burst_threshold: float = 2.0,
        quiet_period: float = 1.0,
        burst_quiet_period: float = 5.0,
        op_timeout: float = 3.0,
        rewarm_timeout: float = 5.0,
    ):
        self.redis = redis_client
        self.ranked_store = ranked_store
        self.publisher = publisher
        self.burst_threshold = burst_threshold
        self.sparse_quiet_period = quiet_period
        self.burst_quiet_period = burst_quiet_period
        self.op_timeout = op_timeout
        self.rewarm_timeout = rewarm_timeout

        self._rewarmer: Optional[Rewarmer] = None
        self._pending: set[str] = set()
        self._rewarm_task: Optional[asyncio.Task] = None
        self._last_invalidation: Optional[float] = None
        self._current_quiet_period = quiet_period

    def set_rewarmer(self, rewarmer: Rewarmer) -> None:
        """Install the read path used for rewarms (wired after construction)."""
        self._rewarmer = rewarmer

    @property
    def rewarm_in_flight(self) -> bool:
        return self._rewarm_task is not None and not self._rewarm_task.done()

    @property
    def pending(self) -> frozenset[str]:
        return frozenset(self._pending)

    @property
    def current_quiet_period(self) -> float:
        return self._current_quiet_period

    # =========================================================================
    # Invalidation
    # =========================================================================

    async def invalidate(
        self,
        scopes: Iterable[CacheScope],
        tournament_key: Optional[str],
        rewarm: bool = True,
        source: str = "unknown",
    ) -> InvalidationResult:
        keys = cache_keys.keys_for(scopes, tournament_key)
        deleted, failed = await self._delete_keys(keys)
        result = InvalidationResult(
            tournament_key=tournament_key,
            keys=keys,
            deleted=deleted,
            failed=failed,
        )

        logger.info(
            "cache_invalidated",
            tournament_day=tournament_key,
            source=source,
            deleted=deleted,
            failed=len(failed),
        )

        if rewarm and tournament_key:
            self._schedule_rewarm(tournament_key)
            result.rewarm_scheduled = True
        return result

    async def _delete_keys(self, keys: list[str]) -> tuple[int, list[str]]:
        """Delete as one MULTI; on failure fall back to per-key deletes."""
        if not keys:
            return 0, []

        async def batch() -> int:
            async with self.redis.pipeline(transaction=True) as pipe:
                for key in keys:
                    pipe.delete(key)
                results = await pipe.execute()
            return sum(int(r) for r in results)

        try:
            return await asyncio.wait_for(batch(), timeout=self.op_timeout), []
        except BACKEND_ERRORS as e:
            logger.warning(
                "cache_invalidation_batch_failed",
                keys=len(keys),
                error_type=type(e).__name__,
                error=str(e),
            )

        deleted = 0
        failed: list[str] = []
        for key in keys:
            try:
                deleted += await asyncio.wait_for(self.redis.delete(key), timeout=self.op_timeout)
            except BACKEND_ERRORS as e:
                failed.append(key)
                logger.warning("cache_key_delete_failed", key=key, error=str(e))
        return deleted, failed

    # =========================================================================
    # Debounced rewarm
    # =========================================================================

    def _schedule_rewarm(self, tournament_key: str) -> None:
        now = time.monotonic()
        if (
            self._last_invalidation is not None
            and now - self._last_invalidation < self.burst_threshold
        ):
            self._current_quiet_period = self.burst_quiet_period
        else:
            self._current_quiet_period = self.sparse_quiet_period
        self._last_invalidation = now
        self._pending.add(tournament_key)

        if not self.rewarm_in_flight:
            self._rewarm_task = create_safe_task(self._rewarm_loop(), name="cache_rewarm")

    async def _wait_for_quiet(self) -> None:
        started = time.monotonic()
        max_wait = self.burst_quiet_period * self.MAX_WAIT_FACTOR
        while True:
            now = time.monotonic()
            since_last = now - (self._last_invalidation or now)
            remaining = self._current_quiet_period - since_last
            remaining = min(remaining, max_wait - (now - started))
            if remaining <= 0:
                return
            await asyncio.sleep(remaining)

    async def _rewarm_loop(self) -> None:
        while self._pending:
            await self._wait_for_quiet()
            batch = list(self._pending)
            self._pending.clear()
            for tournament_key in batch:
                await self._rewarm_one(tournament_key)

    async def _rewarm_one(self, tournament_key: str) -> bool:
        if self._rewarmer is None:
            return False

        started = time.perf_counter()
        ok = False
        try:
            await asyncio.wait_for(self._rewarmer(tournament_key), timeout=self.rewarm_timeout)
            ok = True
            REWARMS.labels(outcome="ok").inc()
        except asyncio.TimeoutError:
            REWARMS.labels(outcome="timeout").inc()
            logger.warning("cache_rewarm_timeout", tournament_day=tournament_key)
        except Exception as e:
            REWARMS.labels(outcome="failed").inc()
            logger.warning(
                "cache_rewarm_failed",
                tournament_day=tournament_key,
                error_type=type(e).__name__,
                error=str(e),
            )
        finally:
            REWARM_DURATION.observe(time.perf_counter() - started)

        await self.publisher.publish(tournament_key, LEADERBOARD_UPDATED, {"rewarmed": ok})
        return ok

    async def warm(self, tournament_key: str) -> bool:
        """Rewarm now, bypassing the debounce."""
        return await self._rewarm_one(tournament_key)

    async def flush(self, timeout: float = 10.0) -> None:
        """Wait for the pending rewarm, if any."""
        if self._rewarm_task is not None and not self._rewarm_task.done():
            try:
                await asyncio.wait_for(asyncio.shield(self._rewarm_task), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("cache_rewarm_flush_timeout")

    async def close(self) -> None:
        await cancel_task_safe(self._rewarm_task)
        self._rewarm_task = None
        self._pending.clear()

    # =========================================================================
    # Resets
    # =========================================================================

    async def clear_all(self, tournament_key: str) -> InvalidationResult:
        """Operator clear: every scope plus the ranked store, no rewarm."""
        result = await self.invalidate(ALL_SCOPES, tournament_key, rewarm=False, source="admin")
        await self.ranked_store.clear(tournament_key)
        result.keys.extend(self.ranked_store.keys_for(tournament_key))
        logger.warning("cache_cleared_by_operator", tournament_day=tournament_key)
        return result

    async def reset(
        self,
        tournament_keys: Iterable[str],
        rewarm_key: Optional[str] = None,
    ) -> list[InvalidationResult]:
        """Rollover reset for old and new cycle keys, then rewarm ``rewarm_key``."""
        results = []
        for key in dict.fromkeys(tournament_keys):
            results.append(await self.invalidate(ALL_SCOPES, key, rewarm=False, source="lifecycle"))
            await self.ranked_store.clear(key)
            if key != rewarm_key:
                await self.publisher.publish(key, TOURNAMENT_ROLLED_OVER, {"next": rewarm_key})
        if rewarm_key:
            self._schedule_rewarm(rewarm_key)
        return results
