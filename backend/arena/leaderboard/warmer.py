"""Background cache warm loop."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from arena.leaderboard.coordinator import CacheCoordinator
from arena.logging_config import get_logger
from arena.utils.async_utils import cancel_task_safe, create_safe_task

logger = get_logger(__name__)

ActiveKeyResolver = Callable[[], Awaitable[Optional[str]]]


class CacheWarmer:
    """Periodically rewarms the active tournament's caches.

    ``resolve_active`` returns the active cycle key (or None when there is
    no tournament); the loop skips that round and tries again later.
    """

    def __init__(
        self,
        coordinator: CacheCoordinator,
        resolve_active: ActiveKeyResolver,
        interval_seconds: float = 120.0,
    ):
        self.coordinator = coordinator
        self.resolve_active = resolve_active
        self.interval_seconds = interval_seconds
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running or self.interval_seconds <= 0:
            return
        self._running = True
        self._task = create_safe_task(self._warm_loop(), name="cache_warmer")
        logger.info("cache_warmer_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        self._running = False
        await cancel_task_safe(self._task)
        self._task = None
        logger.info("cache_warmer_stopped")

    async def warm_once(self) -> bool:
        tournament_key = await self.resolve_active()
        if tournament_key is None:
            logger.debug("cache_warmer_no_active_tournament")
            return False
        return await self.coordinator.warm(tournament_key)

    async def _warm_loop(self) -> None:
        while self._running:
            try:
                await self.warm_once()
                await asyncio.sleep(self.interval_seconds)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("cache_warmer_error", error_type=type(e).__name__, error=str(e))
                await asyncio.sleep(self.interval_seconds)
