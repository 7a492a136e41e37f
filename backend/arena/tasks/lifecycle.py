"""Tournament lifecycle tasks.

Each run builds its own application context (engine, Redis pool, services)
inside a fresh event loop and releases it before returning.
"""

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from arena.config import get_settings
from arena.context import AppContext
from arena.logging_config import get_logger
from arena.middleware.sentry import capture_lifecycle_error
from arena.tasks.celery_app import celery_app
from arena.tournament.cycle import CycleBoundary, current_cycle_key, utcnow

logger = get_logger(__name__)

T = TypeVar("T")


async def _with_context(work: Callable[[AppContext], Awaitable[T]]) -> T:
    context = AppContext.build(get_settings())
    try:
        return await work(context)
    finally:
        await context.close()


async def run_lifecycle(context: AppContext) -> dict[str, Any]:
    result = await context.lifecycle.ensure_current_tournament()
    return result.to_dict()


async def run_sync_aggregates(context: AppContext) -> dict[str, Any]:
    tournament = await context.lifecycle.sync_aggregates()
    return {
        "tournament_day": tournament.day,
        "player_count": tournament.player_count,
        "total_collected": str(tournament.total_collected),
        "prize_pool": str(tournament.prize_pool),
    }


@celery_app.task(
    bind=True,
    name="arena.tasks.lifecycle.ensure_current_tournament_task",
    max_retries=3,
    default_retry_delay=30,
)
def ensure_current_tournament_task(self, trigger: str = "celery_beat") -> dict:
    """Create or activate the tournament for the current cycle.

    Retried on failure; every failure is reported to Sentry.
    """
    logger.info("lifecycle_task_started", trigger=trigger, attempt=self.request.retries + 1)
    try:
        result = asyncio.run(_with_context(run_lifecycle))
    except Exception as e:
        capture_lifecycle_error(
            e,
            tournament_day=current_cycle_key(utcnow(), CycleBoundary.from_settings(get_settings())).isoformat(),
            trigger=trigger,
            extra={"attempt": self.request.retries + 1},
        )
        logger.error("lifecycle_task_failed", trigger=trigger, error=str(e))
        raise self.retry(exc=e)

    logger.info("lifecycle_task_complete", trigger=trigger, **result)
    return result


@celery_app.task(
    bind=True,
    name="arena.tasks.lifecycle.sync_aggregates_task",
    max_retries=1,
    default_retry_delay=60,
)
def sync_aggregates_task(self) -> dict:
    """Reconcile the active tournament's counters with its entries."""
    try:
        result = asyncio.run(_with_context(run_sync_aggregates))
    except Exception as e:
        logger.error("sync_aggregates_task_failed", error=str(e))
        raise self.retry(exc=e)
    logger.info("sync_aggregates_task_complete", **result)
    return result
