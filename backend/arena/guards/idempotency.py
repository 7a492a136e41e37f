"""Idempotency markers for the write path.

``SET key 1 NX EX ttl``: the first caller wins, later callers within the TTL
see a duplicate. When Redis is unreachable the guard fails open and logs,
since it mitigates abuse rather than protecting correctness.
"""

from __future__ import annotations

import asyncio
import math
import time
from decimal import Decimal

from redis.asyncio import Redis
from redis.exceptions import RedisError

from arena.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_TTL_SECONDS = 300
KEY_PREFIX = "idempotency"

BACKEND_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


def score_submission_key(
    actor_id: str,
    tournament_day: str,
    score: int,
    game_duration_ms: int,
    session_id: str | None = None,
    now: float | None = None,
) -> str:
    """Key for one score submission.

    Without a client session id the submission is bucketed to the second.
    """
    if session_id:
        discriminator = session_id
    else:
        discriminator = str(math.floor(now if now is not None else time.time()))
    return (
        f"{KEY_PREFIX}:score:{actor_id}:{tournament_day}:"
        f"{score}:{game_duration_ms}:{discriminator}"
    )


def payment_key(
    actor_id: str,
    tournament_day: str,
    amount: Decimal | float,
    payment_reference: str,
) -> str:
    return f"{KEY_PREFIX}:payment:{actor_id}:{tournament_day}:{amount}:{payment_reference}"


def payout_key(actor_id: str, tournament_day: str, kind: str) -> str:
    return f"{KEY_PREFIX}:payout:{actor_id}:{tournament_day}:{kind}"


class IdempotencyGuard:
    """Atomic check-and-set markers with bounded latency."""

    def __init__(
        self,
        redis_client: Redis,
        default_ttl_seconds: int = DEFAULT_TTL_SECONDS,
        op_timeout: float = 3.0,
    ):
        self.redis = redis_client
        self.default_ttl_seconds = default_ttl_seconds
        self.op_timeout = op_timeout

    async def acquire_lock(self, key: str, ttl_seconds: int | None = None) -> bool:
        """Return True if the caller owns the key, False on duplicate.

        Fails open (True) if the backend errors or times out.
        """
        ttl = ttl_seconds or self.default_ttl_seconds
        try:
            result = await asyncio.wait_for(
                self.redis.set(key, "1", nx=True, ex=ttl),
                timeout=self.op_timeout,
            )
        except BACKEND_ERRORS as e:
            logger.warning(
                "idempotency_unavailable_fail_open",
                key=key,
                error_type=type(e).__name__,
                error=str(e),
            )
            return True

        if not result:
            logger.info("idempotency_duplicate", key=key)
            return False
        return True

    async def release_lock(self, key: str) -> None:
        """Drop a marker so a failed operation can be retried."""
        try:
            await asyncio.wait_for(self.redis.delete(key), timeout=self.op_timeout)
        except BACKEND_ERRORS as e:
            logger.warning("idempotency_release_failed", key=key, error=str(e))
