"""Sliding-window rate limiter.

Each (actor, limiter class) owns a sorted set of request timestamps.
A check trims entries older than the window, counts what is left and, if
under the limit, records the current request, all inside one Lua script.
Rejected attempts are not recorded. Backend failures fail open.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from uuid import uuid4

from redis.asyncio import Redis
from redis.exceptions import RedisError

from arena.config import Settings
from arena.logging_config import get_logger

logger = get_logger(__name__)


class LimiterClass(str, Enum):
    SCORE_SUBMISSION = "score"
    TOURNAMENT_ENTRY = "entry"
    VERIFICATION = "verify"
    GENERAL_API = "api"


@dataclass(frozen=True)
class LimitRule:
    limit: int
    window_seconds: int
    key_prefix: str


DEFAULT_RULES: dict[LimiterClass, LimitRule] = {
    LimiterClass.SCORE_SUBMISSION: LimitRule(10, 60, "ratelimit:score"),
    LimiterClass.TOURNAMENT_ENTRY: LimitRule(5, 60, "ratelimit:entry"),
    LimiterClass.VERIFICATION: LimitRule(3, 60, "ratelimit:verify"),
    LimiterClass.GENERAL_API: LimitRule(30, 60, "ratelimit:api"),
}


def rules_from_settings(settings: Settings) -> dict[LimiterClass, LimitRule]:
    window = settings.rate_limit_window_seconds
    return {
        LimiterClass.SCORE_SUBMISSION: LimitRule(
            settings.rate_limit_score_per_minute, window, "ratelimit:score"
        ),
        LimiterClass.TOURNAMENT_ENTRY: LimitRule(
            settings.rate_limit_entry_per_minute, window, "ratelimit:entry"
        ),
        LimiterClass.VERIFICATION: LimitRule(
            settings.rate_limit_verification_per_minute, window, "ratelimit:verify"
        ),
        LimiterClass.GENERAL_API: LimitRule(
            settings.rate_limit_api_per_minute, window, "ratelimit:api"
        ),
    }


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float  # epoch seconds
    limit: int

    @property
    def retry_after(self) -> int:
        return max(1, int(self.reset_at - time.time() + 0.999))


class RateLimiter:
    """Per-actor sliding windows in Redis sorted sets."""

    # Trim, count and conditional add as one atomic step.
    # Returns {allowed, count before this request, oldest score or ""}.
    SLIDING_WINDOW_SCRIPT = """
    local key = KEYS[1]
    local now = tonumber(ARGV[1])
    local limit = tonumber(ARGV[3])
    redis.call("ZREMRANGEBYSCORE", key, 0, ARGV[2])
    local count = redis.call("ZCARD", key)
    local oldest = redis.call("ZRANGE", key, 0, 0, "WITHSCORES")
    local allowed = 0
    if count < limit then
        redis.call("ZADD", key, now, ARGV[5])
        redis.call("EXPIRE", key, ARGV[4])
        allowed = 1
        if not oldest[2] then
            oldest = {ARGV[5], ARGV[1]}
        end
    end
    return {allowed, count, oldest[2] or ""}
    """

    def __init__(
        self,
        redis_client: Redis,
        rules: dict[LimiterClass, LimitRule] | None = None,
        op_timeout: float = 3.0,
    ):
        self.redis = redis_client
        self.rules = rules or DEFAULT_RULES
        self.op_timeout = op_timeout
        self._script = None

    async def check_limit(
        self,
        actor_id: str,
        limiter_class: LimiterClass,
    ) -> RateLimitResult:
        rule = self.rules[limiter_class]
        key = f"{rule.key_prefix}:{actor_id}"
        now = time.time()
        window_start = now - rule.window_seconds

        try:
            return await asyncio.wait_for(
                self._check(key, rule, now, window_start),
                timeout=self.op_timeout,
            )
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            logger.warning(
                "rate_limit_unavailable_fail_open",
                limiter=limiter_class.value,
                actor_id=actor_id,
                error=str(e),
            )
            return RateLimitResult(
                allowed=True,
                remaining=rule.limit,
                reset_at=now + rule.window_seconds,
                limit=rule.limit,
            )

    async def _check(
        self,
        key: str,
        rule: LimitRule,
        now: float,
        window_start: float,
    ) -> RateLimitResult:
        if self._script is None:
            self._script = self.redis.register_script(self.SLIDING_WINDOW_SCRIPT)
        allowed, count, oldest = await self._script(
            keys=[key],
            args=[now, window_start, rule.limit, rule.window_seconds, f"{now}:{uuid4().hex[:8]}"],
        )
        count = int(count)
        reset_at = (float(oldest) if oldest else now) + rule.window_seconds

        if not int(allowed):
            return RateLimitResult(
                allowed=False,
                remaining=0,
                reset_at=reset_at,
                limit=rule.limit,
            )

        return RateLimitResult(
            allowed=True,
            remaining=rule.limit - count - 1,
            reset_at=reset_at,
            limit=rule.limit,
        )
