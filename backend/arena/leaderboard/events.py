"""Leaderboard change events over Redis pub/sub.

The coordinator publishes after each rewarm; stream connections subscribe
per tournament day. Publishing is fire-and-forget and fails soft.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, AsyncIterator, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from arena.logging_config import get_logger
from arena.utils.json_utils import json_dumps, json_loads

logger = get_logger(__name__)

LEADERBOARD_UPDATED = "LEADERBOARD_UPDATED"
TOURNAMENT_ROLLED_OVER = "TOURNAMENT_ROLLED_OVER"


def channel_for(tournament_key: str) -> str:
    return f"leaderboard:events:{tournament_key}"


class LeaderboardEventPublisher:
    """Publish and subscribe to per-day leaderboard channels."""

    def __init__(self, redis_client: redis.Redis, op_timeout: float = 3.0):
        self.redis = redis_client
        self.op_timeout = op_timeout

    async def publish(
        self,
        tournament_key: str,
        event: str,
        data: Optional[dict[str, Any]] = None,
    ) -> int:
        """Returns the number of receivers (0 on failure)."""
        message = json_dumps({
            "type": event,
            "tournament_day": tournament_key,
            "data": data or {},
            "timestamp": time.time(),
        })
        try:
            return await asyncio.wait_for(
                self.redis.publish(channel_for(tournament_key), message),
                timeout=self.op_timeout,
            )
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            logger.warning(
                "leaderboard_event_publish_failed",
                tournament_day=tournament_key,
                event=event,
                error=str(e),
            )
            return 0

    async def subscribe(
        self,
        tournament_key: str,
        poll_timeout: float = 1.0,
    ) -> AsyncIterator[Optional[dict[str, Any]]]:
        """
        Yield decoded events for one day.

        Yields None every ``poll_timeout`` seconds without traffic so the
        consumer can interleave heartbeats. Backend errors propagate to the
        consumer, which decides on reconnect.
        """
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(channel_for(tournament_key))
        try:
            while True:
                message = await pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=poll_timeout,
                )
                if message is None or message.get("type") != "message":
                    yield None
                    continue
                try:
                    yield json_loads(message["data"])
                except ValueError:
                    logger.warning("leaderboard_event_undecodable", tournament_day=tournament_key)
        finally:
            try:
                await pubsub.unsubscribe(channel_for(tournament_key))
                await pubsub.aclose()
            except (RedisError, OSError) as e:
                logger.debug("leaderboard_event_unsubscribe_failed", error=str(e))
