"""Redis connection lifecycle.

One ``RedisClient`` is constructed at process start and handed to every
component that talks to Redis (ranked store, response cache, guards, event
publisher). Nothing imports a module-level client.
"""

import redis.asyncio as redis
from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

from arena.config import Settings
from arena.logging_config import get_logger

logger = get_logger(__name__)


class RedisClient:
    """Owns the Redis connection pool and client."""

    def __init__(self, client: Redis, pool: ConnectionPool | None = None):
        self.client = client
        self._pool = pool

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisClient":
        """Create the pool; no connection is opened until the first command."""
        pool = ConnectionPool.from_url(
            settings.redis_url,
            max_connections=settings.redis_max_connections,
            socket_timeout=settings.redis_socket_timeout,
            socket_connect_timeout=settings.redis_socket_connect_timeout,
            health_check_interval=settings.redis_health_check_interval,
            encoding="utf-8",
            decode_responses=True,
        )
        return cls(redis.Redis(connection_pool=pool), pool)

    async def ping(self) -> bool:
        """Check connectivity without raising."""
        try:
            return bool(await self.client.ping())
        except (RedisError, OSError) as e:
            logger.warning("redis_ping_failed", error=str(e))
            return False

    async def close(self) -> None:
        """Close the client and its pool."""
        await self.client.aclose()
        if self._pool is not None:
            await self._pool.disconnect()
