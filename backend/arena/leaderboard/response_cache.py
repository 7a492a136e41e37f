"""Short-TTL cache of fully formed API responses.

Payloads are stored in an envelope carrying their own expiry:

    {"payload": ..., "cached_at": <epoch>, "expires_at": <epoch>}

Plain keys use ``SET EX``. Paged responses live as fields of one hash per
key so a single DEL drops every page; since a hash has one TTL, the
envelope expiry is checked on read and an expired field is a miss. Either
way nothing is served past its TTL.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from arena.logging_config import get_logger
from arena.middleware.prometheus import CACHE_HITS, CACHE_MISSES
from arena.utils.json_utils import json_dumps, json_loads

logger = get_logger(__name__)


class ResponseCache:
    """get / set / delete over Redis with bounded, soft-failing calls."""

    def __init__(self, redis_client: redis.Redis, op_timeout: float = 3.0):
        self.redis = redis_client
        self.op_timeout = op_timeout

    @staticmethod
    def _cache_type(key: str) -> str:
        parts = key.split(":")
        return parts[1] if len(parts) > 1 else key

    async def get(self, key: str, field: Optional[str] = None) -> Optional[Any]:
        """Cached payload, or None on miss / expiry / backend failure."""
        try:
            if field is None:
                raw = await asyncio.wait_for(self.redis.get(key), timeout=self.op_timeout)
            else:
                raw = await asyncio.wait_for(self.redis.hget(key, field), timeout=self.op_timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            logger.warning("response_cache_get_failed", key=key, error=str(e))
            CACHE_MISSES.labels(cache_type=self._cache_type(key)).inc()
            return None

        if raw is None:
            CACHE_MISSES.labels(cache_type=self._cache_type(key)).inc()
            return None

        try:
            envelope = json_loads(raw)
        except ValueError:
            logger.warning("response_cache_corrupt_entry", key=key, field=field)
            CACHE_MISSES.labels(cache_type=self._cache_type(key)).inc()
            return None

        if envelope.get("expires_at", 0) <= time.time():
            CACHE_MISSES.labels(cache_type=self._cache_type(key)).inc()
            return None

        CACHE_HITS.labels(cache_type=self._cache_type(key)).inc()
        return envelope.get("payload")

    async def set(
        self,
        key: str,
        payload: Any,
        ttl_seconds: int,
        field: Optional[str] = None,
    ) -> bool:
        now = time.time()
        raw = json_dumps({
            "payload": payload,
            "cached_at": now,
            "expires_at": now + ttl_seconds,
        })
        try:
            if field is None:
                await asyncio.wait_for(
                    self.redis.set(key, raw, ex=ttl_seconds),
                    timeout=self.op_timeout,
                )
            else:

                async def write_field() -> None:
                    async with self.redis.pipeline(transaction=True) as pipe:
                        pipe.hset(key, field, raw)
                        pipe.expire(key, ttl_seconds)
                        await pipe.execute()

                await asyncio.wait_for(write_field(), timeout=self.op_timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            logger.warning("response_cache_set_failed", key=key, error=str(e))
            return False
        return True

    async def delete(self, *keys: str) -> int:
        """Delete keys; returns how many existed (0 on failure)."""
        if not keys:
            return 0
        try:
            return await asyncio.wait_for(self.redis.delete(*keys), timeout=self.op_timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            logger.warning("response_cache_delete_failed", keys=list(keys), error=str(e))
            return 0
