"""
Redis-based distributed lock.

Used to serialise the tournament lifecycle trigger across instances. The
lock is an optimisation: correctness of rollover rests on the unique
``cycle_key`` constraint, so callers treat acquisition failure as
"proceed without the lock".

Redis commands:
- SET NX PX: atomic acquire with auto-expiry
- GET + DEL (Lua): owner-checked release
"""

import asyncio
import hashlib
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncGenerator, Optional
from uuid import uuid4

import redis.asyncio as redis


@dataclass
class LockInfo:
    """Lock metadata."""

    lock_key: str
    owner_id: str
    acquired_at: float
    expires_at: float


class DistributedLockError(Exception):
    """Base lock error."""


class LockAcquisitionError(DistributedLockError):
    """Failed to acquire lock within timeout."""


class DistributedLockManager:
    """Owner-token locks on top of SET NX PX."""

    KEY_PREFIX = "lock"

    # Delete only if the caller still owns the lock
    RELEASE_LOCK_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        default_lock_timeout_ms: int = 10000,
        default_acquire_timeout_ms: int = 5000,
        retry_interval_ms: int = 50,
    ):
        self.redis = redis_client
        self.default_lock_timeout_ms = default_lock_timeout_ms
        self.default_acquire_timeout_ms = default_acquire_timeout_ms
        self.retry_interval_ms = retry_interval_ms
        self._instance_id = str(uuid4())
        self._release_script: Optional[redis.client.Script] = None

    def _make_lock_key(self, name: str) -> str:
        return f"{self.KEY_PREFIX}:{name}"

    def _make_owner_token(self) -> str:
        """Instance id + timestamp + random, hashed."""
        raw = f"{self._instance_id}:{time.time_ns()}:{uuid4().hex[:8]}"
        return hashlib.sha256(raw.encode()).hexdigest()[:32]

    async def acquire(
        self,
        name: str,
        lock_timeout_ms: Optional[int] = None,
        acquire_timeout_ms: Optional[int] = None,
    ) -> LockInfo:
        """
        Acquire the named lock, retrying at a fixed interval.

        Raises:
            LockAcquisitionError: If the lock is still held after acquire_timeout_ms
            redis.RedisError: If the backend is unreachable
        """
        lock_timeout = lock_timeout_ms or self.default_lock_timeout_ms
        acquire_timeout = acquire_timeout_ms or self.default_acquire_timeout_ms
        lock_key = self._make_lock_key(name)
        owner_token = self._make_owner_token()
        start = time.monotonic()

        while True:
            acquired = await self.redis.set(
                lock_key,
                owner_token,
                nx=True,
                px=lock_timeout,
            )
            if acquired:
                now = time.time()
                return LockInfo(
                    lock_key=lock_key,
                    owner_id=owner_token,
                    acquired_at=now,
                    expires_at=now + lock_timeout / 1000,
                )

            elapsed_ms = (time.monotonic() - start) * 1000
            if elapsed_ms >= acquire_timeout:
                raise LockAcquisitionError(
                    f"Failed to acquire lock {lock_key} within {acquire_timeout}ms"
                )
            await asyncio.sleep(self.retry_interval_ms / 1000)

    async def release(self, lock_info: LockInfo) -> bool:
        """Release the lock if still owned. Returns False if it expired or was taken."""
        if self._release_script is None:
            self._release_script = self.redis.register_script(self.RELEASE_LOCK_SCRIPT)
        result = await self._release_script(
            keys=[lock_info.lock_key],
            args=[lock_info.owner_id],
        )
        return result == 1

    @asynccontextmanager
    async def lock(
        self,
        name: str,
        lock_timeout_ms: Optional[int] = None,
        acquire_timeout_ms: Optional[int] = None,
    ) -> AsyncGenerator[LockInfo, None]:
        """Acquire on enter, release on exit (also on error)."""
        lock_info = await self.acquire(name, lock_timeout_ms, acquire_timeout_ms)
        try:
            yield lock_info
        finally:
            await self.release(lock_info)
