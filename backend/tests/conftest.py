"""Shared test fixtures.

Environment variables are set before any ``arena`` import so module-level
settings (``arena.main``, ``arena.tasks``) can be constructed.
"""

import asyncio
import fnmatch
import os
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("APP_DEBUG", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./arena-test.db")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-testing-only-0123456789")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-api-key-0123")
os.environ.setdefault("CRON_SECRET", "test-cron-secret-0123456")
os.environ.setdefault("CACHE_WARM_INTERVAL_SECONDS", "0")

import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from arena.config import Settings
from arena.context import AppContext
from arena.models import Base, Tournament
from arena.services.records import RecordStore
from arena.utils.db import Database
from arena.utils.redis_client import RedisClient


# =============================================================================
# Redis double
# =============================================================================


class MockPipeline:
    """Queues commands and runs them in order on ``execute``."""

    def __init__(self, redis: "MockRedis"):
        self._redis = redis
        self._commands: list[tuple[str, tuple, dict]] = []

    def __getattr__(self, name: str):
        def queue(*args, **kwargs):
            self._commands.append((name, args, kwargs))
            return self

        return queue

    async def execute(self) -> list[Any]:
        self._redis._check()
        commands, self._commands = self._commands, []
        return [await getattr(self._redis, name)(*args, **kwargs) for name, args, kwargs in commands]

    async def __aenter__(self) -> "MockPipeline":
        return self

    async def __aexit__(self, *exc) -> None:
        self._commands = []


class MockPubSub:
    def __init__(self, redis: "MockRedis"):
        self._redis = redis
        self._queue: asyncio.Queue = asyncio.Queue()
        self._channels: set[str] = set()

    async def subscribe(self, *channels: str) -> None:
        self._redis._check()
        for channel in channels:
            self._channels.add(channel)
            self._redis._subscribers.setdefault(channel, []).append(self._queue)

    async def get_message(self, ignore_subscribe_messages: bool = False, timeout: float = 0.0):
        self._redis._check()
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    async def unsubscribe(self, *channels: str) -> None:
        for channel in channels or tuple(self._channels):
            queues = self._redis._subscribers.get(channel, [])
            if self._queue in queues:
                queues.remove(self._queue)
            self._channels.discard(channel)

    async def aclose(self) -> None:
        await self.unsubscribe()


class MockRedis:
    """In-memory stand-in for ``redis.asyncio.Redis`` (decode_responses=True).

    Set ``fail = True`` to make every command raise ConnectionError.
    """

    def __init__(self):
        self._data: dict[str, Any] = {}
        self._sorted_sets: dict[str, dict[str, float]] = {}
        self._hashes: dict[str, dict[str, str]] = {}
        self._subscribers: dict[str, list[asyncio.Queue]] = {}
        self.expirations: dict[str, int] = {}
        self.published: list[tuple[str, str]] = []
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("redis unavailable")

    def _exists(self, key: str) -> bool:
        return key in self._data or key in self._sorted_sets or key in self._hashes

    # Connection -------------------------------------------------------------

    async def ping(self) -> bool:
        self._check()
        return True

    async def aclose(self) -> None:
        pass

    def pipeline(self, transaction: bool = True) -> MockPipeline:
        return MockPipeline(self)

    def pubsub(self) -> MockPubSub:
        return MockPubSub(self)

    # Keys -------------------------------------------------------------------

    async def set(self, key, value, nx=False, ex=None, px=None):
        self._check()
        if nx and self._exists(key):
            return None
        self._data[key] = str(value)
        if ex is not None:
            self.expirations[key] = int(ex)
        elif px is not None:
            self.expirations[key] = int(px) // 1000
        return True

    async def get(self, key):
        self._check()
        return self._data.get(key)

    async def delete(self, *keys):
        self._check()
        count = 0
        for key in keys:
            found = False
            for store in (self._data, self._sorted_sets, self._hashes):
                if key in store:
                    del store[key]
                    found = True
            count += int(found)
        return count

    async def exists(self, *keys):
        self._check()
        return sum(1 for key in keys if self._exists(key))

    async def expire(self, key, seconds):
        self._check()
        if not self._exists(key):
            return False
        self.expirations[key] = int(seconds)
        return True

    def keys_matching(self, pattern: str) -> list[str]:
        everything = set(self._data) | set(self._sorted_sets) | set(self._hashes)
        return sorted(k for k in everything if fnmatch.fnmatch(k, pattern))

    # Hashes -----------------------------------------------------------------

    async def hset(self, key, field=None, value=None, mapping=None):
        self._check()
        data = self._hashes.setdefault(key, {})
        added = 0
        if field is not None:
            added += int(field not in data)
            data[field] = value
        for f, v in (mapping or {}).items():
            added += int(f not in data)
            data[f] = v
        return added

    async def hget(self, key, field):
        self._check()
        return self._hashes.get(key, {}).get(field)

    async def hmget(self, key, fields):
        self._check()
        data = self._hashes.get(key, {})
        return [data.get(f) for f in fields]

    async def hdel(self, key, *fields):
        self._check()
        data = self._hashes.get(key, {})
        return sum(1 for f in fields if data.pop(f, None) is not None)

    # Sorted sets ------------------------------------------------------------

    def _ordered(self, key, reverse=False):
        members = self._sorted_sets.get(key, {})
        return sorted(members.items(), key=lambda x: (x[1], x[0]), reverse=reverse)

    @staticmethod
    def _slice(items, start, end):
        if end == -1:
            end = len(items)
        return items[start:end + 1]

    async def zadd(self, key, mapping):
        self._check()
        data = self._sorted_sets.setdefault(key, {})
        added = sum(1 for m in mapping if m not in data)
        data.update({m: float(s) for m, s in mapping.items()})
        return added

    async def zrem(self, key, *members):
        self._check()
        data = self._sorted_sets.get(key, {})
        return sum(1 for m in members if data.pop(m, None) is not None)

    async def zcard(self, key):
        self._check()
        return len(self._sorted_sets.get(key, {}))

    async def zremrangebyscore(self, key, min_score, max_score):
        self._check()
        data = self._sorted_sets.get(key, {})
        doomed = [m for m, s in data.items() if float(min_score) <= s <= float(max_score)]
        for m in doomed:
            del data[m]
        return len(doomed)

    async def zrange(self, key, start, end, withscores=False):
        self._check()
        result = self._slice(self._ordered(key), start, end)
        return result if withscores else [m for m, _ in result]

    async def zrevrange(self, key, start, end, withscores=False):
        self._check()
        result = self._slice(self._ordered(key, reverse=True), start, end)
        return result if withscores else [m for m, _ in result]

    async def zrevrank(self, key, member):
        self._check()
        for idx, (m, _) in enumerate(self._ordered(key, reverse=True)):
            if m == member:
                return idx
        return None

    # Pub/sub ----------------------------------------------------------------

    async def publish(self, channel, message):
        self._check()
        self.published.append((channel, message))
        queues = self._subscribers.get(channel, [])
        for queue in queues:
            queue.put_nowait({"type": "message", "channel": channel, "data": message})
        return len(queues)

    # Scripts ----------------------------------------------------------------

    def register_script(self, script: str):
        """The two scripts in use: the sliding window and the lock release."""
        if "ZREMRANGEBYSCORE" in script:
            return self._sliding_window

        async def run(keys=(), args=()):
            self._check()
            if self._data.get(keys[0]) == args[0]:
                return await self.delete(keys[0])
            return 0

        return run

    async def _sliding_window(self, keys=(), args=()):
        self._check()
        key = keys[0]
        now, window_start, limit, window, member = args
        await self.zremrangebyscore(key, 0, window_start)
        count = await self.zcard(key)
        oldest = await self.zrange(key, 0, 0, withscores=True)
        if count >= int(limit):
            return [0, count, str(oldest[0][1]) if oldest else ""]
        await self.zadd(key, {member: now})
        await self.expire(key, window)
        oldest = oldest or [(member, now)]
        return [1, count, str(oldest[0][1])]


# =============================================================================
# Settings / backends
# =============================================================================


def make_test_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "app_env": "test",
        "app_debug": False,
        "log_level": "WARNING",
        "database_url": "sqlite+aiosqlite:///./arena-test.db",
        "redis_url": "redis://localhost:6379/15",
        "jwt_secret_key": "test-secret-key-for-testing-only-0123456789",
        "admin_api_key": "test-admin-api-key-0123",
        "cron_secret": "test-cron-secret-0123456",
        "cache_warm_interval_seconds": 0,
        "rewarm_burst_threshold_seconds": 0.05,
        "rewarm_quiet_period_seconds": 0.01,
        "rewarm_burst_quiet_period_seconds": 0.05,
        "lifecycle_lock_wait_ms": 2000,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def test_settings() -> Settings:
    return make_test_settings()


@pytest.fixture
def mock_redis() -> MockRedis:
    return MockRedis()


@pytest_asyncio.fixture
async def database(tmp_path):
    """File-backed SQLite so every session sees the same data."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'arena.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    db = Database(engine)
    yield db
    await db.close()


@pytest_asyncio.fixture
async def context(test_settings, database, mock_redis):
    ctx = AppContext.build(test_settings, database=database, redis=RedisClient(mock_redis))
    yield ctx
    await ctx.close()


# =============================================================================
# Data helpers
# =============================================================================


async def create_active_tournament(database: Database, now: datetime | None = None) -> Tournament:
    """An active tournament whose window comfortably contains ``now``."""
    now = now or datetime.now(timezone.utc)
    end = (now + timedelta(days=6)).replace(microsecond=0)
    async with database.session() as session:
        tournament = Tournament(
            cycle_key=end.date(),
            start_time=end - timedelta(days=7),
            end_time=end,
            is_active=True,
        )
        session.add(tournament)
        await session.flush()
    return tournament


async def create_entry(
    database: Database,
    tournament: Tournament,
    user_id: str,
    wallet: str | None = None,
    display_name: str | None = None,
    payment_kind: str = "standard",
    amount: Decimal = Decimal("1.0"),
):
    wallet = wallet or f"wallet-{user_id}"
    async with database.session() as session:
        records = RecordStore(session)
        await records.ensure_user(user_id, wallet, display_name)
        return await records.upsert_entry_payment(
            user_id=user_id,
            tournament_id=tournament.id,
            wallet=wallet,
            display_name=display_name or user_id,
            payment_kind=payment_kind,
            amount=amount,
        )


@pytest_asyncio.fixture
async def tournament(database) -> Tournament:
    return await create_active_tournament(database)


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if await predicate():
            return True
        await asyncio.sleep(interval)
    return False


@pytest.fixture
def make_entry(database):
    async def factory(tournament: Tournament, user_id: str, **kwargs: Any):
        return await create_entry(database, tournament, user_id, **kwargs)

    return factory


@pytest.fixture
def eventually():
    return wait_until
