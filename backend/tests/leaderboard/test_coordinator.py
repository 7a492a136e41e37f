"""Tests for cache invalidation and debounced rewarm."""

import asyncio
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from arena.leaderboard.cache_keys import ALL_SCOPES, CacheScope
from arena.leaderboard.coordinator import CacheCoordinator
from arena.leaderboard.events import (
    LEADERBOARD_UPDATED,
    TOURNAMENT_ROLLED_OVER,
    LeaderboardEventPublisher,
    channel_for,
)
from arena.leaderboard.ranked_store import RankedParticipant, RankedStore
from arena.tournament.cycle import CycleBoundary, cycle_window, parse_cycle_key
from arena.utils.json_utils import json_loads

DAY = "2026-10-18"
NEXT_DAY = "2026-10-25"


class FailingPipeline:
    """Pipeline whose MULTI always fails."""

    def __getattr__(self, name):
        return lambda *args, **kwargs: self

    async def execute(self):
        raise RedisConnectionError("multi failed")

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return None


@pytest.fixture
def ranked_store(mock_redis):
    return RankedStore(mock_redis, CycleBoundary())


@pytest.fixture
def rewarmer():
    return AsyncMock()


@pytest.fixture
def coordinator(mock_redis, ranked_store, rewarmer):
    coord = CacheCoordinator(
        mock_redis,
        ranked_store,
        LeaderboardEventPublisher(mock_redis),
        burst_threshold=0.05,
        quiet_period=0.01,
        burst_quiet_period=0.05,
        rewarm_timeout=1.0,
    )
    coord.set_rewarmer(rewarmer)
    return coord


async def _fill(mock_redis, day):
    for scope in ALL_SCOPES:
        await mock_redis.set(f"cache:{scope.value}:current", "x")
        await mock_redis.set(f"cache:{scope.value}:{day}", "x")


def _events(mock_redis, day):
    return [json_loads(message) for channel, message in mock_redis.published if channel == channel_for(day)]


class TestInvalidate:
    @pytest.mark.asyncio
    async def test_deletes_alias_and_day_keys(self, coordinator, mock_redis):
        await _fill(mock_redis, DAY)
        result = await coordinator.invalidate([CacheScope.LEADERBOARD, CacheScope.STATS], DAY, rewarm=False)
        assert result.deleted == 4
        assert result.failed == []
        assert mock_redis.keys_matching("cache:*") == ["cache:prizes:2026-10-18", "cache:prizes:current"]

    @pytest.mark.asyncio
    async def test_falls_back_to_per_key_delete(self, coordinator, mock_redis):
        await _fill(mock_redis, DAY)
        mock_redis.pipeline = lambda transaction=True: FailingPipeline()
        result = await coordinator.invalidate(ALL_SCOPES, DAY, rewarm=False)
        assert result.deleted == 6
        assert result.failed == []
        assert mock_redis.keys_matching("cache:*") == []

    @pytest.mark.asyncio
    async def test_never_raises_when_backend_is_down(self, coordinator, mock_redis):
        mock_redis.fail = True
        result = await coordinator.invalidate(ALL_SCOPES, DAY, rewarm=False)
        assert result.deleted == 0
        assert len(result.failed) == 6

    @pytest.mark.asyncio
    async def test_no_rewarm_without_day(self, coordinator, rewarmer):
        result = await coordinator.invalidate(ALL_SCOPES, None)
        assert result.rewarm_scheduled is False
        assert not coordinator.rewarm_in_flight


class TestDebouncedRewarm:
    @pytest.mark.asyncio
    async def test_burst_coalesces_into_one_rewarm(self, coordinator, rewarmer, mock_redis):
        for _ in range(5):
            await coordinator.invalidate([CacheScope.LEADERBOARD], DAY)
        assert coordinator.rewarm_in_flight
        assert coordinator.pending == frozenset({DAY})

        await coordinator.flush(timeout=2.0)

        rewarmer.assert_awaited_once_with(DAY)
        assert not coordinator.rewarm_in_flight
        events = _events(mock_redis, DAY)
        assert [e["type"] for e in events] == [LEADERBOARD_UPDATED]
        assert events[0]["data"] == {"rewarmed": True}

    @pytest.mark.asyncio
    async def test_burst_switches_quiet_period(self, coordinator):
        await coordinator.invalidate([CacheScope.STATS], DAY)
        assert coordinator.current_quiet_period == 0.01
        await coordinator.invalidate([CacheScope.STATS], DAY)
        assert coordinator.current_quiet_period == 0.05
        await coordinator.flush(timeout=2.0)

    @pytest.mark.asyncio
    async def test_steady_stream_cannot_postpone_forever(self, coordinator, rewarmer):
        async def keep_invalidating():
            for _ in range(40):
                await coordinator.invalidate([CacheScope.LEADERBOARD], DAY)
                await asyncio.sleep(0.01)

        await keep_invalidating()
        # 40 invalidations over ~0.4s; the cap is 3 x 0.05s
        assert rewarmer.await_count >= 2
        await coordinator.flush(timeout=2.0)

    @pytest.mark.asyncio
    async def test_each_pending_day_is_rewarmed(self, coordinator, rewarmer):
        await coordinator.invalidate([CacheScope.LEADERBOARD], DAY)
        await coordinator.invalidate([CacheScope.LEADERBOARD], NEXT_DAY)
        await coordinator.flush(timeout=2.0)
        assert {call.args[0] for call in rewarmer.await_args_list} == {DAY, NEXT_DAY}

    @pytest.mark.asyncio
    async def test_failed_rewarm_still_publishes(self, coordinator, rewarmer, mock_redis):
        rewarmer.side_effect = RuntimeError("db down")
        assert await coordinator.warm(DAY) is False
        assert _events(mock_redis, DAY)[0]["data"] == {"rewarmed": False}

    @pytest.mark.asyncio
    async def test_close_cancels_pending_rewarm(self, coordinator, rewarmer):
        coordinator.burst_quiet_period = 10.0
        coordinator.sparse_quiet_period = 10.0
        await coordinator.invalidate([CacheScope.LEADERBOARD], DAY)
        await coordinator.close()
        assert not coordinator.rewarm_in_flight
        assert coordinator.pending == frozenset()
        rewarmer.assert_not_awaited()


class TestResets:
    @pytest.mark.asyncio
    async def test_clear_all_drops_ranked_store_without_rewarm(self, coordinator, ranked_store, mock_redis, rewarmer):
        start, _ = cycle_window(parse_cycle_key(DAY), CycleBoundary())
        await ranked_store.bulk_load(DAY, [RankedParticipant("a", 10, start)])
        await _fill(mock_redis, DAY)

        result = await coordinator.clear_all(DAY)

        assert mock_redis.keys_matching("cache:*") == []
        assert mock_redis.keys_matching("leaderboard:*") == []
        assert "leaderboard:2026-10-18:snapshot" in result.keys
        assert not coordinator.rewarm_in_flight
        rewarmer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reset_announces_rollover_and_rewarms_new_day(self, coordinator, mock_redis, rewarmer):
        await _fill(mock_redis, DAY)
        results = await coordinator.reset([DAY, NEXT_DAY, DAY], rewarm_key=NEXT_DAY)
        await coordinator.flush(timeout=2.0)

        assert [r.tournament_key for r in results] == [DAY, NEXT_DAY]
        assert mock_redis.keys_matching("cache:*") == []
        rolled = _events(mock_redis, DAY)
        assert rolled[0]["type"] == TOURNAMENT_ROLLED_OVER
        assert rolled[0]["data"] == {"next": NEXT_DAY}
        rewarmer.assert_awaited_once_with(NEXT_DAY)
