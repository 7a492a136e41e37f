"""Tests for the sliding-window rate limiter."""

import asyncio

import pytest

from arena.guards.rate_limit import LimiterClass, LimitRule, RateLimiter, rules_from_settings


class TestRateLimiter:
    @pytest.fixture
    def limiter(self, mock_redis):
        rules = {cls: LimitRule(3, 60, f"ratelimit:{cls.value}") for cls in LimiterClass}
        return RateLimiter(mock_redis, rules)

    @pytest.mark.asyncio
    async def test_allows_up_to_limit(self, limiter):
        results = [await limiter.check_limit("u1", LimiterClass.SCORE_SUBMISSION) for _ in range(4)]
        assert [r.allowed for r in results] == [True, True, True, False]
        assert [r.remaining for r in results] == [2, 1, 0, 0]
        assert results[-1].retry_after >= 1

    @pytest.mark.asyncio
    async def test_rejected_attempts_not_recorded(self, limiter, mock_redis):
        for _ in range(6):
            await limiter.check_limit("u1", LimiterClass.SCORE_SUBMISSION)
        assert await mock_redis.zcard("ratelimit:score:u1") == 3

    @pytest.mark.asyncio
    async def test_classes_and_actors_are_independent(self, limiter):
        for _ in range(3):
            await limiter.check_limit("u1", LimiterClass.SCORE_SUBMISSION)
        assert (await limiter.check_limit("u1", LimiterClass.TOURNAMENT_ENTRY)).allowed
        assert (await limiter.check_limit("u2", LimiterClass.SCORE_SUBMISSION)).allowed

    @pytest.mark.asyncio
    async def test_old_requests_slide_out(self, limiter, mock_redis):
        await mock_redis.zadd("ratelimit:score:u1", {"old-1": 1.0, "old-2": 2.0, "old-3": 3.0})
        assert (await limiter.check_limit("u1", LimiterClass.SCORE_SUBMISSION)).allowed

    @pytest.mark.asyncio
    async def test_concurrent_checks_admit_exactly_the_limit(self, limiter, mock_redis):
        results = await asyncio.gather(
            *(limiter.check_limit("u1", LimiterClass.SCORE_SUBMISSION) for _ in range(8))
        )
        assert sum(r.allowed for r in results) == 3
        assert await mock_redis.zcard("ratelimit:score:u1") == 3

    @pytest.mark.asyncio
    async def test_window_runs_as_one_script(self, limiter, mock_redis):
        calls = []
        register = mock_redis.register_script

        def spy(script):
            calls.append(script)
            return register(script)

        mock_redis.register_script = spy
        mock_redis.pipeline = None
        for _ in range(2):
            assert (await limiter.check_limit("u1", LimiterClass.SCORE_SUBMISSION)).allowed
        assert calls == [RateLimiter.SLIDING_WINDOW_SCRIPT]
        assert "ZREMRANGEBYSCORE" in calls[0] and "ZADD" in calls[0]

    @pytest.mark.asyncio
    async def test_reset_tracks_oldest_request(self, limiter, mock_redis):
        await mock_redis.zadd("ratelimit:score:u1", {"recent": 10**10})
        result = await limiter.check_limit("u1", LimiterClass.SCORE_SUBMISSION)
        assert result.reset_at == 10**10 + 60

    @pytest.mark.asyncio
    async def test_fails_open(self, limiter, mock_redis):
        mock_redis.fail = True
        result = await limiter.check_limit("u1", LimiterClass.SCORE_SUBMISSION)
        assert result.allowed
        assert result.remaining == 3

    def test_rules_from_settings(self, test_settings):
        rules = rules_from_settings(test_settings)
        assert rules[LimiterClass.SCORE_SUBMISSION].limit == test_settings.rate_limit_score_per_minute
        assert rules[LimiterClass.VERIFICATION].limit == 3
