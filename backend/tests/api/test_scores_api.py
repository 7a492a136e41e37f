"""Tests for the score submission endpoint."""

import pytest

from arena.guards.rate_limit import LimiterClass, LimitRule

SCORES_URL = "/api/v1/scores"


class TestSubmitScoreEndpoint:
    @pytest.mark.asyncio
    async def test_requires_token(self, test_client):
        response = await test_client.post(SCORES_URL, json={"score": 10, "game_duration_ms": 5000})
        assert response.status_code == 401
        body = response.json()
        assert body["error"]["code"] == "AUTH_REQUIRED"
        assert body["traceId"]

    @pytest.mark.asyncio
    async def test_rejects_garbage_token(self, test_client):
        response = await test_client.post(
            SCORES_URL,
            json={"score": 10, "game_duration_ms": 5000},
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "TOKEN_INVALID"

    @pytest.mark.asyncio
    async def test_accepts_score(self, test_client, auth_headers, tournament, make_entry):
        await make_entry(tournament, "alice")

        response = await test_client.post(
            SCORES_URL,
            json={"score": 80, "game_duration_ms": 60000, "session_id": "g1"},
            headers=auth_headers("alice"),
        )

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["rank"] == 1
        assert body["is_new_high_score"] is True
        assert body["current_highest_score"] == 80
        assert body["tournament_day"] == tournament.day
        assert response.headers["X-Request-ID"]

    @pytest.mark.asyncio
    async def test_duplicate_is_409(self, test_client, auth_headers, tournament, make_entry):
        await make_entry(tournament, "alice")
        payload = {"score": 80, "game_duration_ms": 60000, "session_id": "g1"}

        await test_client.post(SCORES_URL, json=payload, headers=auth_headers("alice"))
        response = await test_client.post(SCORES_URL, json=payload, headers=auth_headers("alice"))

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "DUPLICATE_SUBMISSION"

    @pytest.mark.asyncio
    async def test_implausible_score_is_400(self, test_client, auth_headers, tournament, make_entry):
        await make_entry(tournament, "alice")
        response = await test_client.post(
            SCORES_URL,
            json={"score": 5000, "game_duration_ms": 2000},
            headers=auth_headers("alice"),
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_SCORE"

    @pytest.mark.asyncio
    async def test_no_entry_is_404(self, test_client, auth_headers, tournament):
        response = await test_client.post(
            SCORES_URL,
            json={"score": 10, "game_duration_ms": 5000},
            headers=auth_headers("bob"),
        )
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ENTRY_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_no_active_tournament_is_503(self, test_client, auth_headers):
        response = await test_client.post(
            SCORES_URL,
            json={"score": 10, "game_duration_ms": 5000},
            headers=auth_headers("alice"),
        )
        assert response.status_code == 503
        assert response.json()["error"]["code"] == "TOURNAMENT_UNAVAILABLE"

    @pytest.mark.asyncio
    async def test_string_score_is_invalid_request(self, test_client, auth_headers, tournament):
        response = await test_client.post(
            SCORES_URL,
            json={"score": "100", "game_duration_ms": 5000},
            headers=auth_headers("alice"),
        )
        assert response.status_code == 400
        body = response.json()
        assert body["error"]["code"] == "INVALID_REQUEST"
        assert any("score" in e["field"] for e in body["error"]["details"]["errors"])

    @pytest.mark.asyncio
    async def test_rate_limit_sets_retry_after(self, test_client, auth_headers, tournament, make_entry):
        await make_entry(tournament, "alice")
        for i in range(10):
            await test_client.post(
                SCORES_URL,
                json={"score": -1, "game_duration_ms": 5000, "session_id": f"g{i}"},
                headers=auth_headers("alice"),
            )

        response = await test_client.post(
            SCORES_URL,
            json={"score": 1, "game_duration_ms": 5000, "session_id": "g-last"},
            headers=auth_headers("alice"),
        )

        assert response.status_code == 429
        assert int(response.headers["Retry-After"]) >= 1

    @pytest.mark.asyncio
    async def test_oversized_duration_is_400(self, test_client, auth_headers, tournament, make_entry):
        await make_entry(tournament, "alice")
        response = await test_client.post(
            SCORES_URL,
            json={"score": 0, "game_duration_ms": 1e20, "session_id": "g1"},
            headers=auth_headers("alice"),
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_SCORE"


class TestGeneralRateLimit:
    @pytest.mark.asyncio
    async def test_429_carries_request_id(self, test_client, context):
        limiter = context.rate_limiter
        limiter.rules = {**limiter.rules, LimiterClass.GENERAL_API: LimitRule(1, 60, "ratelimit:api")}
        headers = {"X-Request-ID": "req-429", "X-Forwarded-For": "203.0.113.9"}

        first = await test_client.get("/api/v1/tournament/stats", headers=headers)
        second = await test_client.get("/api/v1/tournament/stats", headers=headers)

        assert first.status_code == 200
        assert second.status_code == 429
        assert second.json()["traceId"] == "req-429"
        assert second.headers["X-Request-ID"] == "req-429"
        assert second.json()["error"]["code"] == "RATE_LIMIT_EXCEEDED"


class TestOpenAPI:
    @pytest.mark.asyncio
    async def test_scores_route_documents_error_bodies(self, test_client):
        response = await test_client.get("/openapi.json")
        assert response.status_code == 200

        schema = response.json()
        responses = schema["paths"][SCORES_URL]["post"]["responses"]
        for status in ("400", "401", "404", "409", "429"):
            ref = responses[status]["content"]["application/json"]["schema"]["$ref"]
            assert ref.endswith("/ErrorResponse")
        assert "ErrorDetail" in schema["components"]["schemas"]
