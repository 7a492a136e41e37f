"""Tests for the cron trigger and operator endpoints."""

from unittest.mock import patch

import pytest
from sqlalchemy import update

from arena.models import Tournament


class TestCronEndpoints:
    @pytest.mark.asyncio
    async def test_lifecycle_requires_secret(self, test_client):
        response = await test_client.post("/api/v1/cron/tournament-lifecycle")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"

        response = await test_client.post(
            "/api/v1/cron/tournament-lifecycle",
            headers={"Authorization": "Bearer wrong-secret"},
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_lifecycle_creates_then_reports_unchanged(self, test_client, cron_headers):
        first = await test_client.post("/api/v1/cron/tournament-lifecycle", headers=cron_headers)
        second = await test_client.post("/api/v1/cron/tournament-lifecycle", headers=cron_headers)

        assert first.status_code == 200
        assert first.json()["outcome"] == "created"
        assert second.json()["outcome"] == "unchanged"
        assert second.json()["tournament_day"] == first.json()["tournament_day"]

    @pytest.mark.asyncio
    async def test_lifecycle_failure_is_reported(self, test_client, cron_headers, context):
        with patch.object(
            context.lifecycle,
            "ensure_current_tournament",
            side_effect=RuntimeError("db gone"),
        ), patch("arena.api.cron.capture_lifecycle_error") as capture:
            response = await test_client.post("/api/v1/cron/tournament-lifecycle", headers=cron_headers)

        assert response.status_code == 500
        assert capture.call_args.kwargs["trigger"] == "cron_http"

    @pytest.mark.asyncio
    async def test_sync_aggregates(self, test_client, cron_headers, tournament, make_entry):
        for user_id in ("a", "b"):
            await make_entry(tournament, user_id)

        response = await test_client.post("/api/v1/cron/sync-aggregates", headers=cron_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["player_count"] == 2
        assert body["total_collected"] == 2.0
        assert body["guarantee_amount"] == 2.0


class TestAdminEndpoints:
    @pytest.mark.asyncio
    async def test_requires_api_key(self, test_client, tournament):
        response = await test_client.post("/api/v1/admin/cache/clear", headers={"X-API-Key": "nope"})
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"

    @pytest.mark.asyncio
    async def test_clear_cache(self, test_client, admin_headers, tournament, mock_redis):
        await mock_redis.set("cache:stats:current", "x")

        response = await test_client.post("/api/v1/admin/cache/clear", headers=admin_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["tournament_day"] == tournament.day
        assert "cache:stats:current" in body["keys"]
        assert await mock_redis.get("cache:stats:current") is None

    @pytest.mark.asyncio
    async def test_warm_cache(self, test_client, admin_headers, tournament, mock_redis):
        response = await test_client.post(
            "/api/v1/admin/cache/warm",
            json={"tournament_day": tournament.day},
            headers=admin_headers,
        )
        assert response.status_code == 200
        assert response.json()["warmed"] is True
        assert await mock_redis.get("cache:stats:current") is not None

    @pytest.mark.asyncio
    async def test_payout_flow(self, test_client, admin_headers, tournament, make_entry, database):
        for user_id in ("a", "b"):
            await make_entry(tournament, user_id)

        running = await test_client.post(
            f"/api/v1/admin/payouts/{tournament.day}",
            json={"user_id": "a", "kind": "refund", "payout_reference": "tx-9"},
            headers=admin_headers,
        )
        assert running.status_code == 409
        assert running.json()["error"]["code"] == "PAYOUT_NOT_ELIGIBLE"

        async with database.session() as session:
            await session.execute(update(Tournament).values(is_active=False))

        plan = await test_client.get(f"/api/v1/admin/payouts/{tournament.day}", headers=admin_headers)
        assert plan.json()["refund"] is True
        assert len(plan.json()["lines"]) == 2

        recorded = await test_client.post(
            f"/api/v1/admin/payouts/{tournament.day}",
            json={"user_id": "a", "kind": "refund", "payout_reference": "tx-9"},
            headers=admin_headers,
        )
        assert recorded.status_code == 200
        assert recorded.json()["payout_reference"] == "tx-9"
        assert recorded.json()["amount"] == 1.0


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy(self, test_client):
        response = await test_client.get("/health")
        assert response.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_degraded_without_redis(self, test_client, mock_redis):
        mock_redis.fail = True
        response = await test_client.get("/health")
        body = response.json()
        assert body["status"] == "degraded"
        assert body["services"]["database"] == "healthy"

    @pytest.mark.asyncio
    async def test_ready(self, test_client):
        response = await test_client.get("/health/ready")
        assert response.status_code == 200
