"""Operator API (X-API-Key)."""

from typing import Any

from fastapi import APIRouter, Depends

from arena.api.deps import Context, require_admin_key
from arena.logging_config import get_logger
from arena.schemas.requests import PayoutRecordRequest, TournamentDayRequest
from arena.schemas.responses import CacheOperationResponse, PayoutResponse

logger = get_logger(__name__)

router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    dependencies=[Depends(require_admin_key)],
)


async def _target_day(context: Context, body: TournamentDayRequest | None) -> str:
    if body and body.tournament_day and body.tournament_day != "current":
        return body.tournament_day
    async with context.database.session() as session:
        tournament = await context.lifecycle.require_current_active(session)
        return tournament.day


# ============================================================================
# Cache
# ============================================================================


@router.post("/cache/clear", response_model=CacheOperationResponse)
async def clear_cache(
    context: Context,
    body: TournamentDayRequest | None = None,
) -> CacheOperationResponse:
    """Delete every cached response and the ranked store for a day."""
    day = await _target_day(context, body)
    result = await context.coordinator.clear_all(day)
    return CacheOperationResponse(tournament_day=day, keys=result.keys, failed=result.failed)


@router.post("/cache/warm", response_model=CacheOperationResponse)
async def warm_cache(
    context: Context,
    body: TournamentDayRequest | None = None,
) -> CacheOperationResponse:
    """Reseed and refill the caches for a day immediately."""
    day = await _target_day(context, body)
    warmed = await context.coordinator.warm(day)
    logger.info("cache_warmed_by_operator", tournament_day=day, warmed=warmed)
    return CacheOperationResponse(success=warmed, tournament_day=day, warmed=warmed)


# ============================================================================
# Payouts
# ============================================================================


@router.get("/payouts/{tournament_day}")
async def get_payout_plan(tournament_day: str, context: Context) -> dict[str, Any]:
    """Prize or refund lines owed for a tournament, with paid status."""
    plan = await context.payouts.plan_payouts(tournament_day)
    return plan.to_dict()


@router.post("/payouts/{tournament_day}", response_model=PayoutResponse)
async def record_payout(
    tournament_day: str,
    body: PayoutRecordRequest,
    context: Context,
) -> PayoutResponse:
    """Record that a prize or refund was sent."""
    payout = await context.payouts.record_payout(
        tournament_day,
        body.user_id,
        body.kind,
        body.payout_reference,
    )
    return PayoutResponse.model_validate(payout)
