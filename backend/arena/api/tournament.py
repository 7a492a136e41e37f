"""Tournament API: current cycle, stats, prizes, history, entry payments and verification."""

from typing import Any

from fastapi import APIRouter, Query, status

from arena.api.deps import Context, CurrentActor
from arena.middleware.sentry import set_actor_context
from arena.schemas.common import ErrorResponse
from arena.schemas.requests import EntryPaymentRequest, VerificationRequest
from arena.schemas.responses import (
    EntryPaymentResponse,
    TournamentResponse,
    VerificationResponse,
)

router = APIRouter(prefix="/tournament", tags=["Tournament"])


@router.get("/current", response_model=TournamentResponse)
async def get_current_tournament(context: Context) -> TournamentResponse:
    """The active tournament. 503 while none is active."""
    return TournamentResponse(**await context.leaderboard.get_tournament())


@router.get("/stats")
async def get_tournament_stats(
    context: Context,
    tournament_day: str | None = Query(None, description="Cycle key or 'current'"),
) -> dict[str, Any]:
    """Counters, phase and prize summary.

    Answers ``active: false`` instead of an error when no tournament runs.
    """
    return await context.leaderboard.get_stats(tournament_day)


@router.get("/prizes")
async def get_tournament_prizes(
    context: Context,
    tournament_day: str | None = Query(None, description="Cycle key or 'current'"),
) -> dict[str, Any]:
    return await context.leaderboard.get_prizes(tournament_day)


@router.get("/history")
async def get_tournament_history(
    context: Context,
    offset: int = Query(0, ge=0),
    limit: int = Query(10, ge=1, le=50),
) -> dict[str, Any]:
    """Rolled-over tournaments, newest first, with their top three finishers."""
    return await context.leaderboard.get_history(offset, limit)


@router.get(
    "/history/{tournament_day}",
    responses={404: {"model": ErrorResponse, "description": "Unknown or still active"}},
)
async def get_past_tournament(tournament_day: str, context: Context) -> dict[str, Any]:
    """One past tournament and its ranked winners. 404 while still active."""
    return await context.leaderboard.get_past_tournament(tournament_day)


@router.get("/previous")
async def get_previous_tournament(context: Context) -> dict[str, Any]:
    """The most recently rolled-over tournament."""
    return await context.leaderboard.get_past_tournament()


@router.post(
    "/entries",
    response_model=EntryPaymentResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse, "description": "Amount does not match the payment kind"},
        403: {"model": ErrorResponse, "description": "Entries closed for the grace period"},
        409: {"model": ErrorResponse, "description": "Payment already recorded"},
    },
)
async def record_entry_payment(
    body: EntryPaymentRequest,
    actor_id: CurrentActor,
    context: Context,
) -> EntryPaymentResponse:
    """Record a confirmed entry fee or continue payment for the caller."""
    set_actor_context(actor_id)
    result = await context.entries.record_entry_payment(
        actor_id=actor_id,
        wallet=body.wallet,
        display_name=body.display_name,
        amount=body.amount,
        payment_kind=body.payment_kind,
        payment_reference=body.payment_reference,
    )
    return EntryPaymentResponse(**result)


@router.post("/verification", response_model=VerificationResponse)
async def record_verification(
    body: VerificationRequest,
    actor_id: CurrentActor,
    context: Context,
) -> VerificationResponse:
    """Mark the caller verified for the active tournament."""
    set_actor_context(actor_id)
    result = await context.entries.record_verification(actor_id, body.wallet, body.username)
    return VerificationResponse(**result)
