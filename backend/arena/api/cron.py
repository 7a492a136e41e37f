"""Scheduled triggers (Bearer cron secret)."""

from fastapi import APIRouter, Depends

from arena.api.deps import Context, require_cron_secret
from arena.middleware.sentry import capture_lifecycle_error
from arena.schemas.requests import TournamentDayRequest
from arena.schemas.responses import AggregatesResponse, LifecycleResponse
from arena.tournament.cycle import current_cycle_key, utcnow

router = APIRouter(
    prefix="/cron",
    tags=["Cron"],
    dependencies=[Depends(require_cron_secret)],
)


@router.post("/tournament-lifecycle", response_model=LifecycleResponse)
async def run_tournament_lifecycle(context: Context) -> LifecycleResponse:
    """Make sure exactly the current cycle's tournament is active.

    Safe to call at any frequency; runs that find nothing to do report
    ``unchanged``.
    """
    try:
        result = await context.lifecycle.ensure_current_tournament()
    except Exception as e:
        capture_lifecycle_error(
            e,
            tournament_day=current_cycle_key(utcnow(), context.boundary).isoformat(),
            trigger="cron_http",
        )
        raise
    return LifecycleResponse(**result.to_dict())


@router.post("/sync-aggregates", response_model=AggregatesResponse)
async def sync_tournament_aggregates(
    context: Context,
    body: TournamentDayRequest | None = None,
) -> AggregatesResponse:
    """Recompute player count, collected total and prize pool from entries."""
    tournament = await context.lifecycle.sync_aggregates(body.tournament_day if body else None)
    return AggregatesResponse(
        tournament_day=tournament.day,
        player_count=tournament.player_count,
        total_collected=float(tournament.total_collected),
        prize_pool=float(tournament.prize_pool),
        admin_fee=float(tournament.admin_fee),
        guarantee_amount=float(tournament.guarantee_amount),
        total_games_played=tournament.total_games_played,
    )
