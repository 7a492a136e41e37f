"""Leaderboard API."""

from fastapi import APIRouter, Query

from arena.api.deps import Context
from arena.schemas.responses import LeaderboardResponse
from arena.services.leaderboard import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

router = APIRouter(prefix="/leaderboard", tags=["Leaderboard"])


@router.get("", response_model=LeaderboardResponse)
async def get_leaderboard(
    context: Context,
    tournament_day: str | None = Query(None, description="Cycle key or 'current'"),
    offset: int = Query(0, ge=0),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
) -> LeaderboardResponse:
    """Ranked page of a tournament, best score first."""
    result = await context.leaderboard.get_leaderboard(tournament_day, offset, limit)
    return LeaderboardResponse(**result)
