"""Score submission API."""

from fastapi import APIRouter, status

from arena.api.deps import Context, CurrentActor
from arena.middleware.sentry import set_actor_context
from arena.schemas.common import ErrorResponse
from arena.schemas.requests import ScoreSubmissionRequest
from arena.schemas.responses import ScoreSubmissionResponse

router = APIRouter(prefix="/scores", tags=["Scores"])


@router.post(
    "",
    response_model=ScoreSubmissionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a finished game",
    responses={
        400: {"model": ErrorResponse, "description": "Implausible score or malformed body"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        404: {"model": ErrorResponse, "description": "No entry for this tournament"},
        409: {"model": ErrorResponse, "description": "Duplicate submission or tournament closed"},
        429: {"model": ErrorResponse, "description": "Rate limit exceeded"},
    },
)
async def submit_score(
    body: ScoreSubmissionRequest,
    actor_id: CurrentActor,
    context: Context,
) -> ScoreSubmissionResponse:
    """Record a game result for the caller.

    - The caller must hold an entry for the target tournament
    - Only a strictly higher score replaces the personal best
    - Identical resubmissions within the idempotency window are rejected
    """
    set_actor_context(actor_id)
    result = await context.scores.submit(
        actor_id=actor_id,
        score=body.score,
        game_duration_ms=body.game_duration_ms,
        tournament_key=body.tournament_day,
        session_id=body.session_id,
    )
    return ScoreSubmissionResponse(**result)
