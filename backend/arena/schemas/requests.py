"""Request body schemas."""

from decimal import Decimal
from typing import Literal

from pydantic import Field, StrictFloat, StrictInt

from arena.models.entry import PayoutKind
from arena.schemas.common import BaseSchema


class ScoreSubmissionRequest(BaseSchema):
    """One finished game.

    Non-integer scores are accepted here and rejected by the plausibility
    check with a specific reason.
    """

    score: StrictInt | StrictFloat = Field(..., description="Final score of the game")
    game_duration_ms: StrictInt | StrictFloat = Field(..., description="Game length in milliseconds")
    tournament_day: str | None = Field(
        None,
        description="Cycle key (YYYY-MM-DD); defaults to the active tournament",
    )
    session_id: str | None = Field(
        None,
        max_length=64,
        description="Client game session id, used to detect resubmissions",
    )


class EntryPaymentRequest(BaseSchema):
    wallet: str = Field(..., min_length=1, max_length=64)
    display_name: str | None = Field(None, max_length=50)
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=4)
    payment_kind: Literal["verified", "standard", "continue"]
    payment_reference: str = Field(
        ...,
        min_length=1,
        max_length=128,
        description="Payment provider reference (transaction id)",
    )


class VerificationRequest(BaseSchema):
    wallet: str = Field(..., min_length=1, max_length=64)
    username: str | None = Field(None, max_length=50)


class TournamentDayRequest(BaseSchema):
    tournament_day: str | None = Field(
        None,
        description="Cycle key (YYYY-MM-DD); defaults to the active tournament",
    )


class PayoutRecordRequest(BaseSchema):
    user_id: str = Field(..., min_length=1, max_length=36)
    kind: PayoutKind = PayoutKind.PRIZE
    payout_reference: str = Field(..., min_length=1, max_length=128)
