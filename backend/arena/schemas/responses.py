"""Response schemas."""

from datetime import datetime

from pydantic import Field

from arena.schemas.common import BaseSchema


class ScoreSubmissionResponse(BaseSchema):
    success: bool = True
    rank: int | None = Field(None, description="1-indexed rank after the submission")
    is_new_high_score: bool
    previous_highest_score: int
    current_highest_score: int
    tournament_day: str


class LeaderboardPlayer(BaseSchema):
    rank: int
    display_name: str | None = None
    wallet: str
    score: int


class LeaderboardResponse(BaseSchema):
    players: list[LeaderboardPlayer]
    total_players: int
    tournament_day: str | None = None
    source: str = Field(..., description="cache, ranked_store or database")


class TournamentResponse(BaseSchema):
    tournament_day: str
    start_time: datetime
    end_time: datetime
    is_active: bool
    phase: str
    entries_open: bool
    seconds_remaining: int
    player_count: int
    total_collected: float
    prize_pool: float
    total_games_played: int


class EntryPaymentResponse(BaseSchema):
    success: bool = True
    tournament_day: str
    payment_kind: str
    amount: float
    verified_paid: bool
    standard_paid: bool
    total_paid: float


class VerificationResponse(BaseSchema):
    success: bool = True
    tournament_day: str
    verified: bool


class LifecycleResponse(BaseSchema):
    success: bool = True
    tournament_day: str
    outcome: str
    created: bool
    previous_days: list[str]
    start_time: datetime
    end_time: datetime


class AggregatesResponse(BaseSchema):
    success: bool = True
    tournament_day: str
    player_count: int
    total_collected: float
    prize_pool: float
    admin_fee: float
    guarantee_amount: float
    total_games_played: int


class CacheOperationResponse(BaseSchema):
    success: bool = True
    tournament_day: str
    keys: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    warmed: bool | None = None


class PayoutResponse(BaseSchema):
    user_id: str
    kind: str
    rank: int | None = None
    amount: float
    payout_reference: str | None = None
    paid_at: datetime | None = None
