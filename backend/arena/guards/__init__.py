"""Write-path guards: idempotency, rate limiting, score plausibility."""

from arena.guards.idempotency import IdempotencyGuard, payment_key, payout_key, score_submission_key
from arena.guards.rate_limit import LimiterClass, RateLimiter, RateLimitResult
from arena.guards.score_validation import ScoreValidationResult, validate_score

__all__ = [
    "IdempotencyGuard",
    "score_submission_key",
    "payment_key",
    "payout_key",
    "LimiterClass",
    "RateLimiter",
    "RateLimitResult",
    "ScoreValidationResult",
    "validate_score",
]
