"""Score plausibility check.

Stateless anti-cheat rule derived from game mechanics: a player cannot
earn more than MAX_SCORE_PER_SECOND points per second of play.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

MAX_SCORE_PER_SECOND = 10
MIN_GAME_DURATION_MS = 1000
# One full cycle; fits the 32-bit game_duration_ms column
MAX_GAME_DURATION_MS = 7 * 24 * 60 * 60 * 1000
MAX_SCORE = 100_000
MIN_SCORE = 0


@dataclass(frozen=True)
class ScoreValidationResult:
    valid: bool
    reason: str | None = None
    max_possible: int | None = None


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def max_possible_score(game_duration_ms: float) -> int:
    """floor(duration_seconds * MAX_SCORE_PER_SECOND)."""
    return math.floor(game_duration_ms / 1000 * MAX_SCORE_PER_SECOND)


def validate_score(score: object, game_duration_ms: object) -> ScoreValidationResult:
    """Validate a submitted score against its game duration.

    The duration must be a number between 0 and MAX_GAME_DURATION_MS for
    every score. Zero is then always accepted (the player may crash
    immediately). Any other score needs a game of at least
    MIN_GAME_DURATION_MS and must not exceed the per-second ceiling.
    """
    if not _is_number(score) or not math.isfinite(score) or score != int(score):
        return ScoreValidationResult(False, "Score must be an integer")
    score = int(score)

    if score < MIN_SCORE:
        return ScoreValidationResult(False, "Score cannot be negative")

    if score > MAX_SCORE:
        return ScoreValidationResult(False, f"Score exceeds maximum allowed ({MAX_SCORE})")

    if (
        not _is_number(game_duration_ms)
        or not math.isfinite(game_duration_ms)
        or game_duration_ms < 0
    ):
        return ScoreValidationResult(False, "Game duration must be a non-negative number")

    if game_duration_ms > MAX_GAME_DURATION_MS:
        return ScoreValidationResult(
            False, f"Game too long (maximum {MAX_GAME_DURATION_MS}ms)"
        )

    if score == 0:
        return ScoreValidationResult(True)

    if game_duration_ms < MIN_GAME_DURATION_MS:
        return ScoreValidationResult(
            False, f"Game too short (minimum {MIN_GAME_DURATION_MS}ms)"
        )

    limit = max_possible_score(game_duration_ms)
    if score > limit:
        seconds = game_duration_ms / 1000
        return ScoreValidationResult(
            False,
            f"Score {score} impossible for {seconds:.1f}s game (max: {limit})",
            max_possible=limit,
        )

    return ScoreValidationResult(True, max_possible=limit)
