"""Custom exception classes for tournament errors.

Provides structured error handling with error codes and user-friendly messages.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standard error codes."""

    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"

    # Write-path rejections
    INVALID_SCORE = "INVALID_SCORE"
    DUPLICATE_SUBMISSION = "DUPLICATE_SUBMISSION"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    INVALID_PAYMENT = "INVALID_PAYMENT"
    GRACE_PERIOD = "GRACE_PERIOD"
    ENTRY_NOT_FOUND = "ENTRY_NOT_FOUND"

    # Tournament lookups
    TOURNAMENT_NOT_FOUND = "TOURNAMENT_NOT_FOUND"
    TOURNAMENT_UNAVAILABLE = "TOURNAMENT_UNAVAILABLE"
    TOURNAMENT_CLOSED = "TOURNAMENT_CLOSED"

    # Lifecycle / consistency
    NO_ACTIVE_TOURNAMENT = "NO_ACTIVE_TOURNAMENT"
    AMBIGUOUS_ACTIVE_TOURNAMENT = "AMBIGUOUS_ACTIVE_TOURNAMENT"
    LIFECYCLE_FAILED = "LIFECYCLE_FAILED"

    # Payouts
    PAYOUT_NOT_ELIGIBLE = "PAYOUT_NOT_ELIGIBLE"


class ArenaError(Exception):
    """Base exception for tournament errors.

    Attributes:
        code: Error code for programmatic handling
        message: User-friendly error message
        details: Additional error details
        recoverable: Whether the caller can fix the request and retry
    """

    def __init__(
        self,
        code: ErrorCode | str,
        message: str,
        details: dict[str, Any] | None = None,
        recoverable: bool = True,
    ):
        self.code = code if isinstance(code, str) else code.value
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "errorCode": self.code,
            "errorMessage": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# Validation errors
# =============================================================================


class InvalidScoreError(ArenaError):
    """Raised when a submitted score fails the plausibility check."""

    def __init__(self, reason: str, details: dict[str, Any] | None = None):
        super().__init__(
            code=ErrorCode.INVALID_SCORE,
            message=reason,
            details=details,
        )


class DuplicateSubmissionError(ArenaError):
    """Raised when an idempotency marker already exists for the request."""

    def __init__(self, message: str = "Duplicate submission detected"):
        super().__init__(
            code=ErrorCode.DUPLICATE_SUBMISSION,
            message=message,
        )


class RateLimitExceededError(ArenaError):
    """Raised when an actor exceeds the limit of a limiter class."""

    def __init__(self, limiter: str, limit: int, retry_after: int):
        super().__init__(
            code=ErrorCode.RATE_LIMIT_EXCEEDED,
            message="Too many requests. Please try again later.",
            details={"limiter": limiter, "limit": limit, "retry_after": retry_after},
        )
        self.retry_after = retry_after


class InvalidPaymentError(ArenaError):
    """Raised when an entry payment amount does not match a known price."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            code=ErrorCode.INVALID_PAYMENT,
            message=message,
            details=details,
        )


class GracePeriodError(ArenaError):
    """Raised when an entry is attempted during the grace window."""

    def __init__(self, tournament_day: str, ends_at: str):
        super().__init__(
            code=ErrorCode.GRACE_PERIOD,
            message="Tournament is ending soon. New entries are closed.",
            details={"tournament_day": tournament_day, "ends_at": ends_at},
        )


class EntryNotFoundError(ArenaError):
    """Raised when an actor submits a score without an entry."""

    def __init__(self, tournament_day: str):
        super().__init__(
            code=ErrorCode.ENTRY_NOT_FOUND,
            message="No tournament entry found. Please pay the entry fee first.",
            details={"tournament_day": tournament_day},
        )


class TournamentNotFoundError(ArenaError):
    """Raised when a tournament day key does not exist."""

    def __init__(self, tournament_day: str):
        super().__init__(
            code=ErrorCode.TOURNAMENT_NOT_FOUND,
            message=f"Tournament not found: {tournament_day}",
            details={"tournament_day": tournament_day},
        )


class TournamentClosedError(ArenaError):
    """Raised when a score targets a tournament that has been rolled over."""

    def __init__(self, tournament_day: str):
        super().__init__(
            code=ErrorCode.TOURNAMENT_CLOSED,
            message="This tournament has ended.",
            details={"tournament_day": tournament_day},
        )


# =============================================================================
# Lifecycle / consistency errors
# =============================================================================


class LifecycleError(ArenaError):
    """Raised when the lifecycle invariant is violated or cannot be restored.

    Never recoverable by the caller; surfaced to players as a generic
    "tournament unavailable" state.
    """

    def __init__(
        self,
        code: ErrorCode | str = ErrorCode.LIFECYCLE_FAILED,
        message: str = "Tournament lifecycle operation failed",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(code=code, message=message, details=details, recoverable=False)


class NoActiveTournamentError(LifecycleError):
    """Raised when an active tournament is required but none exists."""

    def __init__(self):
        super().__init__(
            code=ErrorCode.NO_ACTIVE_TOURNAMENT,
            message="No active tournament",
        )


class AmbiguousActiveTournamentError(LifecycleError):
    """Raised when more than one tournament is flagged active."""

    def __init__(self, tournament_days: list[str]):
        super().__init__(
            code=ErrorCode.AMBIGUOUS_ACTIVE_TOURNAMENT,
            message="More than one active tournament",
            details={"tournament_days": tournament_days},
        )


# =============================================================================
# Payout errors
# =============================================================================


class PayoutNotEligibleError(ArenaError):
    """Raised when a payout is recorded for a player or tournament that has none."""

    def __init__(self, reason: str, details: dict[str, Any] | None = None):
        super().__init__(
            code=ErrorCode.PAYOUT_NOT_ELIGIBLE,
            message=reason,
            details=details,
        )
