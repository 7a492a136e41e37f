"""Entry payments and weekly verification."""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional

from arena.guards.idempotency import IdempotencyGuard, payment_key
from arena.guards.rate_limit import LimiterClass, RateLimiter
from arena.leaderboard.cache_keys import ALL_SCOPES
from arena.logging_config import get_logger
from arena.services.records import PaymentKind, RecordStore
from arena.tournament.cycle import ensure_utc, entries_closed, utcnow
from arena.tournament.prizes import to_decimal
from arena.utils.errors import (
    DuplicateSubmissionError,
    GracePeriodError,
    InvalidPaymentError,
    RateLimitExceededError,
)

if TYPE_CHECKING:
    from arena.leaderboard.coordinator import CacheCoordinator
    from arena.tournament.lifecycle import TournamentLifecycleManager
    from arena.utils.db import Database

logger = get_logger(__name__)

VERIFIED_ENTRY_FEE = Decimal("0.9")
STANDARD_ENTRY_FEE = Decimal("1.0")
PAYMENT_TOLERANCE = Decimal("0.01")


def _matches(amount: Decimal, price: Decimal) -> bool:
    return abs(amount - price) <= PAYMENT_TOLERANCE


class EntryService:
    """Records entry fees and continues against the active tournament."""

    def __init__(
        self,
        database: "Database",
        lifecycle: "TournamentLifecycleManager",
        rate_limiter: RateLimiter,
        idempotency: IdempotencyGuard,
        coordinator: "CacheCoordinator",
        idempotency_ttl: int = 300,
    ):
        self.database = database
        self.lifecycle = lifecycle
        self.rate_limiter = rate_limiter
        self.idempotency = idempotency
        self.coordinator = coordinator
        self.idempotency_ttl = idempotency_ttl

    async def _check_rate(self, actor_id: str, limiter_class: LimiterClass) -> None:
        limit = await self.rate_limiter.check_limit(actor_id, limiter_class)
        if not limit.allowed:
            raise RateLimitExceededError(limiter_class.value, limit.limit, limit.retry_after)

    @staticmethod
    def _validate_amount(amount: Decimal, payment_kind: str, verified: bool, has_entry: bool) -> None:
        if payment_kind == PaymentKind.VERIFIED:
            if not verified:
                raise InvalidPaymentError(
                    "Verified pricing requires verification for this tournament",
                    details={"payment_kind": payment_kind},
                )
            if not _matches(amount, VERIFIED_ENTRY_FEE):
                raise InvalidPaymentError(
                    f"Verified entry costs {VERIFIED_ENTRY_FEE}",
                    details={"amount": float(amount), "expected": float(VERIFIED_ENTRY_FEE)},
                )
        elif payment_kind == PaymentKind.STANDARD:
            if not _matches(amount, STANDARD_ENTRY_FEE):
                raise InvalidPaymentError(
                    f"Standard entry costs {STANDARD_ENTRY_FEE}",
                    details={"amount": float(amount), "expected": float(STANDARD_ENTRY_FEE)},
                )
        elif payment_kind == PaymentKind.CONTINUE:
            if not has_entry:
                raise InvalidPaymentError("Continue requires an existing entry")
            price = VERIFIED_ENTRY_FEE if verified else STANDARD_ENTRY_FEE
            if not (_matches(amount, price) or _matches(amount, STANDARD_ENTRY_FEE)):
                raise InvalidPaymentError(
                    f"Continue costs {price}",
                    details={"amount": float(amount), "expected": float(price)},
                )
        else:
            raise InvalidPaymentError(f"Unknown payment kind: {payment_kind}")

    async def record_entry_payment(
        self,
        actor_id: str,
        wallet: str,
        display_name: Optional[str],
        amount: Decimal | float | str,
        payment_kind: str,
        payment_reference: str,
    ) -> dict[str, Any]:
        """
        Record a verified/standard entry fee or a continue payment.

        Raises:
            RateLimitExceededError, DuplicateSubmissionError, GracePeriodError,
            InvalidPaymentError, NoActiveTournamentError
        """
        await self._check_rate(actor_id, LimiterClass.TOURNAMENT_ENTRY)

        amount = to_decimal(amount)
        lock_key = payment_key(actor_id, "current", amount, payment_reference)
        if not await self.idempotency.acquire_lock(lock_key, self.idempotency_ttl):
            raise DuplicateSubmissionError("Payment already recorded")

        try:
            async with self.database.session() as session:
                tournament = await self.lifecycle.require_current_active(session)
                now = utcnow()
                if entries_closed(tournament.end_time, now, self.lifecycle.boundary.grace):
                    raise GracePeriodError(
                        tournament.day,
                        ensure_utc(tournament.end_time).isoformat(),
                    )

                records = RecordStore(session)
                user = await records.ensure_user(actor_id, wallet, display_name)
                if user is None:
                    raise InvalidPaymentError(
                        "Wallet does not match this account",
                        details={"wallet": wallet},
                    )
                verified = user.is_verified_for(tournament.id)
                existing = await records.get_entry(actor_id, tournament.id)
                self._validate_amount(amount, payment_kind, verified, existing is not None)

                entry = await records.upsert_entry_payment(
                    user_id=actor_id,
                    tournament_id=tournament.id,
                    wallet=wallet,
                    display_name=display_name,
                    payment_kind=payment_kind,
                    amount=amount,
                    verified=verified,
                )
                day = tournament.day
                result = {
                    "tournament_day": day,
                    "payment_kind": payment_kind,
                    "amount": float(amount),
                    "verified_paid": entry.verified_paid,
                    "standard_paid": entry.standard_paid,
                    "total_paid": float(entry.total_paid),
                }
        except Exception:
            await self.idempotency.release_lock(lock_key)
            raise

        logger.info(
            "entry_payment_recorded",
            actor_id=actor_id,
            tournament_day=day,
            payment_kind=payment_kind,
            amount=str(amount),
            payment_reference=payment_reference,
        )

        await self.lifecycle.sync_aggregates(day, invalidate=False)
        await self.coordinator.invalidate(ALL_SCOPES, day, source="entry_payment")
        return result

    async def record_verification(self, actor_id: str, wallet: str, username: Optional[str] = None) -> dict[str, Any]:
        """Link the actor's verification to the active tournament.

        The identity check itself happens upstream; this records its outcome.
        """
        await self._check_rate(actor_id, LimiterClass.VERIFICATION)

        async with self.database.session() as session:
            tournament = await self.lifecycle.require_current_active(session)
            records = RecordStore(session)
            user = await records.ensure_user(actor_id, wallet, username)
            if user is None:
                raise InvalidPaymentError(
                    "Wallet does not match this account",
                    details={"wallet": wallet},
                )
            await records.mark_verified(actor_id, tournament.id, utcnow())
            day = tournament.day

        logger.info("user_verified", actor_id=actor_id, tournament_day=day)
        return {"tournament_day": day, "verified": True}
