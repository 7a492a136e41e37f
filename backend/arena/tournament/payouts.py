"""Payout ledger.

Turns final standings into prize or refund lines and records the payment
reference an operator supplies once money has been sent. One row per
(user, tournament, kind); recording twice returns the existing row.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from arena.guards.idempotency import IdempotencyGuard, payout_key
from arena.logging_config import get_logger
from arena.models.entry import Payout, PayoutKind
from arena.models.tournament import Tournament
from arena.services.records import RecordStore
from arena.tournament.cycle import ensure_utc, utcnow
from arena.tournament.prizes import MAX_WINNERS, PrizeBreakdown, compute_prizes, should_refund
from arena.utils.errors import DuplicateSubmissionError, PayoutNotEligibleError

if TYPE_CHECKING:
    from arena.tournament.lifecycle import TournamentLifecycleManager
    from arena.utils.db import Database

logger = get_logger(__name__)


@dataclass
class PayoutLine:
    user_id: str
    wallet: str
    display_name: Optional[str]
    kind: PayoutKind
    amount: Decimal
    rank: Optional[int] = None
    score: Optional[int] = None
    payout_reference: Optional[str] = None
    paid_at: Optional[datetime] = None

    @property
    def paid(self) -> bool:
        return self.paid_at is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "wallet": self.wallet,
            "display_name": self.display_name,
            "kind": self.kind.value,
            "rank": self.rank,
            "score": self.score,
            "amount": float(self.amount),
            "paid": self.paid,
            "payout_reference": self.payout_reference,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
        }


@dataclass
class PayoutPlan:
    tournament_day: str
    player_count: int
    refund: bool
    lines: list[PayoutLine] = field(default_factory=list)
    breakdown: Optional[PrizeBreakdown] = None

    def line_for(self, user_id: str, kind: PayoutKind) -> Optional[PayoutLine]:
        for line in self.lines:
            if line.user_id == user_id and line.kind == kind:
                return line
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tournament_day": self.tournament_day,
            "player_count": self.player_count,
            "refund": self.refund,
            "total_owed": float(sum((line.amount for line in self.lines), Decimal("0"))),
            "lines": [line.to_dict() for line in self.lines],
            "breakdown": self.breakdown.to_dict() if self.breakdown else None,
        }


class PayoutService:
    """Plan and record prize and refund payouts."""

    def __init__(
        self,
        database: "Database",
        lifecycle: "TournamentLifecycleManager",
        idempotency: IdempotencyGuard,
    ):
        self.database = database
        self.lifecycle = lifecycle
        self.idempotency = idempotency

    async def _payouts_by_user(self, session: AsyncSession, tournament_id: str) -> dict[tuple[str, str], Payout]:
        result = await session.execute(select(Payout).where(Payout.tournament_id == tournament_id))
        return {(p.user_id, p.kind): p for p in result.scalars().all()}

    async def _plan(self, session: AsyncSession, tournament: Tournament) -> PayoutPlan:
        records = RecordStore(session)
        totals = await records.aggregate_totals(tournament.id)
        recorded = await self._payouts_by_user(session, tournament.id)

        def stamp(line: PayoutLine) -> PayoutLine:
            existing = recorded.get((line.user_id, line.kind.value))
            if existing is not None:
                line.payout_reference = existing.payout_reference
                line.paid_at = ensure_utc(existing.paid_at) if existing.paid_at else None
            return line

        if should_refund(totals.player_count):
            lines = [
                stamp(PayoutLine(
                    user_id=entry.user_id,
                    wallet=entry.wallet,
                    display_name=entry.display_name,
                    kind=PayoutKind.REFUND,
                    amount=entry.total_paid,
                ))
                for entry in await records.list_entries(tournament.id)
                if entry.total_paid > 0
            ]
            return PayoutPlan(
                tournament_day=tournament.day,
                player_count=totals.player_count,
                refund=True,
                lines=lines,
            )

        breakdown = compute_prizes(totals.total_collected, totals.player_count)
        standings = await records.list_standings(tournament.id, 0, MAX_WINNERS)
        lines = [
            stamp(PayoutLine(
                user_id=entry.user_id,
                wallet=entry.wallet,
                display_name=entry.display_name,
                kind=PayoutKind.PRIZE,
                amount=breakdown.payout_for_rank(rank),
                rank=rank,
                score=entry.highest_score,
            ))
            for rank, entry in enumerate(standings, start=1)
        ]
        return PayoutPlan(
            tournament_day=tournament.day,
            player_count=totals.player_count,
            refund=False,
            lines=lines,
            breakdown=breakdown,
        )

    async def plan_payouts(self, tournament_key: str) -> PayoutPlan:
        """Prize rows for the top ranks, or refund rows below the player minimum."""
        async with self.database.session() as session:
            tournament = await self.lifecycle.resolve(session, tournament_key)
            return await self._plan(session, tournament)

    async def record_payout(
        self,
        tournament_key: str,
        user_id: str,
        kind: PayoutKind,
        payout_reference: str,
    ) -> Payout:
        """
        Mark a player's prize or refund as paid.

        Raises:
            PayoutNotEligibleError: Tournament still running, or no such line
            DuplicateSubmissionError: The same payout is being recorded concurrently
        """
        async with self.database.session() as session:
            tournament = await self.lifecycle.resolve(session, tournament_key)
            existing = (await self._payouts_by_user(session, tournament.id)).get((user_id, kind.value))
        if existing is not None:
            return existing

        lock_key = payout_key(user_id, tournament_key, kind.value)
        if not await self.idempotency.acquire_lock(lock_key):
            raise DuplicateSubmissionError("Payout is already being recorded")

        try:
            async with self.database.session() as session:
                tournament = await self.lifecycle.resolve(session, tournament_key)
                if tournament.is_active:
                    raise PayoutNotEligibleError(
                        "Tournament is still running",
                        details={"tournament_day": tournament.day},
                    )

                plan = await self._plan(session, tournament)
                line = plan.line_for(user_id, kind)
                if line is None:
                    raise PayoutNotEligibleError(
                        "No payout owed to this player",
                        details={"tournament_day": tournament.day, "kind": kind.value},
                    )

                existing = (await self._payouts_by_user(session, tournament.id)).get((user_id, kind.value))
                if existing is not None:
                    return existing

                payout = Payout(
                    user_id=user_id,
                    tournament_id=tournament.id,
                    kind=kind.value,
                    rank=line.rank,
                    amount=line.amount,
                    payout_reference=payout_reference,
                    paid_at=utcnow(),
                )
                session.add(payout)
                await session.flush()
        except IntegrityError:
            async with self.database.session() as session:
                tournament = await self.lifecycle.resolve(session, tournament_key)
                return (await self._payouts_by_user(session, tournament.id))[(user_id, kind.value)]
        except Exception:
            await self.idempotency.release_lock(lock_key)
            raise

        logger.info(
            "payout_recorded",
            tournament_day=tournament_key,
            user_id=user_id,
            kind=kind.value,
            amount=str(payout.amount),
        )
        return payout
