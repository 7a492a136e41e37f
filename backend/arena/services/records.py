"""Persistent record store: entries, score log, users.

All methods run inside the caller's session; committing is the caller's
job so a score write and its log row land in one transaction.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from arena.models.entry import GameScore, ParticipantEntry
from arena.models.tournament import Tournament
from arena.models.user import User
from arena.tournament.cycle import ensure_utc
from arena.tournament.prizes import to_decimal


class PaymentKind:
    VERIFIED = "verified"
    STANDARD = "standard"
    CONTINUE = "continue"

    ALL = (VERIFIED, STANDARD, CONTINUE)


@dataclass
class ScoreWriteResult:
    previous: int
    current: int
    is_new_high_score: bool
    first_score_at: Optional[datetime]
    games_played: int


@dataclass
class AggregateTotals:
    player_count: int
    total_collected: Decimal
    total_games_played: int


class RecordStore:
    """Queries and atomic writes over participant_entries and friends."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _insert(self, model):
        """INSERT construct with ON CONFLICT support for the bound dialect."""
        if self.session.get_bind().dialect.name == "sqlite":
            return sqlite_insert(model)
        return pg_insert(model)

    # =========================================================================
    # Users
    # =========================================================================

    async def get_user(self, user_id: str) -> Optional[User]:
        return await self.session.get(User, user_id, populate_existing=True)

    async def ensure_user(self, user_id: str, wallet: str, username: Optional[str] = None) -> Optional[User]:
        """Create the user row if missing.

        Returns None when the wallet already belongs to another user.
        """
        stmt = self._insert(User).values(
            id=user_id,
            wallet=wallet,
            username=username,
        ).on_conflict_do_nothing()
        await self.session.execute(stmt)
        user = await self.get_user(user_id)
        if user is None or user.wallet != wallet:
            return None
        return user

    async def mark_verified(self, user_id: str, tournament_id: str, now: datetime) -> None:
        await self.session.execute(
            update(User)
            .where(User.id == user_id)
            .values(last_verified_date=now, last_verified_tournament_id=tournament_id)
            .execution_options(synchronize_session=False)
        )

    async def reset_weekly_verification(self) -> int:
        """Clear every user's verification linkage. Returns rows touched."""
        result = await self.session.execute(
            update(User)
            .where(User.last_verified_tournament_id.is_not(None))
            .values(last_verified_date=None, last_verified_tournament_id=None)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    # =========================================================================
    # Entries
    # =========================================================================

    async def get_entry(self, user_id: str, tournament_id: str) -> Optional[ParticipantEntry]:
        result = await self.session.execute(
            select(ParticipantEntry)
            .where(
                ParticipantEntry.user_id == user_id,
                ParticipantEntry.tournament_id == tournament_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def upsert_entry_payment(
        self,
        user_id: str,
        tournament_id: str,
        wallet: str,
        display_name: Optional[str],
        payment_kind: str,
        amount: Decimal,
        verified: bool = False,
    ) -> ParticipantEntry:
        """
        Record one payment against the (user, tournament) entry.

        A single INSERT .. ON CONFLICT DO UPDATE: paid flags are OR-ed and
        amounts accumulated, so concurrent payments never lose an update.
        """
        if payment_kind not in PaymentKind.ALL:
            raise ValueError(f"unknown payment kind: {payment_kind}")

        values = {
            "id": str(uuid4()),
            "user_id": user_id,
            "tournament_id": tournament_id,
            "wallet": wallet,
            "display_name": display_name,
            "verified_paid": payment_kind == PaymentKind.VERIFIED,
            "standard_paid": payment_kind == PaymentKind.STANDARD,
            "verified_paid_amount": amount if payment_kind == PaymentKind.VERIFIED else Decimal("0"),
            "standard_paid_amount": amount if payment_kind == PaymentKind.STANDARD else Decimal("0"),
            "continue_paid_amount": amount if payment_kind == PaymentKind.CONTINUE else Decimal("0"),
            "verified_at_entry": verified and payment_kind == PaymentKind.VERIFIED,
        }

        stmt = self._insert(ParticipantEntry).values(**values)
        excluded = stmt.excluded
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "tournament_id"],
            set_={
                "wallet": excluded.wallet,
                "display_name": func.coalesce(excluded.display_name, ParticipantEntry.display_name),
                "verified_paid": or_(ParticipantEntry.verified_paid, excluded.verified_paid),
                "standard_paid": or_(ParticipantEntry.standard_paid, excluded.standard_paid),
                "verified_paid_amount": ParticipantEntry.verified_paid_amount + excluded.verified_paid_amount,
                "standard_paid_amount": ParticipantEntry.standard_paid_amount + excluded.standard_paid_amount,
                "continue_paid_amount": ParticipantEntry.continue_paid_amount + excluded.continue_paid_amount,
                "verified_at_entry": or_(ParticipantEntry.verified_at_entry, excluded.verified_at_entry),
                "updated_at": func.now(),
            },
        )
        await self.session.execute(stmt)

        entry = await self.get_entry(user_id, tournament_id)
        if entry is None:
            raise RuntimeError("entry upsert produced no row")
        return entry

    async def record_score(
        self,
        entry: ParticipantEntry,
        score: int,
        game_duration_ms: int,
        session_id: Optional[str],
        now: datetime,
    ) -> ScoreWriteResult:
        """
        Apply one accepted submission.

        The highest score moves with a conditional UPDATE so the database
        enforces max semantics under concurrent submissions. The games-played
        counter and the score log are written unconditionally.
        """
        previous = entry.highest_score

        result = await self.session.execute(
            update(ParticipantEntry)
            .where(
                ParticipantEntry.id == entry.id,
                or_(
                    ParticipantEntry.highest_score < score,
                    ParticipantEntry.first_score_at.is_(None),
                ),
            )
            .values(highest_score=score, first_score_at=now)
            .execution_options(synchronize_session=False)
        )
        is_new_high_score = (result.rowcount or 0) == 1

        await self.session.execute(
            update(ParticipantEntry)
            .where(ParticipantEntry.id == entry.id)
            .values(total_games_played=ParticipantEntry.total_games_played + 1)
            .execution_options(synchronize_session=False)
        )

        self.session.add(
            GameScore(
                user_id=entry.user_id,
                tournament_id=entry.tournament_id,
                score=score,
                game_duration_ms=game_duration_ms,
                session_id=session_id,
            )
        )
        await self.session.flush()

        row = (
            await self.session.execute(
                select(
                    ParticipantEntry.highest_score,
                    ParticipantEntry.first_score_at,
                    ParticipantEntry.total_games_played,
                ).where(ParticipantEntry.id == entry.id)
            )
        ).one()

        return ScoreWriteResult(
            previous=previous,
            current=row.highest_score,
            is_new_high_score=is_new_high_score,
            first_score_at=ensure_utc(row.first_score_at) if row.first_score_at else None,
            games_played=row.total_games_played,
        )

    # =========================================================================
    # Standings
    # =========================================================================

    @staticmethod
    def _ranked(tournament_id: str):
        return (
            select(ParticipantEntry)
            .where(
                ParticipantEntry.tournament_id == tournament_id,
                ParticipantEntry.first_score_at.is_not(None),
            )
            .order_by(
                ParticipantEntry.highest_score.desc(),
                ParticipantEntry.first_score_at.asc(),
                ParticipantEntry.id.asc(),
            )
        )

    async def list_standings(self, tournament_id: str, offset: int, limit: int) -> list[ParticipantEntry]:
        result = await self.session.execute(self._ranked(tournament_id).offset(offset).limit(limit))
        return list(result.scalars().all())

    async def all_standings(self, tournament_id: str) -> list[ParticipantEntry]:
        result = await self.session.execute(self._ranked(tournament_id))
        return list(result.scalars().all())

    async def count_ranked(self, tournament_id: str) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(ParticipantEntry)
            .where(
                ParticipantEntry.tournament_id == tournament_id,
                ParticipantEntry.first_score_at.is_not(None),
            )
        )
        return result.scalar_one()

    async def rank_of(self, tournament_id: str, score: int, first_score_at: datetime) -> int:
        """1-indexed rank of a (score, first_score_at) pair."""
        result = await self.session.execute(
            select(func.count())
            .select_from(ParticipantEntry)
            .where(
                ParticipantEntry.tournament_id == tournament_id,
                ParticipantEntry.first_score_at.is_not(None),
                or_(
                    ParticipantEntry.highest_score > score,
                    and_(
                        ParticipantEntry.highest_score == score,
                        ParticipantEntry.first_score_at < first_score_at,
                    ),
                ),
            )
        )
        return result.scalar_one() + 1

    async def list_entries(self, tournament_id: str) -> list[ParticipantEntry]:
        """Every entry of a tournament, scored or not (refund planning)."""
        result = await self.session.execute(
            select(ParticipantEntry)
            .where(ParticipantEntry.tournament_id == tournament_id)
            .order_by(ParticipantEntry.created_at.asc(), ParticipantEntry.id.asc())
        )
        return list(result.scalars().all())

    async def aggregate_totals(self, tournament_id: str) -> AggregateTotals:
        paid = or_(ParticipantEntry.verified_paid, ParticipantEntry.standard_paid)
        row = (
            await self.session.execute(
                select(
                    func.count(ParticipantEntry.id).filter(paid),
                    func.coalesce(
                        func.sum(
                            ParticipantEntry.verified_paid_amount
                            + ParticipantEntry.standard_paid_amount
                            + ParticipantEntry.continue_paid_amount
                        ),
                        0,
                    ),
                    func.coalesce(func.sum(ParticipantEntry.total_games_played), 0),
                ).where(ParticipantEntry.tournament_id == tournament_id)
            )
        ).one()
        player_count, total_collected, games = row
        return AggregateTotals(
            player_count=int(player_count or 0),
            total_collected=to_decimal(str(total_collected)).quantize(Decimal("0.0001")),
            total_games_played=int(games or 0),
        )

    # =========================================================================
    # Past tournaments
    # =========================================================================

    async def list_past_tournaments(self, offset: int, limit: int) -> list[Tournament]:
        """Rolled-over tournaments, newest cycle first."""
        result = await self.session.execute(
            select(Tournament)
            .where(Tournament.is_active.is_(False))
            .order_by(Tournament.cycle_key.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_past_tournaments(self) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(Tournament).where(Tournament.is_active.is_(False))
        )
        return result.scalar_one()
