"""
Ranked Store.

Per-tournament leaderboard projection in Redis:

    leaderboard:{day}            sorted set   participant -> rank value
    leaderboard:{day}:details    hash         participant -> {"display_name", "wallet"}
    leaderboard:{day}:snapshot   string       load marker {"count", "loaded_at", "source"}

The sorted set gives O(log n) updates (ZADD), O(log n) rank lookups
(ZREVRANK) and O(log n + k) page reads (ZREVRANGE). The store is a
derived, rebuildable copy of participant_entries; every operation fails
soft (None/False plus a warning) so callers can fall back to the database.

Tie-break is encoded into the stored value rather than left to insertion
order:

    value = score * TIE_BREAK_SCALE + (TIE_BREAK_SCALE - 1 - offset_ms)

where offset_ms is the time between the cycle start and the moment the
score was reached. Equal scores therefore sort earliest-first and a reload
in any order produces the same ranking. Scores are recovered with floor
division.

The snapshot marker is written only by ``bulk_load``. Readers trust the
store only when it is present, so ZADDs against a cold store (which would
hold just the players who happened to submit) are never served as a full
leaderboard.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Iterable, Optional, TypeVar

import redis.asyncio as redis
from redis.exceptions import RedisError

from arena.logging_config import get_logger
from arena.tournament.cycle import (
    CYCLE_LENGTH,
    CycleBoundary,
    cycle_window,
    ensure_utc,
    parse_cycle_key,
    utcnow,
)
from arena.utils.json_utils import json_dumps, json_loads

logger = get_logger(__name__)

T = TypeVar("T")

TIE_BREAK_SCALE = 10**9
UNKNOWN_WALLET = "Unknown"


def encode_rank_value(score: int, achieved_at: datetime, cycle_start: datetime) -> int:
    """Composite sort value: higher score first, then earlier achievement."""
    offset_ms = int((ensure_utc(achieved_at) - ensure_utc(cycle_start)).total_seconds() * 1000)
    offset_ms = min(max(offset_ms, 0), TIE_BREAK_SCALE - 1)
    return score * TIE_BREAK_SCALE + (TIE_BREAK_SCALE - 1 - offset_ms)


def decode_score(value: float) -> int:
    return int(value) // TIE_BREAK_SCALE


@dataclass
class RankedEntry:
    """One row of a leaderboard page."""

    rank: int
    participant_id: str
    score: int
    display_name: Optional[str] = None
    wallet: str = UNKNOWN_WALLET

    def to_dict(self) -> dict[str, Any]:
        return {
            "rank": self.rank,
            "participant_id": self.participant_id,
            "display_name": self.display_name,
            "wallet": self.wallet,
            "score": self.score,
        }


@dataclass
class RankedParticipant:
    """Authoritative row used to (re)seed the store."""

    participant_id: str
    score: int
    achieved_at: datetime
    display_name: Optional[str] = None
    wallet: str = UNKNOWN_WALLET


class RankedStore:
    """Redis sorted-set leaderboard with companion details."""

    KEY_PREFIX = "leaderboard"

    # ZADD/HSET chunk size during bulk loads
    BULK_BATCH_SIZE = 100

    def __init__(
        self,
        redis_client: redis.Redis,
        boundary: CycleBoundary,
        ttl_margin: timedelta = timedelta(days=1),
        op_timeout: float = 3.0,
    ):
        self.redis = redis_client
        self.boundary = boundary
        self.ttl_seconds = int((CYCLE_LENGTH + ttl_margin).total_seconds())
        self.op_timeout = op_timeout

    # =========================================================================
    # Keys
    # =========================================================================

    def _scores_key(self, tournament_key: str) -> str:
        return f"{self.KEY_PREFIX}:{tournament_key}"

    def _details_key(self, tournament_key: str) -> str:
        return f"{self.KEY_PREFIX}:{tournament_key}:details"

    def _snapshot_key(self, tournament_key: str) -> str:
        return f"{self.KEY_PREFIX}:{tournament_key}:snapshot"

    def keys_for(self, tournament_key: str) -> list[str]:
        """The full cache triple for one tournament."""
        return [
            self._scores_key(tournament_key),
            self._details_key(tournament_key),
            self._snapshot_key(tournament_key),
        ]

    def _cycle_start(self, tournament_key: str) -> datetime:
        start, _ = cycle_window(parse_cycle_key(tournament_key), self.boundary)
        return start

    @staticmethod
    def _details_json(display_name: Optional[str], wallet: Optional[str]) -> str:
        return json_dumps({"display_name": display_name, "wallet": wallet or UNKNOWN_WALLET})

    async def _soft(self, op: str, tournament_key: str, awaitable: Awaitable[T], default: T) -> T:
        """Await with a timeout; log and return ``default`` on backend failure."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.op_timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            logger.warning(
                "ranked_store_unavailable",
                op=op,
                tournament_day=tournament_key,
                error_type=type(e).__name__,
                error=str(e),
            )
            return default

    # =========================================================================
    # Writes
    # =========================================================================

    async def upsert_score(
        self,
        tournament_key: str,
        participant_id: str,
        score: int,
        details: dict[str, Optional[str]],
        achieved_at: Optional[datetime] = None,
    ) -> bool:
        """
        Set the participant's stored value and details, refreshing TTLs.

        Last write wins; callers pass the participant's current highest
        score. Returns False if the backend is unreachable.
        """
        value = encode_rank_value(
            score,
            achieved_at or utcnow(),
            self._cycle_start(tournament_key),
        )

        async def run() -> bool:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.zadd(self._scores_key(tournament_key), {participant_id: value})
                pipe.hset(
                    self._details_key(tournament_key),
                    participant_id,
                    self._details_json(details.get("display_name"), details.get("wallet")),
                )
                for key in self.keys_for(tournament_key):
                    pipe.expire(key, self.ttl_seconds)
                await pipe.execute()
            return True

        return await self._soft("upsert_score", tournament_key, run(), False)

    async def bulk_load(
        self,
        tournament_key: str,
        participants: Iterable[RankedParticipant],
        source: str = "database",
    ) -> bool:
        """
        Atomically replace the whole triple with an authoritative list.

        Used after a cache miss and at rollover. Scores, details and the
        snapshot marker are deleted in the same MULTI as the repopulation,
        so no reader sees leftovers from a previous load.
        """
        rows = list(participants)
        cycle_start = self._cycle_start(tournament_key)
        scores_key = self._scores_key(tournament_key)
        details_key = self._details_key(tournament_key)

        async def run() -> bool:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.delete(*self.keys_for(tournament_key))
                for i in range(0, len(rows), self.BULK_BATCH_SIZE):
                    batch = rows[i:i + self.BULK_BATCH_SIZE]
                    pipe.zadd(
                        scores_key,
                        {
                            p.participant_id: encode_rank_value(p.score, p.achieved_at, cycle_start)
                            for p in batch
                        },
                    )
                    pipe.hset(
                        details_key,
                        mapping={
                            p.participant_id: self._details_json(p.display_name, p.wallet)
                            for p in batch
                        },
                    )
                pipe.set(
                    self._snapshot_key(tournament_key),
                    json_dumps({
                        "count": len(rows),
                        "loaded_at": utcnow().isoformat(),
                        "source": source,
                    }),
                    ex=self.ttl_seconds,
                )
                if rows:
                    pipe.expire(scores_key, self.ttl_seconds)
                    pipe.expire(details_key, self.ttl_seconds)
                await pipe.execute()
            logger.info(
                "ranked_store_loaded",
                tournament_day=tournament_key,
                count=len(rows),
                source=source,
            )
            return True

        return await self._soft("bulk_load", tournament_key, run(), False)

    async def remove(self, tournament_key: str, participant_id: str) -> bool:
        async def run() -> bool:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.zrem(self._scores_key(tournament_key), participant_id)
                pipe.hdel(self._details_key(tournament_key), participant_id)
                await pipe.execute()
            return True

        return await self._soft("remove", tournament_key, run(), False)

    async def clear(self, tournament_key: str) -> bool:
        async def run() -> bool:
            await self.redis.delete(*self.keys_for(tournament_key))
            return True

        return await self._soft("clear", tournament_key, run(), False)

    # =========================================================================
    # Reads
    # =========================================================================

    async def is_loaded(self, tournament_key: str) -> bool:
        async def run() -> bool:
            return bool(await self.redis.exists(self._snapshot_key(tournament_key)))

        return await self._soft("is_loaded", tournament_key, run(), False)

    async def get_top_range(
        self,
        tournament_key: str,
        offset: int,
        limit: int,
    ) -> Optional[list[RankedEntry]]:
        """
        Page of the leaderboard, best first.

        rank = offset + index + 1. Details for the whole page are fetched
        with a single HMGET. Returns None if the backend is unreachable.
        """
        if limit <= 0:
            return []

        async def run() -> list[RankedEntry]:
            members = await self.redis.zrevrange(
                self._scores_key(tournament_key),
                offset,
                offset + limit - 1,
                withscores=True,
            )
            if not members:
                return []

            ids = [member for member, _ in members]
            raw_details = await self.redis.hmget(self._details_key(tournament_key), ids)

            entries: list[RankedEntry] = []
            for index, ((participant_id, value), raw) in enumerate(zip(members, raw_details)):
                info = json_loads(raw) if raw else {}
                entries.append(
                    RankedEntry(
                        rank=offset + index + 1,
                        participant_id=participant_id,
                        score=decode_score(value),
                        display_name=info.get("display_name"),
                        wallet=info.get("wallet") or UNKNOWN_WALLET,
                    )
                )
            return entries

        return await self._soft("get_top_range", tournament_key, run(), None)

    async def get_rank(self, tournament_key: str, participant_id: str) -> Optional[int]:
        """1-indexed rank, or None if absent or unreachable."""

        async def run() -> Optional[int]:
            rank_0 = await self.redis.zrevrank(self._scores_key(tournament_key), participant_id)
            return None if rank_0 is None else rank_0 + 1

        return await self._soft("get_rank", tournament_key, run(), None)

    async def size(self, tournament_key: str) -> Optional[int]:
        async def run() -> int:
            return await self.redis.zcard(self._scores_key(tournament_key))

        return await self._soft("size", tournament_key, run(), None)
