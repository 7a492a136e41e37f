"""
Prize Engine.

Pure computation of the prize pool and per-rank payouts from aggregated
payment totals.

    admin_fee        = total * 30%
    base_prize_pool  = total * 70%          (player-facing pool)
    guarantee        = 1.0 * min(players, 10) when total < 72, else 0
    rank amount      = base_prize_pool * pct(rank)
    rank payout      = rank amount + 1.0    (ranks that have a player, guarantee only)
    admin net result = admin_fee - guarantee

The guarantee is funded from the admin fee and never shown as part of the
pool. Tournaments with fewer than MIN_PLAYERS_FOR_PAYOUT players are
refunded instead; callers check ``should_refund`` first.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

ADMIN_FEE_RATE = Decimal("0.30")
PRIZE_POOL_RATE = Decimal("0.70")
GUARANTEE_THRESHOLD = Decimal("72")
GUARANTEE_PER_WINNER = Decimal("1.0")
MIN_PLAYERS_FOR_PAYOUT = 5
MAX_WINNERS = 10

# Rank 1..10, percent of the base prize pool
PRIZE_PERCENTAGES: tuple[Decimal, ...] = tuple(
    Decimal(p) for p in ("40", "22", "14", "6", "5", "4", "3", "2", "2", "2")
)

MONEY_QUANTUM = Decimal("0.0001")


def to_decimal(value: Decimal | float | int | str) -> Decimal:
    """Convert through ``str`` so 71.99 stays 71.99."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _money(value: Decimal) -> Decimal:
    return value.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class RankPrize:
    """Prize for one rank."""

    rank: int
    percentage: Decimal
    amount: Decimal  # player-facing share of the base pool
    payout: Decimal  # amount actually paid (includes guarantee top-up)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rank": self.rank,
            "percentage": float(self.percentage),
            "amount": float(self.amount),
            "payout": float(self.payout),
        }


@dataclass(frozen=True)
class PrizeBreakdown:
    """Result of compute_prizes."""

    total_collected: Decimal
    player_count: int
    prize_pool: Decimal
    admin_fee: Decimal
    guarantee_amount: Decimal
    admin_net_result: Decimal
    ranks: tuple[RankPrize, ...] = field(default_factory=tuple)

    @property
    def guarantee_applied(self) -> bool:
        return self.guarantee_amount > 0

    @property
    def winner_count(self) -> int:
        return min(self.player_count, MAX_WINNERS)

    def payout_for_rank(self, rank: int) -> Decimal:
        if rank < 1 or rank > len(self.ranks):
            return Decimal("0")
        return self.ranks[rank - 1].payout

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_collected": float(self.total_collected),
            "player_count": self.player_count,
            "prize_pool": float(self.prize_pool),
            "admin_fee": float(self.admin_fee),
            "guarantee_amount": float(self.guarantee_amount),
            "guarantee_applied": self.guarantee_applied,
            "admin_net_result": float(self.admin_net_result),
            "winner_count": self.winner_count,
            "ranks": [r.to_dict() for r in self.ranks],
        }


def should_refund(player_count: int) -> bool:
    """Below the minimum field size every entry is refunded."""
    return player_count < MIN_PLAYERS_FOR_PAYOUT


def compute_prizes(
    total_collected: Decimal | float | int | str,
    player_count: int,
) -> PrizeBreakdown:
    """
    Compute pool, fee, guarantee and per-rank amounts.

    Args:
        total_collected: Sum of all entry and continue payments
        player_count: Number of paying players

    Returns:
        PrizeBreakdown with one RankPrize per rank 1..10

    Raises:
        ValueError: On negative inputs
    """
    total = to_decimal(total_collected)
    if total < 0:
        raise ValueError("total_collected must not be negative")
    if player_count < 0:
        raise ValueError("player_count must not be negative")

    admin_fee = _money(total * ADMIN_FEE_RATE)
    base_pool = _money(total * PRIZE_POOL_RATE)

    winners = min(player_count, MAX_WINNERS)
    if total < GUARANTEE_THRESHOLD:
        guarantee = _money(GUARANTEE_PER_WINNER * winners)
    else:
        guarantee = Decimal("0")

    per_winner_top_up = GUARANTEE_PER_WINNER if guarantee > 0 else Decimal("0")

    ranks = []
    for index, pct in enumerate(PRIZE_PERCENTAGES):
        rank = index + 1
        amount = _money(base_pool * pct / 100)
        payout = amount + per_winner_top_up if rank <= winners else amount
        ranks.append(RankPrize(rank=rank, percentage=pct, amount=amount, payout=payout))

    return PrizeBreakdown(
        total_collected=total,
        player_count=player_count,
        prize_pool=base_pool,
        admin_fee=admin_fee,
        guarantee_amount=guarantee,
        admin_net_result=admin_fee - guarantee,
        ranks=tuple(ranks),
    )
