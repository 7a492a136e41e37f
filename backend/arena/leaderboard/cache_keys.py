"""Response cache key registry.

Every scope has a "current" alias and a per-day key. They are always
produced (and therefore invalidated) together.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable

CURRENT = "current"


class CacheScope(str, Enum):
    LEADERBOARD = "leaderboard"
    STATS = "stats"
    PRIZES = "prizes"


ALL_SCOPES: tuple[CacheScope, ...] = (CacheScope.LEADERBOARD, CacheScope.STATS, CacheScope.PRIZES)


def scope_key(scope: CacheScope, tournament_key: str) -> str:
    return f"cache:{scope.value}:{tournament_key}"


def current_key(scope: CacheScope) -> str:
    return scope_key(scope, CURRENT)


def day_key(scope: CacheScope, tournament_key: str) -> str:
    return scope_key(scope, tournament_key)


def keys_for(scopes: Iterable[CacheScope], tournament_key: str | None) -> list[str]:
    """Alias and day keys for each scope (alias only when no day is known)."""
    keys: list[str] = []
    for scope in scopes:
        keys.append(current_key(scope))
        if tournament_key and tournament_key != CURRENT:
            keys.append(day_key(scope, tournament_key))
    return keys


def page_field(offset: int, limit: int) -> str:
    """Hash field of one leaderboard page."""
    return f"{offset}:{limit}"
