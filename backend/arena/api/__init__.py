"""API routers."""

from arena.api.admin import router as admin_router
from arena.api.cron import router as cron_router
from arena.api.leaderboard import router as leaderboard_router
from arena.api.scores import router as scores_router
from arena.api.stream import router as stream_router
from arena.api.tournament import router as tournament_router

__all__ = [
    "admin_router",
    "cron_router",
    "leaderboard_router",
    "scores_router",
    "stream_router",
    "tournament_router",
]
