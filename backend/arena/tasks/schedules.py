"""Celery Beat schedule configuration.

Tasks:
- Weekly: tournament rollover at the cycle boundary
- Hourly: lifecycle safety run (no-op when the active tournament is current)
- Every 10 minutes: aggregate reconciliation
"""

from datetime import time

from celery.schedules import crontab


def celery_weekday(python_weekday: int) -> int:
    """Python's Monday=0 weekday to crontab's Sunday=0."""
    return (python_weekday + 1) % 7


def build_beat_schedule(boundary_weekday: int = 6, boundary_time: time = time(15, 30)) -> dict:
    """Beat entries; the rollover fires exactly at the cycle boundary (UTC)."""
    return {
        # ======================================================================
        # Weekly Tasks
        # ======================================================================

        "weekly-tournament-rollover": {
            "task": "arena.tasks.lifecycle.ensure_current_tournament_task",
            "schedule": crontab(
                minute=boundary_time.minute,
                hour=boundary_time.hour,
                day_of_week=celery_weekday(boundary_weekday),
            ),
            "kwargs": {"trigger": "celery_beat"},
            "options": {"queue": "lifecycle"},
        },

        # ======================================================================
        # Hourly Tasks
        # ======================================================================

        "hourly-lifecycle-safety": {
            "task": "arena.tasks.lifecycle.ensure_current_tournament_task",
            "schedule": crontab(minute=5),
            "kwargs": {"trigger": "celery_beat_hourly"},
            "options": {"queue": "lifecycle"},
        },

        # ======================================================================
        # Frequent Tasks
        # ======================================================================

        "sync-aggregates": {
            "task": "arena.tasks.lifecycle.sync_aggregates_task",
            "schedule": crontab(minute="*/10"),
            "options": {"queue": "maintenance"},
        },
    }


# Task routing configuration
CELERY_TASK_ROUTES = {
    "arena.tasks.lifecycle.ensure_current_tournament_task": {"queue": "lifecycle"},
    "arena.tasks.lifecycle.sync_aggregates_task": {"queue": "maintenance"},
}
