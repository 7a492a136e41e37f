"""Celery application configuration.

Features:
- Redis as broker and result backend
- Task routing by queue
- Scheduled lifecycle runs via Celery Beat
"""

from celery import Celery

from arena.config import get_settings
from arena.tasks.schedules import CELERY_TASK_ROUTES, build_beat_schedule

settings = get_settings()

BROKER_URL = settings.celery_broker_url or settings.redis_url

celery_app = Celery(
    "arena_tasks",
    broker=BROKER_URL,
    backend=BROKER_URL,
    include=[
        "arena.tasks.lifecycle",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Cycle boundaries are defined in UTC
    timezone="UTC",
    enable_utc=True,

    task_routes=CELERY_TASK_ROUTES,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,

    # Result settings
    result_expires=86400,  # 24 hours

    beat_schedule=build_beat_schedule(
        settings.cycle_boundary_weekday,
        settings.cycle_boundary_time,
    ),

    # Retry settings
    task_default_retry_delay=60,
    task_max_retries=3,
)
