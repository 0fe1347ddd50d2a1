"""Celery task definitions for scheduled harmonization runs."""

from celery import Celery
from celery.schedules import crontab

from harmonizer.config import settings

celery_app = Celery(
    "harmonizer",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="Africa/Nairobi",
    enable_utc=True,
)

# Periodic beat schedule
celery_app.conf.beat_schedule = {
    "harmonize-pending-loans": {
        "task": "harmonizer.tasks.migration_tasks.harmonize_pending_loans",
        "schedule": crontab(
            hour=settings.migration_schedule_hour,
            minute=settings.migration_schedule_minute,
        ),  # 2:30 AM daily by default
    },
}

# Import tasks so they get registered
from harmonizer.tasks.migration_tasks import *  # noqa
