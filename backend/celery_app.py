"""
Celery application for the shuttle tracking backend.

The beat schedule runs the pickup-reminder scan every
REMINDER_INTERVAL_SECONDS. Start with:

    celery -A celery_app worker --beat --loglevel=info
"""

from celery import Celery

from config import config

celery_app = Celery(
    "shuttle",
    broker=config.REDIS_URL,
    backend=config.REDIS_URL,
    include=["tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=config.REMINDER_LOCK_TIMEOUT_SECONDS,
    worker_prefetch_multiplier=1,
    result_expires=3600,
    beat_schedule={
        "pickup-reminders": {
            "task": "tasks.run_pickup_reminders",
            "schedule": float(config.REMINDER_INTERVAL_SECONDS),
        },
    },
)
