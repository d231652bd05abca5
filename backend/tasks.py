"""
Celery tasks for the shuttle tracking backend.

Runs the pickup-reminder scan on the beat schedule when CELERY_ENABLED.
"""

from celery_app import celery_app
from typing import Any, Dict, Optional
import asyncio
import logging

from config import config
from db.database import is_database_available
from services.reminder_scheduler import run_scheduled_scan
from services.sms_gateway import close_sms_gateway

logger = logging.getLogger(__name__)

REMINDER_LOCK_KEY = "shuttle:reminders:lock"


def _get_redis_client():
    """
    Redis client for the single-flight lock, or None when Redis is unreachable.
    """
    try:
        import redis

        if not config.is_redis_available():
            return None
        return redis.Redis.from_url(config.REDIS_URL)
    except Exception as e:
        logger.debug(f"Redis unavailable for reminder lock: {e}")
        return None


async def _scan_and_close():
    # the HTTP client is bound to this run's event loop
    try:
        return await run_scheduled_scan()
    finally:
        await close_sms_gateway()


def _acquire_lock(client) -> Optional[Any]:
    lock = client.lock(
        REMINDER_LOCK_KEY,
        timeout=config.REMINDER_LOCK_TIMEOUT_SECONDS,
        blocking=False,
    )
    if lock.acquire(blocking=False):
        return lock
    return None


@celery_app.task
def run_pickup_reminders() -> Dict[str, Any]:
    """
    Scan the reminder window once.

    Concurrent workers skip instead of queueing behind the Redis lock; the
    ReminderRecord insert still guards each departure if Redis is down.

    Returns:
        dict: run summary
    """
    if not is_database_available():
        logger.warning("[Reminders] Database not available, run skipped")
        return {"skipped": True, "error": "Database not available"}

    client = _get_redis_client()
    lock = None
    if client is not None:
        lock = _acquire_lock(client)
        if lock is None:
            logger.info("[Reminders] Another worker holds the reminder lock, skipping")
            return {"skipped": True, "reason": "locked"}

    try:
        summary = asyncio.run(_scan_and_close())
        return summary.model_dump(mode="json")
    except Exception as e:
        logger.error(f"[Reminders] Celery run failed: {e}")
        raise
    finally:
        if lock is not None:
            try:
                lock.release()
            except Exception as e:
                logger.warning(f"[Reminders] Could not release lock: {e}")
