"""
tasks/booking_tasks.py
Celery beat tasks for booking housekeeping. Each run opens its own async
session and delegates to services.booking.maintenance.
"""

import asyncio
import logging

from config.database import get_db_context
from services.booking import maintenance
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


async def _run(job) -> int:
    async with get_db_context() as db:
        return await job(db)


@celery_app.task
def send_completion_reminders() -> int:
    """Beat task: runs every hour."""
    try:
        return asyncio.run(_run(maintenance.send_completion_reminders))
    except Exception as e:
        logger.exception(f"send_completion_reminders failed: {e}")
        raise


@celery_app.task
def fail_stale_bookings() -> int:
    """Beat task: runs every 5 minutes."""
    try:
        return asyncio.run(_run(maintenance.fail_stale_bookings))
    except Exception as e:
        logger.exception(f"fail_stale_bookings failed: {e}")
        raise
