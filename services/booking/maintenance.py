"""
services/booking/maintenance.py
Periodic booking housekeeping, run by Celery beat (tasks/booking_tasks.py).
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import store_call, utcnow
from config.settings import settings
from services.notification.dispatcher import notify_booking_event
from shared.models.models import Booking, BookingStatus, NotificationType

logger = logging.getLogger(__name__)


async def send_completion_reminders(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """
    Remind providers about confirmed bookings that ended
    COMPLETION_REMINDER_HOURS ago and were never marked completed.
    """
    now = now or utcnow()
    cutoff = now - timedelta(hours=settings.COMPLETION_REMINDER_HOURS)
    result = await db.execute(
        select(Booking).where(
            Booking.status == BookingStatus.CONFIRMED,
            Booking.end <= cutoff,
            Booking.reminder_sent == False,  # noqa: E712
        )
    )
    bookings = result.scalars().all()
    if not bookings:
        return 0

    for booking in bookings:
        booking.reminder_sent = True
    await store_call(db.commit(), operation="reminder flags")

    for booking in bookings:
        # a failed notification rolls back and expires the batch
        await db.refresh(booking)
        await notify_booking_event(db, booking, NotificationType.BOOKING_REMINDER, booking.provider_id)

    logger.info(f"Sent {len(bookings)} completion reminders")
    return len(bookings)


async def fail_stale_bookings(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """Pending bookings nobody confirmed within STALE_BOOKING_MINUTES become failed."""
    now = now or utcnow()
    cutoff = now - timedelta(minutes=settings.STALE_BOOKING_MINUTES)
    result = await db.execute(
        update(Booking)
        .where(Booking.status == BookingStatus.PENDING, Booking.created_at < cutoff)
        .values(status=BookingStatus.FAILED, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await store_call(db.commit(), operation="stale booking cleanup")
    count = result.rowcount or 0
    if count:
        logger.info(f"Marked {count} stale pending bookings as failed")
    return count
