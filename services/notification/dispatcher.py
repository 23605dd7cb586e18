"""
services/notification/dispatcher.py
Best-effort notifications for listing and booking events.

Each notification is stored as an in-app row and, when the recipient has a
device token, handed to Celery for push delivery. Dispatch runs after the
triggering transaction has committed; a failure here is logged and never
undoes that transaction.
"""

import logging
import uuid
from typing import Optional

from pybreaker import CircuitBreaker, CircuitBreakerError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import store_call
from services.listing.workflow import Transition
from shared.models.models import Booking, Notification, NotificationType, User

logger = logging.getLogger(__name__)

# Broker outages degrade to in-app notifications only
push_breaker = CircuitBreaker(fail_max=5, reset_timeout=60, name="push-delivery")


TEMPLATES = {
    "approve_create": ("Listing approved", "{name} is now live as {public_id}."),
    "approve_update": ("Changes approved", "Your changes to {name} are now live."),
    "approve_delete": ("Deletion approved", "{name} has been removed from the marketplace."),
    "approve_reactivate": ("Listing reactivated", "{name} is live again."),
    "reject_create": ("Listing rejected", "{name} was not approved: {reason}"),
    "reject_update": ("Changes rejected", "Your changes to {name} were not approved: {reason}"),
    "reject_delete": ("Deletion rejected", "{name} stays live: {reason}"),
    "reject_reactivate": ("Reactivation rejected", "{name} stays offline: {reason}"),
    "suspend": ("Listing suspended", "{name} was taken offline: {reason}"),
    "create": ("Listing submitted", "{name} was sent for admin approval."),
    "resubmit": ("Listing resubmitted", "{name} was sent back for admin approval."),
    NotificationType.BOOKING_CREATED: ("New booking", "Booking {booking_number} on {date} at {time}."),
    NotificationType.BOOKING_CONFIRMED: ("Booking confirmed", "Booking {booking_number} is confirmed."),
    NotificationType.BOOKING_CANCELLED: ("Booking cancelled", "Booking {booking_number} was cancelled."),
    NotificationType.BOOKING_COMPLETED: ("Booking completed", "Booking {booking_number} is complete."),
    NotificationType.BOOKING_RESCHEDULED: (
        "Booking rescheduled", "Booking {booking_number} moved to {date} at {time}."
    ),
    NotificationType.BOOKING_REMINDER: (
        "Mark your appointment", "Booking {booking_number} has ended. Please mark it completed."
    ),
    NotificationType.FEEDBACK_REQUEST: (
        "How was your appointment?", "Tell us about booking {booking_number}."
    ),
    NotificationType.FEEDBACK_RECEIVED: ("New feedback", "You received a {rating}-star rating."),
    NotificationType.NEW_MESSAGE: ("New message", "{sender} sent you a message."),
}


def render(key, **values) -> tuple[str, str]:
    title, body = TEMPLATES[key]
    return title, body.format(**values)


def _push(user: User, title: str, body: str, data: dict) -> bool:
    from tasks.notification_tasks import send_push_notification

    try:
        push_breaker.call(send_push_notification.delay, user.fcm_token, title, body, data)
        return True
    except CircuitBreakerError:
        logger.warning(f"Push delivery circuit open, user {user.id} gets in-app only")
    except Exception as e:
        logger.warning(f"Could not queue push for user {user.id}: {e}")
    return False


async def notify_user(
    db: AsyncSession,
    user_id: uuid.UUID,
    type: NotificationType,
    title: str,
    body: str,
    data: Optional[dict] = None,
    listing_id: Optional[uuid.UUID] = None,
    booking_id: Optional[uuid.UUID] = None,
) -> Optional[Notification]:
    """Store and push one notification. Returns None when dispatch failed."""
    try:
        user = await db.get(User, user_id)
        if user is None:
            logger.warning(f"Notification skipped, user {user_id} not found")
            return None

        notification = Notification(
            user_id=user_id,
            type=type,
            title=title,
            body=body,
            data=data,
            listing_id=listing_id,
            booking_id=booking_id,
        )
        db.add(notification)
        await store_call(db.commit(), operation="notification insert")

        if user.fcm_token:
            notification.sent_push = _push(user, title, body, {**(data or {}), "type": type.value})
            if notification.sent_push:
                await store_call(db.commit(), operation="notification update")
        return notification
    except Exception as e:
        logger.warning(f"Notification to user {user_id} failed: {e}")
        await db.rollback()
        return None


async def notify_listing_transition(
    db: AsyncSession,
    transition: Transition,
    actor_id: uuid.UUID,
    reason: Optional[str] = None,
) -> Optional[Notification]:
    """Tell the listing owner about a lifecycle change."""
    if transition.replayed or transition.action not in TEMPLATES:
        return None

    listing = transition.listing
    payload = {
        "listing_id": str(listing.id),
        "public_id": listing.public_id,
        "new_status": transition.new_status.value,
        "actor_id": str(actor_id),
        "reason": reason,
        "action": transition.action,
    }
    try:
        title, body = render(
            transition.action,
            name=listing.name,
            public_id=listing.public_id,
            reason=reason or "",
        )
        owner_id = listing.owner_id
        listing_id = listing.id
    except Exception as e:
        logger.warning(f"Could not render notification for listing {payload['listing_id']}: {e}")
        return None

    return await notify_user(
        db,
        owner_id,
        NotificationType.LISTING_STATUS_CHANGED,
        title,
        body,
        data=payload,
        listing_id=listing_id,
    )


async def notify_booking_event(
    db: AsyncSession,
    booking: Booking,
    type: NotificationType,
    recipient_id: uuid.UUID,
) -> Optional[Notification]:
    title, body = render(
        type,
        booking_number=booking.booking_number,
        date=booking.booking_date,
        time=booking.booking_time,
    )
    return await notify_user(
        db,
        recipient_id,
        type,
        title,
        body,
        data={"booking_id": str(booking.id), "status": booking.status.value},
        booking_id=booking.id,
    )


async def unread_count(db: AsyncSession, user_id: uuid.UUID) -> int:
    result = await db.execute(
        select(func.count(Notification.id)).where(
            Notification.user_id == user_id,
            Notification.is_read == False,  # noqa: E712
        )
    )
    return result.scalar() or 0
