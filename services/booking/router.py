"""
services/booking/router.py
Appointment lifecycle and slot availability.
States: pending → confirmed → completed
        pending | confirmed → cancelled
        pending → failed (stale, see tasks.booking_tasks)

No two confirmed bookings of a listing may overlap. Creation, confirmation
and rescheduling hold a short Redis lock on the listing's day while they
check the calendar and write.
"""

import logging
import random
import string
import uuid
from contextlib import asynccontextmanager
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db, store_call, utcnow
from config.redis_client import RedisCache, get_redis
from config.settings import settings
from services.booking.availability import (
    available_slots,
    confirmed_intervals,
    generate_candidates,
    overlaps,
    working_windows,
)
from services.notification.dispatcher import notify_booking_event
from shared.middleware.auth import get_current_user, require_customer
from shared.models.models import (
    Booking,
    BookingLocation,
    BookingStatus,
    Listing,
    ListingStatus,
    NotificationType,
    User,
    UserRole,
)
from shared.schemas.schemas import (
    AvailabilityResponse,
    BookingCancelRequest,
    BookingCreateRequest,
    BookingRescheduleRequest,
    BookingResponse,
    BookingStatusUpdateRequest,
)
from shared.utils.exceptions import (
    BookingNotFoundError,
    ListingNotFoundError,
    ListingStateError,
    SlotConflictError,
    ValidationError,
)
from shared.utils.policy import ensure_booking_access

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])

ALLOWED_TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
}


# ── Helpers ───────────────────────────────────────────────────

def _generate_booking_number() -> str:
    """Generate a human-readable booking number like BB-2026-X7K9M."""
    year = datetime.now().year
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=5))
    return f"BB-{year}-{suffix}"


async def _get_booking_or_404(booking_id: UUID, db: AsyncSession) -> Booking:
    result = await db.execute(select(Booking).where(Booking.id == booking_id))
    booking = result.scalar_one_or_none()
    if not booking:
        raise BookingNotFoundError()
    return booking


async def _get_bookable_listing(listing_id: UUID, db: AsyncSession) -> Listing:
    listing = await db.get(Listing, listing_id)
    if listing is None:
        raise ListingNotFoundError()
    if listing.status != ListingStatus.APPROVED or not listing.is_active:
        raise ListingStateError("This listing is not open for bookings")
    return listing


def _local_start(day: date, hhmm: str) -> datetime:
    return datetime.combine(day, time.fromisoformat(hhmm), tzinfo=settings.business_tz)


def _ensure_within_working_hours(start: datetime, duration: int) -> None:
    candidates = generate_candidates(working_windows(start.date()), duration)
    if start not in candidates:
        raise ValidationError(["Selected time is not one of the available slots for this day"])
    if start <= utcnow():
        raise ValidationError(["Cannot book a time in the past"])


async def _ensure_no_overlap(
    db: AsyncSession,
    booking_listing_id: UUID,
    start: datetime,
    end: datetime,
    exclude_booking_id: Optional[UUID] = None,
) -> None:
    for other_start, other_end in await confirmed_intervals(
        db, booking_listing_id, (start, end), exclude_booking_id
    ):
        if overlaps(start, end, other_start, other_end):
            raise SlotConflictError()


def _price_for(listing: Listing) -> Decimal:
    price = Decimal(str((listing.pricing or {}).get("base_price", 0)))
    discount = (listing.special_offers or {}).get("discount_percentage")
    if discount:
        price = price * (Decimal(100) - Decimal(str(discount))) / Decimal(100)
    return price.quantize(Decimal("0.01"))


@asynccontextmanager
async def _listing_day_lock(redis, listing_id: UUID, day: date):
    cache = RedisCache(redis)
    owner = str(uuid.uuid4())
    if not await cache.lock_listing_day(str(listing_id), day.isoformat(), owner):
        raise SlotConflictError(
            "Another booking for this day is being processed. Please try again."
        )
    try:
        yield
    finally:
        await cache.release_listing_day(str(listing_id), day.isoformat(), owner)


def _other_party(booking: Booking, user: User) -> UUID:
    return booking.provider_id if user.id == booking.customer_id else booking.customer_id


# ── Availability ──────────────────────────────────────────────

@router.get("/availability", response_model=AvailabilityResponse)
async def get_availability(
    listing_id: UUID = Query(...),
    day: date = Query(..., alias="date"),
    db: AsyncSession = Depends(get_db),
):
    """Open start times for a listing on a day, in the business time zone."""
    slots = await available_slots(db, listing_id, day)
    listing = await db.get(Listing, listing_id)
    return AvailabilityResponse(
        listing_id=listing_id,
        date=day,
        duration=listing.duration,
        slots=slots,
    )


# ── Booking Creation ──────────────────────────────────────────

@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    data: BookingCreateRequest,
    current_user: User = Depends(require_customer),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """
    Book an open slot. Steps:
    1. Listing must be approved and active
    2. Start must be one of the day's generated slots
    3. Under the day lock, reject overlaps with confirmed bookings
    4. Create the pending booking and notify the provider
    """
    listing = await _get_bookable_listing(data.listing_id, db)
    start = _local_start(data.date, data.time)
    _ensure_within_working_hours(start, listing.duration)
    end = start + timedelta(minutes=listing.duration)

    async with _listing_day_lock(redis, listing.id, data.date):
        await _ensure_no_overlap(db, listing.id, start, end)
        booking = Booking(
            booking_number=_generate_booking_number(),
            listing_id=listing.id,
            provider_id=listing.owner_id,
            customer_id=current_user.id,
            booking_date=data.date.isoformat(),
            booking_time=data.time,
            start=start,
            end=end,
            duration=listing.duration,
            location=BookingLocation(data.location),
            address=data.address,
            notes=data.notes,
            total_price=_price_for(listing),
            status=BookingStatus.PENDING,
        )
        db.add(booking)
        await store_call(db.commit(), operation="booking insert")

    logger.info(f"Booking {booking.booking_number} created for listing {listing.id}")
    response = BookingResponse.model_validate(booking)
    await notify_booking_event(db, booking, NotificationType.BOOKING_CREATED, booking.provider_id)
    return response


# ── Status Changes ────────────────────────────────────────────

@router.patch("/{booking_id}/status", response_model=BookingResponse)
async def update_booking_status(
    booking_id: UUID,
    data: BookingStatusUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Provider (or admin) confirms, completes or cancels a booking."""
    booking = await _get_booking_or_404(booking_id, db)
    ensure_booking_access(current_user, booking, manage=True)

    new_status = BookingStatus(data.status)
    if new_status not in ALLOWED_TRANSITIONS.get(booking.status, set()):
        raise ValidationError(
            [f"Booking in '{booking.status.value}' state cannot become '{new_status.value}'"]
        )

    now = utcnow()
    if new_status == BookingStatus.CONFIRMED:
        async with _listing_day_lock(redis, booking.listing_id, date.fromisoformat(booking.booking_date)):
            await _ensure_no_overlap(db, booking.listing_id, booking.start, booking.end, booking.id)
            booking.status = BookingStatus.CONFIRMED
            booking.confirmed_at = now
            await store_call(db.commit(), operation="booking update")
        event, recipient = NotificationType.BOOKING_CONFIRMED, booking.customer_id
    else:
        if new_status == BookingStatus.COMPLETED:
            booking.completed_at = now
            event, recipient = NotificationType.FEEDBACK_REQUEST, booking.customer_id
        else:
            booking.cancelled_at = now
            booking.cancellation_reason = data.reason
            booking.cancelled_by = current_user.role.value
            event, recipient = NotificationType.BOOKING_CANCELLED, booking.customer_id
        booking.status = new_status
        await store_call(db.commit(), operation="booking update")

    logger.info(f"Booking {booking.booking_number} -> {new_status.value} by {current_user.id}")
    response = BookingResponse.model_validate(booking)
    await notify_booking_event(db, booking, event, recipient)
    return response


@router.post("/{booking_id}/reschedule", response_model=BookingResponse)
async def reschedule_booking(
    booking_id: UUID,
    data: BookingRescheduleRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Move a pending or confirmed booking to another open slot."""
    booking = await _get_booking_or_404(booking_id, db)
    ensure_booking_access(current_user, booking)
    if booking.status not in ALLOWED_TRANSITIONS:
        raise ValidationError([f"Booking in '{booking.status.value}' state cannot be rescheduled"])

    start = _local_start(data.date, data.time)
    _ensure_within_working_hours(start, booking.duration)

    async with _listing_day_lock(redis, booking.listing_id, data.date):
        open_slots = await available_slots(db, booking.listing_id, data.date, exclude_booking_id=booking.id)
        if start not in open_slots:
            raise SlotConflictError()
        booking.booking_date = data.date.isoformat()
        booking.booking_time = data.time
        booking.start = start
        booking.end = start + timedelta(minutes=booking.duration)
        booking.reminder_sent = False
        await store_call(db.commit(), operation="booking update")

    response = BookingResponse.model_validate(booking)
    await notify_booking_event(
        db, booking, NotificationType.BOOKING_RESCHEDULED, _other_party(booking, current_user)
    )
    return response


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: UUID,
    data: BookingCancelRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Customer, provider or admin cancels a pending or confirmed booking."""
    booking = await _get_booking_or_404(booking_id, db)
    ensure_booking_access(current_user, booking)

    if BookingStatus.CANCELLED not in ALLOWED_TRANSITIONS.get(booking.status, set()):
        raise ValidationError([f"Booking in '{booking.status.value}' state cannot be cancelled"])

    booking.status = BookingStatus.CANCELLED
    booking.cancellation_reason = data.reason
    booking.cancelled_by = current_user.role.value
    booking.cancelled_at = utcnow()
    await store_call(db.commit(), operation="booking update")

    response = BookingResponse.model_validate(booking)
    if current_user.role != UserRole.ADMIN:
        await notify_booking_event(
            db, booking, NotificationType.BOOKING_CANCELLED, _other_party(booking, current_user)
        )
    return response


# ── Read Endpoints ────────────────────────────────────────────

@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Customer sees own, provider sees their listings' bookings, admin sees all."""
    booking = await _get_booking_or_404(booking_id, db)
    ensure_booking_access(current_user, booking)
    return booking


@router.get("", response_model=list[BookingResponse])
async def list_my_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List bookings for the current user. Providers see bookings of their listings."""
    if current_user.role == UserRole.SERVICE_PROVIDER:
        query = select(Booking).where(Booking.provider_id == current_user.id)
    elif current_user.role == UserRole.CUSTOMER:
        query = select(Booking).where(Booking.customer_id == current_user.id)
    else:
        query = select(Booking)

    if status_filter:
        query = query.where(Booking.status == status_filter)

    query = query.order_by(Booking.start.desc()).offset((page - 1) * page_size).limit(page_size)
    result = await db.execute(query)
    return result.scalars().all()
