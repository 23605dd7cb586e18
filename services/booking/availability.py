"""
services/booking/availability.py
Open appointment slots for a listing on a given day.

Candidates are laid out back to back inside each working window at the
listing's duration; a candidate survives if it does not overlap any
confirmed booking of that listing. Intervals are half-open, so a booking
ending at 10:00 does not block a slot starting at 10:00.
"""

import uuid
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import store_call
from config.settings import settings
from shared.models.models import Booking, BookingStatus, Listing
from shared.utils.exceptions import ListingNotFoundError

Interval = Tuple[datetime, datetime]


def working_windows(
    day: date,
    windows: Optional[Sequence[Tuple[time, time]]] = None,
    tz: Optional[ZoneInfo] = None,
    closed_weekdays: Optional[Iterable[int]] = None,
) -> List[Interval]:
    """Working windows for ``day`` as aware local datetimes. Closed days have none."""
    tz = tz or settings.business_tz
    windows = settings.working_windows if windows is None else windows
    closed = settings.CLOSED_WEEKDAYS if closed_weekdays is None else closed_weekdays
    if day.weekday() in set(closed):
        return []
    return [
        (datetime.combine(day, start, tzinfo=tz), datetime.combine(day, end, tzinfo=tz))
        for start, end in windows
    ]


def generate_candidates(windows: Sequence[Interval], duration: int) -> List[datetime]:
    step = timedelta(minutes=duration)
    candidates = []
    for window_start, window_end in windows:
        start = window_start
        while start + step <= window_end:
            candidates.append(start)
            start += step
    return candidates


def overlaps(start: datetime, end: datetime, other_start: datetime, other_end: datetime) -> bool:
    return start < other_end and end > other_start


def filter_available(
    candidates: Sequence[datetime],
    duration: int,
    bookings: Sequence[Interval],
) -> List[datetime]:
    step = timedelta(minutes=duration)
    return [
        start
        for start in candidates
        if not any(overlaps(start, start + step, b_start, b_end) for b_start, b_end in bookings)
    ]


def day_bounds(day: date, tz: Optional[ZoneInfo] = None) -> Interval:
    """The local calendar day as a UTC interval."""
    tz = tz or settings.business_tz
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


async def confirmed_intervals(
    db: AsyncSession,
    listing_id: uuid.UUID,
    window: Interval,
    exclude_booking_id: Optional[uuid.UUID] = None,
) -> List[Interval]:
    window_start, window_end = window
    query = select(Booking.start, Booking.end).where(
        Booking.listing_id == listing_id,
        Booking.status == BookingStatus.CONFIRMED,
        Booking.start < window_end,
        Booking.end > window_start,
    )
    if exclude_booking_id is not None:
        query = query.where(Booking.id != exclude_booking_id)
    result = await store_call(db.execute(query), operation="booking lookup")
    return [(row.start, row.end) for row in result]


async def available_slots(
    db: AsyncSession,
    listing_id: uuid.UUID,
    day: date,
    exclude_booking_id: Optional[uuid.UUID] = None,
) -> List[datetime]:
    """
    Ordered open start times for ``listing_id`` on ``day`` (business time zone).

    Raises ListingNotFoundError for an unknown listing or one without a
    duration. Results are computed fresh on every call.
    """
    listing = await store_call(db.get(Listing, listing_id), operation="listing lookup")
    if listing is None or not listing.duration:
        raise ListingNotFoundError()

    windows = working_windows(day)
    if not windows:
        return []

    candidates = generate_candidates(windows, listing.duration)
    bookings = await confirmed_intervals(db, listing_id, day_bounds(day), exclude_booking_id)
    return filter_available(candidates, listing.duration, bookings)
