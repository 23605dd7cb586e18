"""
tests/test_availability.py
Slot engine: working windows, candidate layout, overlap filtering and the
database-backed available_slots().
"""

import uuid
from datetime import date, datetime, time, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from services.booking.availability import (
    available_slots,
    filter_available,
    generate_candidates,
    overlaps,
    working_windows,
)
from shared.models.models import BookingStatus, Listing, User
from shared.utils.exceptions import ListingNotFoundError
from tests.conftest import make_booking

MONDAY = date(2026, 11, 2)
SUNDAY = date(2026, 11, 8)


def _at(day: date, hhmm: str) -> datetime:
    return datetime.combine(day, time.fromisoformat(hhmm), tzinfo=settings.business_tz)


def _hhmm(slots) -> list:
    return [slot.strftime("%H:%M") for slot in slots]


def test_default_working_windows():
    windows = working_windows(MONDAY)
    assert windows == [
        (_at(MONDAY, "09:00"), _at(MONDAY, "12:00")),
        (_at(MONDAY, "14:30"), _at(MONDAY, "17:30")),
    ]


def test_closed_weekday_has_no_windows():
    assert working_windows(SUNDAY) == []


def test_custom_windows_and_closed_days():
    windows = working_windows(SUNDAY, windows=[(time(10, 0), time(11, 0))], closed_weekdays=[])
    assert windows == [(_at(SUNDAY, "10:00"), _at(SUNDAY, "11:00"))]


def test_candidates_are_back_to_back_and_fit_the_window():
    candidates = generate_candidates(working_windows(MONDAY), 60)
    assert _hhmm(candidates) == ["09:00", "10:00", "11:00", "14:30", "15:30", "16:30"]


def test_candidates_skip_partial_fits():
    candidates = generate_candidates(working_windows(MONDAY), 90)
    assert _hhmm(candidates) == ["09:00", "10:30", "14:30", "16:00"]


def test_duration_longer_than_window_gives_nothing():
    assert generate_candidates(working_windows(MONDAY), 240) == []


def test_overlap_is_half_open():
    nine, ten, eleven = _at(MONDAY, "09:00"), _at(MONDAY, "10:00"), _at(MONDAY, "11:00")
    assert not overlaps(nine, ten, ten, eleven)
    assert overlaps(nine, eleven, ten, eleven)


def test_filter_removes_only_overlapping_candidates():
    candidates = generate_candidates(working_windows(MONDAY), 60)
    booked = [(_at(MONDAY, "10:00"), _at(MONDAY, "11:00"))]
    assert _hhmm(filter_available(candidates, 60, booked)) == ["09:00", "11:00", "14:30", "15:30", "16:30"]


def test_filter_handles_misaligned_bookings():
    candidates = generate_candidates(working_windows(MONDAY), 60)
    booked = [(_at(MONDAY, "09:30"), _at(MONDAY, "10:15"))]
    assert _hhmm(filter_available(candidates, 60, booked)) == ["11:00", "14:30", "15:30", "16:30"]


@pytest.mark.asyncio
async def test_available_slots_ignores_unconfirmed_bookings(
    db: AsyncSession, approved_service: Listing, customer_user: User, open_day: date
):
    await make_booking(db, approved_service, customer_user, BookingStatus.CONFIRMED, open_day, "10:00")
    await make_booking(db, approved_service, customer_user, BookingStatus.PENDING, open_day, "14:30")
    await make_booking(db, approved_service, customer_user, BookingStatus.CANCELLED, open_day, "15:30")

    slots = await available_slots(db, approved_service.id, open_day)

    assert _hhmm(slots) == ["09:00", "11:00", "14:30", "15:30", "16:30"]


@pytest.mark.asyncio
async def test_available_slots_can_exclude_a_booking(
    db: AsyncSession, approved_service: Listing, customer_user: User, open_day: date
):
    booking = await make_booking(
        db, approved_service, customer_user, BookingStatus.CONFIRMED, open_day, "09:00"
    )
    slots = await available_slots(db, approved_service.id, open_day, exclude_booking_id=booking.id)
    assert _hhmm(slots)[0] == "09:00"


@pytest.mark.asyncio
async def test_bookings_on_other_days_do_not_block(
    db: AsyncSession, approved_service: Listing, customer_user: User, open_day: date
):
    other_day = open_day + timedelta(days=1)
    await make_booking(db, approved_service, customer_user, BookingStatus.CONFIRMED, open_day, "09:00")
    slots = await available_slots(db, approved_service.id, other_day)
    assert len(slots) == len(generate_candidates(working_windows(other_day), 60))


@pytest.mark.asyncio
async def test_unknown_listing_raises(db: AsyncSession):
    with pytest.raises(ListingNotFoundError):
        await available_slots(db, uuid.uuid4(), MONDAY)
