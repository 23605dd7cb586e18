"""
tests/test_feedback.py
Feedback for completed bookings: eligibility, one per booking, sentiment,
listing rating aggregates, public reads and admin hiding.
"""

import uuid
from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import utcnow
from config.settings import settings
from services.feedback.router import sentiment_for
from shared.models.models import (
    BookingStatus,
    Feedback,
    Listing,
    Notification,
    NotificationType,
    Sentiment,
    User,
)
from tests.conftest import auth_headers, make_booking, make_listing, make_user


def _feedback(booking, rating: int = 5, comment: str = "Lovely cut, very professional.") -> dict:
    return {"booking_id": str(booking.id), "rating": rating, "comment": comment}


def test_sentiment_follows_rating():
    assert sentiment_for(5) == Sentiment.POSITIVE
    assert sentiment_for(4) == Sentiment.POSITIVE
    assert sentiment_for(3) == Sentiment.NEUTRAL
    assert sentiment_for(2) == Sentiment.NEGATIVE
    assert sentiment_for(1) == Sentiment.NEGATIVE


@pytest.mark.asyncio
async def test_customer_leaves_feedback(
    client: AsyncClient, db: AsyncSession, approved_service: Listing,
    customer_user: User, provider_user: User,
):
    booking = await make_booking(db, approved_service, customer_user, BookingStatus.COMPLETED)

    response = await client.post("/feedback", headers=auth_headers(customer_user), json=_feedback(booking, 4))
    assert response.status_code == 201
    data = response.json()
    assert data["sentiment"] == "POSITIVE"
    assert data["customer_name"] == "Nimali Perera"
    assert data["listing_id"] == str(approved_service.id)

    await db.refresh(approved_service)
    assert float(approved_service.average_rating) == 4.0
    assert approved_service.review_count == 1

    result = await db.execute(
        select(Notification).where(
            Notification.user_id == provider_user.id,
            Notification.type == NotificationType.FEEDBACK_RECEIVED,
        )
    )
    assert len(result.scalars().all()) == 1


@pytest.mark.asyncio
async def test_feedback_needs_completed_booking(
    client: AsyncClient, db: AsyncSession, approved_service: Listing, customer_user: User
):
    booking = await make_booking(db, approved_service, customer_user, BookingStatus.CONFIRMED)
    response = await client.post("/feedback", headers=auth_headers(customer_user), json=_feedback(booking))
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_only_one_feedback_per_booking(
    client: AsyncClient, db: AsyncSession, approved_service: Listing, customer_user: User
):
    booking = await make_booking(db, approved_service, customer_user, BookingStatus.COMPLETED)
    headers = auth_headers(customer_user)

    assert (await client.post("/feedback", headers=headers, json=_feedback(booking))).status_code == 201
    again = await client.post("/feedback", headers=headers, json=_feedback(booking, 1))
    assert again.status_code == 409
    assert again.json()["code"] == "conflict"


@pytest.mark.asyncio
async def test_only_booking_customer_can_leave_feedback(
    client: AsyncClient, db: AsyncSession, approved_service: Listing, customer_user: User
):
    booking = await make_booking(db, approved_service, customer_user, BookingStatus.COMPLETED)
    stranger = await make_user(db, customer_user.role, "stranger@example.com", "Some Stranger")

    response = await client.post("/feedback", headers=auth_headers(stranger), json=_feedback(booking))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_provider_cannot_leave_feedback(
    client: AsyncClient, db: AsyncSession, approved_service: Listing,
    customer_user: User, provider_user: User,
):
    booking = await make_booking(db, approved_service, customer_user, BookingStatus.COMPLETED)
    response = await client.post("/feedback", headers=auth_headers(provider_user), json=_feedback(booking))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_comment_is_trimmed_and_checked(
    client: AsyncClient, db: AsyncSession, approved_service: Listing, customer_user: User
):
    booking = await make_booking(db, approved_service, customer_user, BookingStatus.COMPLETED)
    response = await client.post(
        "/feedback", headers=auth_headers(customer_user), json=_feedback(booking, comment="   ok     ")
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_unknown_booking(client: AsyncClient, customer_user: User):
    response = await client.post(
        "/feedback",
        headers=auth_headers(customer_user),
        json={"booking_id": str(uuid.uuid4()), "rating": 5, "comment": "Great service"},
    )
    assert response.status_code == 404


# ── Reads ──────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_listing_and_provider_feedback_and_stats(
    client: AsyncClient, db: AsyncSession, approved_service: Listing,
    customer_user: User, provider_user: User,
):
    headers = auth_headers(customer_user)
    for rating, hhmm in ((5, "09:00"), (3, "10:00"), (1, "11:00")):
        booking = await make_booking(db, approved_service, customer_user, BookingStatus.COMPLETED, hhmm=hhmm)
        await client.post("/feedback", headers=headers, json=_feedback(booking, rating))

    by_listing = await client.get(f"/feedback/listing/{approved_service.id}")
    assert by_listing.status_code == 200
    assert by_listing.json()["total"] == 3

    by_provider = await client.get(f"/feedback/provider/{provider_user.id}")
    assert by_provider.json()["total"] == 3
    assert by_provider.json()["items"][0]["customer_name"] == "Nimali Perera"

    stats = (await client.get(f"/feedback/provider/{provider_user.id}/stats")).json()
    assert stats["total"] == 3
    assert stats["average_rating"] == 3.0
    assert stats["distribution"] == {"1": 1, "2": 0, "3": 1, "4": 0, "5": 1}
    assert stats["sentiment"] == {"POSITIVE": 1, "NEUTRAL": 1, "NEGATIVE": 1}


@pytest.mark.asyncio
async def test_stats_for_provider_without_feedback(client: AsyncClient, provider_user: User):
    stats = (await client.get(f"/feedback/provider/{provider_user.id}/stats")).json()
    assert stats["total"] == 0
    assert stats["average_rating"] == 0.0


# ── Moderation ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_admin_hides_feedback_and_rating_is_recalculated(
    client: AsyncClient, db: AsyncSession, approved_service: Listing,
    customer_user: User, admin_user: User,
):
    headers = auth_headers(customer_user)
    ids = []
    for rating, hhmm in ((5, "09:00"), (1, "10:00")):
        booking = await make_booking(db, approved_service, customer_user, BookingStatus.COMPLETED, hhmm=hhmm)
        ids.append((await client.post("/feedback", headers=headers, json=_feedback(booking, rating))).json()["id"])

    response = await client.delete(f"/feedback/{ids[1]}", headers=auth_headers(admin_user))
    assert response.status_code == 200

    await db.refresh(approved_service)
    assert float(approved_service.average_rating) == 5.0
    assert approved_service.review_count == 1

    hidden = await db.get(Feedback, uuid.UUID(ids[1]))
    assert hidden.is_visible is False
    assert (await client.get(f"/feedback/listing/{approved_service.id}")).json()["total"] == 1


@pytest.mark.asyncio
async def test_customer_cannot_hide_feedback(
    client: AsyncClient, db: AsyncSession, approved_service: Listing, customer_user: User
):
    booking = await make_booking(db, approved_service, customer_user, BookingStatus.COMPLETED)
    created = await client.post("/feedback", headers=auth_headers(customer_user), json=_feedback(booking))

    response = await client.delete(f"/feedback/{created.json()['id']}", headers=auth_headers(customer_user))
    assert response.status_code == 403


# ── Trends and summaries ───────────────────────────────────────────────────────

async def _seed_feedback(db, booking, rating: int, created_at) -> Feedback:
    feedback = Feedback(
        booking_id=booking.id,
        customer_id=booking.customer_id,
        provider_id=booking.provider_id,
        listing_id=booking.listing_id,
        rating=rating,
        comment="Seeded feedback entry.",
        sentiment=sentiment_for(rating),
        created_at=created_at,
    )
    db.add(feedback)
    await db.commit()
    return feedback


def _midday(days_ago: int):
    # 06:00 UTC is mid-day in the business time zone, far from a date boundary
    return (utcnow() - timedelta(days=days_ago)).replace(hour=6, minute=0, second=0, microsecond=0)


@pytest.mark.asyncio
async def test_trends_group_by_local_day_within_period(
    client: AsyncClient, db: AsyncSession, approved_service: Listing, customer_user: User
):
    seeds = ((5, 2, "09:00"), (2, 2, "10:00"), (4, 10, "11:00"))
    for rating, days_ago, hhmm in seeds:
        booking = await make_booking(db, approved_service, customer_user, BookingStatus.COMPLETED, hhmm=hhmm)
        await _seed_feedback(db, booking, rating, _midday(days_ago))

    week = (await client.get("/feedback/trends")).json()
    assert week["period"] == "week"
    assert week["trends"] == [{
        "day": _midday(2).astimezone(settings.business_tz).date().isoformat(),
        "count": 2,
        "average_rating": 3.5,
        "positive": 1,
        "negative": 1,
    }]

    month = (await client.get("/feedback/trends", params={"period": "month"})).json()
    assert [point["count"] for point in month["trends"]] == [1, 2]


@pytest.mark.asyncio
async def test_trends_filter_by_provider_and_reject_unknown_period(
    client: AsyncClient, db: AsyncSession, approved_service: Listing,
    customer_user: User, other_provider: User,
):
    booking = await make_booking(db, approved_service, customer_user, BookingStatus.COMPLETED)
    await _seed_feedback(db, booking, 5, _midday(1))

    response = await client.get("/feedback/trends", params={"provider_id": str(other_provider.id)})
    assert response.json()["trends"] == []

    assert (await client.get("/feedback/trends", params={"period": "decade"})).status_code == 422


@pytest.mark.asyncio
async def test_admin_sees_rating_summary_per_provider(
    client: AsyncClient, db: AsyncSession, approved_service: Listing,
    customer_user: User, other_provider: User, admin_user: User,
):
    kasun_service = await make_listing(db, other_provider, public_id="SRV_002")
    for listing, rating, hhmm in (
        (approved_service, 3, "09:00"),
        (approved_service, 4, "10:00"),
        (kasun_service, 5, "11:00"),
    ):
        booking = await make_booking(db, listing, customer_user, BookingStatus.COMPLETED, hhmm=hhmm)
        await _seed_feedback(db, booking, rating, _midday(1))

    response = await client.get("/feedback/providers/stats", headers=auth_headers(admin_user))
    assert response.status_code == 200
    assert [(p["provider_name"], p["total"], p["average_rating"]) for p in response.json()] == [
        ("Kasun Hair Lounge", 1, 5.0),
        ("Glow Studio", 2, 3.5),
    ]

    denied = await client.get("/feedback/providers/stats", headers=auth_headers(customer_user))
    assert denied.status_code == 403


@pytest.mark.asyncio
async def test_customer_history_includes_hidden_entries(
    client: AsyncClient, db: AsyncSession, approved_service: Listing, customer_user: User
):
    for rating, hhmm in ((5, "09:00"), (2, "10:00")):
        booking = await make_booking(db, approved_service, customer_user, BookingStatus.COMPLETED, hhmm=hhmm)
        feedback = await _seed_feedback(db, booking, rating, _midday(1))
    feedback.is_visible = False
    await db.commit()

    response = await client.get(f"/feedback/customer/{customer_user.id}", headers=auth_headers(customer_user))
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert data["average_rating"] == 3.5
    assert {item["is_visible"] for item in data["items"]} == {True, False}


@pytest.mark.asyncio
async def test_customer_history_is_private(
    client: AsyncClient, db: AsyncSession, customer_user: User, provider_user: User, admin_user: User
):
    url = f"/feedback/customer/{customer_user.id}"
    assert (await client.get(url, headers=auth_headers(provider_user))).status_code == 403

    as_admin = await client.get(url, headers=auth_headers(admin_user))
    assert as_admin.status_code == 200
    assert as_admin.json()["total"] == 0


@pytest.mark.asyncio
async def test_feedback_for_booking(
    client: AsyncClient, db: AsyncSession, approved_service: Listing,
    customer_user: User, provider_user: User, other_provider: User,
):
    booking = await make_booking(db, approved_service, customer_user, BookingStatus.COMPLETED)

    empty = await client.get(f"/feedback/booking/{booking.id}", headers=auth_headers(customer_user))
    assert empty.status_code == 200
    assert empty.json() is None

    await client.post("/feedback", headers=auth_headers(customer_user), json=_feedback(booking, 4))
    as_provider = await client.get(f"/feedback/booking/{booking.id}", headers=auth_headers(provider_user))
    assert as_provider.json()["rating"] == 4
    assert as_provider.json()["customer_name"] == "Nimali Perera"

    stranger = await client.get(f"/feedback/booking/{booking.id}", headers=auth_headers(other_provider))
    assert stranger.status_code == 403

    missing = await client.get(f"/feedback/booking/{uuid.uuid4()}", headers=auth_headers(customer_user))
    assert missing.status_code == 404
