"""
services/feedback/router.py
Post-appointment ratings and comments.
"""

import logging
from collections import defaultdict
from datetime import timedelta
from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db, store_call, utcnow
from config.settings import settings
from services.notification.dispatcher import notify_user, render
from shared.middleware.auth import CapabilityRequired, get_current_user
from shared.models.models import (
    Booking,
    BookingStatus,
    Feedback,
    Listing,
    NotificationType,
    Sentiment,
    User,
)
from shared.schemas.schemas import (
    CustomerFeedbackResponse,
    FeedbackCreateRequest,
    FeedbackResponse,
    FeedbackStatsResponse,
    FeedbackTrendPoint,
    FeedbackTrendsResponse,
    MessageResponse,
    PaginatedResponse,
    ProviderRatingResponse,
)
from shared.utils.exceptions import (
    BookingNotFoundError,
    ConflictError,
    ListingStateError,
    NotFoundError,
    OwnershipError,
)
from shared.utils.policy import Capability, ensure_booking_access, ensure_capability

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/feedback", tags=["Feedback"])

require_feedback_author = CapabilityRequired(Capability.LEAVE_FEEDBACK)
require_moderator = CapabilityRequired(Capability.MODERATE_FEEDBACK)

TREND_WINDOWS = {
    "week": timedelta(days=7),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
}


def sentiment_for(rating: int) -> Sentiment:
    if rating >= 4:
        return Sentiment.POSITIVE
    if rating == 3:
        return Sentiment.NEUTRAL
    return Sentiment.NEGATIVE


async def _recalculate_listing_rating(db: AsyncSession, listing_id: UUID) -> None:
    """Denormalize visible feedback onto the listing (bulk update, no version bump)."""
    avg_result = await db.execute(
        select(func.avg(Feedback.rating), func.count(Feedback.id))
        .where(Feedback.listing_id == listing_id, Feedback.is_visible == True)  # noqa: E712
    )
    avg, count = avg_result.one()
    await db.execute(
        update(Listing)
        .where(Listing.id == listing_id)
        .values(average_rating=round(float(avg or 0), 2), review_count=count)
        .execution_options(synchronize_session=False)
    )


async def _page(db: AsyncSession, query, page: int, page_size: int) -> PaginatedResponse:
    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0
    result = await db.execute(
        query.order_by(Feedback.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    items = []
    for feedback, customer_name in result.all():
        item = FeedbackResponse.model_validate(feedback)
        item.customer_name = customer_name
        items.append(item)
    return PaginatedResponse(
        items=items,
        total=total,
        page=page,
        page_size=page_size,
        pages=(total + page_size - 1) // page_size,
    )


def _visible_feedback():
    return (
        select(Feedback, User.full_name)
        .join(User, User.id == Feedback.customer_id)
        .where(Feedback.is_visible == True)  # noqa: E712
    )


@router.post("", response_model=FeedbackResponse, status_code=status.HTTP_201_CREATED)
async def create_feedback(
    data: FeedbackCreateRequest,
    current_user: User = Depends(require_feedback_author),
    db: AsyncSession = Depends(get_db),
):
    """
    Leave feedback for a completed booking.
    - One feedback per booking (unique constraint on booking_id)
    - Only the booking's customer may leave it
    """
    booking = await db.get(Booking, data.booking_id)
    if booking is None:
        raise BookingNotFoundError()
    if booking.customer_id != current_user.id:
        raise OwnershipError("You can only leave feedback for your own bookings")
    if booking.status != BookingStatus.COMPLETED:
        raise ListingStateError("Feedback can only be left for completed bookings")

    existing = await db.execute(select(Feedback.id).where(Feedback.booking_id == booking.id))
    if existing.scalar_one_or_none():
        raise ConflictError("Feedback already submitted for this booking")

    feedback = Feedback(
        booking_id=booking.id,
        customer_id=current_user.id,
        provider_id=booking.provider_id,
        listing_id=booking.listing_id,
        rating=data.rating,
        comment=data.comment,
        sentiment=sentiment_for(data.rating),
    )
    db.add(feedback)
    try:
        await store_call(db.flush(), operation="feedback insert")
    except IntegrityError as e:
        await db.rollback()
        raise ConflictError("Feedback already submitted for this booking") from e

    await _recalculate_listing_rating(db, booking.listing_id)
    await store_call(db.commit(), operation="feedback commit")

    response = FeedbackResponse.model_validate(feedback)
    response.customer_name = current_user.full_name
    logger.info(f"Feedback {feedback.id} ({feedback.rating}*) on booking {booking.booking_number}")

    title, body = render(NotificationType.FEEDBACK_RECEIVED, rating=feedback.rating)
    await notify_user(
        db,
        booking.provider_id,
        NotificationType.FEEDBACK_RECEIVED,
        title,
        body,
        data={"feedback_id": str(feedback.id), "booking_id": str(booking.id)},
        listing_id=booking.listing_id,
        booking_id=booking.id,
    )
    return response


@router.get("/listing/{listing_id}", response_model=PaginatedResponse)
async def get_listing_feedback(
    listing_id: UUID,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
):
    """Public: visible feedback for one listing."""
    return await _page(db, _visible_feedback().where(Feedback.listing_id == listing_id), page, page_size)


@router.get("/provider/{provider_id}", response_model=PaginatedResponse)
async def get_provider_feedback(
    provider_id: UUID,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
):
    """Public: visible feedback across all of a provider's listings."""
    return await _page(db, _visible_feedback().where(Feedback.provider_id == provider_id), page, page_size)


@router.get("/provider/{provider_id}/stats", response_model=FeedbackStatsResponse)
async def get_provider_stats(provider_id: UUID, db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(Feedback.rating, Feedback.sentiment, func.count(Feedback.id))
        .where(Feedback.provider_id == provider_id, Feedback.is_visible == True)  # noqa: E712
        .group_by(Feedback.rating, Feedback.sentiment)
    )
    distribution = {rating: 0 for rating in range(1, 6)}
    sentiment = {s.value: 0 for s in Sentiment}
    total = 0
    weighted = 0
    for rating, feeling, count in result.all():
        distribution[rating] += count
        sentiment[feeling.value] += count
        total += count
        weighted += rating * count

    return FeedbackStatsResponse(
        provider_id=provider_id,
        total=total,
        average_rating=round(weighted / total, 2) if total else 0.0,
        distribution=distribution,
        sentiment=sentiment,
    )


@router.get("/trends", response_model=FeedbackTrendsResponse)
async def get_feedback_trends(
    period: Literal["week", "month", "year"] = Query("week"),
    provider_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """
    Daily feedback volume and average rating over the last week, month or
    year. Days are business-local calendar days.
    """
    since = utcnow() - TREND_WINDOWS[period]
    query = select(Feedback.created_at, Feedback.rating, Feedback.sentiment).where(
        Feedback.created_at >= since,
        Feedback.is_visible == True,  # noqa: E712
    )
    if provider_id:
        query = query.where(Feedback.provider_id == provider_id)
    result = await db.execute(query)

    days: dict = defaultdict(lambda: {"count": 0, "total": 0, "positive": 0, "negative": 0})
    for created_at, rating, feeling in result.all():
        bucket = days[created_at.astimezone(settings.business_tz).date()]
        bucket["count"] += 1
        bucket["total"] += rating
        if feeling == Sentiment.POSITIVE:
            bucket["positive"] += 1
        elif feeling == Sentiment.NEGATIVE:
            bucket["negative"] += 1

    trends = [
        FeedbackTrendPoint(
            day=day,
            count=bucket["count"],
            average_rating=round(bucket["total"] / bucket["count"], 2),
            positive=bucket["positive"],
            negative=bucket["negative"],
        )
        for day, bucket in sorted(days.items())
    ]
    return FeedbackTrendsResponse(period=period, since=since, provider_id=provider_id, trends=trends)


@router.get("/providers/stats", response_model=list[ProviderRatingResponse])
async def get_all_provider_stats(
    current_user: User = Depends(require_moderator),
    db: AsyncSession = Depends(get_db),
):
    """Admin: rating summary for every provider with visible feedback, best rated first."""
    average = func.avg(Feedback.rating)
    result = await db.execute(
        select(Feedback.provider_id, User.full_name, User.business_name, func.count(Feedback.id), average)
        .join(User, User.id == Feedback.provider_id)
        .where(Feedback.is_visible == True)  # noqa: E712
        .group_by(Feedback.provider_id, User.full_name, User.business_name)
        .order_by(average.desc())
    )
    return [
        ProviderRatingResponse(
            provider_id=provider_id,
            provider_name=business_name or full_name,
            total=total,
            average_rating=round(float(avg), 2),
        )
        for provider_id, full_name, business_name, total, avg in result.all()
    ]


@router.get("/customer/{customer_id}", response_model=CustomerFeedbackResponse)
async def get_customer_feedback(
    customer_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Everything a customer has written, hidden entries included. Own history or admin."""
    if current_user.id != customer_id:
        ensure_capability(current_user, Capability.MODERATE_FEEDBACK)

    result = await db.execute(
        select(Feedback, User.full_name)
        .join(User, User.id == Feedback.customer_id)
        .where(Feedback.customer_id == customer_id)
        .order_by(Feedback.created_at.desc())
    )
    items = []
    for feedback, customer_name in result.all():
        item = FeedbackResponse.model_validate(feedback)
        item.customer_name = customer_name
        items.append(item)

    total = len(items)
    average = round(sum(i.rating for i in items) / total, 2) if total else 0.0
    return CustomerFeedbackResponse(customer_id=customer_id, items=items, total=total, average_rating=average)


@router.get("/booking/{booking_id}", response_model=Optional[FeedbackResponse])
async def get_booking_feedback(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Feedback left for one booking, or null. Visible to the booking's parties and admins."""
    booking = await db.get(Booking, booking_id)
    if booking is None:
        raise BookingNotFoundError()
    ensure_booking_access(current_user, booking)

    result = await db.execute(
        select(Feedback, User.full_name)
        .join(User, User.id == Feedback.customer_id)
        .where(Feedback.booking_id == booking_id)
    )
    row = result.first()
    if row is None:
        return None
    feedback, customer_name = row
    response = FeedbackResponse.model_validate(feedback)
    response.customer_name = customer_name
    return response


@router.delete("/{feedback_id}", response_model=MessageResponse)
async def hide_feedback(
    feedback_id: UUID,
    current_user: User = Depends(require_moderator),
    db: AsyncSession = Depends(get_db),
):
    """Admin: hide feedback from public views without removing it."""
    feedback = await db.get(Feedback, feedback_id)
    if feedback is None:
        raise NotFoundError("Feedback not found")

    feedback.is_visible = False
    await store_call(db.flush(), operation="feedback hide")
    await _recalculate_listing_rating(db, feedback.listing_id)
    await store_call(db.commit(), operation="feedback hide commit")

    logger.info(f"Feedback {feedback_id} hidden by {current_user.id}")
    return MessageResponse(message="Feedback hidden successfully")
