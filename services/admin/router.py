"""
services/admin/router.py
Admin-only endpoints: listing moderation queue, approve / reject / suspend
decisions, the per-listing audit trail, catalogue statistics and the
platform dashboard.

Decisions accept an optional Idempotency-Key header. The first response for a
key is kept in Redis and returned verbatim for repeats; without a key a
repeated decision is still a safe replay.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db, utcnow
from config.redis_client import RedisCache, get_redis
from config.settings import settings
from services.listing import service
from shared.middleware.auth import require_admin
from shared.models.models import (
    AdminDecision,
    Booking,
    BookingStatus,
    ChatMessage,
    Feedback,
    Listing,
    ListingKind,
    ListingStatus,
    User,
    UserRole,
)
from shared.schemas.schemas import (
    AdminDecisionRequest,
    AuditEntryResponse,
    ListingTransitionResponse,
    PaginatedResponse,
    PlatformStatsResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


# ── Helpers ────────────────────────────────────────────────────────────────────

async def _decide_once(
    db: AsyncSession,
    redis,
    admin: User,
    listing_id: UUID,
    decision: AdminDecision,
    reason: Optional[str],
    idempotency_key: Optional[str],
) -> dict:
    cache = RedisCache(redis)
    scope = f"{decision.value}:{listing_id}"
    if idempotency_key:
        stored = await cache.get_idempotent_response(scope, idempotency_key)
        if stored is not None:
            logger.info(f"Idempotent replay of {decision.value} on {listing_id} ({idempotency_key})")
            return stored

    response = await service.decide(db, admin, listing_id, decision, reason)

    if idempotency_key:
        await cache.remember_response(scope, idempotency_key, response)
    return response


# ── Moderation Queue ───────────────────────────────────────────────────────────

@router.get("/listings/pending", response_model=PaginatedResponse)
async def get_pending_listings(
    kind: Optional[ListingKind] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Listings awaiting a decision, ordered oldest request first (FIFO queue)."""
    return await service.pending_queue(db, kind, page, page_size)


@router.get("/listings", response_model=PaginatedResponse)
async def get_all_listings(
    kind: Optional[ListingKind] = Query(None),
    status_filter: Optional[ListingStatus] = Query(None, alias="status"),
    owner_id: Optional[UUID] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Every listing, including rejected and deleted ones kept for audit."""
    query = select(Listing)
    if kind:
        query = query.where(Listing.kind == kind)
    if status_filter:
        query = query.where(Listing.status == status_filter)
    if owner_id:
        query = query.where(Listing.owner_id == owner_id)

    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0
    result = await db.execute(
        query.order_by(Listing.first_submitted_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return {
        "items": [service.serialize_listing(listing) for listing in result.scalars()],
        "total": total,
        "page": page,
        "page_size": page_size,
        "pages": (total + page_size - 1) // page_size,
    }


@router.get("/listings/stats")
async def get_listing_stats(
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await service.listing_stats(db)


@router.get("/listings/{listing_id}/history", response_model=list[AuditEntryResponse])
async def get_listing_history(
    listing_id: UUID,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await service.audit_trail(db, listing_id)


# ── Decisions ──────────────────────────────────────────────────────────────────

@router.post("/listings/{listing_id}/approve", response_model=ListingTransitionResponse)
async def approve_listing(
    listing_id: UUID,
    data: Optional[AdminDecisionRequest] = None,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """
    Approve whatever the listing is waiting for: the first submission,
    an update, a deletion or a reactivation. The first approval assigns the
    listing's public id.
    """
    return await _decide_once(
        db, redis, current_user, listing_id, AdminDecision.APPROVE,
        data.reason if data else None, idempotency_key,
    )


@router.post("/listings/{listing_id}/reject", response_model=ListingTransitionResponse)
async def reject_listing(
    listing_id: UUID,
    data: AdminDecisionRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    return await _decide_once(
        db, redis, current_user, listing_id, AdminDecision.REJECT,
        data.reason, idempotency_key,
    )


@router.post("/listings/{listing_id}/suspend", response_model=ListingTransitionResponse)
async def suspend_listing(
    listing_id: UUID,
    data: AdminDecisionRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Take an approved listing offline until its provider asks to reactivate it."""
    return await _decide_once(
        db, redis, current_user, listing_id, AdminDecision.SUSPEND,
        data.reason, idempotency_key,
    )


# ── Platform dashboard ─────────────────────────────────────────────────────────

@router.get("/stats", response_model=PlatformStatsResponse)
async def get_platform_stats(
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Platform-wide counts for the admin dashboard. "Today" is the business-local day."""
    local_now = utcnow().astimezone(settings.business_tz)
    today_start = local_now.replace(hour=0, minute=0, second=0, microsecond=0)

    async def count_users(role: UserRole) -> int:
        return await db.scalar(
            select(func.count(User.id)).where(User.role == role, User.is_active == True)  # noqa: E712
        ) or 0

    async def count_live(kind: ListingKind) -> int:
        return await db.scalar(
            select(func.count(Listing.id)).where(
                Listing.kind == kind,
                Listing.status == ListingStatus.APPROVED,
                Listing.is_active == True,  # noqa: E712
            )
        ) or 0

    pending_listings = await db.scalar(
        select(func.count(Listing.id)).where(service.open_request_clause())
    )
    by_status = await db.execute(
        select(Booking.status, func.count(Booking.id)).group_by(Booking.status)
    )
    bookings_by_status = {s.value: 0 for s in BookingStatus}
    for booking_status, count in by_status.all():
        bookings_by_status[booking_status.value] = count
    bookings_today = await db.scalar(
        select(func.count(Booking.id)).where(Booking.created_at >= today_start)
    )
    feedback_total, avg_rating = (await db.execute(
        select(func.count(Feedback.id), func.avg(Feedback.rating))
        .where(Feedback.is_visible == True)  # noqa: E712
    )).one()
    messages_total = await db.scalar(select(func.count(ChatMessage.id)))

    return PlatformStatsResponse(
        customers=await count_users(UserRole.CUSTOMER),
        providers=await count_users(UserRole.SERVICE_PROVIDER),
        live_services=await count_live(ListingKind.SERVICE),
        live_packages=await count_live(ListingKind.PACKAGE),
        pending_listings=pending_listings or 0,
        bookings_total=sum(bookings_by_status.values()),
        bookings_today=bookings_today or 0,
        bookings_by_status=bookings_by_status,
        feedback_total=feedback_total or 0,
        average_rating=round(float(avg_rating or 0), 2),
        messages_total=messages_total or 0,
    )
