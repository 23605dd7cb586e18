"""
services/listing/router.py
Provider-facing endpoints for services and packages.

Both kinds share one lifecycle, so one factory builds the /services and
/packages routers. Every change a provider makes is a request that waits for
admin review; the approved content stays live until then.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.listing import service
from shared.middleware.auth import get_current_user, require_provider
from shared.models.models import Listing, ListingKind, ListingStatus, User, UserRole
from shared.schemas.schemas import (
    ListingFieldsRequest,
    ListingReasonRequest,
    ListingResponse,
    ListingTransitionResponse,
    PaginatedResponse,
)
from shared.utils.exceptions import ListingNotFoundError


def build_listing_router(kind: ListingKind) -> APIRouter:
    prefix = "/services" if kind == ListingKind.SERVICE else "/packages"
    router = APIRouter(prefix=prefix, tags=[prefix.strip("/").title()])

    @router.post("", response_model=ListingTransitionResponse, status_code=status.HTTP_201_CREATED)
    async def submit_listing(
        data: ListingFieldsRequest,
        current_user: User = Depends(require_provider),
        db: AsyncSession = Depends(get_db),
    ):
        """Submit a new listing. It stays hidden until an admin approves it."""
        return await service.create_listing(db, current_user, kind, data.submitted_fields())

    @router.get("/mine", response_model=list[ListingResponse])
    async def my_listings(
        status_filter: Optional[ListingStatus] = Query(None, alias="status"),
        current_user: User = Depends(require_provider),
        db: AsyncSession = Depends(get_db),
    ):
        query = select(Listing).where(
            Listing.owner_id == current_user.id,
            Listing.kind == kind,
            Listing.is_visible_to_provider == True,  # noqa: E712
        )
        if status_filter:
            query = query.where(Listing.status == status_filter)
        result = await db.execute(query.order_by(Listing.first_submitted_at.desc()))
        return [service.serialize_listing(listing) for listing in result.scalars()]

    @router.get("", response_model=PaginatedResponse)
    async def browse_listings(
        category: Optional[str] = Query(None),
        listing_type: Optional[str] = Query(None, alias="type"),
        search: Optional[str] = Query(None, max_length=100),
        page: int = Query(1, ge=1),
        page_size: int = Query(20, ge=1, le=50),
        db: AsyncSession = Depends(get_db),
    ):
        """Public catalogue: approved, active listings only."""
        query = select(Listing).where(
            Listing.kind == kind,
            Listing.status == ListingStatus.APPROVED,
            Listing.is_active == True,  # noqa: E712
        )
        if category:
            query = query.where(Listing.category == category)
        if listing_type:
            query = query.where(Listing.type == listing_type)
        if search:
            pattern = f"%{search}%"
            query = query.where(or_(Listing.name.ilike(pattern), Listing.description.ilike(pattern)))

        total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0
        result = await db.execute(
            query.order_by(Listing.public_id).offset((page - 1) * page_size).limit(page_size)
        )
        return PaginatedResponse(
            items=[service.serialize_listing(listing) for listing in result.scalars()],
            total=total,
            page=page,
            page_size=page_size,
            pages=(total + page_size - 1) // page_size,
        )

    @router.get("/{listing_id}", response_model=ListingResponse)
    async def get_listing(
        listing_id: UUID,
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
    ):
        listing = await service.get_listing(db, listing_id, kind)
        is_public = listing.status == ListingStatus.APPROVED and listing.is_active
        if not is_public and current_user.role != UserRole.ADMIN and listing.owner_id != current_user.id:
            raise ListingNotFoundError()
        return service.serialize_listing(listing)

    @router.put("/{listing_id}", response_model=ListingTransitionResponse, status_code=status.HTTP_202_ACCEPTED)
    async def request_update(
        listing_id: UUID,
        data: ListingFieldsRequest,
        current_user: User = Depends(require_provider),
        db: AsyncSession = Depends(get_db),
    ):
        """Stage changes to an approved listing for admin review."""
        return await service.request_change(
            db, current_user, listing_id, kind, "update", fields=data.submitted_fields()
        )

    @router.post("/{listing_id}/resubmit", response_model=ListingTransitionResponse, status_code=status.HTTP_202_ACCEPTED)
    async def resubmit_listing(
        listing_id: UUID,
        data: ListingFieldsRequest,
        current_user: User = Depends(require_provider),
        db: AsyncSession = Depends(get_db),
    ):
        """Send a rejected listing back for review, with any corrections."""
        return await service.request_change(
            db, current_user, listing_id, kind, "resubmit", fields=data.submitted_fields()
        )

    @router.delete("/{listing_id}", response_model=ListingTransitionResponse, status_code=status.HTTP_202_ACCEPTED)
    async def request_delete(
        listing_id: UUID,
        data: Optional[ListingReasonRequest] = None,
        current_user: User = Depends(require_provider),
        db: AsyncSession = Depends(get_db),
    ):
        return await service.request_change(
            db, current_user, listing_id, kind, "delete", reason=data.reason if data else None
        )

    @router.post("/{listing_id}/reactivate", response_model=ListingTransitionResponse, status_code=status.HTTP_202_ACCEPTED)
    async def request_reactivate(
        listing_id: UUID,
        data: Optional[ListingReasonRequest] = None,
        current_user: User = Depends(require_provider),
        db: AsyncSession = Depends(get_db),
    ):
        return await service.request_change(
            db, current_user, listing_id, kind, "reactivate", reason=data.reason if data else None
        )

    return router


services_router = build_listing_router(ListingKind.SERVICE)
packages_router = build_listing_router(ListingKind.PACKAGE)
