"""
services/listing/service.py
Persistence glue around the listing workflow: load, apply a transition,
append its audit row, commit, then notify. Admin decisions and provider
requests re-read the row on every attempt and retry on version conflicts.
"""

import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from config.database import store_call
from config.settings import settings
from services.listing import workflow
from services.listing.public_ids import allocate_public_id
from services.notification.dispatcher import notify_listing_transition
from shared.models.models import (
    AdminDecision,
    Listing,
    ListingAuditEntry,
    ListingKind,
    ListingStatus,
    RequestType,
    User,
)
from shared.schemas.schemas import AuditEntryResponse, ListingResponse
from shared.utils.exceptions import ListingNotFoundError, TransientStoreError

logger = logging.getLogger(__name__)

TransitionFn = Callable[[Listing], Awaitable[workflow.Transition]]


# ── Serialization ─────────────────────────────────────────────

def serialize_listing(listing: Listing) -> Dict[str, Any]:
    data = ListingResponse.model_validate(listing).model_dump(mode="json")
    data["display"] = workflow.display_status(listing)
    return data


def serialize_transition(transition: workflow.Transition) -> Dict[str, Any]:
    return {
        "listing": serialize_listing(transition.listing),
        "action": transition.action,
        "previous_status": transition.previous_status.value if transition.previous_status else None,
        "new_status": transition.new_status.value,
        "replayed": transition.replayed,
    }


# ── Loading ───────────────────────────────────────────────────

async def get_listing(
    db: AsyncSession,
    listing_id: uuid.UUID,
    kind: Optional[ListingKind] = None,
    lock: bool = False,
) -> Listing:
    query = select(Listing).where(Listing.id == listing_id)
    if kind is not None:
        query = query.where(Listing.kind == kind)
    if lock:
        query = query.with_for_update()
    result = await store_call(
        db.execute(query.execution_options(populate_existing=True)),
        operation="listing load",
    )
    listing = result.scalar_one_or_none()
    if listing is None:
        raise ListingNotFoundError()
    return listing


# ── Transitions ───────────────────────────────────────────────

async def _persist(db: AsyncSession, transition: workflow.Transition) -> None:
    if transition.audit_entry is not None:
        db.add(transition.audit_entry)
    await store_call(db.commit(), operation="listing transition commit")


async def _run_transition(
    db: AsyncSession,
    listing_id: uuid.UUID,
    kind: Optional[ListingKind],
    apply: TransitionFn,
) -> workflow.Transition:
    """
    Load the listing under a row lock, apply ``apply`` and commit. A
    concurrent writer shows up as StaleDataError on the version column; the
    whole read-decide-write cycle is then repeated against fresh state.
    """
    retrying = AsyncRetrying(
        retry=retry_if_exception_type((StaleDataError, TransientStoreError)),
        stop=stop_after_attempt(settings.ADMIN_ACTION_MAX_ATTEMPTS),
        wait=wait_exponential(multiplier=0.05, max=1),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    transition = None
    async for attempt in retrying:
        with attempt:
            try:
                listing = await get_listing(db, listing_id, kind, lock=True)
                transition = await apply(listing)
                await _persist(db, transition)
            except Exception:
                await db.rollback()
                raise
    return transition


async def create_listing(
    db: AsyncSession,
    owner: User,
    kind: ListingKind,
    fields: Mapping[str, Any],
) -> Dict[str, Any]:
    owner_id = owner.id
    transition = workflow.submit_create(owner_id, kind, fields)
    db.add(transition.listing)
    try:
        await _persist(db, transition)
    except Exception:
        await db.rollback()
        raise

    response = serialize_transition(transition)
    await notify_listing_transition(db, transition, owner_id)
    return response


async def request_change(
    db: AsyncSession,
    owner: User,
    listing_id: uuid.UUID,
    kind: ListingKind,
    request: str,
    fields: Optional[Mapping[str, Any]] = None,
    reason: Optional[str] = None,
) -> Dict[str, Any]:
    """Provider-side request: update, delete, reactivate or resubmit."""
    owner_id = owner.id

    async def apply(listing: Listing) -> workflow.Transition:
        if request == RequestType.UPDATE.value:
            return workflow.submit_update(listing, owner_id, fields or {})
        if request == RequestType.DELETE.value:
            return workflow.submit_delete(listing, owner_id, reason)
        if request == RequestType.REACTIVATE.value:
            return workflow.submit_reactivate(listing, owner_id, reason)
        if request == "resubmit":
            return workflow.submit_resubmit(listing, owner_id, fields or {})
        raise ValueError(f"Unknown listing request: {request}")

    transition = await _run_transition(db, listing_id, kind, apply)
    response = serialize_transition(transition)
    if transition.status_changed:
        await notify_listing_transition(db, transition, owner_id, reason)
    return response


async def decide(
    db: AsyncSession,
    admin: User,
    listing_id: uuid.UUID,
    decision: AdminDecision,
    reason: Optional[str] = None,
) -> Dict[str, Any]:
    """Apply an admin approve / reject / suspend. Repeats are no-op replays."""
    admin_id = admin.id

    async def apply(listing: Listing) -> workflow.Transition:
        if decision == AdminDecision.APPROVE:
            return await workflow.approve(
                listing,
                admin_id,
                allocate=lambda target: allocate_public_id(db, target),
                reason=reason,
            )
        if decision == AdminDecision.REJECT:
            return workflow.reject(listing, admin_id, reason)
        return workflow.suspend(listing, admin_id, reason)

    transition = await _run_transition(db, listing_id, None, apply)
    response = serialize_transition(transition)
    await notify_listing_transition(db, transition, admin_id, reason)
    return response


# ── Queries ───────────────────────────────────────────────────

async def audit_trail(db: AsyncSession, listing_id: uuid.UUID) -> List[Dict[str, Any]]:
    await get_listing(db, listing_id)
    result = await db.execute(
        select(ListingAuditEntry)
        .where(ListingAuditEntry.listing_id == listing_id)
        .order_by(ListingAuditEntry.seq)
    )
    return [
        AuditEntryResponse.model_validate(entry).model_dump(mode="json")
        for entry in result.scalars()
    ]


def open_request_clause():
    return (Listing.admin_action_taken == False) & (  # noqa: E712
        Listing.pending_request_type.is_not(None)
        | (Listing.status == ListingStatus.PENDING_APPROVAL)
    )


async def pending_queue(
    db: AsyncSession,
    kind: Optional[ListingKind],
    page: int,
    page_size: int,
) -> Dict[str, Any]:
    """Listings waiting for an admin decision, oldest request first."""
    query = select(Listing).where(open_request_clause())
    if kind is not None:
        query = query.where(Listing.kind == kind)

    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0
    result = await db.execute(
        query.order_by(
            func.coalesce(Listing.pending_requested_at, Listing.first_submitted_at).asc()
        )
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return {
        "items": [serialize_listing(listing) for listing in result.scalars()],
        "total": total,
        "page": page,
        "page_size": page_size,
        "pages": (total + page_size - 1) // page_size,
    }


async def listing_stats(db: AsyncSession) -> Dict[str, Any]:
    by_status = await db.execute(
        select(Listing.kind, Listing.status, func.count(Listing.id)).group_by(
            Listing.kind, Listing.status
        )
    )
    stats: Dict[str, Any] = {
        kind.value: {status.value: 0 for status in ListingStatus} for kind in ListingKind
    }
    for kind, status, count in by_status.all():
        stats[kind.value][status.value] = count

    by_request = await db.execute(
        select(Listing.kind, Listing.pending_request_type, func.count(Listing.id))
        .where(open_request_clause())
        .group_by(Listing.kind, Listing.pending_request_type)
    )
    pending = {kind.value: {rt.value: 0 for rt in RequestType} for kind in ListingKind}
    for kind, request_type, count in by_request.all():
        pending[kind.value][(request_type or RequestType.CREATE).value] += count
    stats["pending_requests"] = pending
    return stats
