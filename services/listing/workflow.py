"""
services/listing/workflow.py
Listing approval lifecycle.

A listing moves through pending_approval -> approved / rejected, and later
through staged update / delete / reactivate requests that an admin approves
or rejects. Approved content stays live on the row while a request is open;
only an approval merges the proposed fields.

These functions mutate a Listing in memory and return a Transition. The
caller persists the listing and the transition's audit entry in one
transaction. Public id allocation is injected so the state machine itself
does no I/O.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from config.database import utcnow
from services.listing.validators import (
    CONTENT_FIELDS,
    check_lead_times,
    validate_listing_fields,
)
from shared.models.models import (
    AdminDecision,
    AvailabilityStatus,
    Listing,
    ListingAuditEntry,
    ListingKind,
    ListingStatus,
    RequestType,
)
from shared.utils.exceptions import (
    ListingStateError,
    NoPendingActionError,
    OwnershipError,
    PendingChangesExistError,
    ValidationError,
)

logger = logging.getLogger(__name__)

Allocator = Callable[[Listing], Awaitable[str]]

MIN_REASON_LENGTH = 5

STATUS_LABELS = {
    ListingStatus.PENDING_APPROVAL: "Pending Approval",
    ListingStatus.APPROVED: "Approved",
    ListingStatus.REJECTED: "Rejected",
    ListingStatus.INACTIVE: "Inactive",
    ListingStatus.DELETED: "Deleted",
}

PENDING_LABELS = {
    RequestType.CREATE: "Pending Approval",
    RequestType.UPDATE: "Update Pending",
    RequestType.DELETE: "Deletion Pending",
    RequestType.REACTIVATE: "Reactivation Pending",
}


@dataclass
class Transition:
    listing: Listing
    action: str
    previous_status: Optional[ListingStatus]
    new_status: ListingStatus
    audit_entry: Optional[ListingAuditEntry] = None
    request_type: Optional[RequestType] = None
    replayed: bool = False

    @property
    def status_changed(self) -> bool:
        return self.previous_status != self.new_status


# ── Queries ───────────────────────────────────────────────────

def snapshot(listing: Listing) -> Dict[str, Any]:
    """Current approved content of the listing."""
    return {field: getattr(listing, field) for field in sorted(CONTENT_FIELDS)}


def has_open_request(listing: Listing) -> bool:
    if listing.pending_request_type is not None:
        return True
    return listing.status == ListingStatus.PENDING_APPROVAL and not listing.admin_action_taken


def needs_admin_action(listing: Listing) -> bool:
    return has_open_request(listing)


def display_status(listing: Listing) -> Dict[str, Any]:
    request_type = listing.pending_request_type
    if request_type is None and has_open_request(listing):
        request_type = RequestType.CREATE

    if request_type is not None:
        label = PENDING_LABELS[request_type]
    else:
        label = STATUS_LABELS[listing.status]

    result = {
        "status": listing.status.value,
        "label": label,
        "is_pending": request_type is not None,
        "public_id_preserved": listing.public_id is not None,
    }
    if request_type is not None:
        result["request_type"] = request_type.value
    return result


# ── Internal helpers ──────────────────────────────────────────

def _append_audit(
    listing: Listing,
    action: str,
    actor_id: uuid.UUID,
    previous_status: Optional[ListingStatus],
    reason: Optional[str],
    now: datetime,
    before: Optional[Dict[str, Any]],
) -> ListingAuditEntry:
    """
    Append the next audit row. ``before`` is the listing content as it was
    before this change; for a new listing it is the submitted content.
    """
    listing.audit_count = (listing.audit_count or 0) + 1
    return ListingAuditEntry(
        listing_id=listing.id,
        seq=listing.audit_count,
        action=action,
        actor_id=actor_id,
        reason=reason,
        from_status=previous_status.value if previous_status else None,
        to_status=listing.status.value,
        snapshot=_jsonable(before) if before is not None else None,
        created_at=now,
    )


def _jsonable(values: Mapping[str, Any]) -> Dict[str, Any]:
    out = {}
    for key, value in values.items():
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, uuid.UUID):
            value = str(value)
        out[key] = value
    return out


def _ensure_owner(listing: Listing, owner_id: uuid.UUID) -> None:
    if listing.owner_id != owner_id:
        raise OwnershipError()


def _ensure_no_open_request(listing: Listing) -> None:
    if has_open_request(listing):
        pending = listing.pending_request_type or RequestType.CREATE
        raise PendingChangesExistError(
            f"This listing already has a pending {pending.value} request awaiting admin review"
        )


def _content_only(fields: Mapping[str, Any]) -> Dict[str, Any]:
    unknown = sorted(set(fields) - CONTENT_FIELDS)
    if unknown:
        raise ValidationError([f"Field '{name}' cannot be set" for name in unknown])
    return dict(fields)


def _stage(
    listing: Listing,
    request_type: RequestType,
    proposed: Optional[Dict[str, Any]],
    reason: Optional[str],
    now: datetime,
) -> None:
    listing.pending_request_type = request_type
    listing.pending_fields = proposed
    listing.pending_reason = reason
    listing.pending_requested_at = now
    listing.pending_request_id = uuid.uuid4()
    listing.admin_action_taken = False


def _clear_pending(listing: Listing) -> None:
    listing.pending_request_type = None
    listing.pending_fields = None
    listing.pending_reason = None
    listing.pending_requested_at = None
    listing.pending_request_id = None


def _record_decision(
    listing: Listing, decision: AdminDecision, reason: Optional[str], now: datetime
) -> None:
    listing.admin_action_taken = True
    listing.admin_action_date = now
    listing.last_admin_decision = decision
    listing.last_admin_reason = reason


def _merge(listing: Listing, proposed: Mapping[str, Any]) -> None:
    for field, value in proposed.items():
        if field in CONTENT_FIELDS:
            setattr(listing, field, value)


def _replay(listing: Listing, action: str) -> Transition:
    logger.info(f"Replayed {action} on listing {listing.id}: already decided")
    return Transition(
        listing=listing,
        action=action,
        previous_status=listing.status,
        new_status=listing.status,
        replayed=True,
    )


# ── Provider requests ─────────────────────────────────────────

def submit_create(
    owner_id: uuid.UUID,
    kind: ListingKind,
    fields: Mapping[str, Any],
    now: Optional[datetime] = None,
) -> Transition:
    now = now or utcnow()
    fields = _content_only(fields)
    errors = validate_listing_fields(fields, is_partial_update=False, kind=kind)
    if errors:
        raise ValidationError(errors)

    listing = Listing(
        id=uuid.uuid4(),
        kind=kind,
        owner_id=owner_id,
        status=ListingStatus.PENDING_APPROVAL,
        is_active=False,
        is_visible_to_provider=True,
        availability_status=AvailabilityStatus.AVAILABLE,
        admin_action_taken=False,
        first_submitted_at=now,
        audit_count=0,
    )
    for field, value in fields.items():
        setattr(listing, field, value)

    entry = _append_audit(listing, "create", owner_id, None, None, now, snapshot(listing))
    logger.info(f"Listing {listing.id} ({kind.value}) submitted for approval by {owner_id}")
    return Transition(
        listing=listing,
        action="create",
        previous_status=None,
        new_status=listing.status,
        audit_entry=entry,
        request_type=RequestType.CREATE,
    )


def submit_resubmit(
    listing: Listing,
    owner_id: uuid.UUID,
    fields: Mapping[str, Any],
    now: Optional[datetime] = None,
) -> Transition:
    """Send a rejected listing back for review, optionally with corrections."""
    now = now or utcnow()
    _ensure_owner(listing, owner_id)
    _ensure_no_open_request(listing)
    if listing.status != ListingStatus.REJECTED:
        raise ListingStateError("Only rejected listings can be resubmitted")

    proposed = _content_only(fields)
    merged = {**snapshot(listing), **proposed}
    errors = validate_listing_fields(merged, is_partial_update=False, kind=listing.kind)
    if errors:
        raise ValidationError(errors)

    previous = listing.status
    before = snapshot(listing)
    _stage(listing, RequestType.CREATE, proposed, None, now)
    listing.status = ListingStatus.PENDING_APPROVAL
    entry = _append_audit(listing, "resubmit", owner_id, previous, None, now, before)
    return Transition(
        listing=listing,
        action="resubmit",
        previous_status=previous,
        new_status=listing.status,
        audit_entry=entry,
        request_type=RequestType.CREATE,
    )


def submit_update(
    listing: Listing,
    owner_id: uuid.UUID,
    fields: Mapping[str, Any],
    now: Optional[datetime] = None,
) -> Transition:
    now = now or utcnow()
    _ensure_owner(listing, owner_id)
    _ensure_no_open_request(listing)
    if listing.status != ListingStatus.APPROVED:
        raise ListingStateError("Only approved listings can be updated")

    proposed = _content_only(fields)
    if not proposed:
        raise ValidationError(["No changes were submitted"])
    errors = validate_listing_fields(proposed, is_partial_update=True, kind=listing.kind)
    if not errors:
        check_lead_times(errors, {**snapshot(listing), **proposed})
    if errors:
        raise ValidationError(errors)

    _stage(listing, RequestType.UPDATE, proposed, None, now)
    entry = _append_audit(
        listing, "update_requested", owner_id, listing.status, None, now, snapshot(listing)
    )
    logger.info(f"Update staged for listing {listing.public_id or listing.id}: {sorted(proposed)}")
    return Transition(
        listing=listing,
        action="update_requested",
        previous_status=listing.status,
        new_status=listing.status,
        audit_entry=entry,
        request_type=RequestType.UPDATE,
    )


def submit_delete(
    listing: Listing,
    owner_id: uuid.UUID,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Transition:
    now = now or utcnow()
    _ensure_owner(listing, owner_id)
    _ensure_no_open_request(listing)
    if listing.status not in (ListingStatus.APPROVED, ListingStatus.INACTIVE):
        raise ListingStateError("Only approved or inactive listings can be deleted")

    _stage(listing, RequestType.DELETE, None, reason, now)
    entry = _append_audit(
        listing, "delete_requested", owner_id, listing.status, reason, now, snapshot(listing)
    )
    return Transition(
        listing=listing,
        action="delete_requested",
        previous_status=listing.status,
        new_status=listing.status,
        audit_entry=entry,
        request_type=RequestType.DELETE,
    )


def submit_reactivate(
    listing: Listing,
    owner_id: uuid.UUID,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Transition:
    now = now or utcnow()
    _ensure_owner(listing, owner_id)
    _ensure_no_open_request(listing)
    if listing.status not in (ListingStatus.DELETED, ListingStatus.INACTIVE):
        raise ListingStateError("Only deleted or inactive listings can be reactivated")

    _stage(listing, RequestType.REACTIVATE, None, reason, now)
    entry = _append_audit(
        listing, "reactivate_requested", owner_id, listing.status, reason, now, snapshot(listing)
    )
    return Transition(
        listing=listing,
        action="reactivate_requested",
        previous_status=listing.status,
        new_status=listing.status,
        audit_entry=entry,
        request_type=RequestType.REACTIVATE,
    )


# ── Admin decisions ───────────────────────────────────────────

async def approve(
    listing: Listing,
    admin_id: uuid.UUID,
    allocate: Allocator,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Transition:
    now = now or utcnow()
    if not has_open_request(listing):
        if listing.last_admin_decision == AdminDecision.APPROVE:
            return _replay(listing, "approve")
        raise NoPendingActionError("No pending request to approve")

    previous = listing.status
    request_type = listing.pending_request_type or RequestType.CREATE
    before = snapshot(listing)

    if request_type == RequestType.CREATE:
        if listing.pending_fields:
            _merge(listing, listing.pending_fields)
        if listing.public_id is None:
            listing.public_id = await allocate(listing)
        if listing.first_approved_at is None:
            listing.first_approved_at = now
        listing.status = ListingStatus.APPROVED
        listing.is_active = True
        listing.availability_status = AvailabilityStatus.AVAILABLE
        action = "approve_create"

    elif request_type == RequestType.UPDATE:
        _merge(listing, listing.pending_fields or {})
        listing.last_updated_at = now
        listing.deleted_at = None
        listing.status = ListingStatus.APPROVED
        action = "approve_update"

    elif request_type == RequestType.DELETE:
        listing.status = ListingStatus.DELETED
        listing.deleted_at = now
        listing.is_active = False
        listing.availability_status = AvailabilityStatus.NO_LONGER_AVAILABLE
        # Provider keeps seeing the deleted listing and its history
        listing.is_visible_to_provider = True
        action = "approve_delete"

    else:
        listing.status = ListingStatus.APPROVED
        listing.is_active = True
        listing.is_visible_to_provider = True
        listing.deleted_at = None
        listing.availability_status = AvailabilityStatus.AVAILABLE
        action = "approve_reactivate"

    _clear_pending(listing)
    _record_decision(listing, AdminDecision.APPROVE, reason, now)
    entry = _append_audit(listing, action, admin_id, previous, reason, now, before)
    logger.info(
        f"Listing {listing.public_id or listing.id} {action}: "
        f"{previous.value} -> {listing.status.value} by admin {admin_id}"
    )
    return Transition(
        listing=listing,
        action=action,
        previous_status=previous,
        new_status=listing.status,
        audit_entry=entry,
        request_type=request_type,
    )


def reject(
    listing: Listing,
    admin_id: uuid.UUID,
    reason: Optional[str],
    now: Optional[datetime] = None,
) -> Transition:
    now = now or utcnow()
    reason = (reason or "").strip()
    if len(reason) < MIN_REASON_LENGTH:
        raise ValidationError(
            [f"Rejection reason must be at least {MIN_REASON_LENGTH} characters"]
        )

    if not has_open_request(listing):
        if listing.last_admin_decision == AdminDecision.REJECT:
            return _replay(listing, "reject")
        raise NoPendingActionError("No pending request to reject")

    previous = listing.status
    request_type = listing.pending_request_type or RequestType.CREATE
    before = snapshot(listing)

    if request_type == RequestType.CREATE:
        listing.status = ListingStatus.REJECTED
        listing.is_active = False
        action = "reject_create"

    elif request_type == RequestType.UPDATE:
        # Proposed fields are dropped; approved content was never touched
        listing.status = ListingStatus.APPROVED
        listing.deleted_at = None
        action = "reject_update"

    elif request_type == RequestType.DELETE:
        listing.status = previous if previous == ListingStatus.INACTIVE else ListingStatus.APPROVED
        listing.is_active = listing.status == ListingStatus.APPROVED
        listing.deleted_at = None
        listing.availability_status = (
            AvailabilityStatus.AVAILABLE if listing.is_active else AvailabilityStatus.NO_LONGER_AVAILABLE
        )
        action = "reject_delete"

    else:
        action = "reject_reactivate"

    _clear_pending(listing)
    _record_decision(listing, AdminDecision.REJECT, reason, now)
    entry = _append_audit(listing, action, admin_id, previous, reason, now, before)
    logger.info(
        f"Listing {listing.public_id or listing.id} {action}: "
        f"{previous.value} -> {listing.status.value} by admin {admin_id}"
    )
    return Transition(
        listing=listing,
        action=action,
        previous_status=previous,
        new_status=listing.status,
        audit_entry=entry,
        request_type=request_type,
    )


def suspend(
    listing: Listing,
    admin_id: uuid.UUID,
    reason: Optional[str],
    now: Optional[datetime] = None,
) -> Transition:
    """Take an approved listing offline. The provider can ask to reactivate it."""
    now = now or utcnow()
    reason = (reason or "").strip()
    if len(reason) < MIN_REASON_LENGTH:
        raise ValidationError(
            [f"Suspension reason must be at least {MIN_REASON_LENGTH} characters"]
        )
    if listing.status == ListingStatus.INACTIVE and listing.last_admin_decision == AdminDecision.SUSPEND:
        return _replay(listing, "suspend")
    if listing.status != ListingStatus.APPROVED:
        raise ListingStateError("Only approved listings can be suspended")

    previous = listing.status
    before = snapshot(listing)
    audit_reason = reason
    dropped = listing.pending_request_type
    if dropped is not None:
        # A staged request no longer applies to an offline listing
        audit_reason = f"{reason} (pending {dropped.value} request withdrawn)"
    _clear_pending(listing)
    listing.status = ListingStatus.INACTIVE
    listing.is_active = False
    listing.availability_status = AvailabilityStatus.NO_LONGER_AVAILABLE
    _record_decision(listing, AdminDecision.SUSPEND, reason, now)
    entry = _append_audit(listing, "suspend", admin_id, previous, audit_reason, now, before)
    logger.info(f"Listing {listing.public_id or listing.id} suspended by admin {admin_id}: {audit_reason}")
    return Transition(
        listing=listing,
        action="suspend",
        previous_status=previous,
        new_status=listing.status,
        audit_entry=entry,
    )
