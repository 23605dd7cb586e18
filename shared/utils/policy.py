"""
shared/utils/policy.py
Role to capability table. Every mutating entry point asks this module
instead of comparing roles inline.
"""

from enum import Enum as PyEnum
from typing import Dict, FrozenSet

from shared.models.models import Booking, User, UserRole
from shared.utils.exceptions import PermissionDeniedError


class Capability(str, PyEnum):
    SUBMIT_LISTING = "submit_listing"
    MODERATE_LISTING = "moderate_listing"
    BOOK_APPOINTMENT = "book_appointment"
    MANAGE_BOOKING = "manage_booking"
    LEAVE_FEEDBACK = "leave_feedback"
    MODERATE_FEEDBACK = "moderate_feedback"
    SEND_MESSAGE = "send_message"


CAPABILITIES: Dict[UserRole, FrozenSet[Capability]] = {
    UserRole.CUSTOMER: frozenset({
        Capability.BOOK_APPOINTMENT,
        Capability.LEAVE_FEEDBACK,
        Capability.SEND_MESSAGE,
    }),
    UserRole.SERVICE_PROVIDER: frozenset({
        Capability.SUBMIT_LISTING,
        Capability.MANAGE_BOOKING,
        Capability.SEND_MESSAGE,
    }),
    UserRole.ADMIN: frozenset({
        Capability.MODERATE_LISTING,
        Capability.MANAGE_BOOKING,
        Capability.MODERATE_FEEDBACK,
        Capability.SEND_MESSAGE,
    }),
}


def has_capability(user: User, capability: Capability) -> bool:
    return capability in CAPABILITIES.get(user.role, frozenset())


def ensure_capability(user: User, capability: Capability) -> None:
    if not has_capability(user, capability):
        raise PermissionDeniedError(
            f"Role '{user.role.value}' is not allowed to {capability.value.replace('_', ' ')}"
        )


def ensure_booking_access(user: User, booking: Booking, manage: bool = False) -> None:
    """
    Customers see their own bookings, providers the bookings of their
    listings, admins everything. ``manage`` restricts to provider/admin.
    """
    if user.role == UserRole.ADMIN:
        return
    if manage:
        ensure_capability(user, Capability.MANAGE_BOOKING)
        if booking.provider_id != user.id:
            raise PermissionDeniedError("Not authorized to manage this booking")
        return
    if user.id not in (booking.customer_id, booking.provider_id):
        raise PermissionDeniedError("Not authorized to view this booking")
