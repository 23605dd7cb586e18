"""
shared/utils/exceptions.py
Domain error taxonomy. main.py maps every MarketplaceError to a JSON
response using its status_code and code.
"""

from typing import Iterable, List, Optional


class MarketplaceError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code}


class ValidationError(MarketplaceError):
    """Validation failed"""
    status_code = 400
    code = "validation_error"

    def __init__(self, errors: Iterable[str], message: Optional[str] = None):
        self.errors: List[str] = list(errors)
        super().__init__(message or "; ".join(self.errors) or "Validation failed")

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code, "errors": self.errors}


class PermissionDeniedError(MarketplaceError):
    """You are not allowed to perform this action"""
    status_code = 403
    code = "permission_denied"


class OwnershipError(PermissionDeniedError):
    """Only the owner of this listing can change it"""
    code = "not_owner"


class NotFoundError(MarketplaceError):
    """Resource not found"""
    status_code = 404
    code = "not_found"


class ListingNotFoundError(NotFoundError):
    """Listing not found"""
    code = "listing_not_found"


class BookingNotFoundError(NotFoundError):
    """Booking not found"""
    code = "booking_not_found"


class ConflictError(MarketplaceError):
    status_code = 409
    code = "conflict"


class PendingChangesExistError(ConflictError):
    """This listing already has a request awaiting admin review"""
    code = "pending_changes_exist"


class NoPendingActionError(ConflictError):
    """There is no pending request to decide on"""
    code = "no_pending_action"


class ListingStateError(ConflictError):
    """The listing is not in a state that allows this action"""
    code = "invalid_listing_state"


class ImmutableFieldError(ConflictError):
    """This field cannot be changed once set"""
    code = "immutable_field"


class SlotConflictError(ConflictError):
    """This time slot is already booked"""
    code = "slot_conflict"


class TransientStoreError(MarketplaceError):
    """The data store is temporarily unavailable, please retry"""
    status_code = 503
    code = "store_unavailable"


class AllocationError(TransientStoreError):
    """Could not allocate a public identifier"""
    code = "allocation_failed"
