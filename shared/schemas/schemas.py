"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
"""

import re
import uuid
from datetime import date as Date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from shared.models.models import BookingLocation


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class PaginatedResponse(BaseSchema):
    items: List[Any]
    total: int
    page: int
    page_size: int
    pages: int


class MessageResponse(BaseSchema):
    message: str
    success: bool = True


class ErrorResponse(BaseSchema):
    detail: str
    code: Optional[str] = None
    errors: Optional[List[str]] = None


# ── Listings ──────────────────────────────────────────────────
# Request bodies forbid unknown keys, so identity and lifecycle fields
# (public_id, owner_id, status, ...) can never ride along with content.

class PriceVariationSchema(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    additional_price: Optional[float] = 0
    description: Optional[str] = None


class AddOnSchema(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    price: Optional[float] = None
    description: Optional[str] = None


class PricingSchema(BaseModel):
    model_config = ConfigDict(extra="forbid")

    base_price: Optional[float] = None
    price_type: Optional[str] = None
    variations: Optional[List[PriceVariationSchema]] = None
    add_ons: Optional[List[AddOnSchema]] = None


class TimeSlotSchema(BaseModel):
    model_config = ConfigDict(extra="forbid")

    start: str
    end: str


class AvailabilitySchema(BaseModel):
    model_config = ConfigDict(extra="forbid")

    days: List[str] = []
    time_slots: List[TimeSlotSchema] = []


class SpecialOffersSchema(BaseModel):
    model_config = ConfigDict(extra="forbid")

    discount_percentage: Optional[float] = None
    valid_until: Optional[Date] = None
    description: Optional[str] = None


class ListingFieldsRequest(BaseModel):
    """
    Content of a service or package. All keys are optional at this layer;
    required-ness and ranges are checked by the listing validator so every
    problem is reported in one response.
    """
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    type: Optional[str] = None
    category: Optional[str] = None
    sub_type: Optional[str] = None
    description: Optional[str] = None
    detailed_description: Optional[str] = None
    pricing: Optional[PricingSchema] = None
    duration: Optional[int] = None
    experience_level: Optional[str] = None
    location_mode: Optional[str] = None
    availability: Optional[AvailabilitySchema] = None
    cancellation_policy: Optional[str] = None
    custom_notes: Optional[str] = None
    preparation_required: Optional[str] = None
    min_lead_time: Optional[int] = None
    max_lead_time: Optional[int] = None
    special_offers: Optional[SpecialOffersSchema] = None
    images: Optional[List[str]] = None

    def submitted_fields(self) -> Dict[str, Any]:
        """Only the keys the client actually sent, as plain JSON values."""
        return self.model_dump(mode="json", exclude_unset=True)


class ListingReasonRequest(BaseSchema):
    reason: Optional[str] = Field(None, max_length=1000)


class AdminDecisionRequest(BaseSchema):
    reason: Optional[str] = Field(None, max_length=1000)


class ListingResponse(BaseSchema):
    id: uuid.UUID
    kind: str
    public_id: Optional[str]
    owner_id: uuid.UUID
    name: str
    type: str
    category: str
    sub_type: Optional[str] = None
    description: str
    detailed_description: Optional[str] = None
    pricing: Dict[str, Any]
    duration: int
    experience_level: Optional[str] = None
    location_mode: Optional[str] = None
    availability: Optional[Dict[str, Any]] = None
    cancellation_policy: Optional[str] = None
    custom_notes: Optional[str] = None
    preparation_required: Optional[str] = None
    min_lead_time: Optional[int] = None
    max_lead_time: Optional[int] = None
    special_offers: Optional[Dict[str, Any]] = None
    images: Optional[List[str]] = None
    status: str
    is_active: bool
    is_visible_to_provider: bool
    availability_status: str
    pending_changes: Optional[Dict[str, Any]] = None
    admin_action_taken: bool
    admin_action_date: Optional[datetime] = None
    last_admin_decision: Optional[str] = None
    last_admin_reason: Optional[str] = None
    first_submitted_at: datetime
    first_approved_at: Optional[datetime] = None
    last_updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    average_rating: Decimal
    review_count: int
    version: Optional[int] = None
    display: Optional[Dict[str, Any]] = None


class ListingTransitionResponse(BaseSchema):
    listing: ListingResponse
    action: str
    previous_status: Optional[str]
    new_status: str
    replayed: bool = False


class AuditEntryResponse(BaseSchema):
    seq: int
    action: str
    actor_id: uuid.UUID
    reason: Optional[str]
    from_status: Optional[str]
    to_status: str
    snapshot: Optional[Dict[str, Any]]
    created_at: datetime


class PlatformStatsResponse(BaseSchema):
    customers: int
    providers: int
    live_services: int
    live_packages: int
    pending_listings: int
    bookings_total: int
    bookings_today: int
    bookings_by_status: Dict[str, int]
    feedback_total: int
    average_rating: float
    messages_total: int


# ── Booking ───────────────────────────────────────────────────

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def _check_hhmm(value: str) -> str:
    if not _HHMM.match(value):
        raise ValueError("Time must be in HH:MM format")
    return value


class AvailabilityResponse(BaseSchema):
    listing_id: uuid.UUID
    date: Date
    duration: int
    slots: List[datetime]


class BookingCreateRequest(BaseSchema):
    listing_id: uuid.UUID
    date: Date
    time: str
    location: BookingLocation = BookingLocation.SALON
    address: Optional[str] = Field(None, max_length=500)
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("time")
    @classmethod
    def validate_time(cls, v: str) -> str:
        return _check_hhmm(v)

    @model_validator(mode="after")
    def address_required_for_home(self):
        if self.location == BookingLocation.HOME.value and not (self.address or "").strip():
            raise ValueError("Address is required for home service")
        return self


class BookingRescheduleRequest(BaseSchema):
    date: Date
    time: str

    @field_validator("time")
    @classmethod
    def validate_time(cls, v: str) -> str:
        return _check_hhmm(v)


class BookingStatusUpdateRequest(BaseSchema):
    status: Literal["confirmed", "completed", "cancelled"]
    reason: Optional[str] = Field(None, max_length=500)


class BookingCancelRequest(BaseSchema):
    reason: Optional[str] = Field(None, max_length=500)


class BookingResponse(BaseSchema):
    id: uuid.UUID
    booking_number: str
    listing_id: uuid.UUID
    provider_id: uuid.UUID
    customer_id: uuid.UUID
    booking_date: str
    booking_time: str
    start: datetime
    end: datetime
    duration: int
    location: str
    address: Optional[str]
    notes: Optional[str]
    total_price: Decimal
    status: str
    cancellation_reason: Optional[str]
    cancelled_by: Optional[str]
    confirmed_at: Optional[datetime]
    completed_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    created_at: datetime


# ── Feedback ──────────────────────────────────────────────────

class FeedbackCreateRequest(BaseSchema):
    booking_id: uuid.UUID
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=5, max_length=2000)

    @field_validator("comment")
    @classmethod
    def strip_comment(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 5:
            raise ValueError("Feedback must be at least 5 characters")
        return v


class FeedbackResponse(BaseSchema):
    id: uuid.UUID
    booking_id: uuid.UUID
    customer_id: uuid.UUID
    provider_id: uuid.UUID
    listing_id: uuid.UUID
    rating: int
    comment: str
    sentiment: str
    is_visible: bool
    created_at: datetime
    customer_name: Optional[str] = None


class FeedbackStatsResponse(BaseSchema):
    provider_id: uuid.UUID
    total: int
    average_rating: float
    distribution: Dict[int, int]
    sentiment: Dict[str, int]


class FeedbackTrendPoint(BaseSchema):
    day: Date
    count: int
    average_rating: float
    positive: int
    negative: int


class FeedbackTrendsResponse(BaseSchema):
    period: Literal["week", "month", "year"]
    since: datetime
    provider_id: Optional[uuid.UUID] = None
    trends: List[FeedbackTrendPoint]


class ProviderRatingResponse(BaseSchema):
    provider_id: uuid.UUID
    provider_name: str
    total: int
    average_rating: float


class CustomerFeedbackResponse(BaseSchema):
    customer_id: uuid.UUID
    items: List[FeedbackResponse]
    total: int
    average_rating: float


# ── Chat ──────────────────────────────────────────────────────

class ChatMessageCreateRequest(BaseSchema):
    receiver_id: uuid.UUID
    message: str = Field(..., min_length=1, max_length=5000)

    @field_validator("message")
    @classmethod
    def strip_message(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Message cannot be empty")
        return v


class ChatMessageResponse(BaseSchema):
    id: uuid.UUID
    sender_id: uuid.UUID
    receiver_id: uuid.UUID
    sender_role: str
    receiver_role: str
    message: str
    is_read: bool
    read_at: Optional[datetime]
    created_at: datetime


class ChatContactResponse(BaseSchema):
    user_id: uuid.UUID
    full_name: str
    role: str
    last_message: str
    last_message_at: datetime
    unread_count: int


class ChatUserResponse(BaseSchema):
    id: uuid.UUID
    full_name: str
    business_name: Optional[str]
    role: str


# ── Notification ──────────────────────────────────────────────

class NotificationResponse(BaseSchema):
    id: uuid.UUID
    type: str
    title: str
    body: str
    data: Optional[Dict[str, Any]] = None
    is_read: bool
    read_at: Optional[datetime]
    created_at: datetime
    listing_id: Optional[uuid.UUID] = None
    booking_id: Optional[uuid.UUID] = None
