"""
shared/models/models.py
All SQLAlchemy ORM models for the Beauty Booking Platform.
UUID primary keys throughout; Listing rows carry an optimistic version counter.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, validates

from config.database import Base, UTCDateTime, utcnow
from shared.utils.exceptions import ImmutableFieldError


# ── Enumerations ──────────────────────────────────────────────

class UserRole(str, PyEnum):
    CUSTOMER = "customer"
    SERVICE_PROVIDER = "serviceProvider"
    ADMIN = "admin"


class ListingKind(str, PyEnum):
    SERVICE = "service"
    PACKAGE = "package"


class ListingStatus(str, PyEnum):
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    INACTIVE = "inactive"
    DELETED = "deleted"


class RequestType(str, PyEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    REACTIVATE = "reactivate"


class AdminDecision(str, PyEnum):
    APPROVE = "approve"
    REJECT = "reject"
    SUSPEND = "suspend"


class AvailabilityStatus(str, PyEnum):
    AVAILABLE = "Available"
    NO_LONGER_AVAILABLE = "No Longer Available"


class BookingStatus(str, PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class BookingLocation(str, PyEnum):
    HOME = "home"
    SALON = "salon"
    STUDIO = "studio"


class Sentiment(str, PyEnum):
    POSITIVE = "POSITIVE"
    NEUTRAL = "NEUTRAL"
    NEGATIVE = "NEGATIVE"


class NotificationType(str, PyEnum):
    LISTING_STATUS_CHANGED = "LISTING_STATUS_CHANGED"
    BOOKING_CREATED = "BOOKING_CREATED"
    BOOKING_CONFIRMED = "BOOKING_CONFIRMED"
    BOOKING_CANCELLED = "BOOKING_CANCELLED"
    BOOKING_COMPLETED = "BOOKING_COMPLETED"
    BOOKING_RESCHEDULED = "BOOKING_RESCHEDULED"
    BOOKING_REMINDER = "BOOKING_REMINDER"
    FEEDBACK_REQUEST = "FEEDBACK_REQUEST"
    FEEDBACK_RECEIVED = "FEEDBACK_RECEIVED"
    NEW_MESSAGE = "NEW_MESSAGE"


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )


# ── Models ────────────────────────────────────────────────────

class User(TimestampMixin, Base):
    """Platform account. Issued by the identity provider, read-only here."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    business_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole), nullable=False, default=UserRole.CUSTOMER
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    fcm_token: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)


class Listing(TimestampMixin, Base):
    """
    A bookable service or package offered by a service provider.

    Content fields change only through the approval workflow. While a request
    is open, the approved content stays on the row and the proposed values
    live in ``pending_fields``.
    """
    __tablename__ = "listings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    kind: Mapped[ListingKind] = mapped_column(Enum(ListingKind), nullable=False)
    public_id: Mapped[Optional[str]] = mapped_column(String(20), unique=True, nullable=True)
    owner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )

    # Content
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    sub_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    detailed_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    pricing: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    duration: Mapped[int] = mapped_column(Integer, nullable=False)
    experience_level: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    location_mode: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    availability: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    cancellation_policy: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    custom_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    preparation_required: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    min_lead_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_lead_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    special_offers: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    images: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)

    # Lifecycle
    status: Mapped[ListingStatus] = mapped_column(
        Enum(ListingStatus), nullable=False, default=ListingStatus.PENDING_APPROVAL
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)
    is_visible_to_provider: Mapped[bool] = mapped_column(Boolean, default=True)
    availability_status: Mapped[AvailabilityStatus] = mapped_column(
        Enum(AvailabilityStatus, values_callable=lambda e: [m.value for m in e]),
        default=AvailabilityStatus.AVAILABLE,
    )

    # Staged request (at most one)
    pending_request_type: Mapped[Optional[RequestType]] = mapped_column(
        Enum(RequestType), nullable=True
    )
    pending_fields: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    pending_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    pending_requested_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    pending_request_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    # Admin bookkeeping
    admin_action_taken: Mapped[bool] = mapped_column(Boolean, default=False)
    admin_action_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    last_admin_decision: Mapped[Optional[AdminDecision]] = mapped_column(
        Enum(AdminDecision), nullable=True
    )
    last_admin_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Lifecycle timestamps
    first_submitted_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    first_approved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    last_updated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    # Audit trail bookkeeping
    audit_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Denormalized stats
    average_rating: Mapped[Decimal] = mapped_column(Numeric(3, 2), default=Decimal("0.00"))
    review_count: Mapped[int] = mapped_column(Integer, default=0)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_listings_owner_id", "owner_id"),
        Index("ix_listings_kind_status", "kind", "status"),
        Index("ix_listings_pending", "admin_action_taken", "pending_request_type"),
    )

    @validates("public_id")
    def _guard_public_id(self, key, value):
        current = self.__dict__.get("public_id")
        if current is not None and value != current:
            raise ImmutableFieldError(f"public_id is already assigned ({current})")
        return value

    @validates("owner_id", "kind")
    def _guard_identity(self, key, value):
        current = self.__dict__.get(key)
        if current is not None and value != current:
            raise ImmutableFieldError(f"{key} cannot be changed")
        return value

    @property
    def pending_changes(self) -> Optional[dict]:
        if self.pending_request_type is None:
            return None
        return {
            "request_type": self.pending_request_type.value,
            "proposed_fields": self.pending_fields or {},
            "requested_at": self.pending_requested_at,
            "reason": self.pending_reason,
            "request_id": self.pending_request_id,
        }


class ListingAuditEntry(Base):
    """Immutable, ordered log of listing lifecycle actions."""
    __tablename__ = "listing_audit_entries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    listing_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("listings.id"), nullable=False
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[str] = mapped_column(String(30), nullable=False)
    actor_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    from_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    to_status: Mapped[str] = mapped_column(String(30), nullable=False)
    snapshot: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("listing_id", "seq", name="uq_listing_audit_seq"),
    )


class PublicIdSequence(Base):
    """Per-kind counter behind SRV_/PKG_ public identifiers."""
    __tablename__ = "public_id_sequences"

    entity_class: Mapped[str] = mapped_column(String(20), primary_key=True)
    last_value: Mapped[int] = mapped_column(Integer, nullable=False)


class Booking(TimestampMixin, Base):
    """A customer's appointment for a listing."""
    __tablename__ = "bookings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    listing_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("listings.id"), nullable=False)
    provider_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    customer_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)

    # Schedule
    booking_date: Mapped[str] = mapped_column(String(10), nullable=False)   # YYYY-MM-DD, business tz
    booking_time: Mapped[str] = mapped_column(String(5), nullable=False)    # HH:MM, business tz
    start: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    end: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False)

    location: Mapped[BookingLocation] = mapped_column(
        Enum(BookingLocation), nullable=False, default=BookingLocation.SALON
    )
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    total_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus), nullable=False, default=BookingStatus.PENDING
    )
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_by: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    reminder_sent: Mapped[bool] = mapped_column(Boolean, default=False)

    confirmed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())

    __table_args__ = (
        Index("ix_bookings_listing_start", "listing_id", "start"),
        Index("ix_bookings_customer_id", "customer_id"),
        Index("ix_bookings_provider_id", "provider_id"),
        Index("ix_bookings_status", "status"),
    )


class Feedback(TimestampMixin, Base):
    """Post-appointment feedback. One per booking (enforced by unique constraint)."""
    __tablename__ = "feedback"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id"), unique=True, nullable=False
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    provider_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    listing_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("listings.id"), nullable=False)
    rating: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    comment: Mapped[str] = mapped_column(Text, nullable=False)
    sentiment: Mapped[Sentiment] = mapped_column(Enum(Sentiment), nullable=False)
    is_visible: Mapped[bool] = mapped_column(Boolean, default=True)

    __table_args__ = (
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_feedback_rating_range"),
        Index("ix_feedback_provider_id", "provider_id"),
        Index("ix_feedback_listing_id", "listing_id"),
    )


class ChatMessage(Base):
    """Direct message between two users. Delivery transport lives elsewhere."""
    __tablename__ = "chat_messages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    sender_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    receiver_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    sender_role: Mapped[UserRole] = mapped_column(Enum(UserRole), nullable=False)
    receiver_role: Mapped[UserRole] = mapped_column(Enum(UserRole), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_chat_pair_created", "sender_id", "receiver_id", "created_at"),
        Index("ix_chat_receiver_read", "receiver_id", "is_read"),
    )


class HiddenChatContact(Base):
    """
    A contact the user removed from their list. Messages are kept; the contact
    reappears once a message newer than ``hidden_at`` arrives.
    """
    __tablename__ = "hidden_chat_contacts"

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), primary_key=True)
    contact_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), primary_key=True)
    hidden_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)


class Notification(TimestampMixin, Base):
    """In-app notification log. Push delivery is handed to Celery."""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    listing_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("listings.id"), nullable=True
    )
    booking_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("bookings.id"), nullable=True
    )
    type: Mapped[NotificationType] = mapped_column(Enum(NotificationType), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    sent_push: Mapped[bool] = mapped_column(Boolean, default=False)

    __table_args__ = (Index("ix_notifications_user_id_read", "user_id", "is_read"),)
