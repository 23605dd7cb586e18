"""
services/chat/router.py
Direct messages between customers, providers and admins.
Only persistence and read state live here; delivery is an in-app
notification plus optional push.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import and_, func, or_, select, union_all, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db, store_call, utcnow
from services.notification.dispatcher import notify_user, render
from shared.middleware.auth import CapabilityRequired
from shared.models.models import ChatMessage, HiddenChatContact, NotificationType, User, UserRole
from shared.schemas.schemas import (
    ChatContactResponse,
    ChatMessageCreateRequest,
    ChatMessageResponse,
    ChatUserResponse,
    MessageResponse,
)
from shared.utils.exceptions import NotFoundError, ValidationError
from shared.utils.policy import Capability

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["Chat"])

require_sender = CapabilityRequired(Capability.SEND_MESSAGE)

SEARCHABLE_ROLES = {
    UserRole.CUSTOMER: (UserRole.SERVICE_PROVIDER,),
    UserRole.SERVICE_PROVIDER: (UserRole.CUSTOMER, UserRole.ADMIN),
    UserRole.ADMIN: (UserRole.SERVICE_PROVIDER,),
}


def _conversation(me: UUID, other: UUID):
    return or_(
        and_(ChatMessage.sender_id == me, ChatMessage.receiver_id == other),
        and_(ChatMessage.sender_id == other, ChatMessage.receiver_id == me),
    )


@router.post("/messages", response_model=ChatMessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    data: ChatMessageCreateRequest,
    current_user: User = Depends(require_sender),
    db: AsyncSession = Depends(get_db),
):
    if data.receiver_id == current_user.id:
        raise ValidationError(["You cannot send a message to yourself"])

    receiver = await db.get(User, data.receiver_id)
    if receiver is None or not receiver.is_active:
        raise NotFoundError("Recipient not found")

    message = ChatMessage(
        sender_id=current_user.id,
        receiver_id=receiver.id,
        sender_role=current_user.role,
        receiver_role=receiver.role,
        message=data.message,
    )
    db.add(message)
    await store_call(db.commit(), operation="chat insert")

    response = ChatMessageResponse.model_validate(message)
    sender_name = current_user.business_name or current_user.full_name
    title, body = render(NotificationType.NEW_MESSAGE, sender=sender_name)
    await notify_user(
        db,
        response.receiver_id,
        NotificationType.NEW_MESSAGE,
        title,
        body,
        data={"message_id": str(response.id), "sender_id": str(response.sender_id)},
    )
    return response


@router.get("/history/{user_id}", response_model=list[ChatMessageResponse])
async def get_history(
    user_id: UUID,
    before: int = Query(0, ge=0, description="Number of newest messages to skip"),
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(require_sender),
    db: AsyncSession = Depends(get_db),
):
    """Conversation with one user, oldest first within the returned window."""
    result = await db.execute(
        select(ChatMessage)
        .where(_conversation(current_user.id, user_id))
        .order_by(ChatMessage.created_at.desc())
        .offset(before)
        .limit(limit)
    )
    messages = list(result.scalars())
    messages.reverse()
    return [ChatMessageResponse.model_validate(m) for m in messages]


@router.post("/history/{user_id}/read", response_model=MessageResponse)
async def mark_conversation_read(
    user_id: UUID,
    current_user: User = Depends(require_sender),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        update(ChatMessage)
        .where(
            ChatMessage.sender_id == user_id,
            ChatMessage.receiver_id == current_user.id,
            ChatMessage.is_read == False,  # noqa: E712
        )
        .values(is_read=True, read_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await store_call(db.commit(), operation="chat mark read")
    return MessageResponse(message=f"{result.rowcount or 0} messages marked as read")


@router.get("/unread-count")
async def unread_count(
    current_user: User = Depends(require_sender),
    db: AsyncSession = Depends(get_db),
):
    count = await db.scalar(
        select(func.count(ChatMessage.id)).where(
            ChatMessage.receiver_id == current_user.id,
            ChatMessage.is_read == False,  # noqa: E712
        )
    )
    return {"unread_count": count or 0}


@router.get("/contacts", response_model=list[ChatContactResponse])
async def get_contacts(
    current_user: User = Depends(require_sender),
    db: AsyncSession = Depends(get_db),
):
    """Everyone the user has exchanged messages with, most recent first."""
    me = current_user.id

    # One row per partner: the time of the newest message either way
    pairs = union_all(
        select(ChatMessage.receiver_id.label("partner_id"), ChatMessage.created_at.label("sent_at"))
        .where(ChatMessage.sender_id == me),
        select(ChatMessage.sender_id.label("partner_id"), ChatMessage.created_at.label("sent_at"))
        .where(ChatMessage.receiver_id == me),
    ).subquery()
    latest = (
        select(pairs.c.partner_id, func.max(pairs.c.sent_at).label("last_at"))
        .group_by(pairs.c.partner_id)
        .subquery()
    )

    result = await db.execute(
        select(ChatMessage, User)
        .join(
            latest,
            and_(
                ChatMessage.created_at == latest.c.last_at,
                or_(
                    and_(ChatMessage.sender_id == me, ChatMessage.receiver_id == latest.c.partner_id),
                    and_(ChatMessage.sender_id == latest.c.partner_id, ChatMessage.receiver_id == me),
                ),
            ),
        )
        .join(User, User.id == latest.c.partner_id)
        .order_by(latest.c.last_at.desc())
    )
    rows = result.all()
    if not rows:
        return []

    unread_rows = await db.execute(
        select(ChatMessage.sender_id, func.count(ChatMessage.id))
        .where(
            ChatMessage.receiver_id == me,
            ChatMessage.is_read == False,  # noqa: E712
        )
        .group_by(ChatMessage.sender_id)
    )
    unread = dict(unread_rows.all())

    hidden_rows = await db.execute(
        select(HiddenChatContact.contact_id, HiddenChatContact.hidden_at)
        .where(HiddenChatContact.user_id == me)
    )
    hidden = dict(hidden_rows.all())

    contacts = []
    seen: set[UUID] = set()
    for message, user in rows:
        if user.id in seen:
            continue
        seen.add(user.id)
        hidden_at = hidden.get(user.id)
        if hidden_at is not None and message.created_at <= hidden_at:
            continue
        contacts.append(ChatContactResponse(
            user_id=user.id,
            full_name=user.business_name or user.full_name,
            role=user.role.value,
            last_message=message.message,
            last_message_at=message.created_at,
            unread_count=unread.get(user.id, 0),
        ))
    return contacts


@router.delete("/contacts/{user_id}", response_model=MessageResponse)
async def remove_contact(
    user_id: UUID,
    current_user: User = Depends(require_sender),
    db: AsyncSession = Depends(get_db),
):
    """
    Hide a contact from the caller's list. The conversation itself is kept
    for both sides, and a newer message brings the contact back.
    """
    if await db.get(User, user_id) is None:
        raise NotFoundError("Contact not found")

    entry = await db.get(HiddenChatContact, (current_user.id, user_id))
    if entry is None:
        db.add(HiddenChatContact(user_id=current_user.id, contact_id=user_id, hidden_at=utcnow()))
    else:
        entry.hidden_at = utcnow()
    await store_call(db.commit(), operation="chat hide contact")
    return MessageResponse(message="Contact removed from your list")


@router.get("/users/search", response_model=list[ChatUserResponse])
async def search_users(
    q: str = Query(..., min_length=2, max_length=100),
    current_user: User = Depends(require_sender),
    db: AsyncSession = Depends(get_db),
):
    """
    Find someone to start a conversation with. Customers and admins find
    providers; providers find customers and admins.
    """
    term = f"%{q.strip()}%"
    query = select(User).where(
        User.id != current_user.id,
        User.is_active == True,  # noqa: E712
        or_(User.full_name.ilike(term), User.business_name.ilike(term)),
        User.role.in_(SEARCHABLE_ROLES[current_user.role]),
    )
    result = await db.execute(query.order_by(User.full_name).limit(20))
    return [ChatUserResponse.model_validate(u) for u in result.scalars()]
