"""
tests/test_chat.py
Direct messages: sending, conversation history, read state and contacts.
"""

import uuid
from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import utcnow
from shared.models.models import ChatMessage, Notification, NotificationType, User, UserRole
from tests.conftest import auth_headers, make_user


async def _seed_conversation(db: AsyncSession, a: User, b: User, texts: list[str]) -> None:
    """Alternate messages a->b, b->a, ... one minute apart."""
    start = utcnow() - timedelta(hours=1)
    for i, text in enumerate(texts):
        sender, receiver = (a, b) if i % 2 == 0 else (b, a)
        db.add(ChatMessage(
            sender_id=sender.id,
            receiver_id=receiver.id,
            sender_role=sender.role,
            receiver_role=receiver.role,
            message=text,
            created_at=start + timedelta(minutes=i),
        ))
    await db.commit()


@pytest.mark.asyncio
async def test_customer_messages_provider(
    client: AsyncClient, db: AsyncSession, customer_user: User, provider_user: User
):
    response = await client.post(
        "/chat/messages",
        headers=auth_headers(customer_user),
        json={"receiver_id": str(provider_user.id), "message": "  Do you have parking?  "},
    )
    assert response.status_code == 201
    data = response.json()
    assert data["message"] == "Do you have parking?"
    assert data["sender_role"] == "customer"
    assert data["receiver_role"] == "serviceProvider"
    assert data["is_read"] is False

    result = await db.execute(
        select(Notification).where(
            Notification.user_id == provider_user.id,
            Notification.type == NotificationType.NEW_MESSAGE,
        )
    )
    note = result.scalar_one()
    assert note.data["sender_id"] == str(customer_user.id)


@pytest.mark.asyncio
async def test_cannot_message_yourself(client: AsyncClient, customer_user: User):
    response = await client.post(
        "/chat/messages",
        headers=auth_headers(customer_user),
        json={"receiver_id": str(customer_user.id), "message": "hello me"},
    )
    assert response.status_code == 400
    assert response.json()["code"] == "validation_error"


@pytest.mark.asyncio
async def test_blank_message_is_refused(client: AsyncClient, customer_user: User, provider_user: User):
    response = await client.post(
        "/chat/messages",
        headers=auth_headers(customer_user),
        json={"receiver_id": str(provider_user.id), "message": "    "},
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_inactive_recipient_is_not_found(
    client: AsyncClient, db: AsyncSession, customer_user: User, provider_user: User
):
    provider_user.is_active = False
    await db.commit()

    response = await client.post(
        "/chat/messages",
        headers=auth_headers(customer_user),
        json={"receiver_id": str(provider_user.id), "message": "Are you open?"},
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_history_is_oldest_first_and_pages_backwards(
    client: AsyncClient, db: AsyncSession, customer_user: User, provider_user: User
):
    await _seed_conversation(db, customer_user, provider_user, ["one", "two", "three", "four"])
    headers = auth_headers(customer_user)

    full = await client.get(f"/chat/history/{provider_user.id}", headers=headers)
    assert [m["message"] for m in full.json()] == ["one", "two", "three", "four"]

    newest = await client.get(f"/chat/history/{provider_user.id}", headers=headers, params={"limit": 2})
    assert [m["message"] for m in newest.json()] == ["three", "four"]

    older = await client.get(
        f"/chat/history/{provider_user.id}", headers=headers, params={"limit": 2, "before": 2}
    )
    assert [m["message"] for m in older.json()] == ["one", "two"]


@pytest.mark.asyncio
async def test_history_excludes_other_conversations(
    client: AsyncClient, db: AsyncSession, customer_user: User, provider_user: User, other_provider: User
):
    await _seed_conversation(db, customer_user, provider_user, ["for glow"])
    await _seed_conversation(db, customer_user, other_provider, ["for kasun"])

    response = await client.get(f"/chat/history/{other_provider.id}", headers=auth_headers(customer_user))
    assert [m["message"] for m in response.json()] == ["for kasun"]


@pytest.mark.asyncio
async def test_read_state_and_unread_count(
    client: AsyncClient, db: AsyncSession, customer_user: User, provider_user: User
):
    # customer sends "a" and "c"; provider sends "b"
    await _seed_conversation(db, customer_user, provider_user, ["a", "b", "c"])
    provider_headers = auth_headers(provider_user)

    count = await client.get("/chat/unread-count", headers=provider_headers)
    assert count.json() == {"unread_count": 2}

    marked = await client.post(f"/chat/history/{customer_user.id}/read", headers=provider_headers)
    assert marked.status_code == 200
    assert marked.json()["message"] == "2 messages marked as read"

    count = await client.get("/chat/unread-count", headers=provider_headers)
    assert count.json() == {"unread_count": 0}

    customer_count = await client.get("/chat/unread-count", headers=auth_headers(customer_user))
    assert customer_count.json() == {"unread_count": 1}


@pytest.mark.asyncio
async def test_contacts_show_latest_message_per_partner(
    client: AsyncClient, db: AsyncSession, customer_user: User, provider_user: User, other_provider: User
):
    await _seed_conversation(db, customer_user, other_provider, ["hi kasun", "hello!"])
    await _seed_conversation(db, customer_user, provider_user, ["hi glow"])

    response = await client.get("/chat/contacts", headers=auth_headers(customer_user))
    assert response.status_code == 200
    contacts = response.json()
    by_name = {c["full_name"]: c for c in contacts}
    assert set(by_name) == {"Glow Studio", "Kasun Hair Lounge"}
    assert by_name["Kasun Hair Lounge"]["last_message"] == "hello!"
    assert by_name["Kasun Hair Lounge"]["unread_count"] == 1
    assert by_name["Glow Studio"]["unread_count"] == 0


@pytest.mark.asyncio
async def test_contacts_empty(client: AsyncClient, customer_user: User):
    response = await client.get("/chat/contacts", headers=auth_headers(customer_user))
    assert response.json() == []


@pytest.mark.asyncio
async def test_chat_requires_authentication(client: AsyncClient):
    assert (await client.get("/chat/contacts")).status_code == 401


@pytest.mark.asyncio
async def test_contacts_are_most_recent_first(
    client: AsyncClient, db: AsyncSession, customer_user: User, provider_user: User, other_provider: User
):
    await _seed_conversation(db, customer_user, provider_user, ["hi glow", "welcome", "thanks", "see you"])
    await _seed_conversation(db, customer_user, other_provider, ["hi kasun"])

    response = await client.get("/chat/contacts", headers=auth_headers(customer_user))
    assert [c["full_name"] for c in response.json()] == ["Glow Studio", "Kasun Hair Lounge"]
    assert response.json()[0]["last_message"] == "see you"


@pytest.mark.asyncio
async def test_removed_contact_is_hidden_until_a_new_message(
    client: AsyncClient, db: AsyncSession, customer_user: User, provider_user: User, other_provider: User
):
    await _seed_conversation(db, customer_user, provider_user, ["hi glow"])
    await _seed_conversation(db, customer_user, other_provider, ["hi kasun"])
    headers = auth_headers(customer_user)

    removed = await client.delete(f"/chat/contacts/{provider_user.id}", headers=headers)
    assert removed.status_code == 200

    contacts = await client.get("/chat/contacts", headers=headers)
    assert [c["full_name"] for c in contacts.json()] == ["Kasun Hair Lounge"]

    # The provider still sees the conversation, and the history is kept
    theirs = await client.get("/chat/contacts", headers=auth_headers(provider_user))
    assert [c["full_name"] for c in theirs.json()] == ["Nimali Perera"]
    history = await client.get(f"/chat/history/{provider_user.id}", headers=headers)
    assert [m["message"] for m in history.json()] == ["hi glow"]

    await client.post(
        "/chat/messages",
        headers=auth_headers(provider_user),
        json={"receiver_id": str(customer_user.id), "message": "Your slot is ready"},
    )
    contacts = await client.get("/chat/contacts", headers=headers)
    assert {c["full_name"] for c in contacts.json()} == {"Glow Studio", "Kasun Hair Lounge"}


@pytest.mark.asyncio
async def test_remove_unknown_contact_returns_404(client: AsyncClient, customer_user: User):
    response = await client.delete(f"/chat/contacts/{uuid.uuid4()}", headers=auth_headers(customer_user))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_customer_search_finds_providers_only(
    client: AsyncClient, db: AsyncSession, customer_user: User, provider_user: User, other_provider: User
):
    await make_user(db, UserRole.CUSTOMER, "kasuni@example.com", "Kasuni Jayasinghe")

    response = await client.get(
        "/chat/users/search", headers=auth_headers(customer_user), params={"q": "kas"}
    )
    assert response.status_code == 200
    assert [u["business_name"] for u in response.json()] == ["Kasun Hair Lounge"]
    assert response.json()[0]["role"] == "serviceProvider"


@pytest.mark.asyncio
async def test_provider_search_finds_customers_and_skips_inactive(
    client: AsyncClient, db: AsyncSession, customer_user: User, provider_user: User
):
    await make_user(db, UserRole.CUSTOMER, "nimal@example.com", "Nimal Dias", is_active=False)

    response = await client.get(
        "/chat/users/search", headers=auth_headers(provider_user), params={"q": "nim"}
    )
    assert [u["full_name"] for u in response.json()] == ["Nimali Perera"]


@pytest.mark.asyncio
async def test_search_term_too_short(client: AsyncClient, customer_user: User):
    response = await client.get(
        "/chat/users/search", headers=auth_headers(customer_user), params={"q": "k"}
    )
    assert response.status_code == 422
