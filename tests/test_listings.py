"""
tests/test_listings.py
Provider-facing service and package endpoints: submission, browsing and the
update / delete / reactivate / resubmit requests.
"""

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import (
    Listing,
    ListingAuditEntry,
    ListingKind,
    ListingStatus,
    Notification,
    User,
)
from tests.conftest import auth_headers, make_listing, package_payload, service_payload


# ── Submission ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_provider_submits_service(client: AsyncClient, provider_user: User, db: AsyncSession):
    response = await client.post("/services", headers=auth_headers(provider_user), json=service_payload())
    assert response.status_code == 201
    data = response.json()
    assert data["action"] == "create"
    assert data["new_status"] == "pending_approval"
    assert data["listing"]["public_id"] is None
    assert data["listing"]["display"]["label"] == "Pending Approval"

    entries = (await db.execute(select(ListingAuditEntry))).scalars().all()
    assert [e.action for e in entries] == ["create"]

    notes = (await db.execute(select(Notification).where(Notification.user_id == provider_user.id))).scalars().all()
    assert len(notes) == 1


@pytest.mark.asyncio
async def test_provider_submits_package(client: AsyncClient, provider_user: User):
    response = await client.post("/packages", headers=auth_headers(provider_user), json=package_payload())
    assert response.status_code == 201
    assert response.json()["listing"]["kind"] == "package"


@pytest.mark.asyncio
async def test_invalid_submission_lists_every_problem(client: AsyncClient, provider_user: User):
    payload = service_payload(name="A", duration=5, pricing={"base_price": -1})
    response = await client.post("/services", headers=auth_headers(provider_user), json=payload)
    assert response.status_code == 400
    data = response.json()
    assert data["code"] == "validation_error"
    assert "Name must be between 2 and 100 characters" in data["errors"]
    assert "Duration must be between 15 and 600 minutes" in data["errors"]
    assert "Base price must be greater than 0" in data["errors"]


@pytest.mark.asyncio
async def test_unknown_fields_are_refused(client: AsyncClient, provider_user: User):
    response = await client.post(
        "/services", headers=auth_headers(provider_user), json=service_payload(status="approved")
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_customer_cannot_submit(client: AsyncClient, customer_user: User):
    response = await client.post("/services", headers=auth_headers(customer_user), json=service_payload())
    assert response.status_code == 403
    assert response.json()["code"] == "permission_denied"


@pytest.mark.asyncio
async def test_unauthenticated_cannot_submit(client: AsyncClient):
    response = await client.post("/services", json=service_payload())
    assert response.status_code == 401


# ── Browsing ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_public_catalogue_shows_only_live_listings(
    client: AsyncClient, db: AsyncSession, provider_user: User
):
    await make_listing(db, provider_user, public_id="SRV_001")
    await make_listing(db, provider_user, status=ListingStatus.PENDING_APPROVAL, name="Hidden Cut")
    await make_listing(db, provider_user, status=ListingStatus.DELETED, public_id="SRV_002")

    response = await client.get("/services")
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 1
    assert data["items"][0]["public_id"] == "SRV_001"


@pytest.mark.asyncio
async def test_catalogue_search_and_filters(client: AsyncClient, db: AsyncSession, provider_user: User):
    await make_listing(db, provider_user, public_id="SRV_001")
    await make_listing(
        db, provider_user, public_id="SRV_002", name="Gel Nail Art", type="Nail Art",
        description="Gel polish with hand painted designs.",
    )

    by_type = await client.get("/services", params={"type": "Nail Art"})
    assert [i["public_id"] for i in by_type.json()["items"]] == ["SRV_002"]

    by_search = await client.get("/services", params={"search": "layered"})
    assert [i["public_id"] for i in by_search.json()["items"]] == ["SRV_001"]


@pytest.mark.asyncio
async def test_services_and_packages_are_separate(client: AsyncClient, db: AsyncSession, provider_user: User):
    package = await make_listing(db, provider_user, kind=ListingKind.PACKAGE, public_id="PKG_001")
    response = await client.get(f"/services/{package.id}", headers=auth_headers(provider_user))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_pending_listing_visible_to_owner_only(
    client: AsyncClient, db: AsyncSession, provider_user: User, other_provider: User, admin_user: User
):
    listing = await make_listing(db, provider_user, status=ListingStatus.PENDING_APPROVAL)

    assert (await client.get(f"/services/{listing.id}", headers=auth_headers(provider_user))).status_code == 200
    assert (await client.get(f"/services/{listing.id}", headers=auth_headers(admin_user))).status_code == 200
    assert (await client.get(f"/services/{listing.id}", headers=auth_headers(other_provider))).status_code == 404


@pytest.mark.asyncio
async def test_my_listings(client: AsyncClient, db: AsyncSession, provider_user: User, other_provider: User):
    await make_listing(db, provider_user, public_id="SRV_001")
    await make_listing(db, other_provider, public_id="SRV_002")

    response = await client.get("/services/mine", headers=auth_headers(provider_user))
    assert response.status_code == 200
    assert [item["public_id"] for item in response.json()] == ["SRV_001"]


# ── Change Requests ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_update_request_keeps_live_content(
    client: AsyncClient, db: AsyncSession, approved_service: Listing, provider_user: User
):
    response = await client.put(
        f"/services/{approved_service.id}",
        headers=auth_headers(provider_user),
        json={"name": "Signature Layered Cut"},
    )
    assert response.status_code == 202
    data = response.json()
    assert data["action"] == "update_requested"
    assert data["listing"]["name"] == "Layered Hair Cut"
    assert data["listing"]["pending_changes"]["proposed_fields"] == {"name": "Signature Layered Cut"}

    public = await client.get("/services")
    assert public.json()["items"][0]["name"] == "Layered Hair Cut"


@pytest.mark.asyncio
async def test_second_request_conflicts(
    client: AsyncClient, approved_service: Listing, provider_user: User
):
    headers = auth_headers(provider_user)
    await client.put(f"/services/{approved_service.id}", headers=headers, json={"name": "Signature Cut"})

    response = await client.delete(f"/services/{approved_service.id}", headers=headers)
    assert response.status_code == 409
    assert response.json()["code"] == "pending_changes_exist"


@pytest.mark.asyncio
async def test_other_provider_cannot_change_listing(
    client: AsyncClient, approved_service: Listing, other_provider: User
):
    response = await client.put(
        f"/services/{approved_service.id}",
        headers=auth_headers(other_provider),
        json={"name": "Not Mine"},
    )
    assert response.status_code == 403
    assert response.json()["code"] == "not_owner"


@pytest.mark.asyncio
async def test_delete_request_with_reason(
    client: AsyncClient, approved_service: Listing, provider_user: User
):
    response = await client.request(
        "DELETE",
        f"/services/{approved_service.id}",
        headers=auth_headers(provider_user),
        json={"reason": "Moving to a new studio"},
    )
    assert response.status_code == 202
    pending = response.json()["listing"]["pending_changes"]
    assert pending["request_type"] == "delete"
    assert response.json()["listing"]["display"]["label"] == "Deletion Pending"


@pytest.mark.asyncio
async def test_reactivate_requires_deleted_or_inactive(
    client: AsyncClient, approved_service: Listing, provider_user: User
):
    response = await client.post(
        f"/services/{approved_service.id}/reactivate", headers=auth_headers(provider_user)
    )
    assert response.status_code == 409
    assert response.json()["code"] == "invalid_listing_state"


@pytest.mark.asyncio
async def test_resubmit_rejected_listing(
    client: AsyncClient, db: AsyncSession, provider_user: User
):
    listing = await make_listing(db, provider_user, status=ListingStatus.REJECTED, public_id=None)

    response = await client.post(
        f"/services/{listing.id}/resubmit",
        headers=auth_headers(provider_user),
        json={"description": "Now with a full description of the service."},
    )
    assert response.status_code == 202
    data = response.json()
    assert data["new_status"] == "pending_approval"
    assert data["listing"]["pending_changes"]["request_type"] == "create"


@pytest.mark.asyncio
async def test_update_of_unknown_listing(client: AsyncClient, provider_user: User):
    response = await client.put(
        "/services/00000000-0000-0000-0000-000000000000",
        headers=auth_headers(provider_user),
        json={"name": "Ghost"},
    )
    assert response.status_code == 404
    assert response.json()["code"] == "listing_not_found"
