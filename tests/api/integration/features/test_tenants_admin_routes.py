from __future__ import annotations

from urllib.parse import parse_qs, urlsplit

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from orion_api.settings import Settings
from orion_db.engine import session_scope
from orion_db.models import User, UserRole

pytestmark = pytest.mark.asyncio

_BASE = "/api/tenants"
_CLAIMS = {
    "sub": "pairwise-subject",
    "oid": "00000000-0000-0000-0000-0000000000bb",
    "tid": "11111111-2222-3333-4444-555555555555",
    "email": "linus@fabrikam.com",
    "name": "Linus",
}


async def test_global_admin_manages_tenants_and_domains(
    async_client: AsyncClient, seed_user, login_as
) -> None:
    login_as(seed_user(email="root@example.com", role=UserRole.GLOBAL_ADMIN).session_token)

    created = await async_client.post(
        _BASE,
        json={"name": "Contoso", "domains": ["contoso.com"], "invite_only": True},
    )

    assert created.status_code == 201
    tenant = created.json()
    assert tenant["invite_only"] is True
    assert tenant["allow_user_self_provisioning"] is False
    assert [domain["domain"] for domain in tenant["domains"]] == ["contoso.com"]

    added = await async_client.post(f"{_BASE}/{tenant['id']}/domains", json={"domain": "Contoso.co.uk"})
    assert added.status_code == 201
    assert added.json()["domain"] == "contoso.co.uk"
    assert added.json()["verified"] is True

    duplicate = await async_client.post(f"{_BASE}/{tenant['id']}/domains", json={"domain": "contoso.com"})
    assert duplicate.status_code == 409

    listed = await async_client.get(_BASE)
    assert [item["name"] for item in listed.json()] == ["Contoso"]
    assert len(listed.json()[0]["domains"]) == 2

    removed = await async_client.delete(f"{_BASE}/{tenant['id']}/domains/{added.json()['id']}")
    assert removed.status_code == 204
    fetched = await async_client.get(f"{_BASE}/{tenant['id']}")
    assert [domain["domain"] for domain in fetched.json()["domains"]] == ["contoso.com"]

    deleted = await async_client.delete(f"{_BASE}/{tenant['id']}")
    assert deleted.status_code == 204
    assert (await async_client.get(f"{_BASE}/{tenant['id']}")).status_code == 404


async def test_tenant_admin_edits_only_their_own_tenant(
    async_client: AsyncClient, seed_user, seed_tenant, login_as
) -> None:
    own = seed_tenant(domain="contoso.com")
    other = seed_tenant(domain="fabrikam.com")
    login_as(
        seed_user(email="ada@contoso.com", role=UserRole.TENANT_ADMIN, tenant_id=own.id).session_token
    )

    updated = await async_client.patch(
        f"{_BASE}/{own.id}", json={"allow_user_self_provisioning": False, "primary_color": "#0050ef"}
    )
    foreign = await async_client.patch(f"{_BASE}/{other.id}", json={"invite_only": True})
    relink = await async_client.patch(f"{_BASE}/{own.id}", json={"sso_tenant_id": "another-directory"})
    listing = await async_client.get(_BASE)
    creation = await async_client.post(_BASE, json={"name": "Rogue"})

    assert updated.status_code == 200
    assert updated.json()["allow_user_self_provisioning"] is False
    assert updated.json()["primary_color"] == "#0050ef"
    assert foreign.status_code == 403
    assert relink.status_code == 403
    assert listing.status_code == 403
    assert creation.status_code == 403


async def test_tenant_with_members_is_not_deleted(
    async_client: AsyncClient, seed_user, seed_tenant, login_as
) -> None:
    tenant = seed_tenant(domain="contoso.com")
    seed_user(email="ada@contoso.com", role=UserRole.TENANT_ADMIN, tenant_id=tenant.id)
    login_as(seed_user(email="root@example.com", role=UserRole.GLOBAL_ADMIN).session_token)

    response = await async_client.delete(f"{_BASE}/{tenant.id}")

    assert response.status_code == 409


async def test_public_domain_cannot_be_registered(
    async_client: AsyncClient, seed_user, login_as
) -> None:
    login_as(seed_user(email="root@example.com", role=UserRole.GLOBAL_ADMIN).session_token)

    response = await async_client.post(_BASE, json={"name": "Mailbox", "domains": ["gmail.com"]})

    assert response.status_code == 400


async def test_closed_tenant_created_by_an_admin_refuses_federated_newcomers(
    async_client: AsyncClient,
    settings: Settings,
    session_factory,
    seed_user,
    login_as,
    mock_entra,
) -> None:
    login_as(seed_user(email="root@example.com", role=UserRole.GLOBAL_ADMIN).session_token)
    created = await async_client.post(
        _BASE,
        json={"name": "Fabrikam", "domains": ["fabrikam.com"], "allow_user_self_provisioning": False},
    )
    assert created.status_code == 201
    async_client.cookies.clear()
    mock_entra(_CLAIMS)

    start = await async_client.get(f"/auth/sso/{settings.sso_provider_id}")
    state = parse_qs(urlsplit(start.headers["location"]).query)["state"][0]
    callback = await async_client.get(
        "/auth/sso/callback", params={"code": "provider-code", "state": state}
    )

    error = parse_qs(urlsplit(callback.headers["location"]).query)["error"][0]
    assert "does not allow self-provisioning" in error
    with session_scope(session_factory) as session:
        newcomers = session.execute(
            select(func.count()).select_from(User).where(User.email == _CLAIMS["email"])
        ).scalar_one()
    assert newcomers == 0
