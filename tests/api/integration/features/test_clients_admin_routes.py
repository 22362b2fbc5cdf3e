from __future__ import annotations

from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from orion_db import utc_now
from orion_db.engine import session_scope
from orion_db.models import OAuthAuthorizationCode, OAuthToken, OAuthUserConsent, UserRole

pytestmark = pytest.mark.asyncio

_BASE = "/api/admin/oauth/clients"
_PAYLOAD = {
    "client_id": "atlas",
    "name": "Atlas Reporting",
    "redirect_uris": ["https://atlas.example.com/callback"],
}


async def test_global_admin_registers_and_manages_clients(
    async_client: AsyncClient, seed_user, login_as
) -> None:
    login_as(seed_user(email="root@example.com", role=UserRole.GLOBAL_ADMIN).session_token)

    created = await async_client.post(_BASE, json=_PAYLOAD)

    assert created.status_code == 201
    body = created.json()
    assert body["client_id"] == "atlas"
    assert body["is_confidential"] is True
    assert body["pkce_required"] is True
    assert body["client_secret"]

    listed = await async_client.get(_BASE)
    assert [client["client_id"] for client in listed.json()] == ["atlas"]
    assert "client_secret" not in listed.json()[0]

    updated = await async_client.patch(f"{_BASE}/{body['id']}", json={"name": "Atlas"})
    assert updated.status_code == 200
    assert updated.json()["name"] == "Atlas"

    rotated = await async_client.post(f"{_BASE}/{body['id']}/secret")
    assert rotated.status_code == 200
    assert rotated.json()["client_secret"] != body["client_secret"]

    deleted = await async_client.delete(f"{_BASE}/{body['id']}")
    assert deleted.status_code == 204
    assert (await async_client.get(f"{_BASE}/{body['id']}")).status_code == 404


async def test_public_client_has_no_secret(
    async_client: AsyncClient, seed_user, login_as
) -> None:
    login_as(seed_user(email="root@example.com", role=UserRole.GLOBAL_ADMIN).session_token)

    created = await async_client.post(_BASE, json={**_PAYLOAD, "confidential": False})

    assert created.status_code == 201
    assert "client_secret" not in created.json()


async def test_regular_user_is_forbidden(
    async_client: AsyncClient, seed_user, login_as
) -> None:
    login_as(seed_user().session_token)

    response = await async_client.post(_BASE, json=_PAYLOAD)

    assert response.status_code == 403


async def test_anonymous_caller_is_unauthorized(async_client: AsyncClient) -> None:
    response = await async_client.get(_BASE)

    assert response.status_code == 401


async def test_deleting_a_client_removes_its_codes_tokens_and_consents(
    async_client: AsyncClient, seed_user, seed_client, login_as, session_factory
) -> None:
    member = seed_user()
    client = seed_client()
    expires = utc_now() + timedelta(minutes=10)
    with session_scope(session_factory) as session:
        session.add_all(
            [
                OAuthAuthorizationCode(
                    code_hash="code-digest",
                    client_pk=client.id,
                    user_id=member.id,
                    scope="openid",
                    redirect_uri=client.redirect_uri,
                    expires_at=expires,
                ),
                OAuthToken(
                    access_token_hash="access-digest",
                    refresh_token_hash="refresh-digest",
                    user_id=member.id,
                    client_pk=client.id,
                    scopes=["openid"],
                    expires_at=expires,
                ),
                OAuthUserConsent(
                    user_id=member.id,
                    client_pk=client.id,
                    scopes=["openid"],
                    scopes_hash="scopes-digest",
                ),
            ]
        )
    login_as(seed_user(email="root@example.com", role=UserRole.GLOBAL_ADMIN).session_token)

    deleted = await async_client.delete(f"{_BASE}/{client.id}")

    assert deleted.status_code == 204
    with session_scope(session_factory) as session:
        for model in (OAuthAuthorizationCode, OAuthToken, OAuthUserConsent):
            remaining = session.execute(
                select(func.count()).select_from(model).where(model.client_pk == client.id)
            ).scalar_one()
            assert remaining == 0, model.__tablename__
