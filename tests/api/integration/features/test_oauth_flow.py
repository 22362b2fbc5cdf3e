"""End-to-end authorization code flow through the HTTP surface."""

from __future__ import annotations

from urllib.parse import parse_qs, urlsplit

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from orion_api.core.security.pkce import generate_code_verifier, s256_challenge
from orion_api.settings import Settings
from orion_db.engine import session_scope
from orion_db.models import OAuthToken, OAuthUserConsent

pytestmark = pytest.mark.asyncio


def _query(url: str) -> dict[str, str]:
    return {key: values[0] for key, values in parse_qs(urlsplit(url).query).items()}


def _authorize_params(client, verifier: str, **overrides: str) -> dict[str, str]:
    params = {
        "response_type": "code",
        "client_id": client.client_id,
        "redirect_uri": client.redirect_uri,
        "scope": "openid profile email",
        "state": "af0ifjsldkj",
        "nonce": "n-0S6_WzA2Mj",
        "code_challenge": s256_challenge(verifier),
        "code_challenge_method": "S256",
    }
    params.update(overrides)
    return params


async def _first_party_code(async_client, seed_user, seed_client, login_as, settings):
    user = seed_user()
    client = seed_client(client_id=settings.first_party_client_id, confidential=False)
    login_as(user.session_token)
    verifier = generate_code_verifier()

    response = await async_client.get("/oauth/authorize", params=_authorize_params(client, verifier))

    assert response.status_code == 302
    query = _query(response.headers["location"])
    return user, client, verifier, query["code"]


async def test_anonymous_authorize_requires_login(
    async_client: AsyncClient, seed_client
) -> None:
    client = seed_client()

    response = await async_client.get(
        "/oauth/authorize", params=_authorize_params(client, generate_code_verifier())
    )

    assert response.status_code == 401
    body = response.json()
    assert body["error"] == "login_required"
    assert body["request_id"]
    assert "returnTo=" in body["login_url"]
    assert body["sso_url"].startswith("http://testserver/auth/sso/")


async def test_parked_request_resumes_after_sign_in(
    async_client: AsyncClient, seed_user, seed_client, login_as, settings: Settings
) -> None:
    client = seed_client(client_id=settings.first_party_client_id, confidential=False)
    parked = await async_client.get(
        "/oauth/authorize", params=_authorize_params(client, generate_code_verifier())
    )
    request_id = parked.json()["request_id"]

    login_as(seed_user().session_token)
    resumed = await async_client.get("/oauth/authorize", params={"request_id": request_id})

    assert resumed.status_code == 302
    query = _query(resumed.headers["location"])
    assert query["state"] == "af0ifjsldkj"
    assert query["code"]


async def test_first_party_code_exchange_and_single_use(
    async_client: AsyncClient, seed_user, seed_client, login_as, settings: Settings
) -> None:
    _user, client, verifier, code = await _first_party_code(
        async_client, seed_user, seed_client, login_as, settings
    )
    form = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": client.redirect_uri,
        "client_id": client.client_id,
        "code_verifier": verifier,
    }

    issued = await async_client.post("/oauth/token", data=form)

    assert issued.status_code == 200
    assert issued.headers["cache-control"] == "no-store"
    body = issued.json()
    assert body["token_type"] == "Bearer"
    assert body["id_token"]
    assert body["refresh_token"]

    replay = await async_client.post("/oauth/token", data=form)
    assert replay.status_code == 400
    assert replay.json()["error"] == "invalid_grant"


async def test_wrong_verifier_burns_the_code(
    async_client: AsyncClient, seed_user, seed_client, login_as, settings: Settings
) -> None:
    _user, client, verifier, code = await _first_party_code(
        async_client, seed_user, seed_client, login_as, settings
    )
    form = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": client.redirect_uri,
        "client_id": client.client_id,
    }

    wrong = await async_client.post(
        "/oauth/token", data={**form, "code_verifier": generate_code_verifier()}
    )
    retry = await async_client.post("/oauth/token", data={**form, "code_verifier": verifier})

    assert wrong.json()["error"] == "invalid_grant"
    assert retry.json()["error"] == "invalid_grant"


async def test_third_party_client_goes_through_consent(
    async_client: AsyncClient,
    seed_user,
    seed_client,
    login_as,
    settings: Settings,
    session_factory,
) -> None:
    user = seed_user()
    client = seed_client()
    login_as(user.session_token)
    verifier = generate_code_verifier()
    params = _authorize_params(client, verifier)

    redirect = await async_client.get("/oauth/authorize", params=params)
    assert redirect.status_code == 302
    assert redirect.headers["location"].startswith(f"{settings.public_web_url}{settings.consent_path}?")

    prompt = await async_client.get("/api/oauth/consent", params=params)
    assert prompt.status_code == 200
    assert prompt.json()["application"]["client_id"] == "nebula"
    assert {scope["name"] for scope in prompt.json()["scopes"]} == {"openid", "profile", "email"}

    decision = await async_client.post("/api/oauth/consent", json={**params, "approved": True})
    assert decision.status_code == 200
    location = decision.json()["redirect_url"]
    assert location.startswith(client.redirect_uri)
    code = _query(location)["code"]

    issued = await async_client.post(
        "/oauth/token",
        data={
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": client.redirect_uri,
            "code_verifier": verifier,
        },
        auth=(client.client_id, client.secret or ""),
    )
    assert issued.status_code == 200

    again = await async_client.get("/oauth/authorize", params=params)
    assert again.headers["location"].startswith(client.redirect_uri)

    with session_scope(session_factory) as session:
        consents = session.execute(select(func.count()).select_from(OAuthUserConsent)).scalar_one()
        tokens = session.execute(select(func.count()).select_from(OAuthToken)).scalar_one()
    assert consents == 1
    assert tokens == 1


async def test_consent_denial_returns_access_denied(
    async_client: AsyncClient, seed_user, seed_client, login_as
) -> None:
    login_as(seed_user().session_token)
    client = seed_client()
    params = _authorize_params(client, generate_code_verifier())

    decision = await async_client.post("/api/oauth/consent", json={**params, "approved": False})

    query = _query(decision.json()["redirect_url"])
    assert query["error"] == "access_denied"
    assert query["state"] == "af0ifjsldkj"


async def test_confidential_client_without_secret_is_unauthorized(
    async_client: AsyncClient, seed_user, seed_client, login_as
) -> None:
    login_as(seed_user().session_token)
    client = seed_client()
    verifier = generate_code_verifier()
    params = _authorize_params(client, verifier)
    decision = await async_client.post("/api/oauth/consent", json={**params, "approved": True})
    code = _query(decision.json()["redirect_url"])["code"]

    response = await async_client.post(
        "/oauth/token",
        data={
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": client.redirect_uri,
            "client_id": client.client_id,
            "code_verifier": verifier,
        },
    )

    assert response.status_code == 401
    assert response.json()["error"] == "invalid_client"


async def test_missing_challenge_is_redirected_with_state(
    async_client: AsyncClient, seed_user, seed_client, login_as
) -> None:
    login_as(seed_user().session_token)
    client = seed_client()
    params = _authorize_params(client, generate_code_verifier())
    del params["code_challenge"]
    del params["code_challenge_method"]

    response = await async_client.get("/oauth/authorize", params=params)

    assert response.status_code == 302
    query = _query(response.headers["location"])
    assert response.headers["location"].startswith(client.redirect_uri)
    assert query["error"] == "invalid_request"
    assert query["state"] == "af0ifjsldkj"


async def test_unregistered_redirect_is_never_followed(
    async_client: AsyncClient, seed_user, seed_client, login_as
) -> None:
    login_as(seed_user().session_token)
    client = seed_client()
    params = _authorize_params(
        client, generate_code_verifier(), redirect_uri="https://evil.example.com/steal"
    )

    response = await async_client.get("/oauth/authorize", params=params)

    assert response.status_code == 400
    assert "location" not in response.headers
    assert response.json()["error"] == "invalid_request"


async def test_unsupported_grant_type(async_client: AsyncClient) -> None:
    response = await async_client.post("/oauth/token", data={"grant_type": "password"})

    assert response.status_code == 400
    assert response.json()["error"] == "unsupported_grant_type"


async def test_refresh_introspect_revoke_and_userinfo(
    async_client: AsyncClient, seed_user, seed_client, login_as, settings: Settings
) -> None:
    user, client, verifier, code = await _first_party_code(
        async_client, seed_user, seed_client, login_as, settings
    )
    issued = (
        await async_client.post(
            "/oauth/token",
            json={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": client.redirect_uri,
                "client_id": client.client_id,
                "code_verifier": verifier,
            },
        )
    ).json()

    info = await async_client.get(
        "/oauth/userinfo", headers={"Authorization": f"Bearer {issued['access_token']}"}
    )
    assert info.status_code == 200
    assert info.json()["sub"] == str(user.id)
    assert info.json()["email"] == user.email

    active = await async_client.post("/oauth/introspect", data={"token": issued["access_token"]})
    assert active.json()["active"] is True
    assert active.json()["client_id"] == client.client_id

    refreshed = await async_client.post(
        "/oauth/token",
        data={
            "grant_type": "refresh_token",
            "refresh_token": issued["refresh_token"],
            "client_id": client.client_id,
        },
    )
    assert refreshed.status_code == 200
    rotated = refreshed.json()
    assert rotated["refresh_token"] != issued["refresh_token"]

    stale = await async_client.post("/oauth/introspect", data={"token": issued["access_token"]})
    assert stale.json() == {"active": False}

    revoked = await async_client.post("/oauth/revoke", data={"token": rotated["access_token"]})
    assert revoked.status_code == 200
    gone = await async_client.post("/oauth/introspect", data={"token": rotated["access_token"]})
    assert gone.json() == {"active": False}

    denied = await async_client.get(
        "/oauth/userinfo", headers={"Authorization": f"Bearer {rotated['access_token']}"}
    )
    assert denied.status_code == 401
    assert "www-authenticate" in denied.headers


async def test_logout_clears_the_session(
    async_client: AsyncClient, seed_user, login_as, settings: Settings
) -> None:
    login_as(seed_user().session_token)

    response = await async_client.get("/oauth/logout")

    assert response.status_code == 302
    assert response.headers["location"] == "/"
    me = await async_client.get("/api/me")
    assert me.status_code == 401
