from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from urllib.parse import parse_qs, urlsplit

import pytest
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from orion_api.core.security.pkce import generate_code_verifier, s256_challenge
from orion_api.features.clients.service import ClientRegistry
from orion_api.features.keys.service import KeyManager
from orion_api.features.oauth.authorize import AuthorizationService
from orion_api.features.oauth.errors import OAuthError
from orion_api.features.oauth.schemas import AuthorizationRequest, TokenResponse
from orion_api.features.oauth.tokens import TokenService
from orion_api.features.users.service import UsersService
from orion_api.settings import Settings
from orion_db import utc_now
from orion_db.models import OAuthAuthorizationCode, OAuthClient, OAuthToken, User

_REDIRECT = "https://nebula.example.com/callback"


@dataclass(slots=True)
class IssuedCode:
    code: str
    verifier: str


@pytest.fixture()
def tokens(db_session: Session, settings: Settings) -> TokenService:
    return TokenService(session=db_session, settings=settings)


@pytest.fixture()
def user(db_session: Session) -> User:
    return UsersService(session=db_session).create_user(
        email="ada@example.com",
        display_name="Ada Lovelace",
        email_verified=True,
    )


@pytest.fixture()
def registered(db_session: Session, settings: Settings) -> tuple[OAuthClient, str]:
    client, secret = ClientRegistry(session=db_session, settings=settings).create_client(
        client_id="nebula",
        name="Nebula",
        redirect_uris=[_REDIRECT],
    )
    assert secret is not None
    return client, secret


def _issue_code(
    session: Session,
    settings: Settings,
    user: User,
    client: OAuthClient,
    *,
    scope: str = "openid profile email",
) -> IssuedCode:
    verifier = generate_code_verifier()
    service = AuthorizationService(session=session, settings=settings)
    validated = service.validate(
        AuthorizationRequest(
            response_type="code",
            client_id=client.client_id,
            redirect_uri=_REDIRECT,
            scope=scope,
            state="xyz",
            code_challenge=s256_challenge(verifier),
            code_challenge_method="S256",
            nonce="nonce-123",
        )
    )
    location = service.issue_code(validated, user=user, auth_time=utc_now())
    code = parse_qs(urlsplit(location).query)["code"][0]
    return IssuedCode(code=code, verifier=verifier)


def _exchange(tokens: TokenService, secret: str | None, issued: IssuedCode, **overrides) -> TokenResponse:
    params = {
        "grant_type": "authorization_code",
        "code": issued.code,
        "redirect_uri": _REDIRECT,
        "client_id": "nebula",
        "client_secret": secret,
        "code_verifier": issued.verifier,
    }
    params.update(overrides)
    return tokens.exchange_code(**params)


# ---------------------------------------------------------------------------
# Authorization code grant
# ---------------------------------------------------------------------------


def test_exchange_issues_tokens_and_a_signed_id_token(
    db_session: Session,
    settings: Settings,
    tokens: TokenService,
    user: User,
    registered: tuple[OAuthClient, str],
) -> None:
    client, secret = registered
    issued = _issue_code(db_session, settings, user, client)

    response = _exchange(tokens, secret, issued)

    assert response.token_type == "Bearer"
    assert response.scope == "email openid profile"
    assert response.refresh_token
    assert response.expires_in == int(settings.token_lifetimes.access_token.total_seconds())
    claims = KeyManager(session=db_session, settings=settings).verify_token(
        response.id_token or "", audience="nebula"
    )
    assert claims["sub"] == str(user.id)
    assert claims["nonce"] == "nonce-123"
    assert claims["email"] == "ada@example.com"
    assert "auth_time" in claims


def test_raw_tokens_are_never_persisted(
    db_session: Session,
    settings: Settings,
    tokens: TokenService,
    user: User,
    registered: tuple[OAuthClient, str],
) -> None:
    client, secret = registered
    issued = _issue_code(db_session, settings, user, client)
    assert db_session.execute(select(OAuthAuthorizationCode.code_hash)).scalar_one() != issued.code

    response = _exchange(tokens, secret, issued)

    row = db_session.execute(select(OAuthToken)).scalar_one()
    assert row.access_token_hash != response.access_token
    assert row.refresh_token_hash != response.refresh_token
    assert response.access_token not in (row.access_token_hash or "")


def test_code_is_single_use(
    db_session: Session,
    settings: Settings,
    tokens: TokenService,
    user: User,
    registered: tuple[OAuthClient, str],
) -> None:
    client, secret = registered
    issued = _issue_code(db_session, settings, user, client)
    _exchange(tokens, secret, issued)

    with pytest.raises(OAuthError) as excinfo:
        _exchange(tokens, secret, issued)

    assert excinfo.value.error == "invalid_grant"


def test_pkce_mismatch_burns_the_code(
    db_session: Session,
    settings: Settings,
    tokens: TokenService,
    user: User,
    registered: tuple[OAuthClient, str],
) -> None:
    client, secret = registered
    issued = _issue_code(db_session, settings, user, client)

    with pytest.raises(OAuthError) as excinfo:
        _exchange(tokens, secret, issued, code_verifier=generate_code_verifier())
    assert excinfo.value.error == "invalid_grant"

    with pytest.raises(OAuthError) as retry:
        _exchange(tokens, secret, issued)
    assert retry.value.error == "invalid_grant"


def test_redirect_uri_must_match_the_authorization_request(
    db_session: Session,
    settings: Settings,
    tokens: TokenService,
    user: User,
    registered: tuple[OAuthClient, str],
) -> None:
    client, secret = registered
    issued = _issue_code(db_session, settings, user, client)

    with pytest.raises(OAuthError) as excinfo:
        _exchange(tokens, secret, issued, redirect_uri="https://nebula.example.com/other")

    assert excinfo.value.error == "invalid_grant"


def test_expired_code_is_rejected(
    db_session: Session,
    settings: Settings,
    tokens: TokenService,
    user: User,
    registered: tuple[OAuthClient, str],
) -> None:
    client, secret = registered
    issued = _issue_code(db_session, settings, user, client)
    db_session.execute(
        update(OAuthAuthorizationCode).values(expires_at=utc_now() - timedelta(seconds=1))
    )

    with pytest.raises(OAuthError) as excinfo:
        _exchange(tokens, secret, issued)

    assert excinfo.value.error == "invalid_grant"


@pytest.mark.parametrize("secret", [None, "wrong-secret"])
def test_confidential_client_must_authenticate(
    db_session: Session,
    settings: Settings,
    tokens: TokenService,
    user: User,
    registered: tuple[OAuthClient, str],
    secret: str | None,
) -> None:
    client, _secret = registered
    issued = _issue_code(db_session, settings, user, client)

    with pytest.raises(OAuthError) as excinfo:
        _exchange(tokens, secret, issued)

    assert excinfo.value.error == "invalid_client"
    assert excinfo.value.status_code == 401


def test_unsupported_grant_type(tokens: TokenService) -> None:
    with pytest.raises(OAuthError) as excinfo:
        tokens.exchange_code(
            grant_type="password",
            code="x",
            redirect_uri=_REDIRECT,
            client_id="nebula",
        )

    assert excinfo.value.error == "unsupported_grant_type"


def test_id_token_is_omitted_without_openid_scope(
    db_session: Session,
    settings: Settings,
    tokens: TokenService,
    user: User,
    registered: tuple[OAuthClient, str],
) -> None:
    client, secret = registered
    issued = _issue_code(db_session, settings, user, client, scope="orion:read")

    response = _exchange(tokens, secret, issued)

    assert response.id_token is None
    assert response.scope == "orion:read"


# ---------------------------------------------------------------------------
# Refresh
# ---------------------------------------------------------------------------


def test_refresh_rotates_and_revokes_the_presented_token(
    db_session: Session,
    settings: Settings,
    tokens: TokenService,
    user: User,
    registered: tuple[OAuthClient, str],
) -> None:
    client, secret = registered
    first = _exchange(tokens, secret, _issue_code(db_session, settings, user, client))

    second = tokens.refresh(
        refresh_token=first.refresh_token, client_id="nebula", client_secret=secret
    )

    assert second.refresh_token != first.refresh_token
    assert second.access_token != first.access_token
    assert second.id_token is not None
    assert not tokens.introspect(first.access_token).active
    assert tokens.introspect(second.access_token).active
    with pytest.raises(OAuthError) as excinfo:
        tokens.refresh(refresh_token=first.refresh_token, client_id="nebula", client_secret=secret)
    assert excinfo.value.error == "invalid_grant"


def test_refresh_may_narrow_but_not_widen_scope(
    db_session: Session,
    settings: Settings,
    tokens: TokenService,
    user: User,
    registered: tuple[OAuthClient, str],
) -> None:
    client, secret = registered
    first = _exchange(tokens, secret, _issue_code(db_session, settings, user, client))

    narrowed = tokens.refresh(
        refresh_token=first.refresh_token,
        client_id="nebula",
        client_secret=secret,
        scope="openid",
    )
    assert narrowed.scope == "openid"

    with pytest.raises(OAuthError) as excinfo:
        tokens.refresh(
            refresh_token=narrowed.refresh_token,
            client_id="nebula",
            client_secret=secret,
            scope="openid orion:write",
        )
    assert excinfo.value.error == "invalid_scope"


# ---------------------------------------------------------------------------
# Introspection, userinfo, revocation
# ---------------------------------------------------------------------------


def test_introspection_describes_live_tokens(
    db_session: Session,
    settings: Settings,
    tokens: TokenService,
    user: User,
    registered: tuple[OAuthClient, str],
) -> None:
    client, secret = registered
    issued = _exchange(tokens, secret, _issue_code(db_session, settings, user, client))

    access = tokens.introspect(issued.access_token)
    refresh = tokens.introspect(issued.refresh_token)

    assert access.active
    assert access.sub == str(user.id)
    assert access.client_id == "nebula"
    assert access.scope == "email openid profile"
    assert access.token_type == "Bearer"
    assert access.exp is not None and access.iat is not None and access.exp > access.iat
    assert refresh.active
    assert refresh.token_type == "refresh_token"


def test_introspection_reports_unusable_tokens_as_inactive(
    db_session: Session,
    settings: Settings,
    tokens: TokenService,
    user: User,
    registered: tuple[OAuthClient, str],
) -> None:
    client, secret = registered
    revoked = _exchange(tokens, secret, _issue_code(db_session, settings, user, client))
    expired = _exchange(tokens, secret, _issue_code(db_session, settings, user, client))
    tokens.revoke(revoked.access_token)
    db_session.execute(
        update(OAuthToken)
        .where(OAuthToken.revoked_at.is_(None))
        .values(expires_at=utc_now() - timedelta(seconds=1))
    )

    candidates = (
        None,
        "",
        "unknown-token",
        revoked.access_token,
        revoked.refresh_token,
        expired.access_token,
    )
    for candidate in candidates:
        result = tokens.introspect(candidate)
        assert result.active is False
        assert result.sub is None


def test_userinfo_releases_claims_by_scope(
    db_session: Session,
    settings: Settings,
    tokens: TokenService,
    user: User,
    registered: tuple[OAuthClient, str],
) -> None:
    client, secret = registered
    full = _exchange(tokens, secret, _issue_code(db_session, settings, user, client))
    minimal = _exchange(tokens, secret, _issue_code(db_session, settings, user, client, scope="openid"))

    claims = tokens.userinfo(full.access_token)
    bare = tokens.userinfo(minimal.access_token)

    assert claims.sub == str(user.id)
    assert claims.email == "ada@example.com"
    assert claims.email_verified is True
    assert claims.name == "Ada Lovelace"
    assert bare.sub == str(user.id)
    assert bare.email is None
    assert bare.name is None


def test_userinfo_rejects_missing_and_invalid_tokens(tokens: TokenService) -> None:
    with pytest.raises(OAuthError) as missing:
        tokens.userinfo(None)
    with pytest.raises(OAuthError) as invalid:
        tokens.userinfo("not-a-token")

    assert missing.value.status_code == 401
    assert invalid.value.error == "invalid_token"
    assert "WWW-Authenticate" in (invalid.value.headers or {})
