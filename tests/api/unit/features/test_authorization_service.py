from __future__ import annotations

from datetime import timedelta
from urllib.parse import parse_qs, urlsplit

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from orion_api.core.security.pkce import generate_code_verifier, s256_challenge
from orion_api.features.clients.service import ClientRegistry
from orion_api.features.consent.service import ConsentStore
from orion_api.features.oauth.authorize import AuthorizationService
from orion_api.features.oauth.errors import LoginRequiredError, OAuthError
from orion_api.features.oauth.schemas import AuthorizationRequest
from orion_api.features.users.service import UsersService
from orion_api.settings import Settings
from orion_db import utc_now
from orion_db.models import OAuthAuthorizationCode, OAuthClient, OAuthPendingRequest, User

_REDIRECT = "https://nebula.example.com/callback"
_FIRST_PARTY_REDIRECT = "https://app.orion.example/callback"


@pytest.fixture()
def service(db_session: Session, settings: Settings) -> AuthorizationService:
    return AuthorizationService(session=db_session, settings=settings)


@pytest.fixture()
def user(db_session: Session) -> User:
    return UsersService(session=db_session).create_user(email="ada@example.com")


@pytest.fixture()
def client(db_session: Session, settings: Settings) -> OAuthClient:
    created, _secret = ClientRegistry(session=db_session, settings=settings).create_client(
        client_id="nebula",
        name="Nebula",
        redirect_uris=[_REDIRECT],
    )
    return created


@pytest.fixture()
def first_party(db_session: Session, settings: Settings) -> OAuthClient:
    created, _secret = ClientRegistry(session=db_session, settings=settings).create_client(
        client_id=settings.first_party_client_id,
        name="Orion",
        redirect_uris=[_FIRST_PARTY_REDIRECT],
        confidential=False,
    )
    return created


def _request(client_id: str = "nebula", redirect_uri: str = _REDIRECT, **overrides) -> AuthorizationRequest:
    params = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "scope": "openid email",
        "state": "xyz",
        "code_challenge": s256_challenge(generate_code_verifier()),
        "code_challenge_method": "S256",
        "nonce": "n-0S6",
    }
    params.update(overrides)
    return AuthorizationRequest.model_validate({k: v for k, v in params.items() if v is not None})


def _query(url: str) -> dict[str, str]:
    return {key: values[0] for key, values in parse_qs(urlsplit(url).query).items()}


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def test_unknown_client_is_answered_directly(service: AuthorizationService) -> None:
    with pytest.raises(OAuthError) as excinfo:
        service.validate(_request(client_id="ghost"))

    assert excinfo.value.error == "invalid_client"
    assert excinfo.value.redirect_uri is None


def test_unregistered_redirect_is_answered_directly(
    service: AuthorizationService, client: OAuthClient
) -> None:
    with pytest.raises(OAuthError) as excinfo:
        service.validate(_request(redirect_uri="https://evil.example.com/callback"))

    assert excinfo.value.error == "invalid_request"
    assert excinfo.value.redirect_uri is None


def test_missing_challenge_for_pkce_client_redirects_with_state(
    service: AuthorizationService, client: OAuthClient
) -> None:
    with pytest.raises(OAuthError) as excinfo:
        service.validate(_request(code_challenge=None, code_challenge_method=None))

    error = excinfo.value
    assert error.error == "invalid_request"
    query = _query(error.redirect_location() or "")
    assert query["error"] == "invalid_request"
    assert query["state"] == "xyz"


def test_unknown_scope_is_invalid_scope(service: AuthorizationService, client: OAuthClient) -> None:
    with pytest.raises(OAuthError) as excinfo:
        service.validate(_request(scope="openid root"))

    assert excinfo.value.error == "invalid_scope"
    assert "root" in (excinfo.value.description or "")


def test_only_the_code_response_type_is_supported(
    service: AuthorizationService, client: OAuthClient
) -> None:
    with pytest.raises(OAuthError) as excinfo:
        service.validate(_request(response_type="token"))

    assert excinfo.value.error == "unsupported_response_type"


def test_challenge_method_defaults_to_plain(service: AuthorizationService, client: OAuthClient) -> None:
    verifier = generate_code_verifier()

    validated = service.validate(_request(code_challenge=verifier, code_challenge_method=None))

    assert validated.code_challenge_method == "plain"
    assert validated.scopes == ["email", "openid"]


# ---------------------------------------------------------------------------
# Login and consent routing
# ---------------------------------------------------------------------------


def test_anonymous_request_is_parked_and_resumable_once(
    db_session: Session, service: AuthorizationService, client: OAuthClient
) -> None:
    request = _request()

    with pytest.raises(LoginRequiredError) as excinfo:
        service.begin_authorization(request, user=None)

    request_id = excinfo.value.extra["request_id"]
    assert "returnTo=" in excinfo.value.extra["login_url"]
    assert "sso_url" in excinfo.value.extra
    stored = db_session.execute(select(OAuthPendingRequest.request_hash)).scalar_one()
    assert stored != request_id

    resumed = service.resume(request_id)
    assert resumed.to_params() == request.to_params()
    with pytest.raises(OAuthError):
        service.resume(request_id)


def test_expired_pending_request_cannot_be_resumed(
    service: AuthorizationService, client: OAuthClient
) -> None:
    request_id = service.park(_request())

    with pytest.raises(OAuthError):
        service.resume(request_id, now=utc_now() + timedelta(hours=1))


def test_first_party_client_skips_consent(
    db_session: Session, service: AuthorizationService, user: User, first_party: OAuthClient
) -> None:
    location = service.begin_authorization(
        _request(client_id=first_party.client_id, redirect_uri=_FIRST_PARTY_REDIRECT),
        user=user,
    )

    query = _query(location)
    assert location.startswith(_FIRST_PARTY_REDIRECT)
    assert query["state"] == "xyz"
    stored = db_session.execute(select(OAuthAuthorizationCode)).scalar_one()
    assert stored.code_hash != query["code"]
    assert stored.nonce == "n-0S6"
    assert stored.scope == "email openid"


def test_third_party_client_without_consent_goes_to_the_consent_screen(
    db_session: Session,
    service: AuthorizationService,
    settings: Settings,
    user: User,
    client: OAuthClient,
) -> None:
    location = service.begin_authorization(_request(), user=user)

    assert location.startswith(f"{settings.public_web_url}{settings.consent_path}?")
    assert _query(location)["client_id"] == "nebula"
    count = db_session.execute(select(func.count()).select_from(OAuthAuthorizationCode)).scalar_one()
    assert count == 0


def test_existing_consent_issues_a_code_directly(
    db_session: Session, service: AuthorizationService, user: User, client: OAuthClient
) -> None:
    ConsentStore(session=db_session).grant(
        user_id=user.id, client_pk=client.id, scopes=["email", "openid"]
    )

    location = service.begin_authorization(_request(scope="email openid email"), user=user)

    assert location.startswith(_REDIRECT)
    assert "code" in _query(location)


def test_approval_records_consent_and_issues_a_code(
    db_session: Session, service: AuthorizationService, user: User, client: OAuthClient
) -> None:
    location = service.decide_consent(_request(), user=user, approved=True)

    assert "code" in _query(location)
    consents = ConsentStore(session=db_session).list_for_user(user.id)
    assert [consent.scopes for consent in consents] == [["email", "openid"]]


def test_denial_redirects_with_access_denied(
    service: AuthorizationService, user: User, client: OAuthClient
) -> None:
    location = service.decide_consent(_request(), user=user, approved=False)

    query = _query(location)
    assert query["error"] == "access_denied"
    assert query["state"] == "xyz"
    assert "code" not in query


def test_expired_codes_are_purged(
    db_session: Session, service: AuthorizationService, user: User, first_party: OAuthClient
) -> None:
    service.begin_authorization(
        _request(client_id=first_party.client_id, redirect_uri=_FIRST_PARTY_REDIRECT),
        user=user,
    )

    assert service.purge_expired_codes() == 0
    assert service.purge_expired_codes(now=utc_now() + timedelta(hours=1)) == 1
