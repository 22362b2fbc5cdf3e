from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from orion_api.common.problem_details import ApiError
from orion_api.features.clients.service import ClientRegistry
from orion_api.features.consent.service import ConsentStore
from orion_api.features.oauth.scopes import scopes_hash
from orion_api.features.users.service import UsersService
from orion_api.settings import Settings
from orion_db import utc_now
from orion_db.models import OAuthClient, OAuthToken, OAuthUserConsent, User


@pytest.fixture()
def user(db_session: Session) -> User:
    return UsersService(session=db_session).create_user(email="ada@example.com")


@pytest.fixture()
def client(db_session: Session, settings: Settings) -> OAuthClient:
    created, _secret = ClientRegistry(session=db_session, settings=settings).create_client(
        client_id="nebula",
        name="Nebula",
        redirect_uris=["https://nebula.example.com/callback"],
    )
    return created


def _active_count(session: Session) -> int:
    return session.execute(
        select(func.count()).select_from(OAuthUserConsent).where(OAuthUserConsent.revoked_at.is_(None))
    ).scalar_one()


def test_grant_is_idempotent_for_the_same_scope_set(
    db_session: Session, user: User, client: OAuthClient
) -> None:
    store = ConsentStore(session=db_session)
    earlier = utc_now() - timedelta(hours=1)

    first = store.grant(user_id=user.id, client_pk=client.id, scopes=["openid", "email"], now=earlier)
    second = store.grant(user_id=user.id, client_pk=client.id, scopes=["email", "openid", "email"])

    assert first.id == second.id
    assert second.last_used_at > earlier
    assert _active_count(db_session) == 1
    assert first.scopes == ["email", "openid"]


def test_different_scope_sets_are_separate_consents(
    db_session: Session, user: User, client: OAuthClient
) -> None:
    store = ConsentStore(session=db_session)

    store.grant(user_id=user.id, client_pk=client.id, scopes=["openid"])
    store.grant(user_id=user.id, client_pk=client.id, scopes=["openid", "email"])

    assert _active_count(db_session) == 2
    assert store.find_active(
        user_id=user.id, client_pk=client.id, scope_hash=scopes_hash(["email", "openid"])
    )


def test_revoke_ends_the_consent_and_its_live_tokens(
    db_session: Session, user: User, client: OAuthClient
) -> None:
    store = ConsentStore(session=db_session)
    consent = store.grant(user_id=user.id, client_pk=client.id, scopes=["openid"])
    now = utc_now()
    db_session.add(
        OAuthToken(
            access_token_hash="access-digest",
            refresh_token_hash="refresh-digest",
            user_id=user.id,
            client_pk=client.id,
            scopes=["openid"],
            token_type="Bearer",
            expires_at=now + timedelta(hours=1),
            refresh_expires_at=now + timedelta(days=1),
            created_at=now,
        )
    )
    db_session.flush()

    store.revoke(user_id=user.id, consent_id=consent.id)

    assert store.find_active(user_id=user.id, client_pk=client.id, scope_hash=consent.scopes_hash) is None
    revoked_at = db_session.execute(select(OAuthToken.revoked_at)).scalar_one()
    assert revoked_at is not None
    assert store.list_for_user(user.id) == []


def test_revoking_someone_elses_consent_is_not_found(
    db_session: Session, user: User, client: OAuthClient
) -> None:
    store = ConsentStore(session=db_session)
    consent = store.grant(user_id=user.id, client_pk=client.id, scopes=["openid"])
    other = UsersService(session=db_session).create_user(email="grace@example.com")

    with pytest.raises(ApiError):
        store.revoke(user_id=other.id, consent_id=consent.id)
