"""Shared pytest fixtures for the Orion identity service tests."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any
from uuid import UUID

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from orion_api.features.authn.service import AuthnService
from orion_api.features.clients.service import ClientRegistry
from orion_api.features.sso import oidc
from orion_api.features.users.service import UsersService
from orion_api.settings import Settings
from orion_db import metadata
from orion_db.engine import build_engine, session_scope
from orion_db.models import Tenant, TenantDomain, UserRole

TEST_SECRET_KEY = "orion-test-secret-key-please-change-0123456789"
TEST_PASSWORD = "correct-horse-battery-staple"
DEFAULT_REDIRECT_URI = "https://nebula.example.com/oauth/callback"


def build_test_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "_env_file": None,
        "secret_key": TEST_SECRET_KEY,
        "database_url": "sqlite+pysqlite:///:memory:",
        "database_auto_create": True,
        "background_jobs_enabled": False,
        "public_web_url": "http://testserver",
        "oauth_environment": "staging",
        "sso_client_id": "entra-client-id",
        "sso_client_secret": "entra-client-secret",
        "log_level": "WARNING",
    }
    values.update(overrides)
    return Settings(**values)


@dataclass(frozen=True, slots=True)
class SeededUser:
    id: UUID
    email: str
    username: str
    password: str
    session_token: str


@dataclass(frozen=True, slots=True)
class SeededClient:
    id: UUID
    client_id: str
    secret: str | None
    redirect_uri: str


@dataclass(frozen=True, slots=True)
class SeededTenant:
    id: UUID
    domain: str


@pytest.fixture()
def make_settings() -> Callable[..., Settings]:
    return build_test_settings


@pytest.fixture()
def settings(make_settings: Callable[..., Settings]) -> Settings:
    return make_settings()


@pytest.fixture(autouse=True)
def _clear_oidc_caches() -> Iterator[None]:
    oidc.clear_caches()
    yield
    oidc.clear_caches()


@pytest.fixture()
def engine(settings: Settings) -> Iterator[Engine]:
    engine = build_engine(settings)
    metadata.create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture()
def db_session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# Seeding helpers commit and close their own session so HTTP requests and
# later reads see the rows on the shared in-memory connection.


@pytest.fixture()
def seed_user(
    session_factory: sessionmaker[Session],
    settings: Settings,
) -> Callable[..., SeededUser]:
    def _seed(
        *,
        email: str = "ada@example.com",
        password: str = TEST_PASSWORD,
        role: UserRole = UserRole.USER,
        tenant_id: UUID | None = None,
    ) -> SeededUser:
        with session_scope(session_factory) as session:
            user = UsersService(session=session).create_user(
                email=email,
                password=password,
                display_name=email.split("@", 1)[0].title(),
                role=role,
                tenant_id=tenant_id,
                email_verified=True,
            )
            token = AuthnService(session=session, settings=settings).create_session(user=user)
            seeded = SeededUser(
                id=user.id,
                email=user.email,
                username=user.username,
                password=password,
                session_token=token,
            )
        return seeded

    return _seed


@pytest.fixture()
def seed_client(
    session_factory: sessionmaker[Session],
    settings: Settings,
) -> Callable[..., SeededClient]:
    def _seed(
        *,
        client_id: str = "nebula",
        confidential: bool = True,
        pkce_required: bool = True,
        redirect_uri: str = DEFAULT_REDIRECT_URI,
        grant_types: tuple[str, ...] = ("authorization_code", "refresh_token"),
    ) -> SeededClient:
        with session_scope(session_factory) as session:
            client, secret = ClientRegistry(session=session, settings=settings).create_client(
                client_id=client_id,
                name=f"{client_id.title()} Workspace",
                redirect_uris=[redirect_uri],
                confidential=confidential,
                grant_types=grant_types,
                pkce_required=pkce_required,
            )
            seeded = SeededClient(
                id=client.id,
                client_id=client.client_id,
                secret=secret,
                redirect_uri=redirect_uri,
            )
        return seeded

    return _seed


@pytest.fixture()
def seed_tenant(session_factory: sessionmaker[Session]) -> Callable[..., SeededTenant]:
    def _seed(
        *,
        domain: str = "contoso.com",
        allow_user_self_provisioning: bool = True,
        invite_only: bool = False,
        sso_tenant_id: str | None = None,
        verified: bool = True,
    ) -> SeededTenant:
        with session_scope(session_factory) as session:
            tenant = Tenant(
                name=domain.split(".", 1)[0].title(),
                allow_user_self_provisioning=allow_user_self_provisioning,
                invite_only=invite_only,
                sso_tenant_id=sso_tenant_id,
            )
            tenant.domains.append(TenantDomain(domain=domain, verified=verified))
            session.add(tenant)
            session.flush()
            seeded = SeededTenant(id=tenant.id, domain=domain)
        return seeded

    return _seed
