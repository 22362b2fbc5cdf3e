from __future__ import annotations

from collections.abc import AsyncIterator, Callable

import pytest
import pytest_asyncio
from asgi_lifespan import LifespanManager
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session, sessionmaker

from orion_api.db import get_session_factory_from_app
from orion_api.features.authn import router as authn_router
from orion_api.features.sso import router as sso_router
from orion_api.features.sso.oidc import OidcMetadata
from orion_api.main import create_app
from orion_api.settings import Settings, get_settings

ENTRA_ISSUER = "https://login.microsoftonline.com/{tenantid}/v2.0"


@pytest.fixture()
def app(settings: Settings) -> FastAPI:
    application = create_app(settings)
    application.dependency_overrides[get_settings] = lambda: settings
    return application


@pytest_asyncio.fixture()
async def async_client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    async with LifespanManager(app):
        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://testserver",
        ) as client:
            yield client


@pytest.fixture()
def session_factory(app: FastAPI, async_client: AsyncClient) -> sessionmaker[Session]:
    # The lifespan owns the engine; reuse it so seeded rows share the in-memory database.
    return get_session_factory_from_app(app)


@pytest.fixture(autouse=True)
def _reset_rate_limiters() -> None:
    authn_router._LOGIN_LIMITER.reset()
    sso_router._AUTHORIZE_LIMITER.reset()
    sso_router._CALLBACK_LIMITER.reset()


@pytest.fixture()
def login_as(async_client: AsyncClient, settings: Settings) -> Callable[[str], None]:
    def _login(session_token: str) -> None:
        async_client.cookies.set(settings.session_cookie_name, session_token)

    return _login


@pytest.fixture()
def mock_entra(monkeypatch: pytest.MonkeyPatch) -> Callable[[dict[str, object]], None]:
    """Replace provider discovery, code exchange and ID-token validation."""

    def _install(claims: dict[str, object]) -> None:
        def _discover(_issuer: str, _client) -> OidcMetadata:
            return OidcMetadata(
                issuer=ENTRA_ISSUER,
                authorization_endpoint="https://login.microsoftonline.com/organizations/oauth2/v2.0/authorize",
                token_endpoint="https://login.microsoftonline.com/organizations/oauth2/v2.0/token",
                jwks_uri="https://login.microsoftonline.com/organizations/discovery/v2.0/keys",
            )

        def _exchange(**_kwargs):
            return {"id_token": "fake-id-token"}

        def _validate(**kwargs):
            return {**claims, "nonce": kwargs["nonce"]}

        monkeypatch.setattr("orion_api.features.sso.service.discover_metadata", _discover)
        monkeypatch.setattr("orion_api.features.sso.service.exchange_code", _exchange)
        monkeypatch.setattr("orion_api.features.sso.service.validate_id_token", _validate)

    return _install
