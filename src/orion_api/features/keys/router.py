"""Public discovery and key-set endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from orion_api.core.security.pkce import SUPPORTED_CHALLENGE_METHODS
from orion_api.db import get_db_write
from orion_api.settings import Settings, get_settings

from .schemas import JsonWebKeySet, OpenIdConfiguration
from .service import SIGNING_ALGORITHM, KeyManager

router = APIRouter(tags=["discovery"])

WriteSessionDep = Annotated[Session, Depends(get_db_write)]
SettingsDep = Annotated[Settings, Depends(get_settings)]

CLAIMS_SUPPORTED = [
    "sub",
    "iss",
    "aud",
    "exp",
    "iat",
    "auth_time",
    "nonce",
    "name",
    "preferred_username",
    "email",
    "email_verified",
]


@router.get(
    "/.well-known/openid-configuration",
    response_model=OpenIdConfiguration,
    response_model_exclude_none=True,
    summary="OpenID Provider metadata",
)
def openid_configuration(settings: SettingsDep) -> OpenIdConfiguration:
    issuer = settings.effective_issuer
    return OpenIdConfiguration(
        issuer=issuer,
        authorization_endpoint=f"{issuer}/oauth/authorize",
        token_endpoint=f"{issuer}/oauth/token",
        userinfo_endpoint=f"{issuer}/oauth/userinfo",
        jwks_uri=f"{issuer}/.well-known/jwks.json",
        introspection_endpoint=f"{issuer}/oauth/introspect",
        revocation_endpoint=f"{issuer}/oauth/revoke",
        end_session_endpoint=f"{issuer}/oauth/logout",
        scopes_supported=list(settings.oauth_allowed_scopes),
        response_types_supported=["code"],
        grant_types_supported=["authorization_code", "refresh_token"],
        subject_types_supported=["public"],
        id_token_signing_alg_values_supported=[SIGNING_ALGORITHM],
        token_endpoint_auth_methods_supported=[
            "client_secret_basic",
            "client_secret_post",
            "none",
        ],
        claims_supported=list(CLAIMS_SUPPORTED),
        code_challenge_methods_supported=list(SUPPORTED_CHALLENGE_METHODS),
    )


@router.get(
    "/.well-known/jwks.json",
    response_model=JsonWebKeySet,
    summary="Public signing keys",
)
def jwks(db: WriteSessionDep, settings: SettingsDep) -> JsonWebKeySet:
    manager = KeyManager(session=db, settings=settings)
    manager.ensure_active_key()
    return JsonWebKeySet.model_validate(manager.publish_jwks())


__all__ = ["router"]
