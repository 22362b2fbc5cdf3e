"""HTTP surface of the authorization server (``/oauth/*``)."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBasic, HTTPBasicCredentials, HTTPBearer
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.responses import RedirectResponse

from orion_api.common.responses import NO_STORE_HEADERS, JSONResponse
from orion_api.common.urls import append_query
from orion_api.core.auth import AuthenticatedPrincipal
from orion_api.core.http.dependencies import get_optional_principal, get_optional_user
from orion_api.core.http.session_cookie import clear_session_cookie, read_session_cookie
from orion_api.db import get_db_write
from orion_api.features.authn.service import AuthnService
from orion_api.features.clients.service import ClientRegistry
from orion_api.settings import Settings, get_settings
from orion_db.models import User

from .authorize import AuthorizationService
from .errors import (
    INVALID_GRANT,
    INVALID_REQUEST,
    UNSUPPORTED_GRANT_TYPE,
    LoginRequiredError,
    OAuthError,
    server_error,
)
from .schemas import (
    AuthorizeQuery,
    IntrospectionResponse,
    LogoutQuery,
    TokenLookupRequest,
    TokenRequest,
    TokenResponse,
    UserInfoResponse,
)
from .tokens import AUTHORIZATION_CODE_GRANT, REFRESH_TOKEN_GRANT, TokenService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/oauth", tags=["oauth"])

WriteSessionDep = Annotated[Session, Depends(get_db_write)]
SettingsDep = Annotated[Settings, Depends(get_settings)]
OptionalUserDep = Annotated[User | None, Depends(get_optional_user)]
OptionalPrincipalDep = Annotated[AuthenticatedPrincipal | None, Depends(get_optional_principal)]

_basic = HTTPBasic(auto_error=False)
_bearer = HTTPBearer(auto_error=False)


@contextmanager
def protocol_boundary(db: Session, endpoint: str) -> Iterator[None]:
    """Translate failures inside a protocol endpoint into OAuth errors.

    Parked requests and consumed codes stay consumed even though the
    request itself fails, so those outcomes are committed before re-raising.
    """

    try:
        yield
    except LoginRequiredError:
        db.commit()
        raise
    except OAuthError as exc:
        if exc.error == INVALID_GRANT:
            db.commit()
        raise
    except Exception:
        logger.exception("oauth.endpoint.failed", extra={"endpoint": endpoint})
        raise server_error() from None


async def read_protocol_body(request: Request) -> dict[str, Any]:
    """Accept ``application/x-www-form-urlencoded`` or JSON request bodies."""

    content_type = request.headers.get("content-type", "").split(";", 1)[0].strip().lower()
    if content_type == "application/json":
        try:
            payload = json.loads(await request.body() or b"{}")
        except ValueError:
            raise OAuthError(INVALID_REQUEST, "Request body is not valid JSON") from None
        if not isinstance(payload, dict):
            raise OAuthError(INVALID_REQUEST, "Request body must be a JSON object")
        return payload
    form = await request.form()
    return {key: value for key, value in form.items() if isinstance(value, str)}


async def parse_token_request(
    request: Request,
    basic: Annotated[HTTPBasicCredentials | None, Depends(_basic)],
) -> TokenRequest:
    payload = await read_protocol_body(request)
    try:
        token_request = TokenRequest.model_validate(payload)
    except ValidationError:
        raise OAuthError(INVALID_REQUEST, "Malformed token request") from None
    if basic is not None:
        if token_request.client_id and token_request.client_id != basic.username:
            raise OAuthError(INVALID_REQUEST, "client_id does not match the authenticated client")
        token_request.client_id = basic.username
        token_request.client_secret = basic.password or None
    return token_request


async def parse_lookup_request(request: Request) -> TokenLookupRequest:
    payload = await read_protocol_body(request)
    try:
        return TokenLookupRequest.model_validate(payload)
    except ValidationError:
        raise OAuthError(INVALID_REQUEST, "Malformed request") from None


def _no_store(payload: Any, status_code: int = status.HTTP_200_OK) -> JSONResponse:
    return JSONResponse(payload, status_code=status_code, headers=NO_STORE_HEADERS)


@router.get(
    "/authorize",
    summary="Authorization endpoint",
    response_class=RedirectResponse,
    status_code=status.HTTP_302_FOUND,
)
def authorize(
    query: Annotated[AuthorizeQuery, Query()],
    db: WriteSessionDep,
    settings: SettingsDep,
    user: OptionalUserDep,
    principal: OptionalPrincipalDep,
) -> RedirectResponse:
    service = AuthorizationService(session=db, settings=settings)
    with protocol_boundary(db, "authorize"):
        request = service.resume(query.request_id) if query.request_id else query
        location = service.begin_authorization(
            request,
            user=user,
            auth_time=principal.auth_time if principal else None,
        )
    return RedirectResponse(location, status_code=status.HTTP_302_FOUND)


@router.post(
    "/token",
    summary="Token endpoint",
    response_model=TokenResponse,
    response_model_exclude_none=True,
)
def token(
    token_request: Annotated[TokenRequest, Depends(parse_token_request)],
    db: WriteSessionDep,
    settings: SettingsDep,
) -> JSONResponse:
    service = TokenService(session=db, settings=settings)
    with protocol_boundary(db, "token"):
        if token_request.grant_type == AUTHORIZATION_CODE_GRANT:
            issued = service.exchange_code(
                grant_type=token_request.grant_type,
                code=token_request.code,
                redirect_uri=token_request.redirect_uri,
                client_id=token_request.client_id,
                client_secret=token_request.client_secret,
                code_verifier=token_request.code_verifier,
            )
        elif token_request.grant_type == REFRESH_TOKEN_GRANT:
            issued = service.refresh(
                refresh_token=token_request.refresh_token,
                client_id=token_request.client_id,
                client_secret=token_request.client_secret,
                scope=token_request.scope,
            )
        elif not token_request.grant_type:
            raise OAuthError(INVALID_REQUEST, "grant_type is required")
        else:
            raise OAuthError(UNSUPPORTED_GRANT_TYPE, "Unsupported grant_type")
    return _no_store(issued)


@router.api_route(
    "/userinfo",
    methods=["GET", "POST"],
    summary="OpenID Connect UserInfo endpoint",
    response_model=UserInfoResponse,
    response_model_exclude_none=True,
)
def userinfo(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer)],
    db: WriteSessionDep,
    settings: SettingsDep,
) -> JSONResponse:
    with protocol_boundary(db, "userinfo"):
        claims = TokenService(session=db, settings=settings).userinfo(
            credentials.credentials if credentials else None
        )
    return _no_store(claims)


@router.post(
    "/introspect",
    summary="Token introspection (RFC 7662)",
    response_model=IntrospectionResponse,
    response_model_exclude_none=True,
)
def introspect(
    lookup: Annotated[TokenLookupRequest, Depends(parse_lookup_request)],
    db: WriteSessionDep,
    settings: SettingsDep,
) -> JSONResponse:
    with protocol_boundary(db, "introspect"):
        result = TokenService(session=db, settings=settings).introspect(lookup.token)
    return _no_store(result)


@router.post("/revoke", summary="Token revocation (RFC 7009)")
def revoke(
    lookup: Annotated[TokenLookupRequest, Depends(parse_lookup_request)],
    db: WriteSessionDep,
    settings: SettingsDep,
) -> JSONResponse:
    with protocol_boundary(db, "revoke"):
        TokenService(session=db, settings=settings).revoke(lookup.token)
    return _no_store({})


@router.get(
    "/logout",
    summary="RP-initiated logout",
    response_class=RedirectResponse,
    status_code=status.HTTP_302_FOUND,
)
def logout(
    request: Request,
    query: Annotated[LogoutQuery, Query()],
    db: WriteSessionDep,
    settings: SettingsDep,
) -> RedirectResponse:
    AuthnService(session=db, settings=settings).revoke_session(read_session_cookie(request, settings))

    target = "/"
    if query.client_id and query.post_logout_redirect_uri:
        registry = ClientRegistry(session=db, settings=settings)
        client = registry.find_client(query.client_id)
        if client is not None and registry.is_registered_post_logout_redirect(
            client, query.post_logout_redirect_uri
        ):
            target = append_query(query.post_logout_redirect_uri, {"state": query.state})

    response = RedirectResponse(target, status_code=status.HTTP_302_FOUND)
    clear_session_cookie(response, settings)
    return response


__all__ = ["parse_token_request", "protocol_boundary", "read_protocol_body", "router"]
