"""HTTP interface for local sign-in, sign-out and the current user."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response, Security, status
from sqlalchemy.orm import Session

from orion_api.common.logging import log_context
from orion_api.common.problem_details import ApiError
from orion_api.common.rate_limit import InMemoryRateLimiter, RateLimit
from orion_api.core.http.dependencies import require_authenticated
from orion_api.core.http.session_cookie import (
    clear_session_cookie,
    read_session_cookie,
    set_session_cookie,
)
from orion_api.core.rbac.capabilities import Capabilities
from orion_api.db import get_db_write
from orion_api.settings import Settings, get_settings
from orion_db.models import User

from .schemas import AuthLoginRequest, AuthLoginSuccess, CurrentUser
from .service import AuthnService, LoginError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])

_LOGIN_LIMITER = InMemoryRateLimiter(limit=RateLimit(max_requests=10, window_seconds=60))

SettingsDep = Annotated[Settings, Depends(get_settings)]
WriteSessionDep = Annotated[Session, Depends(get_db_write)]


def _client_host(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@router.post(
    "/auth/login",
    response_model=AuthLoginSuccess,
    status_code=status.HTTP_200_OK,
    summary="Authenticate with a local username or email and password",
)
def login_local(
    payload: AuthLoginRequest,
    request: Request,
    settings: SettingsDep,
    db: WriteSessionDep,
) -> Response:
    decision = _LOGIN_LIMITER.check(f"{_client_host(request)}:login")
    if not decision.allowed:
        raise ApiError(
            error_type="rate_limited",
            detail="Too many sign-in attempts. Please try again shortly.",
            headers=decision.headers(),
        )

    service = AuthnService(session=db, settings=settings)
    try:
        user = service.authenticate(
            login=payload.login,
            password=payload.password.get_secret_value(),
        )
    except LoginError as exc:
        raise ApiError(
            error_type="unauthorized",
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc

    token = service.create_session(user=user, auth_method="password")
    response = Response(
        content=AuthLoginSuccess(user_id=user.id).model_dump_json(),
        media_type="application/json",
        status_code=status.HTTP_200_OK,
    )
    set_session_cookie(response, settings, token)
    return response


@router.post(
    "/auth/logout",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Revoke the current browser session",
)
def logout_local(
    request: Request,
    settings: SettingsDep,
    db: WriteSessionDep,
) -> Response:
    AuthnService(session=db, settings=settings).revoke_session(
        read_session_cookie(request, settings)
    )
    logger.info("auth.logout", extra=log_context(client_host=_client_host(request)))
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    clear_session_cookie(response, settings)
    return response


@router.get(
    "/api/me",
    response_model=CurrentUser,
    response_model_exclude_none=True,
    summary="Return the signed-in user and their capabilities",
)
def read_me(user: Annotated[User, Security(require_authenticated)]) -> CurrentUser:
    current = CurrentUser.model_validate(user)
    return current.model_copy(update={"capabilities": Capabilities.for_user(user).summary()})


__all__ = ["router"]
