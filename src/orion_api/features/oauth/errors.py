"""Authorization-server error vocabulary (RFC 6749 section 5.2 / 4.1.2.1)."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from starlette.responses import RedirectResponse, Response

from orion_api.common.logging import log_context
from orion_api.common.responses import NO_STORE_HEADERS, JSONResponse
from orion_api.common.urls import append_query

logger = logging.getLogger(__name__)

INVALID_REQUEST = "invalid_request"
INVALID_CLIENT = "invalid_client"
INVALID_GRANT = "invalid_grant"
INVALID_SCOPE = "invalid_scope"
INVALID_TOKEN = "invalid_token"
UNAUTHORIZED_CLIENT = "unauthorized_client"
UNSUPPORTED_GRANT_TYPE = "unsupported_grant_type"
UNSUPPORTED_RESPONSE_TYPE = "unsupported_response_type"
ACCESS_DENIED = "access_denied"
LOGIN_REQUIRED = "login_required"
SERVER_ERROR = "server_error"


class OAuthError(Exception):
    """Protocol error rendered as ``{error, error_description}`` or a redirect.

    When ``redirect_uri`` is set the error has already passed redirect
    validation and is delivered to the client by redirect, carrying ``state``.
    """

    def __init__(
        self,
        error: str,
        description: str | None = None,
        *,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        redirect_uri: str | None = None,
        state: str | None = None,
        headers: dict[str, str] | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(description or error)
        self.error = error
        self.description = description
        self.status_code = status_code
        self.redirect_uri = redirect_uri
        self.state = state
        self.headers = headers
        self.extra = extra or {}

    def payload(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.error}
        if self.description:
            body["error_description"] = self.description
        body.update(self.extra)
        return body

    def redirect_location(self) -> str | None:
        if self.redirect_uri is None:
            return None
        return append_query(
            self.redirect_uri,
            {
                "error": self.error,
                "error_description": self.description,
                "state": self.state,
            },
        )


class LoginRequiredError(OAuthError):
    """No session: the caller must sign in and resume via ``request_id``."""

    def __init__(self, *, request_id: str | None, login_url: str, sso_url: str | None) -> None:
        extra: dict[str, Any] = {"login_url": login_url}
        if sso_url:
            extra["sso_url"] = sso_url
        if request_id:
            extra["request_id"] = request_id
        super().__init__(
            LOGIN_REQUIRED,
            "User authentication required",
            status_code=status.HTTP_401_UNAUTHORIZED,
            extra=extra,
        )


def invalid_token(description: str = "The access token is invalid or expired") -> OAuthError:
    return OAuthError(
        INVALID_TOKEN,
        description,
        status_code=status.HTTP_401_UNAUTHORIZED,
        headers={
            "WWW-Authenticate": f'Bearer error="{INVALID_TOKEN}", error_description="{description}"'
        },
    )


def invalid_client(description: str = "Client authentication failed") -> OAuthError:
    return OAuthError(INVALID_CLIENT, description, status_code=status.HTTP_401_UNAUTHORIZED)


def server_error() -> OAuthError:
    return OAuthError(
        SERVER_ERROR,
        "Internal server error",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def oauth_error_handler(request: Request, exc: OAuthError) -> Response:
    location = exc.redirect_location()
    if exc.status_code >= 500:
        logger.error(
            "oauth.error",
            extra=log_context(path=str(request.url.path), error=exc.error),
        )
    else:
        logger.info(
            "oauth.error",
            extra=log_context(path=str(request.url.path), error=exc.error),
        )
    if location is not None:
        return RedirectResponse(location, status_code=status.HTTP_302_FOUND)
    headers = dict(NO_STORE_HEADERS)
    headers.update(exc.headers or {})
    return JSONResponse(exc.payload(), status_code=exc.status_code, headers=headers)


def register_oauth_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(OAuthError, oauth_error_handler)  # type: ignore[arg-type]


__all__ = [
    "ACCESS_DENIED",
    "INVALID_CLIENT",
    "INVALID_GRANT",
    "INVALID_REQUEST",
    "INVALID_SCOPE",
    "INVALID_TOKEN",
    "LOGIN_REQUIRED",
    "LoginRequiredError",
    "OAuthError",
    "SERVER_ERROR",
    "UNAUTHORIZED_CLIENT",
    "UNSUPPORTED_GRANT_TYPE",
    "UNSUPPORTED_RESPONSE_TYPE",
    "invalid_client",
    "invalid_token",
    "oauth_error_handler",
    "register_oauth_exception_handlers",
    "server_error",
]
