"""Request authentication pipeline used by FastAPI dependencies."""

from __future__ import annotations

import logging

from fastapi import Request
from sqlalchemy.orm import Session

from orion_api.settings import Settings
from orion_db.models import User

from ..http.session_cookie import read_session_cookie
from .principal import AuthenticatedPrincipal, AuthVia

logger = logging.getLogger(__name__)


def authenticate_request(
    request: Request,
    db: Session,
    settings: Settings,
) -> tuple[AuthenticatedPrincipal, User] | None:
    """Resolve the browser session cookie into a principal and its user.

    The result is cached on ``request.state`` so several dependencies on one
    request share a single lookup.
    """

    cached = getattr(request.state, "auth_result", None)
    if cached is not None:
        return cached or None

    from orion_api.features.authn.service import AuthnService

    token = read_session_cookie(request, settings)
    resolved = AuthnService(session=db, settings=settings).resolve_session(token)
    if resolved is None:
        request.state.auth_result = ()
        return None

    principal = AuthenticatedPrincipal(
        user_id=resolved.user.id,
        session_id=resolved.auth_session.id,
        auth_via=AuthVia.SESSION,
        auth_method=resolved.auth_session.auth_method,
        auth_time=resolved.auth_session.created_at,
    )
    result = (principal, resolved.user)
    request.state.auth_result = result
    return result


__all__ = ["authenticate_request"]
