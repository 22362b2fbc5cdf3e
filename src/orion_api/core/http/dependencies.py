"""FastAPI dependencies bridging HTTP requests to sessions and capabilities."""

from __future__ import annotations

from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from orion_api.db import get_db_read
from orion_api.settings import Settings, get_settings
from orion_db.models import User

from ..auth import AuthenticatedPrincipal, AuthenticationError, PermissionDeniedError
from ..auth.pipeline import authenticate_request
from ..rbac.capabilities import Capabilities

ReadSessionDep = Annotated[Session, Depends(get_db_read)]
SettingsDep = Annotated[Settings, Depends(get_settings)]

CapabilityDependency = Callable[..., User]


def get_optional_principal(
    request: Request,
    db: ReadSessionDep,
    settings: SettingsDep,
) -> AuthenticatedPrincipal | None:
    result = authenticate_request(request, db, settings)
    return result[0] if result else None


def get_optional_user(
    request: Request,
    db: ReadSessionDep,
    settings: SettingsDep,
) -> User | None:
    result = authenticate_request(request, db, settings)
    return result[1] if result else None


def get_current_principal(
    principal: Annotated[AuthenticatedPrincipal | None, Depends(get_optional_principal)],
) -> AuthenticatedPrincipal:
    if principal is None:
        raise AuthenticationError("Authentication required")
    return principal


def require_authenticated(
    user: Annotated[User | None, Depends(get_optional_user)],
) -> User:
    """Ensure the request carries a live session and return its user."""

    if user is None:
        raise AuthenticationError("Authentication required")
    return user


def get_capabilities(user: Annotated[User, Depends(require_authenticated)]) -> Capabilities:
    return Capabilities.for_user(user)


def require_capability(name: str) -> CapabilityDependency:
    """Return a dependency enforcing an unscoped capability such as ``can_manage_clients``."""

    if not isinstance(getattr(Capabilities, name, None), property):
        raise ValueError(f"{name!r} is not an unscoped capability")

    def dependency(user: Annotated[User, Depends(require_authenticated)]) -> User:
        if not getattr(Capabilities.for_user(user), name):
            raise PermissionDeniedError(name)
        return user

    return dependency


__all__ = [
    "get_capabilities",
    "get_current_principal",
    "get_optional_principal",
    "get_optional_user",
    "require_authenticated",
    "require_capability",
]
