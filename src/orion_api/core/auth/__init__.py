"""Authentication primitives shared by HTTP dependencies."""

from .errors import AuthenticationError, PermissionDeniedError
from .pipeline import authenticate_request
from .principal import AuthenticatedPrincipal, AuthVia

__all__ = [
    "AuthVia",
    "AuthenticatedPrincipal",
    "AuthenticationError",
    "PermissionDeniedError",
    "authenticate_request",
]
