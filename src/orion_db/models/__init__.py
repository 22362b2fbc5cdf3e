"""Central exports for Orion SQLAlchemy models."""

from .authn import AUTH_SESSION_AUTH_METHOD_VALUES, AuthSession
from .oauth import (
    DEFAULT_GRANT_TYPES,
    OAUTH_ENVIRONMENT_VALUES,
    OAuthAuthorizationCode,
    OAuthClient,
    OAuthPendingRequest,
    OAuthToken,
    OAuthUserConsent,
)
from .signing_key import SigningKey
from .sso import SsoAuthState
from .tenant import Tenant, TenantDomain
from .user import LEGACY_ROLE_ALIASES, TENANT_SCOPED_ROLE_VALUES, User, UserRole

__all__ = [
    "AUTH_SESSION_AUTH_METHOD_VALUES",
    "AuthSession",
    "DEFAULT_GRANT_TYPES",
    "LEGACY_ROLE_ALIASES",
    "OAUTH_ENVIRONMENT_VALUES",
    "OAuthAuthorizationCode",
    "OAuthClient",
    "OAuthPendingRequest",
    "OAuthToken",
    "OAuthUserConsent",
    "SigningKey",
    "SsoAuthState",
    "TENANT_SCOPED_ROLE_VALUES",
    "Tenant",
    "TenantDomain",
    "User",
    "UserRole",
]
