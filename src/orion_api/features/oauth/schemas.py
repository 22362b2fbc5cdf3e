"""Request and response models for the protocol endpoints.

Request fields are all optional strings: presence and value checks happen
in the services so that each failure maps onto the right protocol error
code instead of a generic validation response.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from orion_api.common.schema import BaseSchema

AUTHORIZATION_PARAMETERS = (
    "response_type",
    "client_id",
    "redirect_uri",
    "scope",
    "state",
    "code_challenge",
    "code_challenge_method",
    "nonce",
)


class _ProtocolRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")


class AuthorizationRequest(_ProtocolRequest):
    """The parameters of an authorization request (RFC 6749 4.1.1, RFC 7636 4.3)."""

    response_type: str | None = None
    client_id: str | None = None
    redirect_uri: str | None = None
    scope: str | None = None
    state: str | None = None
    code_challenge: str | None = None
    code_challenge_method: str | None = None
    nonce: str | None = None

    def to_params(self) -> dict[str, str]:
        return {
            name: value
            for name in AUTHORIZATION_PARAMETERS
            if (value := getattr(self, name)) is not None and value != ""
        }


class AuthorizeQuery(AuthorizationRequest):
    """``GET /oauth/authorize``; ``request_id`` resumes a parked request."""

    request_id: str | None = None


class TokenRequest(_ProtocolRequest):
    grant_type: str | None = None
    code: str | None = None
    redirect_uri: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    code_verifier: str | None = None
    refresh_token: str | None = None
    scope: str | None = None


class TokenResponse(BaseSchema):
    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    refresh_token: str | None = None
    scope: str
    id_token: str | None = None


class TokenLookupRequest(_ProtocolRequest):
    """Body of ``/oauth/introspect`` and ``/oauth/revoke``."""

    token: str | None = None
    token_type_hint: str | None = None


class IntrospectionResponse(BaseSchema):
    active: bool
    scope: str | None = None
    exp: int | None = None
    iat: int | None = None
    sub: str | None = None
    client_id: str | None = None
    token_type: str | None = None


class UserInfoResponse(BaseSchema):
    sub: str
    name: str | None = None
    preferred_username: str | None = None
    email: str | None = None
    email_verified: bool | None = None


class LogoutQuery(_ProtocolRequest):
    client_id: str | None = None
    post_logout_redirect_uri: str | None = None
    state: str | None = None


class OAuthErrorResponse(BaseSchema):
    error: str
    error_description: str | None = None


__all__ = [
    "AUTHORIZATION_PARAMETERS",
    "AuthorizationRequest",
    "AuthorizeQuery",
    "IntrospectionResponse",
    "LogoutQuery",
    "OAuthErrorResponse",
    "TokenLookupRequest",
    "TokenRequest",
    "TokenResponse",
    "UserInfoResponse",
]
