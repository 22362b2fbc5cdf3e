"""Response models for discovery and JWKS."""

from __future__ import annotations

from orion_api.common.schema import BaseSchema


class JsonWebKey(BaseSchema):
    kty: str
    n: str
    e: str
    kid: str
    alg: str
    use: str


class JsonWebKeySet(BaseSchema):
    keys: list[JsonWebKey]


class OpenIdConfiguration(BaseSchema):
    """OpenID Provider metadata (OpenID Connect Discovery 1.0, section 3)."""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    userinfo_endpoint: str
    jwks_uri: str
    introspection_endpoint: str
    revocation_endpoint: str
    end_session_endpoint: str
    scopes_supported: list[str]
    response_types_supported: list[str]
    grant_types_supported: list[str]
    subject_types_supported: list[str]
    id_token_signing_alg_values_supported: list[str]
    token_endpoint_auth_methods_supported: list[str]
    claims_supported: list[str]
    code_challenge_methods_supported: list[str]


__all__ = ["JsonWebKey", "JsonWebKeySet", "OpenIdConfiguration"]
