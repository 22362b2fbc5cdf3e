"""OIDC discovery, token exchange, and ID token validation against the external IdP."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import jwt
from jwt import PyJWKClient

logger = logging.getLogger(__name__)

DISCOVERY_TTL = timedelta(minutes=15)
TENANT_ID_PLACEHOLDER = "{tenantid}"
ID_TOKEN_ALGORITHMS = ("RS256",)

_discovery_cache: dict[str, tuple[datetime, OidcMetadata]] = {}
_jwks_clients: dict[str, PyJWKClient] = {}


class FederationError(RuntimeError):
    """Base class for failures talking to the external identity provider."""


class OidcDiscoveryError(FederationError):
    """Raised when OIDC discovery fails."""


class OidcTokenExchangeError(FederationError):
    """Raised when token exchange fails."""


class OidcTokenValidationError(FederationError):
    """Raised when ID token validation fails."""


class OidcJwksError(FederationError):
    """Raised when JWKS/key resolution fails."""


@dataclass(frozen=True, slots=True)
class OidcMetadata:
    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: str

    @property
    def is_multi_tenant(self) -> bool:
        return TENANT_ID_PLACEHOLDER in self.issuer

    def issuer_for(self, tenant_id: str | None) -> str | None:
        """Concrete issuer for ``tenant_id``; ``None`` if a templated issuer lacks it."""

        if not self.is_multi_tenant:
            return self.issuer
        if not tenant_id:
            return None
        return self.issuer.replace(TENANT_ID_PLACEHOLDER, tenant_id)


def _now() -> datetime:
    return datetime.now(tz=UTC)


def clear_caches() -> None:
    _discovery_cache.clear()
    _jwks_clients.clear()


def _get_jwks_client(jwks_uri: str) -> PyJWKClient:
    client = _jwks_clients.get(jwks_uri)
    if client is None:
        client = PyJWKClient(jwks_uri, cache_keys=True, cache_jwk_set=True, lifespan=300)
        _jwks_clients[jwks_uri] = client
    return client


def _unverified_header(token: str) -> dict[str, Any]:
    try:
        header = jwt.get_unverified_header(token)
    except jwt.PyJWTError:
        return {}
    return {"alg": header.get("alg"), "kid": header.get("kid"), "typ": header.get("typ")}


def discover_metadata(issuer: str, client: httpx.Client) -> OidcMetadata:
    """Fetch and cache the provider's OpenID configuration.

    Multi-tenant authorities (``/organizations``, ``/common``) publish an
    issuer containing ``{tenantid}``; that template is kept as-is and
    resolved per token.
    """

    normalized = issuer.rstrip("/")
    cached = _discovery_cache.get(normalized)
    if cached and cached[0] > _now():
        return cached[1]

    url = f"{normalized}/.well-known/openid-configuration"
    try:
        response = client.get(url, timeout=10.0)
    except httpx.HTTPError as exc:
        logger.warning("sso.oidc.discovery.failed", extra={"issuer": normalized})
        raise OidcDiscoveryError("Discovery request failed") from exc

    if response.status_code != 200:
        logger.warning(
            "sso.oidc.discovery.status",
            extra={"issuer": normalized, "status_code": response.status_code},
        )
        raise OidcDiscoveryError("Discovery response was not successful")

    try:
        payload = response.json()
    except ValueError as exc:
        raise OidcDiscoveryError("Discovery response was not JSON") from exc

    auth_endpoint = payload.get("authorization_endpoint")
    token_endpoint = payload.get("token_endpoint")
    jwks_uri = payload.get("jwks_uri")
    discovered_issuer = str(payload.get("issuer") or normalized).rstrip("/")

    if not auth_endpoint or not token_endpoint or not jwks_uri:
        raise OidcDiscoveryError("Discovery response missing required endpoints")

    if TENANT_ID_PLACEHOLDER not in discovered_issuer and discovered_issuer != normalized:
        raise OidcDiscoveryError("Discovery issuer mismatch")

    metadata = OidcMetadata(
        issuer=discovered_issuer,
        authorization_endpoint=str(auth_endpoint),
        token_endpoint=str(token_endpoint),
        jwks_uri=str(jwks_uri),
    )
    _discovery_cache[normalized] = (_now() + DISCOVERY_TTL, metadata)
    return metadata


def exchange_code(
    *,
    token_endpoint: str,
    client_id: str,
    client_secret: str,
    code: str,
    redirect_uri: str,
    code_verifier: str,
    scope: str,
    client: httpx.Client,
) -> dict[str, Any]:
    """Redeem the provider's code using ``client_secret_basic`` and PKCE."""

    data = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": redirect_uri,
        "client_id": client_id,
        "code_verifier": code_verifier,
        "scope": scope,
    }
    try:
        response = client.post(
            token_endpoint,
            data=data,
            auth=(client_id, client_secret),
            timeout=10.0,
        )
    except httpx.HTTPError as exc:
        raise OidcTokenExchangeError("Token exchange request failed") from exc

    if response.status_code != 200:
        logger.warning(
            "sso.oidc.exchange.status",
            extra={"status_code": response.status_code},
        )
        raise OidcTokenExchangeError("Token exchange failed")

    try:
        payload = response.json()
    except ValueError as exc:
        raise OidcTokenExchangeError("Token exchange returned invalid JSON") from exc

    if not isinstance(payload, dict) or "id_token" not in payload:
        raise OidcTokenExchangeError("Token response missing id_token")

    return payload


def validate_id_token(
    *,
    token: str,
    metadata: OidcMetadata,
    client_id: str,
    nonce: str,
    now: datetime | None = None,
    clock_skew_seconds: int = 120,
) -> dict[str, Any]:
    """Verify signature, audience, issuer, expiry and nonce of a provider ID token."""

    timestamp = now or _now()
    jwk_client = _get_jwks_client(metadata.jwks_uri)
    try:
        signing_key = jwk_client.get_signing_key_from_jwt(token)
    except jwt.PyJWTError as exc:
        raise OidcJwksError("Unable to resolve signing key") from exc

    header = _unverified_header(token)
    if header.get("alg") not in ID_TOKEN_ALGORITHMS:
        raise OidcTokenValidationError("Unsupported token algorithm")

    try:
        claims = jwt.decode(
            token,
            signing_key.key,
            algorithms=list(ID_TOKEN_ALGORITHMS),
            audience=client_id,
            leeway=clock_skew_seconds,
            options={"require": ["exp", "iat", "iss", "aud", "sub"], "verify_iss": False},
        )
    except jwt.PyJWTError as exc:
        logger.warning(
            "sso.oidc.token.invalid",
            extra={"client_id": client_id, "header": header, "error": str(exc)},
        )
        raise OidcTokenValidationError("Token validation failed") from exc

    tenant_id = claims.get("tid") if isinstance(claims.get("tid"), str) else None
    expected_issuer = metadata.issuer_for(tenant_id)
    if expected_issuer is None or str(claims.get("iss", "")).rstrip("/") != expected_issuer.rstrip("/"):
        logger.warning(
            "sso.oidc.token.issuer_mismatch",
            extra={"client_id": client_id, "issuer": claims.get("iss")},
        )
        raise OidcTokenValidationError("Issuer mismatch")

    if claims.get("nonce") != nonce:
        raise OidcTokenValidationError("Nonce mismatch")

    aud = claims.get("aud")
    if isinstance(aud, list) and len(aud) > 1:
        if claims.get("azp") != client_id:
            raise OidcTokenValidationError("Authorized party mismatch")

    issued_at = claims.get("iat")
    if isinstance(issued_at, (int, float)):
        iat_dt = datetime.fromtimestamp(int(issued_at), tz=UTC)
        if iat_dt > timestamp + timedelta(seconds=clock_skew_seconds):
            raise OidcTokenValidationError("Token issued in the future")

    return claims


__all__ = [
    "DISCOVERY_TTL",
    "FederationError",
    "OidcDiscoveryError",
    "OidcJwksError",
    "OidcMetadata",
    "OidcTokenExchangeError",
    "OidcTokenValidationError",
    "TENANT_ID_PLACEHOLDER",
    "clear_caches",
    "discover_metadata",
    "exchange_code",
    "validate_id_token",
]
