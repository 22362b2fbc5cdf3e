"""Client registry: lookup, secret verification, redirect matching, admin CRUD."""

from __future__ import annotations

import logging
import secrets
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orion_api.common.logging import log_context
from orion_api.common.problem_details import ApiError
from orion_api.core.security.hashing import hash_password, verify_password
from orion_api.settings import Settings
from orion_db.models import DEFAULT_GRANT_TYPES, OAuthClient

logger = logging.getLogger(__name__)

SUPPORTED_GRANT_TYPES = frozenset(DEFAULT_GRANT_TYPES)
_CLIENT_SECRET_BYTES = 32


def validate_redirect_uri(value: str) -> str:
    """Return ``value`` if it is an absolute http(s) URI without a fragment."""

    candidate = value.strip()
    parts = urlsplit(candidate)
    if parts.scheme not in {"http", "https"} or not parts.netloc:
        raise ApiError.bad_request(f"Redirect URI must be an absolute http(s) URL: {value}")
    if parts.fragment:
        raise ApiError.bad_request(f"Redirect URI must not contain a fragment: {value}")
    return candidate


def _clean_uris(values: Iterable[str]) -> list[str]:
    cleaned: list[str] = []
    for value in values:
        uri = validate_redirect_uri(value)
        if uri not in cleaned:
            cleaned.append(uri)
    return cleaned


def _clean_grant_types(values: Iterable[str]) -> list[str]:
    cleaned = sorted({value.strip() for value in values if value.strip()})
    unsupported = [value for value in cleaned if value not in SUPPORTED_GRANT_TYPES]
    if unsupported:
        raise ApiError.bad_request(f"Unsupported grant types: {', '.join(unsupported)}")
    if not cleaned:
        raise ApiError.bad_request("At least one grant type is required")
    return cleaned


@dataclass(slots=True)
class ClientRegistry:
    """Read and administer ``OAuthClient`` rows for the configured environment."""

    session: Session
    settings: Settings

    # ------------------------------------------------------------------
    # Protocol lookups
    # ------------------------------------------------------------------

    def find_client(self, client_id: str, environment: str | None = None) -> OAuthClient | None:
        candidate = (client_id or "").strip()
        if not candidate:
            return None
        stmt = (
            select(OAuthClient)
            .where(OAuthClient.client_id == candidate)
            .where(OAuthClient.environment == (environment or self.settings.oauth_environment))
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def get(self, client_pk: UUID) -> OAuthClient | None:
        return self.session.get(OAuthClient, client_pk)

    @staticmethod
    def verify_secret(client: OAuthClient, presented: str | None) -> bool:
        """Slow, salted comparison; a public client never verifies."""

        if client.client_secret_hash is None or not presented:
            return False
        return verify_password(presented, client.client_secret_hash)

    @staticmethod
    def is_registered_redirect(client: OAuthClient, uri: str | None) -> bool:
        return bool(uri) and uri in client.redirect_uris

    @staticmethod
    def is_registered_post_logout_redirect(client: OAuthClient, uri: str | None) -> bool:
        return bool(uri) and uri in client.post_logout_redirect_uris

    @staticmethod
    def allows_grant(client: OAuthClient, grant_type: str) -> bool:
        return grant_type in client.grant_types

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def list_clients(self, environment: str | None = None) -> list[OAuthClient]:
        stmt = select(OAuthClient).order_by(OAuthClient.client_id)
        if environment is not None:
            stmt = stmt.where(OAuthClient.environment == environment)
        return list(self.session.execute(stmt).scalars().all())

    def create_client(
        self,
        *,
        client_id: str,
        name: str,
        redirect_uris: Iterable[str],
        confidential: bool = True,
        environment: str | None = None,
        description: str | None = None,
        logo_url: str | None = None,
        post_logout_redirect_uris: Iterable[str] = (),
        grant_types: Iterable[str] = DEFAULT_GRANT_TYPES,
        pkce_required: bool = True,
    ) -> tuple[OAuthClient, str | None]:
        """Register a client; confidential clients get a one-time plaintext secret."""

        resolved_client_id = client_id.strip()
        if not resolved_client_id:
            raise ApiError.bad_request("client_id must not be blank")
        resolved_environment = environment or self.settings.oauth_environment
        if self.find_client(resolved_client_id, resolved_environment) is not None:
            raise ApiError.conflict(
                f"Client '{resolved_client_id}' already exists in {resolved_environment}"
            )

        secret = secrets.token_urlsafe(_CLIENT_SECRET_BYTES) if confidential else None
        client = OAuthClient(
            client_id=resolved_client_id,
            environment=resolved_environment,
            client_secret_hash=hash_password(secret) if secret else None,
            name=name.strip(),
            description=description,
            logo_url=logo_url,
            redirect_uris=_clean_uris(redirect_uris),
            post_logout_redirect_uris=_clean_uris(post_logout_redirect_uris),
            grant_types=_clean_grant_types(grant_types),
            pkce_required=pkce_required,
        )
        self.session.add(client)
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise ApiError.conflict(f"Client '{resolved_client_id}' already exists") from exc
        logger.info(
            "oauth.client.created",
            extra=log_context(client_id=client.client_id, confidential=confidential),
        )
        return client, secret

    def update_client(self, client: OAuthClient, changes: dict[str, Any]) -> OAuthClient:
        """Apply mutable configuration; identity and secret are not editable here."""

        if "name" in changes and changes["name"] is not None:
            client.name = str(changes["name"]).strip()
        if "description" in changes:
            client.description = changes["description"]
        if "logo_url" in changes:
            client.logo_url = changes["logo_url"]
        if changes.get("redirect_uris") is not None:
            client.redirect_uris = _clean_uris(changes["redirect_uris"])
        if changes.get("post_logout_redirect_uris") is not None:
            client.post_logout_redirect_uris = _clean_uris(changes["post_logout_redirect_uris"])
        if changes.get("grant_types") is not None:
            client.grant_types = _clean_grant_types(changes["grant_types"])
        if changes.get("pkce_required") is not None:
            client.pkce_required = bool(changes["pkce_required"])
        self.session.flush()
        logger.info("oauth.client.updated", extra=log_context(client_id=client.client_id))
        return client

    def regenerate_secret(self, client: OAuthClient) -> str:
        secret = secrets.token_urlsafe(_CLIENT_SECRET_BYTES)
        client.client_secret_hash = hash_password(secret)
        self.session.flush()
        logger.info("oauth.client.secret_rotated", extra=log_context(client_id=client.client_id))
        return secret

    def delete_client(self, client: OAuthClient) -> None:
        """Delete ``client`` with its codes, tokens and consents."""

        client_id = client.client_id
        self.session.delete(client)
        self.session.flush()
        logger.info("oauth.client.deleted", extra=log_context(client_id=client_id))


__all__ = [
    "ClientRegistry",
    "SUPPORTED_GRANT_TYPES",
    "validate_redirect_uri",
]
