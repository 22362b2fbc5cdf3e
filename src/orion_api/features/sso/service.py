"""Federated sign-in: durable auth state, provider round trip, admin consent."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from urllib.parse import urlencode
from uuid import UUID

import httpx
from sqlalchemy import delete
from sqlalchemy.orm import Session

from orion_api.common.logging import log_context
from orion_api.core.security.pkce import generate_code_verifier, s256_challenge
from orion_api.core.security.tokens import mint_opaque_token
from orion_api.settings import Settings
from orion_db import utc_now
from orion_db.models import SsoAuthState, Tenant, User

from .claims import FederatedIdentity, identity_from_claims
from .oidc import discover_metadata, exchange_code, validate_id_token

logger = logging.getLogger(__name__)

INVALID_STATE_MESSAGE = "Invalid or expired authentication state"
DEFAULT_ADMIN_CONSENT_TENANT = "organizations"


class SsoNotConfiguredError(RuntimeError):
    """Federation settings are incomplete."""


class AuthStateError(RuntimeError):
    """The ``state`` returned by the provider was never issued, already used, or expired."""

    def __init__(self) -> None:
        super().__init__(INVALID_STATE_MESSAGE)


@dataclass(frozen=True, slots=True)
class ConsumedAuthState:
    nonce: str
    pkce_verifier: str
    return_to: str | None


@dataclass(frozen=True, slots=True)
class FederationResult:
    identity: FederatedIdentity
    return_to: str | None


@dataclass(frozen=True, slots=True)
class AdminConsentStatus:
    tenant_id: UUID
    sso_tenant_id: str | None
    admin_consent_granted: bool
    admin_consent_granted_at: datetime | None


@dataclass(slots=True)
class FederationService:
    """Authorization code + PKCE round trip against the configured provider."""

    session: Session
    settings: Settings

    @property
    def provider_id(self) -> str:
        return self.settings.sso_provider_id

    def callback_url(self) -> str:
        return f"{self.settings.public_web_url}/auth/sso/callback"

    def _require_configured(self) -> tuple[str, str]:
        client_id = self.settings.sso_client_id
        secret = self.settings.sso_client_secret
        if not client_id or secret is None:
            raise SsoNotConfiguredError(f"{self.settings.sso_provider_label} SSO is not configured")
        return client_id, secret.get_secret_value()

    # ------------------------------------------------------------------
    # Round trip
    # ------------------------------------------------------------------

    def begin_federation(
        self,
        *,
        redirect_uri: str,
        return_to: str | None,
        client: httpx.Client,
        now: datetime | None = None,
    ) -> str:
        """Persist a fresh state and return the provider authorization URL."""

        client_id, _secret = self._require_configured()
        metadata = discover_metadata(self.settings.effective_sso_issuer, client)

        moment = now or utc_now()
        state = mint_opaque_token()
        nonce = mint_opaque_token()
        verifier = generate_code_verifier()
        self.session.add(
            SsoAuthState(
                state=state,
                provider_id=self.provider_id,
                nonce=nonce,
                pkce_verifier=verifier,
                return_to=return_to,
                created_at=moment,
                expires_at=moment + self.settings.sso_state_ttl,
            )
        )
        self.session.flush()

        params = {
            "response_type": "code",
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "scope": " ".join(self.settings.sso_scopes),
            "state": state,
            "nonce": nonce,
            "code_challenge": s256_challenge(verifier),
            "code_challenge_method": "S256",
            "response_mode": "query",
        }
        if self.settings.sso_prompt:
            params["prompt"] = self.settings.sso_prompt
        logger.info("sso.authorize.redirect", extra=log_context(provider=self.provider_id))
        return f"{metadata.authorization_endpoint}?{urlencode(params)}"

    def consume_state(self, state: str, *, now: datetime | None = None) -> ConsumedAuthState:
        """Delete the state row and return it; the delete is the single-use guard."""

        row = self.session.execute(
            delete(SsoAuthState)
            .where(SsoAuthState.state == state)
            .where(SsoAuthState.provider_id == self.provider_id)
            .returning(
                SsoAuthState.nonce,
                SsoAuthState.pkce_verifier,
                SsoAuthState.return_to,
                SsoAuthState.expires_at,
            )
            .execution_options(synchronize_session=False)
        ).one_or_none()
        if row is None or row.expires_at <= (now or utc_now()):
            logger.info(
                "sso.callback.state_invalid",
                extra=log_context(provider=self.provider_id, expired=row is not None),
            )
            raise AuthStateError()
        return ConsumedAuthState(
            nonce=row.nonce,
            pkce_verifier=row.pkce_verifier,
            return_to=row.return_to,
        )

    def complete_federation(
        self,
        *,
        code: str,
        state: str,
        redirect_uri: str,
        client: httpx.Client,
        now: datetime | None = None,
    ) -> FederationResult:
        """Consume ``state``, exchange ``code`` and map the validated ID token."""

        self._require_configured()
        consumed = self.consume_state(state, now=now)
        return self.redeem_code(
            code=code,
            consumed=consumed,
            redirect_uri=redirect_uri,
            client=client,
            now=now,
        )

    def redeem_code(
        self,
        *,
        code: str,
        consumed: ConsumedAuthState,
        redirect_uri: str,
        client: httpx.Client,
        now: datetime | None = None,
    ) -> FederationResult:
        """Exchange ``code`` with the verifier and nonce of an already consumed state.

        The consumption must be committed before this is called.
        """

        client_id, client_secret = self._require_configured()
        metadata = discover_metadata(self.settings.effective_sso_issuer, client)
        token_response = exchange_code(
            token_endpoint=metadata.token_endpoint,
            client_id=client_id,
            client_secret=client_secret,
            code=code,
            redirect_uri=redirect_uri,
            code_verifier=consumed.pkce_verifier,
            scope=" ".join(self.settings.sso_scopes),
            client=client,
        )
        claims = validate_id_token(
            token=str(token_response["id_token"]),
            metadata=metadata,
            client_id=client_id,
            nonce=consumed.nonce,
            now=now,
        )
        identity = identity_from_claims(self.provider_id, claims)
        return FederationResult(identity=identity, return_to=consumed.return_to)

    def purge_expired_states(self, *, now: datetime | None = None) -> int:
        result = self.session.execute(
            delete(SsoAuthState)
            .where(SsoAuthState.expires_at <= (now or utc_now()))
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)

    # ------------------------------------------------------------------
    # Admin consent
    # ------------------------------------------------------------------

    def admin_consent_url(self, tenant: Tenant | None = None) -> tuple[str, str]:
        """Return ``(url, directory)`` for the provider's admin-consent prompt."""

        client_id, _secret = self._require_configured()
        directory = (tenant.sso_tenant_id if tenant is not None else None) or DEFAULT_ADMIN_CONSENT_TENANT
        params = {
            "client_id": client_id,
            "scope": self.settings.sso_admin_consent_scope,
            "redirect_uri": f"{self.settings.public_web_url}{self.settings.sso_admin_consent_redirect_path}",
            "state": mint_opaque_token(16),
        }
        url = f"{self.settings.sso_authority}/{directory}/v2.0/adminconsent?{urlencode(params)}"
        return url, directory

    @staticmethod
    def consent_status(tenant: Tenant) -> AdminConsentStatus:
        return AdminConsentStatus(
            tenant_id=tenant.id,
            sso_tenant_id=tenant.sso_tenant_id,
            admin_consent_granted=tenant.admin_consent_granted,
            admin_consent_granted_at=tenant.admin_consent_granted_at,
        )

    def mark_admin_consent_granted(self, tenant: Tenant, user: User) -> AdminConsentStatus:
        tenant.admin_consent_granted = True
        tenant.admin_consent_granted_at = utc_now()
        tenant.admin_consent_granted_by = user.id
        self.session.flush()
        logger.info(
            "sso.admin_consent.granted",
            extra=log_context(tenant_id=tenant.id, user_id=user.id),
        )
        return self.consent_status(tenant)


__all__ = [
    "AdminConsentStatus",
    "AuthStateError",
    "ConsumedAuthState",
    "FederationResult",
    "FederationService",
    "INVALID_STATE_MESSAGE",
    "SsoNotConfiguredError",
]
