"""Authorization endpoint controller (RFC 6749 4.1, RFC 7636, OIDC Core 3.1.2).

Validation runs in a fixed order. Until the client and its redirect URI are
known to be registered, failures are answered directly to the user agent;
after that they are sent back to the client by redirect with ``state``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from urllib.parse import urlencode

from sqlalchemy import delete
from sqlalchemy.orm import Session

from orion_api.common.logging import log_context
from orion_api.common.urls import append_query
from orion_api.core.security.pkce import SUPPORTED_CHALLENGE_METHODS, is_valid_code_challenge
from orion_api.core.security.tokens import hash_opaque_token, mint_opaque_token
from orion_api.features.clients.service import ClientRegistry
from orion_api.features.consent.service import ConsentStore
from orion_api.settings import Settings
from orion_db import utc_now
from orion_db.models import OAuthAuthorizationCode, OAuthClient, OAuthPendingRequest, User

from .errors import (
    ACCESS_DENIED,
    INVALID_CLIENT,
    INVALID_REQUEST,
    INVALID_SCOPE,
    UNAUTHORIZED_CLIENT,
    UNSUPPORTED_RESPONSE_TYPE,
    LoginRequiredError,
    OAuthError,
)
from .schemas import AUTHORIZATION_PARAMETERS, AuthorizationRequest
from .scopes import format_scope, normalize_scopes, scopes_hash, unknown_scopes

logger = logging.getLogger(__name__)

_MAX_NONCE_LENGTH = 255
CONSENT_DENIED_DESCRIPTION = "User denied consent"


@dataclass(slots=True)
class ValidatedAuthorization:
    """An authorization request whose client and redirect URI are trusted."""

    client: OAuthClient
    request: AuthorizationRequest
    redirect_uri: str
    scopes: list[str]
    code_challenge: str | None
    code_challenge_method: str | None

    @property
    def scope_hash(self) -> str:
        return scopes_hash(self.scopes)


@dataclass(slots=True)
class AuthorizationService:
    """Drives ``/oauth/authorize`` and the consent decision."""

    session: Session
    settings: Settings

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(
        self,
        request: AuthorizationRequest,
        *,
        redirect_errors: bool = True,
    ) -> ValidatedAuthorization:
        if not request.response_type or not request.client_id or not request.redirect_uri:
            raise OAuthError(
                INVALID_REQUEST,
                "Missing required parameter: response_type, client_id and redirect_uri "
                "are required",
            )

        registry = ClientRegistry(session=self.session, settings=self.settings)
        client = registry.find_client(request.client_id)
        if client is None:
            raise OAuthError(INVALID_CLIENT, "Unknown client")
        if not registry.is_registered_redirect(client, request.redirect_uri):
            raise OAuthError(INVALID_REQUEST, "Invalid redirect URI")

        def fail(error: str, description: str) -> OAuthError:
            if not redirect_errors:
                return OAuthError(error, description)
            return OAuthError(
                error,
                description,
                redirect_uri=request.redirect_uri,
                state=request.state,
            )

        if request.response_type != "code":
            raise fail(UNSUPPORTED_RESPONSE_TYPE, "Only response_type=code is supported")
        if not registry.allows_grant(client, "authorization_code"):
            raise fail(UNAUTHORIZED_CLIENT, "Client is not allowed to use the authorization code grant")

        challenge = request.code_challenge or None
        method = request.code_challenge_method or None
        if challenge is None:
            if client.pkce_required:
                raise fail(INVALID_REQUEST, "code_challenge is required for this client")
            if method is not None:
                raise fail(INVALID_REQUEST, "code_challenge_method given without code_challenge")
        else:
            method = method or "plain"
            if method not in SUPPORTED_CHALLENGE_METHODS:
                raise fail(INVALID_REQUEST, "Unsupported code_challenge_method")
            if not is_valid_code_challenge(challenge):
                raise fail(INVALID_REQUEST, "Malformed code_challenge")

        if request.nonce is not None and len(request.nonce) > _MAX_NONCE_LENGTH:
            raise fail(INVALID_REQUEST, "nonce is too long")

        scopes = normalize_scopes(request.scope)
        rejected = unknown_scopes(scopes, self.settings.oauth_allowed_scopes)
        if rejected:
            raise fail(INVALID_SCOPE, f"Unsupported scope: {' '.join(rejected)}")

        return ValidatedAuthorization(
            client=client,
            request=request,
            redirect_uri=request.redirect_uri,
            scopes=scopes,
            code_challenge=challenge,
            code_challenge_method=method if challenge else None,
        )

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def begin_authorization(
        self,
        request: AuthorizationRequest,
        *,
        user: User | None,
        auth_time: datetime | None = None,
    ) -> str:
        """Return the URL the user agent should be redirected to.

        Raises ``LoginRequiredError`` when there is no session, after parking
        the request so it can be resumed once the user has signed in.
        """

        validated = self.validate(request)

        if user is None:
            request_id = self.park(request)
            raise LoginRequiredError(
                request_id=request_id,
                login_url=self.login_url(request_id),
                sso_url=self.sso_url(request_id),
            )

        if self.is_first_party(validated.client):
            return self.issue_code(validated, user=user, auth_time=auth_time)

        consents = ConsentStore(session=self.session)
        consent = consents.find_active(
            user_id=user.id,
            client_pk=validated.client.id,
            scope_hash=validated.scope_hash,
        )
        if consent is not None:
            consents.touch(consent)
            return self.issue_code(validated, user=user, auth_time=auth_time)

        logger.info(
            "oauth.consent.required",
            extra=log_context(user_id=user.id, client_id=validated.client.client_id),
        )
        return self.consent_url(request)

    def decide_consent(
        self,
        request: AuthorizationRequest,
        *,
        user: User,
        approved: bool,
        auth_time: datetime | None = None,
    ) -> str:
        """Apply the user's consent decision and return the client redirect URL."""

        validated = self.validate(request, redirect_errors=False)
        if not approved:
            logger.info(
                "oauth.consent.denied",
                extra=log_context(user_id=user.id, client_id=validated.client.client_id),
            )
            return append_query(
                validated.redirect_uri,
                {
                    "error": ACCESS_DENIED,
                    "error_description": CONSENT_DENIED_DESCRIPTION,
                    "state": request.state,
                },
            )
        return self.approve_consent(validated, user=user, auth_time=auth_time)

    def approve_consent(
        self,
        validated: ValidatedAuthorization,
        *,
        user: User,
        auth_time: datetime | None = None,
    ) -> str:
        ConsentStore(session=self.session).grant(
            user_id=user.id,
            client_pk=validated.client.id,
            scopes=validated.scopes,
        )
        return self.issue_code(validated, user=user, auth_time=auth_time)

    # ------------------------------------------------------------------
    # Codes
    # ------------------------------------------------------------------

    def issue_code(
        self,
        validated: ValidatedAuthorization,
        *,
        user: User,
        auth_time: datetime | None = None,
    ) -> str:
        """Persist a hashed single-use code and return ``redirect_uri?code&state``."""

        now = utc_now()
        code = mint_opaque_token()
        self.session.add(
            OAuthAuthorizationCode(
                code_hash=hash_opaque_token(code, key=self.settings.secret_key_value),
                client_pk=validated.client.id,
                user_id=user.id,
                scope=format_scope(validated.scopes),
                redirect_uri=validated.redirect_uri,
                code_challenge=validated.code_challenge,
                code_challenge_method=validated.code_challenge_method,
                nonce=validated.request.nonce,
                auth_time=auth_time,
                created_at=now,
                expires_at=now + self.settings.token_lifetimes.authorization_code,
            )
        )
        self.session.flush()
        logger.info(
            "oauth.code.issued",
            extra=log_context(user_id=user.id, client_id=validated.client.client_id),
        )
        return append_query(validated.redirect_uri, {"code": code, "state": validated.request.state})

    def purge_expired_codes(self, *, now: datetime | None = None) -> int:
        result = self.session.execute(
            delete(OAuthAuthorizationCode)
            .where(OAuthAuthorizationCode.expires_at <= (now or utc_now()))
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)

    # ------------------------------------------------------------------
    # Pending requests
    # ------------------------------------------------------------------

    def park(self, request: AuthorizationRequest) -> str:
        """Persist ``request`` for an unauthenticated caller; return its handle."""

        now = utc_now()
        request_id = mint_opaque_token()
        self.session.add(
            OAuthPendingRequest(
                request_hash=self._hash(request_id),
                params=request.to_params(),
                created_at=now,
                expires_at=now + self.settings.oauth_pending_request_ttl,
            )
        )
        self.session.flush()
        return request_id

    def resume(self, request_id: str, *, now: datetime | None = None) -> AuthorizationRequest:
        """Consume a parked request; unknown, used or expired handles fail."""

        stmt = (
            delete(OAuthPendingRequest)
            .where(OAuthPendingRequest.request_hash == self._hash(request_id))
            .returning(OAuthPendingRequest.params, OAuthPendingRequest.expires_at)
            .execution_options(synchronize_session=False)
        )
        row = self.session.execute(stmt).one_or_none()
        if row is None or row.expires_at <= (now or utc_now()):
            raise OAuthError(INVALID_REQUEST, "Authorization request is unknown or has expired")
        params = {key: value for key, value in dict(row.params).items() if key in AUTHORIZATION_PARAMETERS}
        return AuthorizationRequest.model_validate(params)

    def purge_expired_pending(self, *, now: datetime | None = None) -> int:
        result = self.session.execute(
            delete(OAuthPendingRequest)
            .where(OAuthPendingRequest.expires_at <= (now or utc_now()))
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)

    # ------------------------------------------------------------------
    # URLs
    # ------------------------------------------------------------------

    def is_first_party(self, client: OAuthClient) -> bool:
        return client.client_id == self.settings.first_party_client_id

    def resume_path(self, request_id: str) -> str:
        return f"/oauth/authorize?{urlencode({'request_id': request_id})}"

    def login_url(self, request_id: str) -> str:
        query = urlencode({"returnTo": self.resume_path(request_id)})
        return f"{self.settings.public_web_url}{self.settings.login_path}?{query}"

    def sso_url(self, request_id: str) -> str | None:
        if not self.settings.sso_configured:
            return None
        query = urlencode({"returnUrl": self.resume_path(request_id)})
        return f"{self.settings.public_web_url}/auth/sso/{self.settings.sso_provider_id}?{query}"

    def consent_url(self, request: AuthorizationRequest) -> str:
        query = urlencode(request.to_params())
        return f"{self.settings.public_web_url}{self.settings.consent_path}?{query}"

    def _hash(self, value: str) -> str:
        return hash_opaque_token(value, key=self.settings.secret_key_value)


__all__ = [
    "AuthorizationService",
    "CONSENT_DENIED_DESCRIPTION",
    "ValidatedAuthorization",
]
