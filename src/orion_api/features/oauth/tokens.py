"""Token endpoint service: code exchange, refresh, introspection, userinfo, revocation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from fastapi import status
from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from orion_api.common.logging import log_context
from orion_api.core.security.pkce import verify_code_verifier
from orion_api.core.security.tokens import hash_opaque_token, mint_opaque_token
from orion_api.features.clients.service import ClientRegistry
from orion_api.features.keys.service import KeyManager
from orion_api.settings import Settings
from orion_db import utc_now
from orion_db.models import OAuthAuthorizationCode, OAuthClient, OAuthToken, User

from .errors import (
    INVALID_GRANT,
    INVALID_REQUEST,
    INVALID_SCOPE,
    UNAUTHORIZED_CLIENT,
    UNSUPPORTED_GRANT_TYPE,
    OAuthError,
    invalid_client,
    invalid_token,
)
from .schemas import IntrospectionResponse, TokenResponse, UserInfoResponse
from .scopes import OPENID_SCOPE, format_scope, normalize_scopes

logger = logging.getLogger(__name__)

AUTHORIZATION_CODE_GRANT = "authorization_code"
REFRESH_TOKEN_GRANT = "refresh_token"
BEARER = "Bearer"


def _seconds_until(moment: datetime, now: datetime) -> int:
    return max(int((moment - now).total_seconds()), 0)


@dataclass(slots=True)
class TokenService:
    """Mints and resolves opaque access/refresh tokens and signed ID tokens."""

    session: Session
    settings: Settings

    # ------------------------------------------------------------------
    # Grants
    # ------------------------------------------------------------------

    def exchange_code(
        self,
        *,
        grant_type: str | None,
        code: str | None,
        redirect_uri: str | None,
        client_id: str | None,
        client_secret: str | None = None,
        code_verifier: str | None = None,
    ) -> TokenResponse:
        """Redeem an authorization code exactly once."""

        if grant_type != AUTHORIZATION_CODE_GRANT:
            raise OAuthError(UNSUPPORTED_GRANT_TYPE, "Unsupported grant_type")
        if not code or not redirect_uri or not client_id:
            raise OAuthError(INVALID_REQUEST, "code, redirect_uri and client_id are required")

        client = self.authenticate_client(client_id, client_secret)
        if not ClientRegistry.allows_grant(client, AUTHORIZATION_CODE_GRANT):
            raise OAuthError(UNAUTHORIZED_CLIENT, "Client is not allowed to use this grant")

        now = utc_now()
        consumed = self._claim_once(
            delete(OAuthAuthorizationCode)
            .where(OAuthAuthorizationCode.code_hash == self._hash(code))
            .where(OAuthAuthorizationCode.client_pk == client.id)
            .where(OAuthAuthorizationCode.redirect_uri == redirect_uri)
            .returning(
                OAuthAuthorizationCode.user_id,
                OAuthAuthorizationCode.scope,
                OAuthAuthorizationCode.code_challenge,
                OAuthAuthorizationCode.code_challenge_method,
                OAuthAuthorizationCode.nonce,
                OAuthAuthorizationCode.auth_time,
                OAuthAuthorizationCode.expires_at,
            )
            .execution_options(synchronize_session=False)
        )

        if consumed is None or consumed.expires_at <= now:
            logger.info(
                "oauth.token.code_rejected",
                extra=log_context(client_id=client.client_id, reason="missing_or_expired"),
            )
            raise OAuthError(INVALID_GRANT, "Authorization code is invalid or expired")

        if consumed.code_challenge is not None:
            if not code_verifier or not verify_code_verifier(
                code_verifier,
                challenge=consumed.code_challenge,
                method=consumed.code_challenge_method or "plain",
            ):
                logger.info(
                    "oauth.token.code_rejected",
                    extra=log_context(client_id=client.client_id, reason="pkce_mismatch"),
                )
                raise OAuthError(INVALID_GRANT, "PKCE verification failed")

        user = self.session.get(User, consumed.user_id)
        if user is None or not user.is_active:
            raise OAuthError(INVALID_GRANT, "Authorization code is invalid or expired")

        return self._mint(
            client=client,
            user=user,
            scopes=normalize_scopes(consumed.scope),
            auth_time=consumed.auth_time,
            nonce=consumed.nonce,
            now=now,
        )

    def refresh(
        self,
        *,
        refresh_token: str | None,
        client_id: str | None,
        client_secret: str | None = None,
        scope: str | None = None,
    ) -> TokenResponse:
        """Rotate a refresh token; the presented token is revoked atomically."""

        if not refresh_token or not client_id:
            raise OAuthError(INVALID_REQUEST, "refresh_token and client_id are required")

        client = self.authenticate_client(client_id, client_secret)
        if not ClientRegistry.allows_grant(client, REFRESH_TOKEN_GRANT):
            raise OAuthError(UNAUTHORIZED_CLIENT, "Client is not allowed to use this grant")

        now = utc_now()
        claimed = self._claim_once(
            update(OAuthToken)
            .where(OAuthToken.refresh_token_hash == self._hash(refresh_token))
            .where(OAuthToken.client_pk == client.id)
            .where(OAuthToken.revoked_at.is_(None))
            .values(revoked_at=now)
            .returning(
                OAuthToken.user_id,
                OAuthToken.scopes,
                OAuthToken.refresh_expires_at,
                OAuthToken.auth_time,
            )
            .execution_options(synchronize_session=False)
        )

        if claimed is None or claimed.refresh_expires_at is None or claimed.refresh_expires_at <= now:
            raise OAuthError(INVALID_GRANT, "Refresh token is invalid or expired")

        granted = normalize_scopes(list(claimed.scopes))
        requested = normalize_scopes(scope) if scope else granted
        if not set(requested).issubset(granted):
            raise OAuthError(INVALID_SCOPE, "Requested scope exceeds the original grant")

        user = self.session.get(User, claimed.user_id)
        if user is None or not user.is_active:
            raise OAuthError(INVALID_GRANT, "Refresh token is invalid or expired")

        logger.info(
            "oauth.token.refreshed",
            extra=log_context(user_id=user.id, client_id=client.client_id),
        )
        return self._mint(
            client=client,
            user=user,
            scopes=requested,
            auth_time=claimed.auth_time,
            nonce=None,
            now=now,
        )

    def authenticate_client(self, client_id: str, client_secret: str | None) -> OAuthClient:
        """Resolve the client; confidential clients must present a valid secret."""

        registry = ClientRegistry(session=self.session, settings=self.settings)
        client = registry.find_client(client_id)
        if client is None:
            raise invalid_client("Unknown client")
        if client.is_confidential or client_secret:
            if not registry.verify_secret(client, client_secret):
                logger.info(
                    "oauth.client.auth_failed",
                    extra=log_context(client_id=client.client_id),
                )
                raise invalid_client()
        return client

    # ------------------------------------------------------------------
    # Resource-server lookups
    # ------------------------------------------------------------------

    def introspect(self, token: str | None) -> IntrospectionResponse:
        """Describe ``token``; every unusable token reads as ``active: false``."""

        if not token:
            return IntrospectionResponse(active=False)

        now = utc_now()
        digest = self._hash(token)
        row = self.session.execute(
            select(OAuthToken)
            .where(
                or_(
                    OAuthToken.access_token_hash == digest,
                    OAuthToken.refresh_token_hash == digest,
                )
            )
            .limit(1)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if row is None or row.revoked_at is not None:
            return IntrospectionResponse(active=False)

        is_access = row.access_token_hash == digest
        expires_at = row.expires_at if is_access else row.refresh_expires_at
        if expires_at is None or expires_at <= now:
            return IntrospectionResponse(active=False)

        return IntrospectionResponse(
            active=True,
            scope=format_scope(row.scopes),
            exp=int(expires_at.timestamp()),
            iat=int(row.created_at.timestamp()),
            sub=str(row.user_id),
            client_id=row.client.client_id,
            token_type=BEARER if is_access else REFRESH_TOKEN_GRANT,
        )

    def resolve_access_token(self, token: str) -> tuple[OAuthToken, User]:
        now = utc_now()
        row = self.session.execute(
            select(OAuthToken)
            .where(OAuthToken.access_token_hash == self._hash(token))
            .limit(1)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if row is None or row.revoked_at is not None or row.expires_at <= now:
            raise invalid_token()
        user = self.session.get(User, row.user_id)
        if user is None or not user.is_active:
            raise invalid_token()
        return row, user

    def userinfo(self, bearer: str | None) -> UserInfoResponse:
        """Claims about the token's user, limited to what its scopes allow."""

        if not bearer:
            raise OAuthError(
                INVALID_REQUEST,
                "Missing bearer token",
                status_code=status.HTTP_401_UNAUTHORIZED,
                headers={"WWW-Authenticate": BEARER},
            )
        row, user = self.resolve_access_token(bearer)
        scopes = set(row.scopes)
        claims = UserInfoResponse(sub=str(user.id))
        if "profile" in scopes:
            claims.name = user.display_name or user.username
            claims.preferred_username = user.username
        if "email" in scopes:
            claims.email = user.email
            claims.email_verified = bool(user.email_verified)
        return claims

    def revoke(self, token: str | None) -> None:
        """Revoke the access/refresh pair containing ``token``; unknown tokens are ignored."""

        if not token:
            return
        digest = self._hash(token)
        result = self.session.execute(
            update(OAuthToken)
            .where(
                or_(
                    OAuthToken.access_token_hash == digest,
                    OAuthToken.refresh_token_hash == digest,
                )
            )
            .where(OAuthToken.revoked_at.is_(None))
            .values(revoked_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info("oauth.token.revoked")

    def revoke_all_for_user(self, user_id: UUID, *, client_pk: UUID | None = None) -> int:
        stmt = (
            update(OAuthToken)
            .where(OAuthToken.user_id == user_id)
            .where(OAuthToken.revoked_at.is_(None))
            .values(revoked_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        if client_pk is not None:
            stmt = stmt.where(OAuthToken.client_pk == client_pk)
        return int(self.session.execute(stmt).rowcount or 0)

    # ------------------------------------------------------------------
    # Minting
    # ------------------------------------------------------------------

    def _claim_once(self, statement):
        """Run a consuming DELETE or UPDATE ... RETURNING and return its row.

        A writer that loses the race for the same row sees no row, even when
        the database reports the conflict as a lock error.
        """

        try:
            return self.session.execute(statement).one_or_none()
        except OperationalError:
            self.session.rollback()
            logger.warning("oauth.token.claim_conflict", exc_info=True)
            return None

    def _mint(
        self,
        *,
        client: OAuthClient,
        user: User,
        scopes: list[str],
        auth_time: datetime | None,
        nonce: str | None,
        now: datetime,
    ) -> TokenResponse:
        lifetimes = self.settings.token_lifetimes
        access_token = mint_opaque_token()
        refresh_token = (
            mint_opaque_token() if ClientRegistry.allows_grant(client, REFRESH_TOKEN_GRANT) else None
        )
        expires_at = now + lifetimes.access_token
        self.session.add(
            OAuthToken(
                access_token_hash=self._hash(access_token),
                refresh_token_hash=self._hash(refresh_token) if refresh_token else None,
                user_id=user.id,
                client_pk=client.id,
                scopes=list(scopes),
                token_type=BEARER,
                expires_at=expires_at,
                refresh_expires_at=now + lifetimes.refresh_token if refresh_token else None,
                auth_time=auth_time,
                created_at=now,
            )
        )
        self.session.flush()

        id_token = None
        if OPENID_SCOPE in scopes:
            id_token = self._id_token(
                client=client,
                user=user,
                auth_time=auth_time or now,
                nonce=nonce,
                now=now,
            )

        logger.info(
            "oauth.token.issued",
            extra=log_context(
                user_id=user.id,
                client_id=client.client_id,
                scope=format_scope(scopes),
                id_token=id_token is not None,
            ),
        )
        return TokenResponse(
            access_token=access_token,
            token_type=BEARER,
            expires_in=_seconds_until(expires_at, now),
            refresh_token=refresh_token,
            scope=format_scope(scopes),
            id_token=id_token,
        )

    def _id_token(
        self,
        *,
        client: OAuthClient,
        user: User,
        auth_time: datetime,
        nonce: str | None,
        now: datetime,
    ) -> str:
        claims: dict[str, object] = {
            "sub": str(user.id),
            "aud": client.client_id,
            "auth_time": int(auth_time.timestamp()),
            "name": user.display_name or user.username,
            "email": user.email,
            "email_verified": bool(user.email_verified),
        }
        if nonce:
            claims["nonce"] = nonce
        keys = KeyManager(session=self.session, settings=self.settings)
        return keys.sign_token(claims, ttl=self.settings.token_lifetimes.id_token, now=now)

    def _hash(self, value: str) -> str:
        return hash_opaque_token(value, key=self.settings.secret_key_value)


__all__ = [
    "AUTHORIZATION_CODE_GRANT",
    "BEARER",
    "REFRESH_TOKEN_GRANT",
    "TokenService",
]
