"""Local login and hashed browser sessions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from orion_api.common.logging import log_context
from orion_api.core.security.hashing import verify_password
from orion_api.core.security.tokens import hash_opaque_token, mint_opaque_token
from orion_api.settings import Settings
from orion_db import utc_now
from orion_db.models import AUTH_SESSION_AUTH_METHOD_VALUES, AuthSession, User

logger = logging.getLogger(__name__)


class LoginError(RuntimeError):
    """Raised when login credentials are invalid."""


@dataclass(slots=True)
class ResolvedSession:
    auth_session: AuthSession
    user: User


@dataclass(slots=True)
class AuthnService:
    """Credential verification and session lifecycle."""

    session: Session
    settings: Settings

    def authenticate(self, *, login: str, password: str) -> User:
        """Return the active user identified by username or email and ``password``."""

        candidate = login.strip()
        if not candidate or not password:
            raise LoginError("Invalid username or password.")
        stmt = (
            select(User)
            .where(or_(User.username == candidate, User.email_normalized == candidate.lower()))
            .limit(1)
        )
        user = self.session.execute(stmt).scalar_one_or_none()
        if user is None or not user.is_active:
            raise LoginError("Invalid username or password.")
        if not verify_password(password, user.hashed_password):
            logger.info("auth.login.failed", extra=log_context(user_id=user.id))
            raise LoginError("Invalid username or password.")
        return user

    def create_session(self, *, user: User, auth_method: str = "password") -> str:
        if auth_method not in AUTH_SESSION_AUTH_METHOD_VALUES:
            raise ValueError(f"Unsupported auth method: {auth_method}")
        token = mint_opaque_token()
        now = utc_now()
        self.session.add(
            AuthSession(
                user_id=user.id,
                token_hash=self._hash(token),
                auth_method=auth_method,
                created_at=now,
                expires_at=now + self.settings.session_ttl,
            )
        )
        user.last_login_at = now
        self.session.flush()
        logger.info(
            "auth.session.created",
            extra=log_context(user_id=user.id, auth_method=auth_method),
        )
        return token

    def resolve_session(self, token: str | None, *, now: datetime | None = None) -> ResolvedSession | None:
        """Return the live session for ``token``; revoked, expired or orphaned ones are ``None``."""

        candidate = (token or "").strip()
        if not candidate:
            return None
        stmt = (
            select(AuthSession)
            .where(AuthSession.token_hash == self._hash(candidate))
            .where(AuthSession.revoked_at.is_(None))
            .limit(1)
        )
        auth_session = self.session.execute(stmt).scalar_one_or_none()
        if auth_session is None:
            return None
        if auth_session.expires_at <= (now or utc_now()):
            return None
        user = self.session.get(User, auth_session.user_id)
        if user is None or not user.is_active:
            return None
        return ResolvedSession(auth_session=auth_session, user=user)

    def revoke_session(self, token: str | None) -> None:
        candidate = (token or "").strip()
        if not candidate:
            return
        self.session.execute(
            update(AuthSession)
            .where(AuthSession.token_hash == self._hash(candidate))
            .where(AuthSession.revoked_at.is_(None))
            .values(revoked_at=utc_now())
            .execution_options(synchronize_session=False)
        )

    def _hash(self, token: str) -> str:
        return hash_opaque_token(token, key=self.settings.secret_key_value)


__all__ = ["AuthnService", "LoginError", "ResolvedSession"]
