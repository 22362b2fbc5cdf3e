"""Local user records consumed by authentication, OAuth and federation."""

from __future__ import annotations

import re
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from orion_api.common.problem_details import ApiError
from orion_api.core.rbac.capabilities import normalize_role, role_requires_tenant
from orion_api.core.security.hashing import hash_password
from orion_db.models import User, UserRole

_USERNAME_STRIP = re.compile(r"[^a-zA-Z0-9]")


def _canonical_email(value: str) -> str:
    return value.strip().lower()


def username_base_from_email(email: str) -> str:
    """Alphanumeric, lower-cased local part of ``email`` (``"user"`` when empty)."""

    local = email.split("@", 1)[0]
    return _USERNAME_STRIP.sub("", local).lower() or "user"


@dataclass(slots=True)
class UsersService:
    """Persistence helpers for the single ``User`` model."""

    session: Session

    def get(self, user_id: UUID) -> User | None:
        return self.session.get(User, user_id)

    def find_by_email(self, email: str) -> User | None:
        normalized = _canonical_email(email)
        if not normalized:
            return None
        stmt = select(User).where(User.email_normalized == normalized).limit(1)
        return self.session.execute(stmt).scalar_one_or_none()

    def find_by_username(self, username: str) -> User | None:
        stmt = select(User).where(User.username == username.strip()).limit(1)
        return self.session.execute(stmt).scalar_one_or_none()

    def find_by_provider_subject(self, provider: str, subject: str) -> User | None:
        stmt = (
            select(User)
            .where(User.sso_provider == provider)
            .where(User.sso_provider_id == subject)
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def unique_username(self, email: str) -> str:
        """Derive a free username from the email local part, suffixing 1, 2, ..."""

        base = username_base_from_email(email)
        candidate = base
        counter = 1
        while self.find_by_username(candidate) is not None:
            candidate = f"{base}{counter}"
            counter += 1
        return candidate

    def create_user(
        self,
        *,
        email: str,
        username: str | None = None,
        password: str | None = None,
        display_name: str | None = None,
        given_name: str | None = None,
        family_name: str | None = None,
        role: str | UserRole = UserRole.USER,
        tenant_id: UUID | None = None,
        email_verified: bool = False,
        sso_provider: str | None = None,
        sso_provider_id: str | None = None,
    ) -> User:
        resolved_role = normalize_role(role)
        if role_requires_tenant(resolved_role) and tenant_id is None:
            raise ApiError.bad_request(
                f"Users with role '{resolved_role.value}' must be assigned to a tenant"
            )
        if self.find_by_email(email) is not None:
            raise ApiError.conflict("A user with this email already exists")

        user = User(
            username=username or self.unique_username(email),
            email=email,
            hashed_password=hash_password(password) if password else None,
            display_name=display_name,
            given_name=given_name,
            family_name=family_name,
            role=resolved_role.value,
            tenant_id=tenant_id,
            email_verified=email_verified,
            sso_provider=sso_provider,
            sso_provider_id=sso_provider_id,
        )
        self.session.add(user)
        self.session.flush()
        return user

    def link_provider(
        self,
        user: User,
        *,
        provider: str,
        subject: str,
        display_name: str | None = None,
    ) -> User:
        """Bind ``provider``/``subject`` to an existing account and trust its email."""

        user.sso_provider = provider
        user.sso_provider_id = subject
        user.email_verified = True
        if not user.display_name and display_name:
            user.display_name = display_name
        self.session.flush()
        return user


__all__ = ["UsersService", "username_base_from_email"]
