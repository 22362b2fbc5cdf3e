"""User accounts, local or federated."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
    false,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from orion_db import GUID, Base, TimestampMixin, UTCDateTime, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from .authn import AuthSession
    from .tenant import Tenant


class UserRole(str, enum.Enum):
    """Platform roles. Legacy values are accepted on read and normalised in code."""

    USER = "user"
    TENANT_MODELER = "tenant_modeler"
    TENANT_ADMIN = "tenant_admin"
    GLOBAL_ADMIN = "global_admin"


LEGACY_ROLE_ALIASES: dict[str, UserRole] = {
    "admin": UserRole.GLOBAL_ADMIN,
    "modeler": UserRole.TENANT_MODELER,
}

TENANT_SCOPED_ROLE_VALUES = ("tenant_admin", "tenant_modeler", "modeler")


def _normalise_email(value: str) -> str:
    cleaned = value.strip()
    if not cleaned:
        msg = "Email must not be empty"
        raise ValueError(msg)
    return cleaned


def _clean_display_name(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    if not cleaned:
        return None
    if len(cleaned) > 255:
        return cleaned[:255]
    return cleaned


class User(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Single identity model for humans."""

    __tablename__ = "users"

    username: Mapped[str] = mapped_column(String(150), nullable=False, unique=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    email_normalized: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    hashed_password: Mapped[str | None] = mapped_column(String(255), nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    given_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    family_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=UserRole.USER.value,
        server_default=UserRole.USER.value,
    )
    tenant_id: Mapped[UUID | None] = mapped_column(
        GUID(),
        ForeignKey("tenants.id", ondelete="SET NULL"),
        nullable=True,
    )
    email_verified: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )
    sso_provider: Mapped[str | None] = mapped_column(String(64), nullable=True)
    sso_provider_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=true(),
    )
    last_login_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    tenant: Mapped[Tenant | None] = relationship("Tenant", back_populates="users")
    auth_sessions: Mapped[list[AuthSession]] = relationship(
        "AuthSession",
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("sso_provider", "sso_provider_id", name="uq_users_sso_subject"),
        CheckConstraint(
            f"role NOT IN {TENANT_SCOPED_ROLE_VALUES} OR tenant_id IS NOT NULL",
            name="tenant_role_requires_tenant",
        ),
        Index("ix_users_tenant_id", "tenant_id"),
    )

    @validates("email")
    def _store_normalised_email(self, _key: str, value: str) -> str:
        cleaned = _normalise_email(value)
        self.email_normalized = cleaned.lower()
        return cleaned

    @validates("display_name")
    def _trim_display_name(self, _key: str, value: str | None) -> str | None:
        return _clean_display_name(value)

    @property
    def label(self) -> str:
        return self.display_name or self.username or self.email


__all__ = [
    "LEGACY_ROLE_ALIASES",
    "TENANT_SCOPED_ROLE_VALUES",
    "User",
    "UserRole",
]
