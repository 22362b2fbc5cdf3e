"""Tenant and verified-domain models."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, false
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from orion_db import GUID, Base, TimestampMixin, UTCDateTime, UUIDPrimaryKeyMixin, utc_now

if TYPE_CHECKING:
    from .user import User


def _normalise_domain(value: str) -> str:
    cleaned = value.strip().lower()
    if not cleaned:
        raise ValueError("Domain must not be blank")
    if any(token in cleaned for token in ("@", "/", ":", "\\")):
        raise ValueError("Domain must not include protocol or user info")
    try:
        return cleaned.encode("idna").decode("ascii")
    except UnicodeError as exc:
        raise ValueError("Domain must be valid ASCII/IDNA") from exc


class Tenant(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Organisation grouping users under shared branding and policy."""

    __tablename__ = "tenants"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    logo_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    primary_color: Mapped[str | None] = mapped_column(String(32), nullable=True)
    secondary_color: Mapped[str | None] = mapped_column(String(32), nullable=True)
    allow_user_self_provisioning: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )
    invite_only: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )
    sso_tenant_id: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    admin_consent_granted: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )
    admin_consent_granted_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True
    )
    admin_consent_granted_by: Mapped[UUID | None] = mapped_column(GUID(), nullable=True)

    domains: Mapped[list[TenantDomain]] = relationship(
        "TenantDomain",
        back_populates="tenant",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    users: Mapped[list[User]] = relationship("User", back_populates="tenant")


class TenantDomain(UUIDPrimaryKeyMixin, Base):
    """Email domain mapped to a tenant."""

    __tablename__ = "tenant_domains"

    tenant_id: Mapped[UUID] = mapped_column(
        GUID(),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
    )
    domain: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    verified: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utc_now)

    tenant: Mapped[Tenant] = relationship("Tenant", back_populates="domains")

    __table_args__ = (Index("ix_tenant_domains_tenant_id", "tenant_id"),)

    @validates("domain")
    def _store_normalised_domain(self, _key: str, value: str) -> str:
        return _normalise_domain(value)


__all__ = ["Tenant", "TenantDomain"]
