"""Tenant lookups for federation and provisioning, plus tenant administration."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orion_api.common.logging import log_context
from orion_api.common.problem_details import ApiError
from orion_db.models import Tenant, TenantDomain, User

from .domains import is_public_domain, tenant_name_from_domain

logger = logging.getLogger(__name__)

_SETTINGS_FIELDS = (
    "logo_url",
    "primary_color",
    "secondary_color",
    "allow_user_self_provisioning",
    "invite_only",
    "sso_tenant_id",
)


def _new_domain(value: str, *, verified: bool) -> TenantDomain:
    try:
        domain = TenantDomain(domain=value, verified=verified)
    except ValueError as exc:
        raise ApiError.bad_request(f"Invalid domain '{value}': {exc}") from exc
    if is_public_domain(domain.domain):
        raise ApiError.bad_request(f"Public email domain '{domain.domain}' cannot belong to a tenant")
    return domain


@dataclass(slots=True)
class TenantDirectory:
    session: Session

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get(self, tenant_id: UUID) -> Tenant | None:
        return self.session.get(Tenant, tenant_id)

    def list_tenants(self) -> list[Tenant]:
        stmt = select(Tenant).order_by(Tenant.name, Tenant.id)
        return list(self.session.execute(stmt).scalars().all())

    def find_by_sso_tenant_id(self, sso_tenant_id: str | None) -> Tenant | None:
        if not sso_tenant_id:
            return None
        stmt = select(Tenant).where(Tenant.sso_tenant_id == sso_tenant_id).limit(1)
        return self.session.execute(stmt).scalar_one_or_none()

    def find_by_verified_domain(self, domain: str) -> Tenant | None:
        stmt = (
            select(Tenant)
            .join(TenantDomain, TenantDomain.tenant_id == Tenant.id)
            .where(TenantDomain.domain == domain.strip().lower())
            .where(TenantDomain.verified.is_(True))
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------

    def create_tenant_for_domain(self, domain: str, *, sso_tenant_id: str | None = None) -> Tenant:
        """Create a self-provisioning tenant owning ``domain`` as a verified domain."""

        tenant = Tenant(
            name=tenant_name_from_domain(domain),
            allow_user_self_provisioning=True,
            sso_tenant_id=sso_tenant_id,
        )
        tenant.domains.append(TenantDomain(domain=domain, verified=True))
        self.session.add(tenant)
        self.session.flush()
        logger.info(
            "tenant.created",
            extra=log_context(tenant_id=tenant.id, domain=domain),
        )
        return tenant

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def create_tenant(
        self,
        *,
        name: str,
        domains: Iterable[str] = (),
        allow_user_self_provisioning: bool = False,
        invite_only: bool = False,
        sso_tenant_id: str | None = None,
        logo_url: str | None = None,
        primary_color: str | None = None,
        secondary_color: str | None = None,
    ) -> Tenant:
        """Create a tenant; ``domains`` are registered as verified."""

        resolved_name = name.strip()
        if not resolved_name:
            raise ApiError.bad_request("Tenant name must not be blank")
        tenant = Tenant(
            name=resolved_name,
            allow_user_self_provisioning=allow_user_self_provisioning,
            invite_only=invite_only,
            sso_tenant_id=sso_tenant_id or None,
            logo_url=logo_url,
            primary_color=primary_color,
            secondary_color=secondary_color,
        )
        for value in domains:
            tenant.domains.append(_new_domain(value, verified=True))
        self.session.add(tenant)
        self._flush_or_conflict("A tenant with this domain or directory already exists")
        logger.info(
            "tenant.created",
            extra=log_context(
                tenant_id=tenant.id,
                domains=[domain.domain for domain in tenant.domains],
            ),
        )
        return tenant

    def update_tenant(self, tenant: Tenant, changes: dict[str, Any]) -> Tenant:
        if changes.get("name") is not None:
            name = str(changes["name"]).strip()
            if not name:
                raise ApiError.bad_request("Tenant name must not be blank")
            tenant.name = name
        for field in _SETTINGS_FIELDS:
            if field in changes:
                setattr(tenant, field, changes[field])
        self._flush_or_conflict("Another tenant is already linked to this directory")
        logger.info(
            "tenant.updated",
            extra=log_context(tenant_id=tenant.id, fields=sorted(changes)),
        )
        return tenant

    def delete_tenant(self, tenant: Tenant) -> None:
        """Delete ``tenant`` and its domains; tenants that still have users are kept."""

        members = self.session.execute(
            select(func.count()).select_from(User).where(User.tenant_id == tenant.id)
        ).scalar_one()
        if members:
            raise ApiError.conflict(f"Tenant still has {members} user(s)")
        tenant_id = tenant.id
        self.session.delete(tenant)
        self.session.flush()
        logger.info("tenant.deleted", extra=log_context(tenant_id=tenant_id))

    def add_domain(self, tenant: Tenant, domain: str, *, verified: bool = True) -> TenantDomain:
        record = _new_domain(domain, verified=verified)
        tenant.domains.append(record)
        self._flush_or_conflict(f"Domain '{record.domain}' already belongs to a tenant")
        logger.info(
            "tenant.domain.added",
            extra=log_context(tenant_id=tenant.id, domain=record.domain, verified=verified),
        )
        return record

    def remove_domain(self, tenant: Tenant, domain_id: UUID) -> TenantDomain:
        record = next((domain for domain in tenant.domains if domain.id == domain_id), None)
        if record is None:
            raise ApiError.not_found("Domain not found")
        tenant.domains.remove(record)
        self.session.flush()
        logger.info(
            "tenant.domain.removed",
            extra=log_context(tenant_id=tenant.id, domain=record.domain),
        )
        return record

    def _flush_or_conflict(self, detail: str) -> None:
        try:
            with self.session.begin_nested():
                self.session.flush()
        except IntegrityError as exc:
            raise ApiError.conflict(detail) from exc


__all__ = ["TenantDirectory"]
