"""Role normalisation and named capability predicates.

A user's stored role string is resolved once into a ``Capabilities`` value;
call sites ask it questions (``caps.can_manage_clients``) instead of comparing
role strings themselves.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from orion_db.models import LEGACY_ROLE_ALIASES, User, UserRole

TENANT_SCOPED_ROLES: frozenset[UserRole] = frozenset(
    {UserRole.TENANT_ADMIN, UserRole.TENANT_MODELER}
)
# Roles a tenant administrator may hand out inside their own tenant.
_TENANT_ADMIN_ASSIGNABLE: frozenset[UserRole] = frozenset(
    {UserRole.USER, UserRole.TENANT_MODELER}
)


def normalize_role(value: str | UserRole | None) -> UserRole:
    """Map stored role strings (including legacy aliases) onto ``UserRole``.

    Unknown or empty values fall back to the least privileged role.
    """

    if isinstance(value, UserRole):
        return value
    raw = (value or "").strip().lower()
    if raw in LEGACY_ROLE_ALIASES:
        return LEGACY_ROLE_ALIASES[raw]
    try:
        return UserRole(raw)
    except ValueError:
        return UserRole.USER


def role_requires_tenant(role: str | UserRole) -> bool:
    return normalize_role(role) in TENANT_SCOPED_ROLES


@dataclass(frozen=True, slots=True)
class Capabilities:
    """What a principal may do, derived from ``role`` and ``tenant_id``."""

    role: UserRole
    tenant_id: UUID | None

    @classmethod
    def for_user(cls, user: User) -> Capabilities:
        return cls(role=normalize_role(user.role), tenant_id=user.tenant_id)

    @property
    def is_global_admin(self) -> bool:
        return self.role is UserRole.GLOBAL_ADMIN

    @property
    def is_tenant_admin(self) -> bool:
        return self.role is UserRole.TENANT_ADMIN

    @property
    def has_admin_access(self) -> bool:
        return self.role in (UserRole.GLOBAL_ADMIN, UserRole.TENANT_ADMIN)

    @property
    def can_manage_clients(self) -> bool:
        return self.is_global_admin

    @property
    def can_manage_tenants(self) -> bool:
        return self.is_global_admin

    def _in_own_tenant(self, target_tenant_id: UUID | None) -> bool:
        return (
            self.tenant_id is not None
            and target_tenant_id is not None
            and self.tenant_id == target_tenant_id
        )

    def can_access_tenant(self, target_tenant_id: UUID | None) -> bool:
        if self.is_global_admin:
            return True
        if self.role in TENANT_SCOPED_ROLES:
            return self._in_own_tenant(target_tenant_id)
        return False

    def can_manage_users(self, target_tenant_id: UUID | None) -> bool:
        if self.is_global_admin:
            return True
        return self.is_tenant_admin and self._in_own_tenant(target_tenant_id)

    def can_manage_models(self, model_tenant_id: UUID | None) -> bool:
        if self.is_global_admin:
            return True
        return self.role in TENANT_SCOPED_ROLES and self._in_own_tenant(model_tenant_id)

    def can_assign_role(self, target_role: str | UserRole) -> bool:
        if self.is_global_admin:
            return True
        if self.is_tenant_admin:
            return normalize_role(target_role) in _TENANT_ADMIN_ASSIGNABLE
        return False

    def can_manage_tenant_settings(self, target_tenant_id: UUID | None) -> bool:
        if self.is_global_admin:
            return True
        return self.is_tenant_admin and self._in_own_tenant(target_tenant_id)

    def summary(self) -> list[str]:
        """Names of the unscoped capabilities granted, for ``/api/me``."""

        granted: list[str] = []
        if self.has_admin_access:
            granted.append("admin_access")
        if self.can_manage_clients:
            granted.append("manage_clients")
        if self.can_manage_tenants:
            granted.append("manage_tenants")
        if self.can_manage_users(self.tenant_id):
            granted.append("manage_users")
        if self.can_manage_models(self.tenant_id):
            granted.append("manage_models")
        if self.can_manage_tenant_settings(self.tenant_id):
            granted.append("manage_tenant_settings")
        return granted


__all__ = [
    "Capabilities",
    "TENANT_SCOPED_ROLES",
    "normalize_role",
    "role_requires_tenant",
]
