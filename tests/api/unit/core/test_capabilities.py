from __future__ import annotations

from uuid import uuid4

import pytest

from orion_api.core.auth import PermissionDeniedError
from orion_api.core.http.dependencies import require_capability
from orion_api.core.rbac.capabilities import Capabilities, normalize_role
from orion_db.models import User, UserRole


def _user(role: str, tenant_id=None) -> User:
    return User(
        username="ada",
        email="ada@example.com",
        role=role,
        tenant_id=tenant_id,
    )


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("admin", UserRole.GLOBAL_ADMIN),
        ("modeler", UserRole.TENANT_MODELER),
        ("TENANT_ADMIN", UserRole.TENANT_ADMIN),
        ("", UserRole.USER),
        (None, UserRole.USER),
        ("superuser", UserRole.USER),
    ],
)
def test_normalize_role_handles_legacy_and_unknown_values(raw, expected) -> None:
    assert normalize_role(raw) is expected


def test_global_admin_manages_clients_and_any_tenant() -> None:
    caps = Capabilities.for_user(_user("admin"))

    assert caps.can_manage_clients
    assert caps.can_manage_tenant_settings(uuid4())
    assert "manage_clients" in caps.summary()


def test_tenant_admin_is_limited_to_their_own_tenant() -> None:
    tenant_id = uuid4()
    caps = Capabilities.for_user(_user("tenant_admin", tenant_id))

    assert not caps.can_manage_clients
    assert caps.can_manage_tenant_settings(tenant_id)
    assert not caps.can_manage_tenant_settings(uuid4())


def test_plain_user_has_no_administrative_capabilities() -> None:
    tenant_id = uuid4()
    caps = Capabilities.for_user(_user("user", tenant_id))

    assert not caps.can_manage_clients
    assert not caps.can_manage_tenant_settings(tenant_id)
    assert caps.summary() == []


def test_require_capability_denies_a_plain_user() -> None:
    dependency = require_capability("can_manage_clients")

    with pytest.raises(PermissionDeniedError):
        dependency(_user("user"))
    assert dependency(_user("global_admin")).role == "global_admin"


@pytest.mark.parametrize("name", ["can_manage_users", "can_manage_tenant_settings", "unknown"])
def test_require_capability_refuses_tenant_scoped_predicates(name: str) -> None:
    with pytest.raises(ValueError):
        require_capability(name)
