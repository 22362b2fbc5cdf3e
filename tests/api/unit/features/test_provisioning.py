from __future__ import annotations

from collections.abc import Callable

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from orion_api.features.sso.claims import FederatedIdentity
from orion_api.features.tenants.provisioning import (
    ProvisioningError,
    ProvisioningErrorCode,
    ProvisioningService,
)
from orion_api.features.users.service import UsersService
from orion_api.settings import Settings
from orion_db.models import Tenant, TenantDomain, User, UserRole


def _identity(email: str, *, subject: str = "object-id", tenant_id: str | None = None) -> FederatedIdentity:
    return FederatedIdentity(
        provider="microsoft",
        subject=subject,
        email=email,
        display_name="Ada Lovelace",
        given_name="Ada",
        family_name="Lovelace",
        provider_tenant_id=tenant_id,
    )


def _tenant(
    session: Session,
    domain: str,
    *,
    allow_user_self_provisioning: bool = True,
    invite_only: bool = False,
    sso_tenant_id: str | None = None,
) -> Tenant:
    tenant = Tenant(
        name=domain.split(".", 1)[0].title(),
        allow_user_self_provisioning=allow_user_self_provisioning,
        invite_only=invite_only,
        sso_tenant_id=sso_tenant_id,
    )
    tenant.domains.append(TenantDomain(domain=domain, verified=True))
    session.add(tenant)
    session.flush()
    return tenant


def _count(session: Session, model: type) -> int:
    return session.execute(select(func.count()).select_from(model)).scalar_one()


@pytest.fixture()
def service(db_session: Session, settings: Settings) -> ProvisioningService:
    return ProvisioningService(session=db_session, settings=settings)


def test_returning_user_signs_in_unchanged(db_session: Session, service: ProvisioningService) -> None:
    existing = UsersService(session=db_session).create_user(
        email="ada@contoso.com",
        sso_provider="microsoft",
        sso_provider_id="object-id",
    )

    result = service.provision_or_link(_identity("ada@contoso.com"))

    assert result.user.id == existing.id
    assert not result.is_new_user
    assert not result.is_new_tenant


def test_existing_email_is_linked_to_the_provider_subject(
    db_session: Session, service: ProvisioningService
) -> None:
    existing = UsersService(session=db_session).create_user(email="Ada@Contoso.com")

    result = service.provision_or_link(_identity("ada@contoso.com"))

    assert result.user.id == existing.id
    assert result.user.sso_provider == "microsoft"
    assert result.user.sso_provider_id == "object-id"
    assert result.user.email_verified
    assert not result.is_new_user


def test_consumer_mailbox_gets_an_account_without_a_tenant(
    db_session: Session, service: ProvisioningService
) -> None:
    result = service.provision_or_link(_identity("ada@gmail.com"))

    assert result.is_new_user
    assert result.tenant is None
    assert result.user.tenant_id is None
    assert result.user.role == UserRole.USER.value
    assert _count(db_session, Tenant) == 0


def test_verified_domain_joins_the_existing_tenant(
    db_session: Session, service: ProvisioningService
) -> None:
    tenant = _tenant(db_session, "contoso.com")

    result = service.provision_or_link(_identity("ada@contoso.com"))

    assert result.is_new_user
    assert not result.is_new_tenant
    assert result.user.tenant_id == tenant.id
    assert result.user.role == UserRole.USER.value
    assert result.user.username == "ada"


def test_provider_tenant_id_takes_precedence_over_domain(
    db_session: Session, service: ProvisioningService
) -> None:
    by_directory = _tenant(db_session, "contoso.com", sso_tenant_id="directory-guid")
    _tenant(db_session, "fabrikam.com")

    result = service.provision_or_link(_identity("ada@fabrikam.com", tenant_id="directory-guid"))

    assert result.user.tenant_id == by_directory.id


@pytest.mark.parametrize(
    ("allow", "invite_only"),
    [(False, False), (True, True)],
)
def test_tenant_without_self_provisioning_refuses_and_creates_nothing(
    db_session: Session,
    service: ProvisioningService,
    allow: bool,
    invite_only: bool,
) -> None:
    _tenant(db_session, "contoso.com", allow_user_self_provisioning=allow, invite_only=invite_only)

    with pytest.raises(ProvisioningError) as excinfo:
        service.provision_or_link(_identity("ada@contoso.com"))

    assert excinfo.value.code is ProvisioningErrorCode.SELF_PROVISIONING_DISABLED
    assert "does not allow self-provisioning" in excinfo.value.message
    assert _count(db_session, User) == 0
    assert _count(db_session, Tenant) == 1


def test_unknown_organisation_founds_a_tenant_with_an_admin(
    db_session: Session, service: ProvisioningService
) -> None:
    result = service.provision_or_link(_identity("ada@contoso.com", tenant_id="directory-guid"))

    assert result.is_new_user
    assert result.is_new_tenant
    assert result.tenant is not None
    assert result.tenant.name == "Contoso"
    assert result.tenant.sso_tenant_id == "directory-guid"
    assert result.tenant.allow_user_self_provisioning
    assert [domain.domain for domain in result.tenant.domains] == ["contoso.com"]
    assert result.user.role == UserRole.TENANT_ADMIN.value
    assert result.user.tenant_id == result.tenant.id


def test_registration_disabled_refuses_new_organisations(
    db_session: Session, make_settings: Callable[..., Settings]
) -> None:
    settings = make_settings(tenant_self_registration_enabled=False)
    service = ProvisioningService(session=db_session, settings=settings)

    with pytest.raises(ProvisioningError) as excinfo:
        service.provision_or_link(_identity("ada@contoso.com"))

    assert excinfo.value.code is ProvisioningErrorCode.REGISTRATION_DISABLED
    assert _count(db_session, User) == 0
    assert _count(db_session, Tenant) == 0


def test_second_user_of_a_new_tenant_joins_as_a_member(
    db_session: Session, service: ProvisioningService
) -> None:
    first = service.provision_or_link(_identity("ada@contoso.com", subject="one"))
    second = service.provision_or_link(_identity("grace@contoso.com", subject="two"))

    assert second.is_new_user
    assert not second.is_new_tenant
    assert second.user.tenant_id == first.user.tenant_id
    assert second.user.role == UserRole.USER.value
