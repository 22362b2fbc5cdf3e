"""Just-in-time provisioning of federated users into tenants.

Resolution order for a federated identity:

1. an account already bound to the provider subject signs in unchanged;
2. an account with the same email is linked to the provider subject;
3. otherwise a new account is created. Consumer mailboxes get an account
   without a tenant. Organisational addresses join the tenant matched by
   the provider's tenant id or by a verified domain, subject to that
   tenant's self-provisioning policy, or found a new tenant when
   self-registration is enabled.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from orion_api.common.logging import log_context
from orion_api.features.sso.claims import FederatedIdentity
from orion_api.features.users.service import UsersService
from orion_api.settings import Settings
from orion_db.models import Tenant, User, UserRole

from .domains import extract_domain, is_public_domain
from .service import TenantDirectory

logger = logging.getLogger(__name__)


class ProvisioningErrorCode(str, enum.Enum):
    SELF_PROVISIONING_DISABLED = "SELF_PROVISIONING_DISABLED"
    REGISTRATION_DISABLED = "REGISTRATION_DISABLED"


_MESSAGES: dict[ProvisioningErrorCode, str] = {
    ProvisioningErrorCode.SELF_PROVISIONING_DISABLED: (
        "This organization does not allow self-provisioning. "
        "Please contact your administrator for an invitation."
    ),
    ProvisioningErrorCode.REGISTRATION_DISABLED: (
        "New organization registration is currently disabled. Please contact support."
    ),
}


class ProvisioningError(RuntimeError):
    """Provisioning refused; ``message`` is safe to show to the end user."""

    def __init__(self, code: ProvisioningErrorCode) -> None:
        self.code = code
        self.message = _MESSAGES[code]
        super().__init__(self.message)


@dataclass(slots=True)
class ProvisioningResult:
    user: User
    is_new_user: bool
    is_new_tenant: bool
    tenant: Tenant | None = None


@dataclass(slots=True)
class ProvisioningService:
    session: Session
    settings: Settings

    def provision_or_link(self, identity: FederatedIdentity) -> ProvisioningResult:
        users = UsersService(session=self.session)

        existing = users.find_by_provider_subject(identity.provider, identity.subject)
        if existing is not None:
            return ProvisioningResult(user=existing, is_new_user=False, is_new_tenant=False)

        by_email = users.find_by_email(identity.email)
        if by_email is not None:
            users.link_provider(
                by_email,
                provider=identity.provider,
                subject=identity.subject,
                display_name=identity.display_name,
            )
            logger.info(
                "sso.provisioning.linked",
                extra=log_context(user_id=by_email.id, provider=identity.provider),
            )
            return ProvisioningResult(user=by_email, is_new_user=False, is_new_tenant=False)

        domain = extract_domain(identity.email)
        if domain is None or is_public_domain(domain):
            user = self._create_user(users, identity, tenant=None, role=UserRole.USER)
            return ProvisioningResult(user=user, is_new_user=True, is_new_tenant=False)

        directory = TenantDirectory(session=self.session)
        tenant = directory.find_by_sso_tenant_id(identity.provider_tenant_id)
        if tenant is None:
            tenant = directory.find_by_verified_domain(domain)

        if tenant is not None:
            if not tenant.allow_user_self_provisioning or tenant.invite_only:
                logger.info(
                    "sso.provisioning.refused",
                    extra=log_context(
                        tenant_id=tenant.id,
                        reason=ProvisioningErrorCode.SELF_PROVISIONING_DISABLED.value,
                    ),
                )
                raise ProvisioningError(ProvisioningErrorCode.SELF_PROVISIONING_DISABLED)
            user = self._create_user(users, identity, tenant=tenant, role=UserRole.USER)
            return ProvisioningResult(user=user, is_new_user=True, is_new_tenant=False, tenant=tenant)

        if not self.settings.tenant_self_registration_enabled:
            logger.info(
                "sso.provisioning.refused",
                extra=log_context(
                    domain=domain,
                    reason=ProvisioningErrorCode.REGISTRATION_DISABLED.value,
                ),
            )
            raise ProvisioningError(ProvisioningErrorCode.REGISTRATION_DISABLED)

        tenant = directory.create_tenant_for_domain(
            domain,
            sso_tenant_id=identity.provider_tenant_id,
        )
        user = self._create_user(users, identity, tenant=tenant, role=UserRole.TENANT_ADMIN)
        return ProvisioningResult(user=user, is_new_user=True, is_new_tenant=True, tenant=tenant)

    def _create_user(
        self,
        users: UsersService,
        identity: FederatedIdentity,
        *,
        tenant: Tenant | None,
        role: UserRole,
    ) -> User:
        user = users.create_user(
            email=identity.email,
            display_name=identity.display_name,
            given_name=identity.given_name,
            family_name=identity.family_name,
            role=role,
            tenant_id=tenant.id if tenant is not None else None,
            email_verified=True,
            sso_provider=identity.provider,
            sso_provider_id=identity.subject,
        )
        logger.info(
            "sso.provisioning.user_created",
            extra=log_context(
                user_id=user.id,
                tenant_id=tenant.id if tenant is not None else None,
                role=role.value,
            ),
        )
        return user


__all__ = [
    "ProvisioningError",
    "ProvisioningErrorCode",
    "ProvisioningResult",
    "ProvisioningService",
]
