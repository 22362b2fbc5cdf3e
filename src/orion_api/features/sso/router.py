"""Federated sign-in routes and tenant admin-consent endpoints."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Annotated
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Depends, Path, Query, Request, Response, status
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from orion_api.common.logging import log_context
from orion_api.common.problem_details import ApiError
from orion_api.common.rate_limit import InMemoryRateLimiter, RateLimit
from orion_api.common.urls import sanitize_return_to
from orion_api.core.auth import PermissionDeniedError
from orion_api.core.http.dependencies import get_optional_user, require_authenticated
from orion_api.core.http.session_cookie import set_session_cookie
from orion_api.core.rbac.capabilities import Capabilities
from orion_api.db import get_db_read, get_db_write
from orion_api.features.authn.service import AuthnService
from orion_api.features.tenants.provisioning import ProvisioningError, ProvisioningService
from orion_api.features.tenants.service import TenantDirectory
from orion_api.settings import Settings, get_settings
from orion_db.models import Tenant, User

from .claims import IdentityClaimsError
from .oidc import FederationError
from .schemas import AdminConsentStatusResponse, AdminConsentUrlResponse, SsoStatusResponse
from .service import AuthStateError, FederationService, SsoNotConfiguredError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sso"])

_AUTHORIZE_LIMITER = InMemoryRateLimiter(limit=RateLimit(max_requests=30, window_seconds=60))
_CALLBACK_LIMITER = InMemoryRateLimiter(limit=RateLimit(max_requests=30, window_seconds=60))

GENERIC_FAILURE = "SSO authentication failed"
INVALID_RESPONSE = "Invalid SSO response"
RATE_LIMITED = "Too many sign-in attempts. Please try again shortly."

SettingsDep = Annotated[Settings, Depends(get_settings)]
WriteSessionDep = Annotated[Session, Depends(get_db_write)]
ReadSessionDep = Annotated[Session, Depends(get_db_read)]


def get_idp_http_client() -> Iterator[httpx.Client]:
    with httpx.Client() as client:
        yield client


IdpClientDep = Annotated[httpx.Client, Depends(get_idp_http_client)]


def _rate_limit_key(request: Request, suffix: str) -> str:
    host = request.client.host if request.client else "unknown"
    return f"{host}:sso:{suffix}"


def _login_redirect(settings: Settings, message: str) -> RedirectResponse:
    query = urlencode({"error": message})
    return RedirectResponse(
        f"{settings.public_web_url}{settings.login_path}?{query}",
        status_code=status.HTTP_302_FOUND,
    )


def _require_user_tenant(db: Session, user: User) -> Tenant:
    if user.tenant_id is None:
        raise ApiError.bad_request("User is not associated with a tenant")
    tenant = TenantDirectory(session=db).get(user.tenant_id)
    if tenant is None:
        raise ApiError.not_found("Tenant not found")
    return tenant


@router.get(
    "/auth/sso/callback",
    summary="Complete federated sign-in",
    response_class=RedirectResponse,
    status_code=status.HTTP_302_FOUND,
)
def sso_callback(
    request: Request,
    settings: SettingsDep,
    db: WriteSessionDep,
    client: IdpClientDep,
    code: Annotated[str | None, Query()] = None,
    state: Annotated[str | None, Query()] = None,
    error: Annotated[str | None, Query()] = None,
    error_description: Annotated[str | None, Query()] = None,
) -> Response:
    if not _CALLBACK_LIMITER.allow(_rate_limit_key(request, "callback")):
        return _login_redirect(settings, RATE_LIMITED)

    if error:
        logger.info("sso.callback.provider_error", extra=log_context(error=error))
        return _login_redirect(settings, GENERIC_FAILURE)
    if not code or not state:
        return _login_redirect(settings, INVALID_RESPONSE)

    service = FederationService(session=db, settings=settings)
    try:
        consumed = service.consume_state(state)
    except AuthStateError as exc:
        db.commit()
        return _login_redirect(settings, str(exc))
    # The state is spent whatever happens next.
    db.commit()

    try:
        result = service.redeem_code(
            code=code,
            consumed=consumed,
            redirect_uri=service.callback_url(),
            client=client,
        )
    except (FederationError, IdentityClaimsError, SsoNotConfiguredError):
        logger.warning("sso.callback.federation_failed", exc_info=True)
        return _login_redirect(settings, GENERIC_FAILURE)
    except Exception:
        db.rollback()
        logger.exception("sso.callback.internal_error")
        return _login_redirect(settings, GENERIC_FAILURE)

    try:
        provisioned = ProvisioningService(session=db, settings=settings).provision_or_link(
            result.identity
        )
        session_token = AuthnService(session=db, settings=settings).create_session(
            user=provisioned.user,
            auth_method="sso",
        )
        db.commit()
    except ProvisioningError as exc:
        db.rollback()
        return _login_redirect(settings, exc.message)
    except Exception:
        db.rollback()
        logger.exception("sso.callback.internal_error")
        return _login_redirect(settings, GENERIC_FAILURE)

    logger.info(
        "sso.callback.success",
        extra=log_context(
            user_id=provisioned.user.id,
            tenant_id=provisioned.tenant.id if provisioned.tenant is not None else None,
            new_user=provisioned.is_new_user,
            new_tenant=provisioned.is_new_tenant,
        ),
    )
    target = sanitize_return_to(result.return_to) or "/"
    response = RedirectResponse(f"{settings.public_web_url}{target}", status_code=status.HTTP_302_FOUND)
    set_session_cookie(response, settings, session_token)
    return response


@router.get(
    "/auth/sso/{provider}",
    summary="Start federated sign-in",
    response_class=RedirectResponse,
    status_code=status.HTTP_302_FOUND,
)
def sso_start(
    request: Request,
    provider: Annotated[str, Path(description="Identity provider identifier.")],
    settings: SettingsDep,
    db: WriteSessionDep,
    client: IdpClientDep,
    return_url: Annotated[str | None, Query(alias="returnUrl")] = None,
) -> Response:
    if provider != settings.sso_provider_id:
        raise ApiError.not_found("Unknown identity provider")
    if not settings.sso_configured:
        raise ApiError(
            error_type="service_unavailable",
            detail=f"{settings.sso_provider_label} SSO is not configured",
        )
    if not _AUTHORIZE_LIMITER.allow(_rate_limit_key(request, "authorize")):
        return _login_redirect(settings, RATE_LIMITED)

    service = FederationService(session=db, settings=settings)
    try:
        url = service.begin_federation(
            redirect_uri=service.callback_url(),
            return_to=sanitize_return_to(return_url) or "/",
            client=client,
        )
    except FederationError:
        db.rollback()
        logger.warning("sso.authorize.discovery_failed", exc_info=True)
        return _login_redirect(settings, GENERIC_FAILURE)
    db.commit()
    return RedirectResponse(url, status_code=status.HTTP_302_FOUND)


@router.get(
    "/api/auth/sso/status",
    response_model=SsoStatusResponse,
    response_model_exclude_none=True,
    summary="Whether federated sign-in is available",
)
def sso_status(settings: SettingsDep) -> SsoStatusResponse:
    enabled = settings.sso_configured
    return SsoStatusResponse(
        provider=settings.sso_provider_id,
        label=settings.sso_provider_label,
        enabled=enabled,
        start_url=f"/auth/sso/{settings.sso_provider_id}" if enabled else None,
    )


@router.get(
    "/api/auth/sso/admin-consent",
    response_model=AdminConsentUrlResponse,
    summary="Admin-consent URL for an organisation's directory",
)
def admin_consent_url(
    settings: SettingsDep,
    db: ReadSessionDep,
    user: Annotated[User | None, Depends(get_optional_user)],
) -> AdminConsentUrlResponse:
    if not settings.sso_configured:
        raise ApiError.bad_request(f"{settings.sso_provider_label} SSO is not configured")
    tenant = TenantDirectory(session=db).get(user.tenant_id) if user and user.tenant_id else None
    url, directory = FederationService(session=db, settings=settings).admin_consent_url(tenant)
    return AdminConsentUrlResponse(consent_url=url, directory=directory)


@router.get(
    "/api/auth/sso/consent-status",
    response_model=AdminConsentStatusResponse,
    response_model_exclude_none=True,
    summary="Admin-consent status of the caller's tenant",
)
def admin_consent_status(
    db: ReadSessionDep,
    user: Annotated[User, Depends(require_authenticated)],
) -> AdminConsentStatusResponse:
    tenant = _require_user_tenant(db, user)
    status_value = FederationService.consent_status(tenant)
    return AdminConsentStatusResponse.model_validate(status_value)


@router.post(
    "/api/auth/sso/consent-granted",
    response_model=AdminConsentStatusResponse,
    response_model_exclude_none=True,
    summary="Record that the tenant's directory admin granted consent",
)
def mark_admin_consent_granted(
    settings: SettingsDep,
    db: WriteSessionDep,
    user: Annotated[User, Depends(require_authenticated)],
) -> AdminConsentStatusResponse:
    tenant = _require_user_tenant(db, user)
    if not Capabilities.for_user(user).can_manage_tenant_settings(tenant.id):
        raise PermissionDeniedError("can_manage_tenant_settings")
    status_value = FederationService(session=db, settings=settings).mark_admin_consent_granted(
        tenant, user
    )
    return AdminConsentStatusResponse.model_validate(status_value)


__all__ = ["get_idp_http_client", "router"]
