"""Administrative routes for tenants and their verified domains."""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Response, Security, status
from sqlalchemy.orm import Session

from orion_api.common.problem_details import ApiError
from orion_api.core.auth import PermissionDeniedError
from orion_api.core.http.dependencies import require_authenticated, require_capability
from orion_api.core.rbac.capabilities import Capabilities
from orion_api.db import get_db_read, get_db_write
from orion_db.models import Tenant, User

from .schemas import TenantCreate, TenantDomainCreate, TenantDomainOut, TenantOut, TenantUpdate
from .service import TenantDirectory

router = APIRouter(prefix="/api/tenants", tags=["tenants"])

TENANT_ID_PARAM = Annotated[UUID, Path(description="Tenant identifier.")]
DOMAIN_ID_PARAM = Annotated[UUID, Path(description="Tenant domain identifier.")]
TenantAdminDep = Annotated[User, Security(require_capability("can_manage_tenants"))]
AuthenticatedDep = Annotated[User, Security(require_authenticated)]


def get_directory(db: Annotated[Session, Depends(get_db_write)]) -> TenantDirectory:
    return TenantDirectory(session=db)


def get_directory_read(db: Annotated[Session, Depends(get_db_read)]) -> TenantDirectory:
    return TenantDirectory(session=db)


def _load(directory: TenantDirectory, tenant_id: UUID) -> Tenant:
    tenant = directory.get(tenant_id)
    if tenant is None:
        raise ApiError.not_found("Tenant not found")
    return tenant


def _require_settings_access(user: User, tenant_id: UUID) -> Capabilities:
    capabilities = Capabilities.for_user(user)
    if not capabilities.can_manage_tenant_settings(tenant_id):
        raise PermissionDeniedError("can_manage_tenant_settings")
    return capabilities


@router.get("", response_model=list[TenantOut], summary="List tenants")
def list_tenants(
    _user: TenantAdminDep,
    directory: Annotated[TenantDirectory, Depends(get_directory_read)],
) -> list[TenantOut]:
    return [TenantOut.model_validate(tenant) for tenant in directory.list_tenants()]


@router.post(
    "",
    response_model=TenantOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create a tenant",
)
def create_tenant(
    payload: TenantCreate,
    _user: TenantAdminDep,
    directory: Annotated[TenantDirectory, Depends(get_directory)],
) -> TenantOut:
    tenant = directory.create_tenant(**payload.model_dump())
    return TenantOut.model_validate(tenant)


@router.get("/{tenant_id}", response_model=TenantOut, summary="Get a tenant")
def get_tenant(
    tenant_id: TENANT_ID_PARAM,
    user: AuthenticatedDep,
    directory: Annotated[TenantDirectory, Depends(get_directory_read)],
) -> TenantOut:
    _require_settings_access(user, tenant_id)
    return TenantOut.model_validate(_load(directory, tenant_id))


@router.patch("/{tenant_id}", response_model=TenantOut, summary="Update tenant settings")
def update_tenant(
    tenant_id: TENANT_ID_PARAM,
    payload: TenantUpdate,
    user: AuthenticatedDep,
    directory: Annotated[TenantDirectory, Depends(get_directory)],
) -> TenantOut:
    capabilities = _require_settings_access(user, tenant_id)
    changes = payload.model_dump(exclude_unset=True)
    # Only global admins relink a tenant to a provider directory.
    if "sso_tenant_id" in changes and not capabilities.can_manage_tenants:
        raise PermissionDeniedError("can_manage_tenants")
    tenant = directory.update_tenant(_load(directory, tenant_id), changes)
    return TenantOut.model_validate(tenant)


@router.delete(
    "/{tenant_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a tenant without users",
)
def delete_tenant(
    tenant_id: TENANT_ID_PARAM,
    _user: TenantAdminDep,
    directory: Annotated[TenantDirectory, Depends(get_directory)],
) -> Response:
    directory.delete_tenant(_load(directory, tenant_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{tenant_id}/domains",
    response_model=TenantDomainOut,
    status_code=status.HTTP_201_CREATED,
    summary="Register a domain for a tenant",
)
def add_domain(
    tenant_id: TENANT_ID_PARAM,
    payload: TenantDomainCreate,
    _user: TenantAdminDep,
    directory: Annotated[TenantDirectory, Depends(get_directory)],
) -> TenantDomainOut:
    record = directory.add_domain(
        _load(directory, tenant_id),
        payload.domain,
        verified=payload.verified,
    )
    return TenantDomainOut.model_validate(record)


@router.delete(
    "/{tenant_id}/domains/{domain_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a domain from a tenant",
)
def remove_domain(
    tenant_id: TENANT_ID_PARAM,
    domain_id: DOMAIN_ID_PARAM,
    _user: TenantAdminDep,
    directory: Annotated[TenantDirectory, Depends(get_directory)],
) -> Response:
    directory.remove_domain(_load(directory, tenant_id), domain_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


__all__ = ["router"]
