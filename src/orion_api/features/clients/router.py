"""Administrative routes for registered OAuth clients."""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Response, Security, status
from sqlalchemy.orm import Session

from orion_api.common.problem_details import ApiError
from orion_api.core.http.dependencies import require_capability
from orion_api.db import get_db_read, get_db_write
from orion_api.settings import Settings, get_settings
from orion_db.models import OAuthClient

from .schemas import (
    OAuthClientCreate,
    OAuthClientCreated,
    OAuthClientOut,
    OAuthClientSecret,
    OAuthClientUpdate,
)
from .service import ClientRegistry

router = APIRouter(
    prefix="/api/admin/oauth/clients",
    tags=["oauth-clients"],
    dependencies=[Security(require_capability("can_manage_clients"))],
)

CLIENT_PK_PARAM = Annotated[UUID, Path(description="Client record identifier.")]


def get_registry(
    db: Annotated[Session, Depends(get_db_write)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> ClientRegistry:
    return ClientRegistry(session=db, settings=settings)


def get_registry_read(
    db: Annotated[Session, Depends(get_db_read)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> ClientRegistry:
    return ClientRegistry(session=db, settings=settings)


def _load(registry: ClientRegistry, client_pk: UUID) -> OAuthClient:
    client = registry.get(client_pk)
    if client is None:
        raise ApiError.not_found("OAuth client not found")
    return client


@router.get("", response_model=list[OAuthClientOut], summary="List OAuth clients")
def list_clients(
    registry: Annotated[ClientRegistry, Depends(get_registry_read)],
) -> list[OAuthClientOut]:
    return [OAuthClientOut.model_validate(client) for client in registry.list_clients()]


@router.post(
    "",
    response_model=OAuthClientCreated,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    summary="Register an OAuth client",
)
def create_client(
    payload: OAuthClientCreate,
    registry: Annotated[ClientRegistry, Depends(get_registry)],
) -> OAuthClientCreated:
    client, secret = registry.create_client(
        client_id=payload.client_id,
        name=payload.name,
        description=payload.description,
        logo_url=payload.logo_url,
        redirect_uris=payload.redirect_uris,
        post_logout_redirect_uris=payload.post_logout_redirect_uris,
        grant_types=payload.grant_types,
        pkce_required=payload.pkce_required,
        confidential=payload.confidential,
        environment=payload.environment,
    )
    created = OAuthClientCreated.model_validate(client)
    created.client_secret = secret
    return created


@router.get("/{client_pk}", response_model=OAuthClientOut, summary="Get an OAuth client")
def get_client(
    client_pk: CLIENT_PK_PARAM,
    registry: Annotated[ClientRegistry, Depends(get_registry_read)],
) -> OAuthClientOut:
    return OAuthClientOut.model_validate(_load(registry, client_pk))


@router.patch("/{client_pk}", response_model=OAuthClientOut, summary="Update an OAuth client")
def update_client(
    client_pk: CLIENT_PK_PARAM,
    payload: OAuthClientUpdate,
    registry: Annotated[ClientRegistry, Depends(get_registry)],
) -> OAuthClientOut:
    client = registry.update_client(
        _load(registry, client_pk),
        payload.model_dump(exclude_unset=True),
    )
    return OAuthClientOut.model_validate(client)


@router.post(
    "/{client_pk}/secret",
    response_model=OAuthClientSecret,
    summary="Issue a new client secret",
)
def regenerate_secret(
    client_pk: CLIENT_PK_PARAM,
    registry: Annotated[ClientRegistry, Depends(get_registry)],
) -> OAuthClientSecret:
    client = _load(registry, client_pk)
    secret = registry.regenerate_secret(client)
    return OAuthClientSecret(client_id=client.client_id, client_secret=secret)


@router.delete(
    "/{client_pk}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete an OAuth client",
)
def delete_client(
    client_pk: CLIENT_PK_PARAM,
    registry: Annotated[ClientRegistry, Depends(get_registry)],
) -> Response:
    registry.delete_client(_load(registry, client_pk))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


__all__ = ["router"]
