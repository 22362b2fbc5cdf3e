"""Consent screen backend and per-user consent management."""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Path, Query, Response, status
from sqlalchemy.orm import Session

from orion_api.core.auth import AuthenticatedPrincipal
from orion_api.core.http.dependencies import (
    get_optional_principal,
    get_optional_user,
    require_authenticated,
)
from orion_api.db import get_db_read, get_db_write
from orion_api.features.oauth.authorize import AuthorizationService
from orion_api.features.oauth.errors import LoginRequiredError
from orion_api.features.oauth.router import protocol_boundary
from orion_api.features.oauth.schemas import AuthorizationRequest
from orion_api.features.oauth.scopes import describe_scope
from orion_api.settings import Settings, get_settings
from orion_db.models import User

from .schemas import (
    ConsentApplication,
    ConsentDecision,
    ConsentOut,
    ConsentPrompt,
    ConsentRedirect,
    ConsentScope,
)
from .service import ConsentStore

router = APIRouter(prefix="/api/oauth", tags=["consent"])

SettingsDep = Annotated[Settings, Depends(get_settings)]
ReadSessionDep = Annotated[Session, Depends(get_db_read)]
WriteSessionDep = Annotated[Session, Depends(get_db_write)]


@router.get(
    "/consent",
    response_model=ConsentPrompt,
    response_model_exclude_none=True,
    summary="Describe a pending authorization request for the consent screen",
)
def get_consent_prompt(
    query: Annotated[AuthorizationRequest, Query()],
    db: ReadSessionDep,
    settings: SettingsDep,
) -> ConsentPrompt:
    service = AuthorizationService(session=db, settings=settings)
    with protocol_boundary(db, "consent.prompt"):
        validated = service.validate(query, redirect_errors=False)
    client = validated.client
    return ConsentPrompt(
        application=ConsentApplication(
            client_id=client.client_id,
            name=client.name,
            description=client.description,
            logo_url=client.logo_url,
        ),
        scopes=[ConsentScope(name=scope, description=describe_scope(scope)) for scope in validated.scopes],
        request=query.to_params(),
    )


@router.post(
    "/consent",
    response_model=ConsentRedirect,
    summary="Record the user's consent decision",
)
def post_consent_decision(
    decision: Annotated[ConsentDecision, Body()],
    db: WriteSessionDep,
    settings: SettingsDep,
    user: Annotated[User | None, Depends(get_optional_user)],
    principal: Annotated[AuthenticatedPrincipal | None, Depends(get_optional_principal)],
) -> ConsentRedirect:
    service = AuthorizationService(session=db, settings=settings)
    with protocol_boundary(db, "consent.decision"):
        if user is None or principal is None:
            service.validate(decision, redirect_errors=False)
            request_id = service.park(decision)
            raise LoginRequiredError(
                request_id=request_id,
                login_url=service.login_url(request_id),
                sso_url=service.sso_url(request_id),
            )
        location = service.decide_consent(
            decision,
            user=user,
            approved=decision.approved,
            auth_time=principal.auth_time,
        )
    return ConsentRedirect(redirect_url=location)


@router.get(
    "/consents",
    response_model=list[ConsentOut],
    summary="List the applications the current user has authorized",
)
def list_consents(
    db: ReadSessionDep,
    user: Annotated[User, Depends(require_authenticated)],
) -> list[ConsentOut]:
    return [
        ConsentOut(
            id=consent.id,
            client_id=consent.client.client_id,
            client_name=consent.client.name,
            scopes=list(consent.scopes),
            created_at=consent.created_at,
            last_used_at=consent.last_used_at,
        )
        for consent in ConsentStore(session=db).list_for_user(user.id)
    ]


@router.delete(
    "/consents/{consent_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Revoke a consent and the tokens issued under it",
)
def revoke_consent(
    consent_id: Annotated[UUID, Path(description="Consent identifier.")],
    db: WriteSessionDep,
    user: Annotated[User, Depends(require_authenticated)],
) -> Response:
    ConsentStore(session=db).revoke(user_id=user.id, consent_id=consent_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


__all__ = ["router"]
