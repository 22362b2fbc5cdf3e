"""Schemas for the consent screen backend and consent management."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from orion_api.common.schema import BaseSchema
from orion_api.features.oauth.schemas import AuthorizationRequest


class ConsentScope(BaseSchema):
    name: str
    description: str


class ConsentApplication(BaseSchema):
    client_id: str
    name: str
    description: str | None = None
    logo_url: str | None = None


class ConsentPrompt(BaseSchema):
    """What the consent screen shows for a pending authorization request."""

    application: ConsentApplication
    scopes: list[ConsentScope]
    request: dict[str, str]


class ConsentDecision(AuthorizationRequest):
    """The original authorization parameters plus the user's answer."""

    approved: bool = False


class ConsentRedirect(BaseSchema):
    redirect_url: str


class ConsentOut(BaseSchema):
    id: UUID
    client_id: str
    client_name: str
    scopes: list[str]
    created_at: datetime
    last_used_at: datetime


__all__ = [
    "ConsentApplication",
    "ConsentDecision",
    "ConsentOut",
    "ConsentPrompt",
    "ConsentRedirect",
    "ConsentScope",
]
