"""Pydantic schemas for OAuth client administration."""

from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import Field, model_validator

from orion_api.common.schema import BaseSchema, RequestSchema

GrantType = Literal["authorization_code", "refresh_token"]


class OAuthClientCreate(RequestSchema):
    client_id: str = Field(min_length=1, max_length=255)
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    logo_url: str | None = Field(default=None, max_length=2048)
    redirect_uris: list[str] = Field(min_length=1)
    post_logout_redirect_uris: list[str] = Field(default_factory=list)
    grant_types: list[GrantType] = Field(
        default_factory=lambda: ["authorization_code", "refresh_token"]
    )
    pkce_required: bool = True
    confidential: bool = True
    environment: Literal["development", "staging", "production"] | None = None


class OAuthClientUpdate(RequestSchema):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    logo_url: str | None = Field(default=None, max_length=2048)
    redirect_uris: list[str] | None = Field(default=None, min_length=1)
    post_logout_redirect_uris: list[str] | None = None
    grant_types: list[GrantType] | None = None
    pkce_required: bool | None = None

    @model_validator(mode="after")
    def _ensure_changes_present(self) -> OAuthClientUpdate:
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self


class OAuthClientOut(BaseSchema):
    id: UUID
    client_id: str
    environment: str
    name: str
    description: str | None = None
    logo_url: str | None = None
    redirect_uris: list[str]
    post_logout_redirect_uris: list[str]
    grant_types: list[str]
    pkce_required: bool
    is_confidential: bool
    created_at: datetime
    updated_at: datetime


class OAuthClientCreated(OAuthClientOut):
    """Creation response; ``client_secret`` is shown exactly once."""

    client_secret: str | None = None


class OAuthClientSecret(BaseSchema):
    client_id: str
    client_secret: str


__all__ = [
    "OAuthClientCreate",
    "OAuthClientCreated",
    "OAuthClientOut",
    "OAuthClientSecret",
    "OAuthClientUpdate",
]
