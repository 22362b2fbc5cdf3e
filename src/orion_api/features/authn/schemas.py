"""Request/response schemas for local sign-in and the current-user endpoint."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import Field, SecretStr

from orion_api.common.schema import BaseSchema, RequestSchema


class AuthLoginRequest(RequestSchema):
    login: str = Field(min_length=1, max_length=320, description="Username or email.")
    password: SecretStr


class AuthLoginSuccess(BaseSchema):
    ok: bool = True
    user_id: UUID


class CurrentUser(BaseSchema):
    id: UUID
    username: str
    email: str
    display_name: str | None = None
    role: str
    tenant_id: UUID | None = None
    email_verified: bool
    sso_provider: str | None = None
    last_login_at: datetime | None = None
    capabilities: list[str] = Field(default_factory=list)


__all__ = ["AuthLoginRequest", "AuthLoginSuccess", "CurrentUser"]
