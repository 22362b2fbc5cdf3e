"""Pydantic schemas for tenant administration."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import Field, model_validator

from orion_api.common.schema import BaseSchema, RequestSchema


class TenantDomainCreate(RequestSchema):
    domain: str = Field(min_length=1, max_length=255)
    verified: bool = True


class TenantCreate(RequestSchema):
    name: str = Field(min_length=1, max_length=255)
    domains: list[str] = Field(default_factory=list)
    allow_user_self_provisioning: bool = False
    invite_only: bool = False
    sso_tenant_id: str | None = Field(default=None, max_length=255)
    logo_url: str | None = Field(default=None, max_length=2048)
    primary_color: str | None = Field(default=None, max_length=32)
    secondary_color: str | None = Field(default=None, max_length=32)


class TenantUpdate(RequestSchema):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    allow_user_self_provisioning: bool | None = None
    invite_only: bool | None = None
    sso_tenant_id: str | None = Field(default=None, max_length=255)
    logo_url: str | None = Field(default=None, max_length=2048)
    primary_color: str | None = Field(default=None, max_length=32)
    secondary_color: str | None = Field(default=None, max_length=32)

    @model_validator(mode="after")
    def _ensure_changes_present(self) -> TenantUpdate:
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        for flag in ("allow_user_self_provisioning", "invite_only"):
            if flag in self.model_fields_set and getattr(self, flag) is None:
                raise ValueError(f"{flag} must be true or false")
        return self


class TenantDomainOut(BaseSchema):
    id: UUID
    domain: str
    verified: bool
    created_at: datetime


class TenantOut(BaseSchema):
    id: UUID
    name: str
    logo_url: str | None = None
    primary_color: str | None = None
    secondary_color: str | None = None
    allow_user_self_provisioning: bool
    invite_only: bool
    sso_tenant_id: str | None = None
    admin_consent_granted: bool
    admin_consent_granted_at: datetime | None = None
    domains: list[TenantDomainOut]
    created_at: datetime
    updated_at: datetime


__all__ = [
    "TenantCreate",
    "TenantDomainCreate",
    "TenantDomainOut",
    "TenantOut",
    "TenantUpdate",
]
