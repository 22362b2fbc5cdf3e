"""Schemas for federation status and admin-consent endpoints."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from orion_api.common.schema import BaseSchema


class SsoStatusResponse(BaseSchema):
    provider: str
    label: str
    enabled: bool
    start_url: str | None = None


class AdminConsentUrlResponse(BaseSchema):
    consent_url: str
    directory: str


class AdminConsentStatusResponse(BaseSchema):
    tenant_id: UUID
    sso_tenant_id: str | None = None
    admin_consent_granted: bool
    admin_consent_granted_at: datetime | None = None


__all__ = [
    "AdminConsentStatusResponse",
    "AdminConsentUrlResponse",
    "SsoStatusResponse",
]
