"""Schemas for liveness and readiness probes."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from orion_api.common.schema import BaseSchema


class HealthComponentStatus(BaseSchema):
    name: str
    status: Literal["available", "degraded", "unavailable"]
    detail: str | None = None


class HealthCheckResponse(BaseSchema):
    status: Literal["ok", "error"]
    timestamp: datetime
    components: list[HealthComponentStatus]


__all__ = ["HealthCheckResponse", "HealthComponentStatus"]
