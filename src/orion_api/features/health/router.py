"""Operational liveness/readiness endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from orion_api.common.problem_details import ApiError
from orion_api.db import get_db_read
from orion_api.settings import Settings, get_settings

from .schemas import HealthCheckResponse
from .service import HealthService

router = APIRouter(tags=["health"])

SettingsDep = Annotated[Settings, Depends(get_settings)]
ReadSessionDep = Annotated[Session, Depends(get_db_read)]


@router.get(
    "/health",
    response_model=HealthCheckResponse,
    status_code=status.HTTP_200_OK,
    summary="Service liveness probe",
    response_model_exclude_none=True,
)
def read_liveness(settings: SettingsDep) -> HealthCheckResponse:
    """Return liveness status without touching the database."""

    return HealthService(settings=settings).liveness()


@router.get(
    "/ready",
    response_model=HealthCheckResponse,
    status_code=status.HTTP_200_OK,
    summary="Service readiness probe",
    response_model_exclude_none=True,
)
def read_readiness(settings: SettingsDep, db: ReadSessionDep) -> HealthCheckResponse:
    """Return readiness status after checking critical dependencies."""

    try:
        return HealthService(settings=settings, session=db).readiness()
    except Exception as exc:
        raise ApiError(
            error_type="service_unavailable",
            detail="Database unavailable",
        ) from exc


__all__ = ["router"]
