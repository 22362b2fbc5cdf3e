"""Service layer for the health module."""

from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.orm import Session

from orion_api.common.logging import log_context
from orion_api.features.keys.service import KeyManager
from orion_api.settings import Settings
from orion_db import utc_now

from .schemas import HealthCheckResponse, HealthComponentStatus

logger = logging.getLogger(__name__)


class HealthService:
    """Compute health responses for readiness/liveness checks."""

    def __init__(self, *, settings: Settings, session: Session | None = None) -> None:
        self._settings = settings
        self._session = session

    def _api_component(self) -> HealthComponentStatus:
        return HealthComponentStatus(
            name="api",
            status="available",
            detail=f"v{self._settings.app_version}",
        )

    def liveness(self) -> HealthCheckResponse:
        return HealthCheckResponse(
            status="ok",
            timestamp=utc_now(),
            components=[self._api_component()],
        )

    def readiness(self) -> HealthCheckResponse:
        """Check the database and whether a signing key is active.

        A missing signing key is reported as degraded; the first token or
        JWKS request generates one.
        """

        if self._session is None:
            raise RuntimeError("Readiness checks need a database session")
        self._session.execute(text("SELECT 1"))
        components = [
            self._api_component(),
            HealthComponentStatus(name="database", status="available"),
        ]
        active = KeyManager(session=self._session, settings=self._settings).active_key()
        if active is None:
            components.append(
                HealthComponentStatus(
                    name="signing-keys",
                    status="degraded",
                    detail="No active signing key",
                )
            )
            logger.warning("health.signing_key.missing", extra=log_context(component="signing-keys"))
        else:
            components.append(
                HealthComponentStatus(name="signing-keys", status="available", detail=active.kid)
            )
        return HealthCheckResponse(status="ok", timestamp=utc_now(), components=components)


__all__ = ["HealthService"]
