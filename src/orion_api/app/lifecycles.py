"""FastAPI lifespan helpers for the Orion identity service."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass
from datetime import datetime
from functools import partial

from fastapi import FastAPI
from fastapi.routing import Lifespan
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

from orion_api.common.logging import log_context
from orion_api.db import get_engine_from_app, get_session_factory_from_app, init_db, shutdown_db
from orion_api.features.keys.service import KeyManager
from orion_api.features.oauth.authorize import AuthorizationService
from orion_api.features.sso.service import FederationService
from orion_api.settings import Settings
from orion_db import metadata, utc_now
from orion_db.engine import session_scope

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SweepResult:
    sso_states: int
    pending_requests: int
    authorization_codes: int

    @property
    def total(self) -> int:
        return self.sso_states + self.pending_requests + self.authorization_codes


def rotate_signing_keys(session_factory: sessionmaker[Session], settings: Settings) -> None:
    with session_scope(session_factory) as session:
        rotated = KeyManager(session=session, settings=settings).rotate_if_due()
    if rotated is not None:
        logger.info("keys.rotation.checked", extra=log_context(kid=rotated.kid))


def sweep_expired_state(
    session_factory: sessionmaker[Session],
    settings: Settings,
    *,
    now: datetime | None = None,
) -> SweepResult:
    """Delete expired SSO states, parked authorization requests and codes."""

    moment = now or utc_now()
    with session_scope(session_factory) as session:
        authorization = AuthorizationService(session=session, settings=settings)
        result = SweepResult(
            sso_states=FederationService(session=session, settings=settings).purge_expired_states(
                now=moment
            ),
            pending_requests=authorization.purge_expired_pending(now=moment),
            authorization_codes=authorization.purge_expired_codes(now=moment),
        )
    if result.total:
        logger.info(
            "sweep.expired_state.purged",
            extra=log_context(
                sso_states=result.sso_states,
                pending_requests=result.pending_requests,
                authorization_codes=result.authorization_codes,
            ),
        )
    return result


async def _periodic_loop(
    *,
    name: str,
    work: Callable[[], object],
    interval_seconds: int,
) -> None:
    while True:
        try:
            await asyncio.to_thread(work)
        except Exception:
            logger.exception(f"{name}.loop_failed")
        await asyncio.sleep(interval_seconds)


def create_application_lifespan(
    *,
    settings: Settings,
) -> Lifespan[FastAPI]:
    """Return the FastAPI lifespan handler used by the app factory."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.settings = settings
        app.state.started_at = utc_now()
        logger.info(
            "orion_api.startup",
            extra=log_context(
                logging_level=settings.effective_api_log_level,
                oauth_environment=settings.oauth_environment,
                issuer=settings.effective_issuer,
                sso_configured=settings.sso_configured,
                version=settings.app_version,
            ),
        )

        safe_url = make_url(str(settings.database_url)).render_as_string(hide_password=True)
        logger.info("db.init.start", extra={"database_url": safe_url})
        init_db(app, settings)
        logger.info("db.init.complete", extra={"database_url": safe_url})

        engine = get_engine_from_app(app)
        session_factory = get_session_factory_from_app(app)

        def _check_db_connection() -> None:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))

        def _prepare_schema() -> None:
            if settings.database_auto_create:
                metadata.create_all(engine)
                return
            with engine.connect() as conn:
                conn.execute(text("SELECT 1 FROM alembic_version"))

        try:
            try:
                await asyncio.to_thread(_check_db_connection)
            except Exception as exc:
                logger.error(
                    "db.connection.failed",
                    extra={"database_url": safe_url},
                    exc_info=True,
                )
                raise RuntimeError(
                    "Database is not reachable. Verify ORION_DATABASE_URL and credentials."
                ) from exc

            try:
                await asyncio.to_thread(_prepare_schema)
            except Exception as exc:
                logger.error(
                    "db.schema.missing",
                    extra={"database_url": safe_url},
                    exc_info=True,
                )
                raise RuntimeError(
                    "Database schema is not initialized. "
                    "Run `orion db migrate` before starting the API."
                ) from exc

            tasks: list[asyncio.Task[None]] = []
            if settings.background_jobs_enabled:
                tasks.append(
                    asyncio.create_task(
                        _periodic_loop(
                            name="keys.rotation",
                            work=partial(rotate_signing_keys, session_factory, settings),
                            interval_seconds=settings.signing_key_check_interval_seconds,
                        )
                    )
                )
                tasks.append(
                    asyncio.create_task(
                        _periodic_loop(
                            name="sweep.expired_state",
                            work=partial(sweep_expired_state, session_factory, settings),
                            interval_seconds=settings.sso_sweep_interval_seconds,
                        )
                    )
                )
            else:
                logger.warning("background_jobs.disabled")
            app.state.background_tasks = tuple(tasks)

            try:
                yield
            finally:
                for task in tasks:
                    task.cancel()
                for task in tasks:
                    with suppress(asyncio.CancelledError):
                        await task
                app.state.background_tasks = ()
        finally:
            shutdown_db(app)
            logger.info("orion_api.shutdown")

    return lifespan


__all__ = [
    "SweepResult",
    "create_application_lifespan",
    "rotate_signing_keys",
    "sweep_expired_state",
]
