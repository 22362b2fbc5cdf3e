"""Database session management for the Orion API."""

from __future__ import annotations

import logging
from collections.abc import Generator
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from starlette.requests import HTTPConnection

from orion_api.common.problem_details import ApiError
from orion_api.core.auth.errors import AuthenticationError, PermissionDeniedError
from orion_api.settings import Settings, get_settings
from orion_db.engine import build_engine

logger = logging.getLogger(__name__)


# --- App lifecycle ----------------------------------------------------------


def init_db(app: FastAPI, settings: Settings | None = None) -> None:
    settings = settings or get_settings()

    existing_engine = getattr(app.state, "db_engine", None)
    if existing_engine is not None:
        existing_engine.dispose()

    engine = build_engine(settings)
    app.state.db_engine = engine
    app.state.db_sessionmaker = sessionmaker(bind=engine, expire_on_commit=False)


def shutdown_db(app: FastAPI) -> None:
    engine = getattr(app.state, "db_engine", None)
    if engine is not None:
        engine.dispose()
    app.state.db_engine = None
    app.state.db_sessionmaker = None


def get_engine_from_app(app: FastAPI) -> Engine:
    engine = getattr(app.state, "db_engine", None)
    if engine is None:
        raise RuntimeError("Database not initialized. Call init_db(app, ...) at startup.")
    return engine


def get_session_factory_from_app(app: FastAPI) -> sessionmaker[Session]:
    session_factory = getattr(app.state, "db_sessionmaker", None)
    if session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db(app, ...) at startup.")
    return session_factory


def get_session_factory(conn: HTTPConnection) -> sessionmaker[Session]:
    return get_session_factory_from_app(conn.app)


# --- Dependencies -----------------------------------------------------------

_EXPECTED_ERRORS = (
    HTTPException,
    RequestValidationError,
    AuthenticationError,
    PermissionDeniedError,
)


def _log_unexpected_db_exception(request: Request, exc: BaseException) -> None:
    if isinstance(exc, _EXPECTED_ERRORS):
        return
    if isinstance(exc, ApiError) and exc.status_code < 500:
        return
    if getattr(exc, "expected", False):
        return
    logger.warning(
        "db.session.rollback",
        extra={"path": str(request.url.path), "method": request.method},
        exc_info=exc,
    )


def _get_session(request: Request) -> Generator[Session]:
    session = get_session_factory(request)()
    try:
        yield session
        if getattr(request.state, "db_force_write", False):
            session.commit()
        else:
            session.rollback()
    except BaseException as exc:
        session.rollback()
        _log_unexpected_db_exception(request, exc)
        raise
    finally:
        session.close()


def get_db_write(
    request: Request,
    session: Annotated[Session, Depends(_get_session)],
) -> Session:
    """Session committed once the endpoint returns successfully."""

    request.state.db_force_write = True
    return session


def get_db_read(
    _request: Request,
    session: Annotated[Session, Depends(_get_session)],
) -> Session:
    return session


__all__ = [
    "get_db_read",
    "get_db_write",
    "get_engine_from_app",
    "get_session_factory",
    "get_session_factory_from_app",
    "init_db",
    "shutdown_db",
]
