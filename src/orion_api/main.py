"""Orion identity service FastAPI application entry point."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import cast

from fastapi import FastAPI, Request
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response

from .app.lifecycles import create_application_lifespan
from .common.exceptions import http_exception_handler, register_exception_handlers
from .common.logging import setup_logging
from .common.middleware import register_middleware
from .core.http.errors import register_auth_exception_handlers
from .features.authn.router import router as authn_router
from .features.clients.router import router as clients_router
from .features.consent.router import router as consent_router
from .features.health.router import router as health_router
from .features.keys.router import router as keys_router
from .features.oauth.errors import register_oauth_exception_handlers
from .features.oauth.router import router as oauth_router
from .features.sso.router import router as sso_router
from .features.tenants.router import router as tenants_router
from .settings import Settings, get_settings

type HttpExceptionHandler = Callable[[Request, Exception], Response | Awaitable[Response]]
logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the Orion identity FastAPI application."""
    # Settings + logging first so everything else uses the configured root logger.
    settings = settings or get_settings()
    setup_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        debug=False,
        lifespan=create_application_lifespan(settings=settings),
    )

    # Global exception handlers.
    register_exception_handlers(app)
    app.add_exception_handler(
        StarletteHTTPException, cast(HttpExceptionHandler, http_exception_handler)
    )
    register_auth_exception_handlers(app)
    register_oauth_exception_handlers(app)

    # Middleware and routers.
    register_middleware(app, settings=settings)
    app.include_router(health_router, include_in_schema=False)
    app.include_router(keys_router)
    app.include_router(oauth_router)
    app.include_router(consent_router)
    app.include_router(sso_router)
    app.include_router(authn_router)
    app.include_router(clients_router)
    app.include_router(tenants_router)

    logger.debug(
        "orion_api.routes.registered",
        extra={"route_count": len(app.routes)},
    )
    return app


__all__ = ["create_app"]
