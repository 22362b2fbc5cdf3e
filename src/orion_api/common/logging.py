"""Logging configuration and helpers for the Orion identity service.

Two output formats are supported: a single-line console format for local
work and one JSON object per line for log shipping. Both carry the
request-scoped correlation id bound by ``RequestContextMiddleware`` and any
structured fields passed through ``extra=log_context(...)``.

Protocol secrets (codes, tokens, verifiers, client secrets, key material)
must never be passed to these helpers; log the owning identifiers instead.
"""

from __future__ import annotations

import json
import logging
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from orion_api.settings import Settings

# Request-scoped correlation ID, set/cleared by RequestContextMiddleware.
_CORRELATION_ID: ContextVar[str | None] = ContextVar(
    "orion_correlation_id",
    default=None,
)

# LogRecord attributes that never belong in the structured payload.
_STANDARD_ATTRS: frozenset[str] = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "message",
        "asctime",
        "correlation_id",
        "taskName",
        "color_message",
    }
)

_CONFIGURED_FLAG = "_orion_configured"
_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S"

_PROPAGATED_LOGGERS = (
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "orion_api.request",
    "alembic",
    "alembic.runtime.migration",
    "httpx",
    "sqlalchemy",
    "sqlalchemy.engine",
    "sqlalchemy.pool",
)


class _UtcFormatter(logging.Formatter):
    """Shared UTC millisecond timestamps and correlation id injection."""

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        dt = datetime.fromtimestamp(record.created, tz=UTC)
        return f"{dt.strftime(datefmt or _TIME_FORMAT)}.{int(record.msecs):03d}Z"

    def _bind_correlation_id(self, record: logging.LogRecord) -> str:
        cid = getattr(record, "correlation_id", None) or _CORRELATION_ID.get() or "-"
        record.correlation_id = cid
        return cid


class ConsoleLogFormatter(_UtcFormatter):
    """Render log records as single-line console output.

    Example line:

        2026-03-02T09:14:07.118Z INFO  orion_api.features.oauth.tokens [cid=5d0c1e2a]
        oauth.token.issued client_id=assessments user_id=0b6f...
    """

    def __init__(self) -> None:
        fmt = "%(asctime)s %(levelname)-5s %(name)s [cid=%(correlation_id)s] %(message)s"
        super().__init__(fmt=fmt, datefmt=_TIME_FORMAT)

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - std signature
        self._bind_correlation_id(record)
        base = super().format(record)
        extras = " ".join(
            f"{key}={_format_extra_value(value)}"
            for key, value in sorted(_record_extras(record).items())
        )
        return f"{base} {extras}" if extras else base


class JsonLogFormatter(_UtcFormatter):
    """Render log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - std signature
        cid = self._bind_correlation_id(record)
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "service": "orion-identity",
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": cid,
        }
        payload.update(_record_extras(record))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, separators=(",", ":"))


def setup_logging(settings: Settings) -> None:
    """Configure root logging for the Orion API process.

    Installs exactly one root ``StreamHandler`` and routes uvicorn, alembic,
    httpx and SQLAlchemy loggers through it so every line shares a format.
    """
    root_logger = logging.getLogger()
    level = getattr(logging, settings.effective_api_log_level)

    if not getattr(root_logger, _CONFIGURED_FLAG, False) or not root_logger.handlers:
        root_logger.handlers = [logging.StreamHandler()]
        setattr(root_logger, _CONFIGURED_FLAG, True)
    else:
        root_logger.handlers = [root_logger.handlers[0]]

    root_logger.handlers[0].setFormatter(_build_formatter(settings.log_format))
    root_logger.setLevel(level)

    for name in _PROPAGATED_LOGGERS:
        logger = logging.getLogger(name)
        logger.handlers.clear()
        logger.propagate = True
        logger.disabled = False
        logger.setLevel(logging.NOTSET)

    logging.getLogger("uvicorn").setLevel(level)
    logging.getLogger("uvicorn.error").setLevel(level)
    logging.getLogger("orion_api.request").setLevel(
        getattr(logging, settings.effective_request_log_level)
    )
    # httpx logs full request URLs at INFO, which include authorization codes.
    logging.getLogger("httpx").setLevel(logging.WARNING)

    access_logger = logging.getLogger("uvicorn.access")
    if settings.access_log_enabled:
        access_logger.setLevel(getattr(logging, settings.effective_access_log_level))
    else:
        access_logger.propagate = False
        access_logger.disabled = True

    db_level = getattr(logging, settings.database_log_level or "WARNING")
    for name in ("sqlalchemy", "sqlalchemy.engine", "sqlalchemy.pool"):
        logging.getLogger(name).setLevel(db_level)


def bind_request_context(correlation_id: str | None) -> None:
    """Bind a correlation ID to the logging context for the current request."""
    _CORRELATION_ID.set(correlation_id)


def clear_request_context() -> None:
    """Clear the request-scoped logging context."""
    _CORRELATION_ID.set(None)


def current_request_id() -> str | None:
    """Return the current request/correlation ID if bound."""
    return _CORRELATION_ID.get()


def log_context(
    *,
    user_id: UUID | str | None = None,
    tenant_id: UUID | str | None = None,
    client_id: str | None = None,
    kid: str | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Build a consistent `extra` payload for structured logs.

    Example:
        logger.info(
            "oauth.code.issued",
            extra=log_context(client_id=client.client_id, user_id=user.id),
        )
    """
    ctx: dict[str, Any] = {}
    if user_id is not None:
        ctx["user_id"] = str(user_id)
    if tenant_id is not None:
        ctx["tenant_id"] = str(tenant_id)
    if client_id is not None:
        ctx["client_id"] = client_id
    if kid is not None:
        ctx["kid"] = kid
    ctx.update(extra)
    return ctx


def _format_extra_value(value: Any) -> str:
    if value is None:
        return "null"
    return str(value)


def _record_extras(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _STANDARD_ATTRS and not key.startswith("_")
    }


def _build_formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        return JsonLogFormatter()
    return ConsoleLogFormatter()


__all__ = [
    "ConsoleLogFormatter",
    "JsonLogFormatter",
    "bind_request_context",
    "clear_request_context",
    "current_request_id",
    "log_context",
    "setup_logging",
]
