"""Shared database engine helpers (Postgres in production, SQLite for local use)."""

from __future__ import annotations

import re
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .settings import DatabaseSettings

_STATEMENT_TIMEOUT_RE = re.compile(r"(?:^|\s)-c\s+statement_timeout=\S+")


def _append_statement_timeout(options: str, timeout_ms: int) -> str:
    cleaned = _STATEMENT_TIMEOUT_RE.sub("", options or "").strip()
    snippet = f"-c statement_timeout={int(timeout_ms)}"
    if not cleaned:
        return snippet
    return f"{cleaned} {snippet}"


def _apply_postgres_timeouts(url: URL, settings: DatabaseSettings) -> URL:
    query = dict(url.query or {})
    if settings.database_connect_timeout_seconds is not None:
        query["connect_timeout"] = str(int(settings.database_connect_timeout_seconds))
    if settings.database_statement_timeout_ms is not None:
        options = str(query.get("options", "")).strip()
        query["options"] = _append_statement_timeout(options, settings.database_statement_timeout_ms)
    return url.set(query=query)


def _create_postgres_engine(url: URL, settings: DatabaseSettings) -> Engine:
    if url.drivername in {"postgresql", "postgres"}:
        url = url.set(drivername="postgresql+psycopg")
    if not url.drivername.startswith("postgresql+psycopg"):
        raise ValueError("For Postgres, use postgresql+psycopg://... (psycopg is required).")

    url = _apply_postgres_timeouts(url, settings)

    return create_engine(
        url,
        echo=settings.database_echo,
        pool_pre_ping=True,
        pool_use_lifo=True,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_timeout=settings.database_pool_timeout,
        pool_recycle=settings.database_pool_recycle,
    )


def is_sqlite_memory_url(url: URL) -> bool:
    database = (url.database or "").strip()
    if not database or database == ":memory:":
        return True
    if database.startswith("file:"):
        query = dict(url.query or {})
        if query.get("mode") == "memory":
            return True
    return False


def ensure_sqlite_database_directory(url: URL) -> None:
    """Ensure a filesystem-backed SQLite database can be created."""

    database = (url.database or "").strip()
    if not database or database == ":memory:" or database.startswith("file:"):
        return
    path = Path(database)
    if not path.is_absolute():
        path = Path.cwd() / path
    path.parent.mkdir(parents=True, exist_ok=True)


def _create_sqlite_engine(url: URL, settings: DatabaseSettings) -> Engine:
    engine_kwargs: dict[str, Any] = {
        "echo": settings.database_echo,
        "connect_args": {
            "check_same_thread": False,
            "timeout": settings.database_pool_timeout,
        },
    }
    memory = is_sqlite_memory_url(url)
    if memory:
        engine_kwargs["poolclass"] = StaticPool
    else:
        ensure_sqlite_database_directory(url)

    engine = create_engine(url, **engine_kwargs)

    # pysqlite defers BEGIN on its own, which breaks SAVEPOINT; take over transaction control.
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, _connection_record) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA busy_timeout=30000")
            if not memory:
                cursor.execute("PRAGMA journal_mode=WAL")
        finally:
            cursor.close()

    @event.listens_for(engine, "begin")
    def _emit_begin(conn) -> None:
        conn.exec_driver_sql("BEGIN")

    return engine


def build_engine(settings: DatabaseSettings) -> Engine:
    if not settings.database_url:
        raise ValueError("Settings.database_url is required.")
    url = make_url(str(settings.database_url))
    backend = url.get_backend_name()

    if backend == "postgresql":
        return _create_postgres_engine(url, settings)
    if backend == "sqlite":
        return _create_sqlite_engine(url, settings)
    raise ValueError("Unsupported database backend. Use postgresql+psycopg:// or sqlite://.")


@contextmanager
def session_scope(
    session_factory: sessionmaker[Session],
) -> Iterator[Session]:
    """Standard session scope with commit/rollback."""
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def assert_tables_exist(
    engine: Engine,
    required_tables: list[str],
    *,
    schema: str | None = None,
) -> None:
    """Raise if required tables are missing."""
    inspector = inspect(engine)
    missing = [t for t in required_tables if not inspector.has_table(t, schema=schema)]
    if missing:
        raise RuntimeError(
            f"Missing required tables: {', '.join(missing)}. "
            "Run `orion db migrate` before starting Orion services."
        )


__all__ = [
    "assert_tables_exist",
    "build_engine",
    "is_sqlite_memory_url",
    "session_scope",
]
