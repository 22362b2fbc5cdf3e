"""Programmatic Alembic runner for Orion migrations."""

from __future__ import annotations

from contextlib import contextmanager, suppress
from importlib import resources
from pathlib import Path
from typing import Iterator

from alembic import command
from alembic.config import Config
from sqlalchemy import text
from sqlalchemy.engine import make_url

from .engine import build_engine
from .settings import DEFAULT_MIGRATION_LOCK_KEY, DatabaseSettings, get_settings

__all__ = [
    "alembic_config",
    "migration_lock",
    "run_migrations",
]



def _migrations_path() -> Path:
    return Path(str(resources.files("orion_db") / "migrations"))


@contextmanager
def migration_lock(settings: DatabaseSettings) -> Iterator[None]:
    if make_url(str(settings.database_url)).get_backend_name() != "postgresql":
        yield
        return

    lock_key = getattr(settings, "database_migration_lock_key", DEFAULT_MIGRATION_LOCK_KEY)
    engine = build_engine(settings)
    try:
        with engine.connect() as base_conn:
            conn = base_conn.execution_options(isolation_level="AUTOCOMMIT")
            conn.execute(text("SET statement_timeout = 0"))
            conn.execute(text("SELECT pg_advisory_lock(:key)"), {"key": lock_key})
            try:
                yield
            finally:
                with suppress(Exception):
                    conn.execute(
                        text("SELECT pg_advisory_unlock(:key)"), {"key": lock_key}
                    )
    finally:
        engine.dispose()


@contextmanager
def alembic_config(settings: DatabaseSettings | None = None) -> Iterator[Config]:
    migrations_dir = _migrations_path()
    if not migrations_dir.exists():
        raise FileNotFoundError(f"Alembic migrations not found at {migrations_dir}")

    alembic_cfg = Config()
    alembic_cfg.set_main_option("script_location", str(migrations_dir))
    resolved = settings or get_settings()
    if not resolved.database_url:
        raise ValueError("Settings.database_url is required.")
    alembic_cfg.attributes["settings"] = resolved
    alembic_cfg.attributes["configure_logger"] = False
    # ConfigParser treats % as interpolation; escape to preserve URL encoding.
    safe_url = str(resolved.database_url).replace("%", "%%")
    alembic_cfg.set_main_option("sqlalchemy.url", safe_url)
    yield alembic_cfg


def run_migrations(settings: DatabaseSettings | None = None, *, revision: str = "head") -> None:
    resolved = settings or get_settings()
    with migration_lock(resolved):
        with alembic_config(resolved) as alembic_cfg:
            command.upgrade(alembic_cfg, revision)
