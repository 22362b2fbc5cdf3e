"""Settings for migrations and other database tooling run outside the API."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings

from orion_common.settings import (
    DatabaseSettingsMixin,
    DatabaseSettingsProtocol,
    create_settings_accessors,
    orion_settings_config,
)

DatabaseSettings = DatabaseSettingsProtocol

DEFAULT_MIGRATION_LOCK_KEY = 0x0B10DB00


class Settings(DatabaseSettingsMixin, BaseSettings):
    """Only the ``ORION_DATABASE_*`` values; no secret key is needed to migrate."""

    model_config = orion_settings_config()

    database_migration_lock_key: int = Field(
        DEFAULT_MIGRATION_LOCK_KEY,
        description="Postgres advisory lock held while migrations run.",
    )


get_settings, reload_settings = create_settings_accessors(Settings)


__all__ = [
    "DEFAULT_MIGRATION_LOCK_KEY",
    "DatabaseSettings",
    "Settings",
    "get_settings",
    "reload_settings",
]
