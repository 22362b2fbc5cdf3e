"""Orion identity service settings (conventional Pydantic v2)."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import timedelta
from typing import Literal

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings

from orion_common.settings import (
    DatabaseSettingsMixin,
    create_settings_accessors,
    normalize_log_format,
    normalize_log_level,
    orion_settings_config,
)

# ---- Defaults ---------------------------------------------------------------

DEFAULT_PUBLIC_WEB_URL = "http://localhost:8000"
DEFAULT_CORS_ORIGINS: list[str] = []

OAuthEnvironment = Literal["development", "staging", "production"]

DEFAULT_ALLOWED_SCOPES: list[str] = [
    "openid",
    "profile",
    "email",
    "offline_access",
    "orion:read",
    "orion:write",
    "nebula:read",
    "nebula:write",
    "vega:read",
    "vega:write",
]

DEFAULT_SSO_SCOPES: list[str] = ["openid", "profile", "email", "User.Read"]


@dataclass(frozen=True, slots=True)
class TokenLifetimes:
    authorization_code: timedelta
    access_token: timedelta
    refresh_token: timedelta
    id_token: timedelta


_BASE_LIFETIMES = TokenLifetimes(
    authorization_code=timedelta(minutes=10),
    access_token=timedelta(hours=1),
    refresh_token=timedelta(days=30),
    id_token=timedelta(hours=1),
)

ENVIRONMENT_TOKEN_LIFETIMES: dict[str, TokenLifetimes] = {
    "development": TokenLifetimes(
        authorization_code=_BASE_LIFETIMES.authorization_code,
        access_token=timedelta(hours=24),
        refresh_token=timedelta(days=90),
        id_token=_BASE_LIFETIMES.id_token,
    ),
    "staging": _BASE_LIFETIMES,
    "production": TokenLifetimes(
        authorization_code=timedelta(minutes=5),
        access_token=timedelta(minutes=30),
        refresh_token=_BASE_LIFETIMES.refresh_token,
        id_token=_BASE_LIFETIMES.id_token,
    ),
}


def _parse_list(value: object) -> object:
    if value is None:
        return value
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return []
        if raw.startswith("["):
            try:
                parsed = json.loads(raw)
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, list):
                return parsed
        separators = "," if "," in raw else None
        return [item.strip() for item in raw.split(separators) if item.strip()]
    if isinstance(value, tuple):
        return list(value)
    return value


# ---- Settings ---------------------------------------------------------------


class Settings(DatabaseSettingsMixin, BaseSettings):
    """FastAPI settings loaded from ORION_* environment variables."""

    model_config = orion_settings_config(enable_decoding=False, populate_by_name=True)

    # Core
    app_name: str = "Orion Identity Service"
    app_version: str = "unknown"
    log_format: str = "console"
    log_level: str = "INFO"
    api_log_level: str | None = None
    request_log_level: str | None = None
    access_log_enabled: bool = True
    access_log_level: str | None = None
    database_log_level: str | None = None

    # Server
    public_web_url: str = DEFAULT_PUBLIC_WEB_URL
    issuer: str | None = None
    api_host: str | None = None
    api_port: int = Field(8000, ge=1, le=65535)
    server_cors_origins: list[str] = Field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))

    # Secrets
    secret_key: SecretStr = Field(..., min_length=32)
    signing_key_encryption_key: SecretStr | None = None

    # Sessions
    session_cookie_name: str = "orion_session"
    session_cookie_domain: str | None = None
    session_cookie_path: str = "/"
    session_ttl: timedelta = Field(default=timedelta(days=7))

    # OAuth authorization server
    oauth_environment: OAuthEnvironment = "development"
    oauth_authorization_code_ttl: timedelta | None = None
    oauth_access_token_ttl: timedelta | None = None
    oauth_refresh_token_ttl: timedelta | None = None
    oauth_id_token_ttl: timedelta | None = None
    oauth_pending_request_ttl: timedelta = Field(default=timedelta(minutes=10))
    oauth_allowed_scopes: list[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_SCOPES))
    first_party_client_id: str = "orion"
    login_path: str = "/login"
    consent_path: str = "/oauth/consent"

    # Signing keys
    signing_key_rotation_interval: timedelta = Field(default=timedelta(days=30))
    signing_key_retained_count: int = Field(3, ge=1)
    signing_key_size: int = Field(2048, ge=2048)
    signing_key_check_interval_seconds: int = Field(24 * 60 * 60, gt=0)

    # Background jobs
    background_jobs_enabled: bool = True

    # Federation (single enterprise OIDC provider)
    sso_provider_id: str = "microsoft"
    sso_provider_label: str = "Microsoft"
    sso_authority: str = "https://login.microsoftonline.com"
    sso_tenant: str = "organizations"
    sso_issuer: str | None = None
    sso_client_id: str | None = None
    sso_client_secret: SecretStr | None = None
    sso_scopes: list[str] = Field(default_factory=lambda: list(DEFAULT_SSO_SCOPES))
    sso_prompt: str | None = "select_account"
    sso_state_ttl: timedelta = Field(default=timedelta(minutes=10))
    sso_sweep_interval_seconds: int = Field(300, gt=0)
    sso_admin_consent_scope: str = "https://graph.microsoft.com/.default"
    sso_admin_consent_redirect_path: str = "/admin/sso/consent-complete"

    # Tenants
    tenant_self_registration_enabled: bool = True

    # ---- Validators ----

    @field_validator("server_cors_origins", "oauth_allowed_scopes", "sso_scopes", mode="before")
    @classmethod
    def _parse_lists(cls, value: object) -> object:
        return _parse_list(value)

    @field_validator("oauth_environment", mode="before")
    @classmethod
    def _normalize_oauth_environment(cls, value: object) -> object:
        if value is None:
            return "development"
        raw = str(value).strip().lower()
        if raw not in ENVIRONMENT_TOKEN_LIFETIMES:
            raise ValueError(
                "ORION_OAUTH_ENVIRONMENT must be one of: development, staging, production."
            )
        return raw

    @model_validator(mode="after")
    def _finalize(self) -> Settings:
        self.log_format = normalize_log_format(self.log_format, env_var="ORION_LOG_FORMAT")

        normalized_log_level = normalize_log_level(self.log_level, env_var="ORION_LOG_LEVEL")
        if normalized_log_level is None:
            raise ValueError("ORION_LOG_LEVEL must not be empty.")
        self.log_level = normalized_log_level

        self.api_log_level = normalize_log_level(
            self.api_log_level, env_var="ORION_API_LOG_LEVEL"
        )
        self.request_log_level = normalize_log_level(
            self.request_log_level,
            env_var="ORION_REQUEST_LOG_LEVEL",
        )
        self.access_log_level = normalize_log_level(
            self.access_log_level,
            env_var="ORION_ACCESS_LOG_LEVEL",
        )
        self.database_log_level = normalize_log_level(
            self.database_log_level,
            env_var="ORION_DATABASE_LOG_LEVEL",
        )

        if len(self.secret_key.get_secret_value().encode("utf-8")) < 32:
            raise ValueError("ORION_SECRET_KEY must be at least 32 bytes (recommend 64+).")

        self.public_web_url = self.public_web_url.rstrip("/")
        if self.issuer:
            self.issuer = self.issuer.rstrip("/")
        self.sso_authority = self.sso_authority.rstrip("/")

        if "openid" not in self.oauth_allowed_scopes:
            raise ValueError("ORION_OAUTH_ALLOWED_SCOPES must include openid.")
        if "openid" not in self.sso_scopes:
            raise ValueError("ORION_SSO_SCOPES must include openid.")

        profile = ENVIRONMENT_TOKEN_LIFETIMES[self.oauth_environment]
        if self.oauth_authorization_code_ttl is None:
            self.oauth_authorization_code_ttl = profile.authorization_code
        if self.oauth_access_token_ttl is None:
            self.oauth_access_token_ttl = profile.access_token
        if self.oauth_refresh_token_ttl is None:
            self.oauth_refresh_token_ttl = profile.refresh_token
        if self.oauth_id_token_ttl is None:
            self.oauth_id_token_ttl = profile.id_token
        if self.oauth_authorization_code_ttl > timedelta(minutes=10):
            raise ValueError("ORION_OAUTH_AUTHORIZATION_CODE_TTL must not exceed 10 minutes.")
        return self

    # ---- Convenience ----

    @property
    def effective_api_log_level(self) -> str:
        return self.api_log_level or self.log_level

    @property
    def effective_request_log_level(self) -> str:
        return self.request_log_level or self.effective_api_log_level

    @property
    def effective_access_log_level(self) -> str:
        return self.access_log_level or self.effective_api_log_level

    @property
    def secret_key_value(self) -> str:
        return self.secret_key.get_secret_value()

    @property
    def effective_issuer(self) -> str:
        return self.issuer or self.public_web_url

    @property
    def token_lifetimes(self) -> TokenLifetimes:
        return TokenLifetimes(
            authorization_code=self.oauth_authorization_code_ttl or timedelta(minutes=10),
            access_token=self.oauth_access_token_ttl or timedelta(hours=1),
            refresh_token=self.oauth_refresh_token_ttl or timedelta(days=30),
            id_token=self.oauth_id_token_ttl or timedelta(hours=1),
        )

    @property
    def effective_sso_issuer(self) -> str:
        if self.sso_issuer:
            return self.sso_issuer.rstrip("/")
        return f"{self.sso_authority}/{self.sso_tenant}/v2.0"

    @property
    def sso_configured(self) -> bool:
        return bool(self.sso_client_id and self.sso_client_secret is not None)


get_settings, reload_settings = create_settings_accessors(Settings)


__all__ = [
    "DEFAULT_ALLOWED_SCOPES",
    "DEFAULT_PUBLIC_WEB_URL",
    "ENVIRONMENT_TOKEN_LIFETIMES",
    "OAuthEnvironment",
    "Settings",
    "TokenLifetimes",
    "get_settings",
    "reload_settings",
]
