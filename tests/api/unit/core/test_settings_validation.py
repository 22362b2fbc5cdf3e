from __future__ import annotations

from datetime import timedelta

import pytest
from pydantic import ValidationError

from orion_api.settings import ENVIRONMENT_TOKEN_LIFETIMES, Settings

_SECRET = "orion-test-secret-key-please-change-0123456789"
_DATABASE_URL = "sqlite+pysqlite:///:memory:"


def _settings(**overrides) -> Settings:
    values = {"_env_file": None, "secret_key": _SECRET, "database_url": _DATABASE_URL}
    values.update(overrides)
    return Settings(**values)


def test_short_secret_key_is_rejected() -> None:
    with pytest.raises(ValidationError):
        _settings(secret_key="too-short")


@pytest.mark.parametrize("environment", ["development", "staging", "production"])
def test_token_lifetimes_follow_the_environment_profile(environment: str) -> None:
    settings = _settings(oauth_environment=environment)

    assert settings.token_lifetimes == ENVIRONMENT_TOKEN_LIFETIMES[environment]


def test_explicit_lifetimes_override_the_profile() -> None:
    settings = _settings(oauth_environment="production", oauth_access_token_ttl=timedelta(minutes=5))

    assert settings.token_lifetimes.access_token == timedelta(minutes=5)
    assert settings.token_lifetimes.authorization_code == timedelta(minutes=5)


def test_authorization_code_ttl_is_capped_at_ten_minutes() -> None:
    with pytest.raises(ValidationError):
        _settings(oauth_authorization_code_ttl=timedelta(minutes=11))


def test_unknown_environment_is_rejected() -> None:
    with pytest.raises(ValidationError):
        _settings(oauth_environment="qa")


def test_allowed_scopes_must_include_openid() -> None:
    with pytest.raises(ValidationError):
        _settings(oauth_allowed_scopes=["profile", "email"])


def test_issuer_defaults_to_public_url_without_trailing_slash() -> None:
    settings = _settings(public_web_url="https://id.orion.example/")

    assert settings.effective_issuer == "https://id.orion.example"


def test_sso_issuer_is_derived_from_authority_and_tenant() -> None:
    settings = _settings(sso_tenant="organizations")

    assert settings.effective_sso_issuer == "https://login.microsoftonline.com/organizations/v2.0"
    assert not settings.sso_configured
