from __future__ import annotations

import json
from collections.abc import Iterator
from pathlib import Path

import pytest
from typer.testing import CliRunner

from orion_api.cli import app
from orion_api.settings import Settings, get_settings, reload_settings
from orion_db import metadata
from orion_db.engine import build_engine

runner = CliRunner()


@pytest.fixture()
def cli_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Settings]:
    monkeypatch.setenv("ORION_SECRET_KEY", "orion-cli-secret-key-please-change-0123456789")
    monkeypatch.setenv("ORION_DATABASE_URL", f"sqlite+pysqlite:///{tmp_path / 'orion.sqlite'}")
    monkeypatch.setenv("ORION_OAUTH_ENVIRONMENT", "development")
    monkeypatch.chdir(tmp_path)
    settings = reload_settings()
    engine = build_engine(settings)
    metadata.create_all(engine)
    engine.dispose()
    yield settings
    get_settings.cache_clear()


def test_clients_create_prints_the_secret_once(cli_settings: Settings) -> None:
    result = runner.invoke(
        app,
        [
            "clients",
            "create",
            "atlas",
            "--name",
            "Atlas",
            "--redirect-uri",
            "https://atlas.example.com/callback",
        ],
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["client_id"] == "atlas"
    assert payload["environment"] == "development"
    assert payload["client_secret"]


def test_duplicate_client_fails(cli_settings: Settings) -> None:
    args = ["clients", "create", "atlas", "--name", "Atlas", "--redirect-uri", "https://a.example/cb"]
    runner.invoke(app, args)

    result = runner.invoke(app, args)

    assert result.exit_code == 1


def test_public_client_has_no_secret(cli_settings: Settings) -> None:
    result = runner.invoke(
        app,
        ["clients", "create", "spa", "--name", "SPA", "--redirect-uri", "https://spa.example/cb", "--public"],
    )

    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout)["client_secret"] is None


def test_delete_unknown_client_fails(cli_settings: Settings) -> None:
    result = runner.invoke(app, ["clients", "delete", "ghost"])

    assert result.exit_code == 1


def test_keys_rotate_then_list(cli_settings: Settings) -> None:
    first = runner.invoke(app, ["keys", "rotate"])
    second = runner.invoke(app, ["keys", "rotate"])

    assert first.exit_code == 0, first.output
    assert second.exit_code == 0, second.output

    listed = runner.invoke(app, ["keys", "list", "--json"])
    rows = json.loads(listed.stdout)
    assert len(rows) == 2
    assert [row["active"] for row in rows] == [True, False]
    assert second.stdout.strip().endswith(rows[0]["kid"])


def test_tenants_create_add_domain_and_list(cli_settings: Settings) -> None:
    created = runner.invoke(
        app,
        ["tenants", "create", "Contoso", "--domain", "contoso.com", "--no-self-provisioning", "--invite-only"],
    )

    assert created.exit_code == 0, created.output
    tenant = json.loads(created.stdout)
    assert tenant["allow_user_self_provisioning"] is False
    assert tenant["invite_only"] is True

    added = runner.invoke(app, ["tenants", "add-domain", tenant["id"], "contoso.co.uk"])
    assert added.exit_code == 0, added.output

    listed = runner.invoke(app, ["tenants", "list"])
    rows = json.loads(listed.stdout)
    assert [row["name"] for row in rows] == ["Contoso"]
    assert sorted(domain["domain"] for domain in rows[0]["domains"]) == ["contoso.co.uk", "contoso.com"]


def test_tenant_domain_already_taken_fails(cli_settings: Settings) -> None:
    runner.invoke(app, ["tenants", "create", "Contoso", "--domain", "contoso.com"])

    result = runner.invoke(app, ["tenants", "create", "Impostor", "--domain", "contoso.com"])

    assert result.exit_code == 1
