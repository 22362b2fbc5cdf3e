"""`orion` management CLI (database, signing keys, OAuth clients, tenants, server)."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import TYPE_CHECKING, Annotated
from uuid import UUID

import typer

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from orion_api.settings import Settings

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    help="Orion identity service CLI.",
)
db_app = typer.Typer(add_completion=False, no_args_is_help=True, help="Database commands.")
keys_app = typer.Typer(add_completion=False, no_args_is_help=True, help="Signing key commands.")
clients_app = typer.Typer(add_completion=False, no_args_is_help=True, help="OAuth client commands.")
tenants_app = typer.Typer(add_completion=False, no_args_is_help=True, help="Tenant commands.")
app.add_typer(db_app, name="db")
app.add_typer(keys_app, name="keys")
app.add_typer(clients_app, name="clients")
app.add_typer(tenants_app, name="tenants")


@contextmanager
def _session_context() -> Iterator[tuple[Session, Settings]]:
    """Yield a session and the settings, committing on success."""
    from sqlalchemy.orm import sessionmaker

    from orion_api.settings import get_settings
    from orion_db.engine import build_engine, session_scope

    settings = get_settings()
    engine = build_engine(settings)
    session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    try:
        with session_scope(session_factory) as session:
            yield session, settings
    finally:
        engine.dispose()


def _json_default(value: object) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    return str(value)


def _emit_json(payload: object) -> None:
    typer.echo(json.dumps(payload, indent=2, default=_json_default))


def _fail(message: str) -> None:
    typer.echo(f"error: {message}", err=True)
    raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# db
# ---------------------------------------------------------------------------


@db_app.command("migrate")
def db_migrate(
    revision: Annotated[str, typer.Option(help="Target Alembic revision.")] = "head",
) -> None:
    """Apply database migrations."""
    from orion_db.migrations_runner import run_migrations

    run_migrations(revision=revision)
    typer.echo(f"Database migrated to {revision}.")


# ---------------------------------------------------------------------------
# keys
# ---------------------------------------------------------------------------


@keys_app.command("rotate")
def keys_rotate() -> None:
    """Retire the active signing key and activate a new one."""
    from orion_api.features.keys.service import KeyManager

    with _session_context() as (session, settings):
        key = KeyManager(session=session, settings=settings).rotate()
        kid = key.kid
    typer.echo(f"Active signing key: {kid}")


@keys_app.command("list")
def keys_list(
    as_json: Annotated[bool, typer.Option("--json", help="Emit JSON.")] = False,
) -> None:
    """List retained signing keys, active first."""
    from orion_api.features.keys.service import KeyManager

    with _session_context() as (session, settings):
        rows = [
            {
                "kid": key.kid,
                "algorithm": key.algorithm,
                "active": key.is_active,
                "created_at": key.created_at,
                "retired_at": key.retired_at,
            }
            for key in KeyManager(session=session, settings=settings).retained_keys()
        ]

    if as_json:
        _emit_json(rows)
        return
    if not rows:
        typer.echo("No signing keys.")
        return
    for row in rows:
        marker = "*" if row["active"] else " "
        retired = row["retired_at"].isoformat() if row["retired_at"] else "-"
        typer.echo(f"{marker} {row['kid']}  created={row['created_at'].isoformat()}  retired={retired}")


# ---------------------------------------------------------------------------
# clients
# ---------------------------------------------------------------------------


@clients_app.command("create")
def clients_create(
    client_id: Annotated[str, typer.Argument(help="Public client identifier.")],
    name: Annotated[str, typer.Option(help="Display name shown on the consent screen.")],
    redirect_uri: Annotated[
        list[str], typer.Option("--redirect-uri", help="Registered redirect URI (repeatable).")
    ],
    public: Annotated[bool, typer.Option("--public", help="Register a public client.")] = False,
    environment: Annotated[str | None, typer.Option(help="Target environment.")] = None,
    no_refresh: Annotated[
        bool, typer.Option("--no-refresh", help="Do not allow the refresh_token grant.")
    ] = False,
    pkce_optional: Annotated[
        bool, typer.Option("--pkce-optional", help="Do not require PKCE.")
    ] = False,
) -> None:
    """Register an OAuth client and print its one-time secret."""
    from orion_api.common.problem_details import ApiError
    from orion_api.features.clients.service import ClientRegistry

    grant_types = ["authorization_code"] if no_refresh else ["authorization_code", "refresh_token"]
    try:
        with _session_context() as (session, settings):
            client, secret = ClientRegistry(session=session, settings=settings).create_client(
                client_id=client_id,
                name=name,
                redirect_uris=redirect_uri,
                confidential=not public,
                environment=environment,
                grant_types=grant_types,
                pkce_required=not pkce_optional,
            )
            payload = {
                "id": client.id,
                "client_id": client.client_id,
                "environment": client.environment,
                "client_secret": secret,
            }
    except ApiError as exc:
        _fail(exc.detail or str(exc))
        return
    _emit_json(payload)
    if secret:
        typer.echo("Store the client secret now; it cannot be shown again.", err=True)


@clients_app.command("delete")
def clients_delete(
    client_id: Annotated[str, typer.Argument(help="Public client identifier.")],
    environment: Annotated[str | None, typer.Option(help="Target environment.")] = None,
) -> None:
    """Delete a client with its codes, tokens and consents."""
    from orion_api.features.clients.service import ClientRegistry

    with _session_context() as (session, settings):
        registry = ClientRegistry(session=session, settings=settings)
        client = registry.find_client(client_id, environment)
        if client is None:
            _fail(f"client not found: {client_id}")
            return
        registry.delete_client(client)
    typer.echo(f"Deleted client {client_id}.")


# ---------------------------------------------------------------------------
# tenants
# ---------------------------------------------------------------------------


def _tenant_payload(tenant) -> dict[str, object]:
    return {
        "id": tenant.id,
        "name": tenant.name,
        "allow_user_self_provisioning": tenant.allow_user_self_provisioning,
        "invite_only": tenant.invite_only,
        "sso_tenant_id": tenant.sso_tenant_id,
        "domains": [
            {"id": domain.id, "domain": domain.domain, "verified": domain.verified}
            for domain in tenant.domains
        ],
    }


@tenants_app.command("create")
def tenants_create(
    name: Annotated[str, typer.Argument(help="Tenant display name.")],
    domain: Annotated[
        list[str] | None, typer.Option("--domain", help="Verified email domain (repeatable).")
    ] = None,
    self_provisioning: Annotated[
        bool,
        typer.Option(
            "--self-provisioning/--no-self-provisioning",
            help="Let new users from the tenant's domains join on first sign-in.",
        ),
    ] = False,
    invite_only: Annotated[bool, typer.Option("--invite-only", help="Require invitations.")] = False,
    sso_tenant_id: Annotated[
        str | None, typer.Option(help="Provider directory (tenant) identifier.")
    ] = None,
) -> None:
    """Create a tenant with its verified domains."""
    from orion_api.common.problem_details import ApiError
    from orion_api.features.tenants.service import TenantDirectory

    try:
        with _session_context() as (session, _settings):
            tenant = TenantDirectory(session=session).create_tenant(
                name=name,
                domains=domain or [],
                allow_user_self_provisioning=self_provisioning,
                invite_only=invite_only,
                sso_tenant_id=sso_tenant_id,
            )
            payload = _tenant_payload(tenant)
    except ApiError as exc:
        _fail(exc.detail or str(exc))
        return
    _emit_json(payload)


@tenants_app.command("add-domain")
def tenants_add_domain(
    tenant_id: Annotated[UUID, typer.Argument(help="Tenant identifier.")],
    domain: Annotated[str, typer.Argument(help="Email domain to register.")],
    unverified: Annotated[
        bool, typer.Option("--unverified", help="Register without marking the domain verified.")
    ] = False,
) -> None:
    """Register an email domain for an existing tenant."""
    from orion_api.common.problem_details import ApiError
    from orion_api.features.tenants.service import TenantDirectory

    try:
        with _session_context() as (session, _settings):
            directory = TenantDirectory(session=session)
            tenant = directory.get(tenant_id)
            if tenant is None:
                _fail(f"tenant not found: {tenant_id}")
                return
            record = directory.add_domain(tenant, domain, verified=not unverified)
            added = record.domain
    except ApiError as exc:
        _fail(exc.detail or str(exc))
        return
    typer.echo(f"Registered {added} for tenant {tenant_id}.")


@tenants_app.command("list")
def tenants_list() -> None:
    """List tenants with their domains as JSON."""
    from orion_api.features.tenants.service import TenantDirectory

    with _session_context() as (session, _settings):
        rows = [_tenant_payload(tenant) for tenant in TenantDirectory(session=session).list_tenants()]
    _emit_json(rows)


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


@app.command("serve")
def serve(
    host: Annotated[str | None, typer.Option(help="Bind address.")] = None,
    port: Annotated[int | None, typer.Option(help="Bind port.")] = None,
    reload: Annotated[bool, typer.Option(help="Reload on code changes.")] = False,
) -> None:
    """Run the API with uvicorn."""
    import uvicorn

    from orion_api.settings import get_settings

    settings = get_settings()
    resolved_host = host or settings.api_host or "0.0.0.0"
    resolved_port = port or settings.api_port
    typer.echo(f"Starting Orion identity service on http://{resolved_host}:{resolved_port}")
    uvicorn.run(
        "orion_api.asgi:app",
        host=resolved_host,
        port=resolved_port,
        reload=reload,
        log_level=settings.effective_api_log_level.lower(),
        access_log=settings.access_log_enabled,
    )


__all__ = ["app"]
