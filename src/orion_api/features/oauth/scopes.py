"""Scope normalisation, hashing and descriptions."""

from __future__ import annotations

import base64
import hashlib
from collections.abc import Iterable

OPENID_SCOPE = "openid"

SCOPE_DESCRIPTIONS: dict[str, str] = {
    "openid": "Sign you in with your Orion account",
    "profile": "View your name and username",
    "email": "View your email address",
    "offline_access": "Stay signed in when you are not using the application",
    "orion:read": "Read your assessments and results",
    "orion:write": "Create and update assessments on your behalf",
    "nebula:read": "Read your Nebula workspace data",
    "nebula:write": "Update your Nebula workspace data",
    "vega:read": "Read your Vega workspace data",
    "vega:write": "Update your Vega workspace data",
}


def normalize_scopes(raw: str | Iterable[str] | None) -> list[str]:
    """Split on whitespace, drop duplicates and sort."""

    if raw is None:
        return []
    items = raw.split() if isinstance(raw, str) else [item.strip() for item in raw]
    return sorted({item for item in items if item})


def scopes_hash(scopes: Iterable[str]) -> str:
    """Stable digest of a scope set: base64url(sha256(" ".join(sorted)))."""

    joined = " ".join(normalize_scopes(list(scopes)))
    digest = hashlib.sha256(joined.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def format_scope(scopes: Iterable[str]) -> str:
    return " ".join(normalize_scopes(list(scopes)))


def unknown_scopes(scopes: Iterable[str], allowed: Iterable[str]) -> list[str]:
    permitted = set(allowed)
    return [scope for scope in scopes if scope not in permitted]


def describe_scope(scope: str) -> str:
    return SCOPE_DESCRIPTIONS.get(scope, scope)


__all__ = [
    "OPENID_SCOPE",
    "SCOPE_DESCRIPTIONS",
    "describe_scope",
    "format_scope",
    "normalize_scopes",
    "scopes_hash",
    "unknown_scopes",
]
