"""Mapping of provider ID-token claims onto a local identity."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any


class IdentityClaimsError(ValueError):
    """The provider's claims lack a mandatory attribute."""


@dataclass(frozen=True, slots=True)
class FederatedIdentity:
    provider: str
    subject: str
    email: str
    display_name: str
    given_name: str | None = None
    family_name: str | None = None
    provider_tenant_id: str | None = None
    email_verified: bool = True


def _claim(claims: Mapping[str, Any], *names: str) -> str | None:
    for name in names:
        value = claims.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def identity_from_claims(provider: str, claims: Mapping[str, Any]) -> FederatedIdentity:
    """Build a ``FederatedIdentity``; subject and email are required.

    Entra ID puts the stable object id in ``oid`` and may carry the address
    only in ``preferred_username`` or ``upn``.
    """

    subject = _claim(claims, "oid", "sub")
    if subject is None:
        raise IdentityClaimsError("Identity provider did not return a subject")
    email = _claim(claims, "email", "preferred_username", "upn")
    if email is None or "@" not in email:
        raise IdentityClaimsError("Identity provider did not return an email address")
    email = email.lower()

    given_name = _claim(claims, "given_name")
    family_name = _claim(claims, "family_name")
    display_name = _claim(claims, "name")
    if display_name is None:
        joined = " ".join(part for part in (given_name, family_name) if part)
        display_name = joined or email.split("@", 1)[0]

    return FederatedIdentity(
        provider=provider,
        subject=subject,
        email=email,
        display_name=display_name,
        given_name=given_name,
        family_name=family_name,
        provider_tenant_id=_claim(claims, "tid"),
    )


__all__ = ["FederatedIdentity", "IdentityClaimsError", "identity_from_claims"]
