"""Opaque token helpers.

Every bearer-style secret the service hands out (authorization codes,
access and refresh tokens, browser sessions, pending-request handles) is a
random URL-safe string. Only a keyed HMAC-SHA256 digest is persisted, so a
database dump alone cannot be replayed and lookups never compare plaintext.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets


def mint_opaque_token(length: int = 32) -> str:
    """Return a random opaque token with ``length`` bytes of entropy."""

    if length <= 0:
        raise ValueError("Token length must be positive")
    return secrets.token_urlsafe(length)


def hash_opaque_token(token: str, *, key: str) -> str:
    """Return the at-rest digest of ``token`` keyed with ``key``."""

    digest = hmac.new(key.encode("utf-8"), token.encode("utf-8"), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


__all__ = ["hash_opaque_token", "mint_opaque_token"]
