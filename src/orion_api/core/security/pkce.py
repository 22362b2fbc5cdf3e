"""Proof Key for Code Exchange (RFC 7636) helpers."""

from __future__ import annotations

import base64
import hashlib
import hmac
import re
import secrets

SUPPORTED_CHALLENGE_METHODS = ("S256", "plain")
_VERIFIER_PATTERN = re.compile(r"^[A-Za-z0-9\-._~]{43,128}$")


def generate_code_verifier() -> str:
    """Return a fresh verifier (64 URL-safe characters)."""

    return secrets.token_urlsafe(48)


def s256_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def is_valid_code_verifier(verifier: str) -> bool:
    return bool(_VERIFIER_PATTERN.fullmatch(verifier))


def is_valid_code_challenge(challenge: str) -> bool:
    # Both methods produce values from the same alphabet and length range.
    return bool(_VERIFIER_PATTERN.fullmatch(challenge))


def verify_code_verifier(verifier: str | None, *, challenge: str, method: str | None) -> bool:
    """Return ``True`` when ``verifier`` reduces to ``challenge`` under ``method``.

    ``S256`` compares the base64url SHA-256 of the verifier; ``plain`` compares
    the verifier literally. A missing or malformed verifier never matches.
    """

    if not verifier or not is_valid_code_verifier(verifier):
        return False
    resolved = method or "plain"
    if resolved == "S256":
        candidate = s256_challenge(verifier)
    elif resolved == "plain":
        candidate = verifier
    else:
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), challenge.encode("utf-8"))


__all__ = [
    "SUPPORTED_CHALLENGE_METHODS",
    "generate_code_verifier",
    "is_valid_code_challenge",
    "is_valid_code_verifier",
    "s256_challenge",
    "verify_code_verifier",
]
