"""RS256 signing keys: generation, rotation, signing, verification, JWKS.

Each key moves Active -> Retired -> Purged. Exactly one key is active
(enforced by a partial unique index); retired keys stay only to verify
tokens they signed and are deleted once they fall outside the retained
count.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orion_api.common.logging import log_context
from orion_api.core.security.secrets import decrypt_secret, encrypt_secret
from orion_api.settings import Settings
from orion_db import utc_now
from orion_db.models import SigningKey

logger = logging.getLogger(__name__)

SIGNING_ALGORITHM = "RS256"
_PUBLIC_EXPONENT = 65537


class UnknownSigningKeyError(jwt.InvalidTokenError):
    """The token names a ``kid`` that is not (or no longer) retained."""

    def __init__(self, kid: str | None) -> None:
        self.kid = kid
        super().__init__(f"Unknown signing key: {kid!r}")


class KeyGenerationError(RuntimeError):
    """Raised when a new signing key cannot be produced or stored."""


def _generate_kid(now: datetime) -> str:
    return f"key_{int(now.timestamp())}_{secrets.token_hex(4)}"


@dataclass(slots=True)
class KeyManager:
    """Owns the ``signing_keys`` table."""

    session: Session
    settings: Settings

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def active_key(self) -> SigningKey | None:
        stmt = select(SigningKey).where(SigningKey.is_active.is_(True)).limit(1)
        return self.session.execute(stmt).scalar_one_or_none()

    def retained_keys(self) -> list[SigningKey]:
        """All keys still usable for verification, active first then newest."""

        stmt = select(SigningKey).order_by(
            SigningKey.is_active.desc(),
            SigningKey.created_at.desc(),
            SigningKey.kid.desc(),
        )
        return list(self.session.execute(stmt).scalars().all())

    # ------------------------------------------------------------------
    # Generation / rotation
    # ------------------------------------------------------------------

    def ensure_active_key(self, *, now: datetime | None = None) -> SigningKey:
        """Return the active key, generating the first one if none exists."""

        active = self.active_key()
        if active is not None:
            return active
        try:
            with self.session.begin_nested():
                key = self._build_key(now or utc_now())
                self.session.add(key)
        except IntegrityError:
            # Another worker generated the key concurrently.
            active = self.active_key()
            if active is None:
                raise KeyGenerationError("Unable to establish an active signing key") from None
            return active
        logger.info("keys.generated", extra=log_context(kid=key.kid))
        return key

    def rotate_if_due(self, *, now: datetime | None = None) -> SigningKey | None:
        """Rotate when the active key is older than the rotation interval.

        Returns the new active key, or ``None`` when nothing was due.
        """

        moment = now or utc_now()
        active = self.active_key()
        if active is None:
            return self.ensure_active_key(now=moment)
        if moment - active.created_at < self.settings.signing_key_rotation_interval:
            return None
        return self.rotate(now=moment)

    def rotate(self, *, now: datetime | None = None) -> SigningKey:
        """Retire every key, activate a fresh one and prune beyond the retained count.

        All three steps share one transaction, so readers see either the old
        active key or the new one and never an empty set.
        """

        moment = now or utc_now()
        try:
            with self.session.begin_nested():
                self.session.execute(
                    update(SigningKey)
                    .where(SigningKey.is_active.is_(True))
                    .values(is_active=False, retired_at=moment)
                    .execution_options(synchronize_session="fetch")
                )
                key = self._build_key(moment)
                self.session.add(key)
                self.session.flush()
                purged = self._prune(keep=key)
        except IntegrityError:
            active = self.active_key()
            if active is None:
                raise KeyGenerationError("Signing key rotation failed") from None
            logger.info("keys.rotation.skipped", extra=log_context(kid=active.kid))
            return active

        logger.info(
            "keys.rotation.completed",
            extra=log_context(kid=key.kid, purged=purged),
        )
        return key

    def _prune(self, *, keep: SigningKey) -> list[str]:
        retired_stmt = (
            select(SigningKey.kid)
            .where(SigningKey.kid != keep.kid)
            .order_by(SigningKey.created_at.desc(), SigningKey.kid.desc())
        )
        retired = list(self.session.execute(retired_stmt).scalars().all())
        keep_retired = max(self.settings.signing_key_retained_count - 1, 0)
        doomed = retired[keep_retired:]
        if doomed:
            self.session.execute(
                delete(SigningKey)
                .where(SigningKey.kid.in_(doomed))
                .execution_options(synchronize_session="fetch")
            )
        return doomed

    def _build_key(self, now: datetime) -> SigningKey:
        try:
            private_key = rsa.generate_private_key(
                public_exponent=_PUBLIC_EXPONENT,
                key_size=self.settings.signing_key_size,
            )
        except (ValueError, TypeError) as exc:
            raise KeyGenerationError("RSA key generation failed") from exc
        private_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode("ascii")
        public_pem = (
            private_key.public_key()
            .public_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PublicFormat.SubjectPublicKeyInfo,
            )
            .decode("ascii")
        )
        return SigningKey(
            kid=_generate_kid(now),
            algorithm=SIGNING_ALGORITHM,
            public_key_pem=public_pem,
            private_key_enc=encrypt_secret(private_pem, self.settings),
            is_active=True,
            created_at=now,
        )

    # ------------------------------------------------------------------
    # Signing / verification
    # ------------------------------------------------------------------

    def sign_token(
        self,
        claims: dict[str, Any],
        *,
        ttl: timedelta,
        now: datetime | None = None,
    ) -> str:
        """Sign ``claims`` with the active key, adding ``iss``, ``iat`` and ``exp``."""

        moment = now or utc_now()
        key = self.ensure_active_key(now=moment)
        payload = dict(claims)
        payload.setdefault("iss", self.settings.effective_issuer)
        payload["iat"] = int(moment.timestamp())
        payload["exp"] = int((moment + ttl).timestamp())
        private_pem = decrypt_secret(key.private_key_enc, self.settings)
        return jwt.encode(
            payload,
            private_pem,
            algorithm=SIGNING_ALGORITHM,
            headers={"kid": key.kid},
        )

    def verify_token(self, token: str, *, audience: str | None = None) -> dict[str, Any]:
        """Verify ``token`` against the retained key named in its header.

        Raises ``UnknownSigningKeyError`` when the ``kid`` is absent or purged
        and ``jwt.InvalidTokenError`` for every other verification failure.
        """

        header = jwt.get_unverified_header(token)
        kid = header.get("kid")
        key = self.session.get(SigningKey, kid) if isinstance(kid, str) and kid else None
        if key is None:
            raise UnknownSigningKeyError(kid if isinstance(kid, str) else None)
        return jwt.decode(
            token,
            key.public_key_pem,
            algorithms=[SIGNING_ALGORITHM],
            issuer=self.settings.effective_issuer,
            audience=audience,
            options={"verify_aud": audience is not None},
        )

    # ------------------------------------------------------------------
    # Publication
    # ------------------------------------------------------------------

    def publish_jwks(self) -> dict[str, list[dict[str, Any]]]:
        keys: list[dict[str, Any]] = []
        seen: set[str] = set()
        for key in self.retained_keys():
            if key.kid in seen:
                continue
            seen.add(key.kid)
            public_key = serialization.load_pem_public_key(key.public_key_pem.encode("ascii"))
            jwk = RSAAlgorithm.to_jwk(public_key, as_dict=True)
            keys.append(
                {
                    "kty": jwk["kty"],
                    "n": jwk["n"],
                    "e": jwk["e"],
                    "kid": key.kid,
                    "alg": SIGNING_ALGORITHM,
                    "use": "sig",
                }
            )
        return {"keys": keys}


__all__ = [
    "KeyGenerationError",
    "KeyManager",
    "SIGNING_ALGORITHM",
    "UnknownSigningKeyError",
]
