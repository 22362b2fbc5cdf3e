"""Consent store keyed by (user, client, normalised scope hash)."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orion_api.common.logging import log_context
from orion_api.common.problem_details import ApiError
from orion_api.features.oauth.scopes import normalize_scopes, scopes_hash
from orion_db import utc_now
from orion_db.models import OAuthToken, OAuthUserConsent

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ConsentStore:
    """At most one active consent per (user, client, scope set)."""

    session: Session

    def find_active(
        self,
        *,
        user_id: UUID,
        client_pk: UUID,
        scope_hash: str,
    ) -> OAuthUserConsent | None:
        stmt = (
            select(OAuthUserConsent)
            .where(OAuthUserConsent.user_id == user_id)
            .where(OAuthUserConsent.client_pk == client_pk)
            .where(OAuthUserConsent.scopes_hash == scope_hash)
            .where(OAuthUserConsent.revoked_at.is_(None))
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def touch(self, consent: OAuthUserConsent, *, now: datetime | None = None) -> OAuthUserConsent:
        consent.last_used_at = now or utc_now()
        self.session.flush()
        return consent

    def grant(
        self,
        *,
        user_id: UUID,
        client_pk: UUID,
        scopes: Iterable[str],
        now: datetime | None = None,
    ) -> OAuthUserConsent:
        """Record approval; an existing active row is touched, never duplicated."""

        normalized = normalize_scopes(list(scopes))
        digest = scopes_hash(normalized)
        moment = now or utc_now()

        existing = self.find_active(user_id=user_id, client_pk=client_pk, scope_hash=digest)
        if existing is not None:
            return self.touch(existing, now=moment)

        consent = OAuthUserConsent(
            user_id=user_id,
            client_pk=client_pk,
            scopes=normalized,
            scopes_hash=digest,
            created_at=moment,
            last_used_at=moment,
        )
        try:
            with self.session.begin_nested():
                self.session.add(consent)
        except IntegrityError:
            # A concurrent approval inserted the active row first.
            existing = self.find_active(user_id=user_id, client_pk=client_pk, scope_hash=digest)
            if existing is None:
                raise
            return self.touch(existing, now=moment)

        logger.info(
            "oauth.consent.granted",
            extra=log_context(user_id=user_id, client_pk=str(client_pk), scopes=" ".join(normalized)),
        )
        return consent

    def list_for_user(self, user_id: UUID) -> list[OAuthUserConsent]:
        stmt = (
            select(OAuthUserConsent)
            .where(OAuthUserConsent.user_id == user_id)
            .where(OAuthUserConsent.revoked_at.is_(None))
            .order_by(OAuthUserConsent.last_used_at.desc())
        )
        return list(self.session.execute(stmt).scalars().all())

    def revoke(self, *, user_id: UUID, consent_id: UUID) -> OAuthUserConsent:
        """Revoke a consent and the user's live tokens for that client."""

        consent = self.session.get(OAuthUserConsent, consent_id)
        if consent is None or consent.user_id != user_id or consent.revoked_at is not None:
            raise ApiError.not_found("Consent not found")
        moment = utc_now()
        consent.revoked_at = moment
        self.session.execute(
            update(OAuthToken)
            .where(OAuthToken.user_id == user_id)
            .where(OAuthToken.client_pk == consent.client_pk)
            .where(OAuthToken.revoked_at.is_(None))
            .values(revoked_at=moment)
            .execution_options(synchronize_session=False)
        )
        self.session.flush()
        logger.info(
            "oauth.consent.revoked",
            extra=log_context(user_id=user_id, consent_id=str(consent_id)),
        )
        return consent


__all__ = ["ConsentStore"]
