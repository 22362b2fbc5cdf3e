"""OAuth 2.1 authorization-server persistence: clients, codes, tokens, consents."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    text,
    true,
)
from sqlalchemy.ext.mutable import MutableDict, MutableList
from sqlalchemy.orm import Mapped, mapped_column, relationship

from orion_db import GUID, Base, TimestampMixin, UTCDateTime, UUIDPrimaryKeyMixin, utc_now

OAUTH_ENVIRONMENT_VALUES = ("development", "staging", "production")
DEFAULT_GRANT_TYPES = ("authorization_code", "refresh_token")


class OAuthClient(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Registered relying-party application."""

    __tablename__ = "oauth_clients"

    client_id: Mapped[str] = mapped_column(String(255), nullable=False)
    environment: Mapped[str] = mapped_column(String(20), nullable=False, default="development")
    client_secret_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text(), nullable=True)
    logo_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    redirect_uris: Mapped[list[str]] = mapped_column(
        MutableList.as_mutable(JSON()),
        nullable=False,
        default=list,
    )
    post_logout_redirect_uris: Mapped[list[str]] = mapped_column(
        MutableList.as_mutable(JSON()),
        nullable=False,
        default=list,
    )
    grant_types: Mapped[list[str]] = mapped_column(
        MutableList.as_mutable(JSON()),
        nullable=False,
        default=lambda: list(DEFAULT_GRANT_TYPES),
    )
    pkce_required: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=true(),
    )

    authorization_codes: Mapped[list[OAuthAuthorizationCode]] = relationship(
        "OAuthAuthorizationCode",
        back_populates="client",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    tokens: Mapped[list[OAuthToken]] = relationship(
        "OAuthToken",
        back_populates="client",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    consents: Mapped[list[OAuthUserConsent]] = relationship(
        "OAuthUserConsent",
        back_populates="client",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("client_id", "environment", name="uq_oauth_clients_client_environment"),
    )

    @property
    def is_confidential(self) -> bool:
        return self.client_secret_hash is not None


class OAuthAuthorizationCode(Base):
    """Single-use authorization code, stored only as a hash."""

    __tablename__ = "oauth_authorization_codes"

    code_hash: Mapped[str] = mapped_column(String(128), primary_key=True)
    client_pk: Mapped[UUID] = mapped_column(
        GUID(),
        ForeignKey("oauth_clients.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[UUID] = mapped_column(
        GUID(),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    scope: Mapped[str] = mapped_column(Text(), nullable=False, default="")
    redirect_uri: Mapped[str] = mapped_column(String(2048), nullable=False)
    code_challenge: Mapped[str | None] = mapped_column(String(255), nullable=True)
    code_challenge_method: Mapped[str | None] = mapped_column(String(16), nullable=True)
    nonce: Mapped[str | None] = mapped_column(String(255), nullable=True)
    auth_time: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utc_now)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    client: Mapped[OAuthClient] = relationship("OAuthClient", back_populates="authorization_codes")

    __table_args__ = (Index("ix_oauth_authorization_codes_expires_at", "expires_at"),)


class OAuthToken(UUIDPrimaryKeyMixin, Base):
    """Access + refresh token pair, stored only as hashes."""

    __tablename__ = "oauth_tokens"

    access_token_hash: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    refresh_token_hash: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True)
    user_id: Mapped[UUID] = mapped_column(
        GUID(),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    client_pk: Mapped[UUID] = mapped_column(
        GUID(),
        ForeignKey("oauth_clients.id", ondelete="CASCADE"),
        nullable=False,
    )
    scopes: Mapped[list[str]] = mapped_column(
        MutableList.as_mutable(JSON()),
        nullable=False,
        default=list,
    )
    token_type: Mapped[str] = mapped_column(String(20), nullable=False, default="Bearer")
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    refresh_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    auth_time: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utc_now)

    client: Mapped[OAuthClient] = relationship("OAuthClient", back_populates="tokens")

    __table_args__ = (
        Index("ix_oauth_tokens_user_client", "user_id", "client_pk"),
        Index("ix_oauth_tokens_expires_at", "expires_at"),
    )


class OAuthUserConsent(UUIDPrimaryKeyMixin, Base):
    """A user's approval of a client for a normalised scope set."""

    __tablename__ = "oauth_user_consents"

    user_id: Mapped[UUID] = mapped_column(
        GUID(),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    client_pk: Mapped[UUID] = mapped_column(
        GUID(),
        ForeignKey("oauth_clients.id", ondelete="CASCADE"),
        nullable=False,
    )
    scopes: Mapped[list[str]] = mapped_column(
        MutableList.as_mutable(JSON()),
        nullable=False,
        default=list,
    )
    scopes_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utc_now)
    last_used_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utc_now)
    revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    client: Mapped[OAuthClient] = relationship("OAuthClient", back_populates="consents")

    __table_args__ = (
        Index(
            "uq_oauth_user_consents_active",
            "user_id",
            "client_pk",
            "scopes_hash",
            unique=True,
            postgresql_where=text("revoked_at IS NULL"),
            sqlite_where=text("revoked_at IS NULL"),
        ),
        Index("ix_oauth_user_consents_user_id", "user_id"),
    )


class OAuthPendingRequest(Base):
    """Authorization request parked while the caller signs in."""

    __tablename__ = "oauth_pending_requests"

    request_hash: Mapped[str] = mapped_column(String(128), primary_key=True)
    params: Mapped[dict[str, Any]] = mapped_column(
        MutableDict.as_mutable(JSON()),
        nullable=False,
        default=dict,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utc_now)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    __table_args__ = (Index("ix_oauth_pending_requests_expires_at", "expires_at"),)


__all__ = [
    "DEFAULT_GRANT_TYPES",
    "OAUTH_ENVIRONMENT_VALUES",
    "OAuthAuthorizationCode",
    "OAuthClient",
    "OAuthPendingRequest",
    "OAuthToken",
    "OAuthUserConsent",
]
