"""Authentication persistence models."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from orion_db import GUID, Base, UTCDateTime, UUIDPrimaryKeyMixin, utc_now

if TYPE_CHECKING:
    from .user import User

AUTH_SESSION_AUTH_METHOD_VALUES = ("password", "sso")


class AuthSession(UUIDPrimaryKeyMixin, Base):
    """Hashed browser session token."""

    __tablename__ = "auth_sessions"

    user_id: Mapped[UUID] = mapped_column(
        GUID(),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    token_hash: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    auth_method: Mapped[str] = mapped_column(String(32), nullable=False, default="password")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utc_now)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    user: Mapped[User] = relationship("User", back_populates="auth_sessions")

    __table_args__ = (
        CheckConstraint(
            f"auth_method IN {AUTH_SESSION_AUTH_METHOD_VALUES}",
            name="auth_method",
        ),
        Index("ix_auth_sessions_user_id", "user_id"),
        Index("ix_auth_sessions_expires_at", "expires_at"),
    )


__all__ = ["AUTH_SESSION_AUTH_METHOD_VALUES", "AuthSession"]
