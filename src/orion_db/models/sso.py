"""Federation auth-state model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from orion_db import Base, UTCDateTime, utc_now


class SsoAuthState(Base):
    """Server-side state for one in-flight federation round trip."""

    __tablename__ = "sso_auth_states"

    state: Mapped[str] = mapped_column(String(255), primary_key=True)
    provider_id: Mapped[str] = mapped_column(String(64), nullable=False)
    nonce: Mapped[str] = mapped_column(String(255), nullable=False)
    pkce_verifier: Mapped[str] = mapped_column(String(255), nullable=False)
    return_to: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utc_now,
    )
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    __table_args__ = (Index("ix_sso_auth_states_expires_at", "expires_at"),)


__all__ = ["SsoAuthState"]
