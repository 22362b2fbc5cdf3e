"""Lightweight identity representation produced by the auth pipeline."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


class AuthVia(str, enum.Enum):
    """Transport used to authenticate the request."""

    SESSION = "session"


@dataclass(slots=True)
class AuthenticatedPrincipal:
    """Identity information available to downstream handlers."""

    user_id: UUID
    session_id: UUID
    auth_via: AuthVia
    auth_method: str
    auth_time: datetime
