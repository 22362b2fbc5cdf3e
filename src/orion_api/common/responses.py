"""Response classes built on the shared schema conventions."""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from fastapi.encoders import jsonable_encoder
from starlette.background import BackgroundTask
from starlette.responses import Response

from .schema import BaseSchema

# Token and introspection responses must never be cached (RFC 6749 5.1).
NO_STORE_HEADERS: dict[str, str] = {"Cache-Control": "no-store", "Pragma": "no-cache"}


class JSONResponse(Response):
    """Response class that understands ``BaseSchema`` instances."""

    media_type = "application/json"

    def __init__(
        self,
        content: Any = None,
        status_code: int = 200,
        headers: Mapping[str, str] | None = None,
        media_type: str | None = None,
        background: BackgroundTask | None = None,
    ) -> None:
        super().__init__(
            content=content,
            status_code=status_code,
            headers=dict(headers or {}),
            media_type=media_type or self.media_type,
            background=background,
        )

    def render(self, content: Any) -> bytes:  # noqa: D401 - standard Starlette signature
        if content is None:
            return b"null"
        prepared = jsonable_encoder(_prepare_payload(content))
        return json.dumps(prepared, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _prepare_payload(content: Any) -> Any:
    if isinstance(content, BaseSchema):
        return content.serializable_dict()
    if isinstance(content, Mapping):
        return {key: _prepare_payload(value) for key, value in content.items()}
    if isinstance(content, (list, tuple, set)):
        return [_prepare_payload(item) for item in content]
    return content


__all__ = ["JSONResponse", "NO_STORE_HEADERS"]
