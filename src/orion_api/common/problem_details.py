"""Problem Details (RFC 7807) helpers for platform API errors."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from fastapi import status
from pydantic import Field

from .schema import BaseSchema


@dataclass(frozen=True)
class ErrorDefinition:
    """Canonical Problem Details error metadata."""

    type: str
    title: str
    status: int


ERROR_DEFINITIONS: dict[str, ErrorDefinition] = {
    "bad_request": ErrorDefinition("bad_request", "Bad request", status.HTTP_400_BAD_REQUEST),
    "unauthorized": ErrorDefinition("unauthorized", "Unauthorized", status.HTTP_401_UNAUTHORIZED),
    "forbidden": ErrorDefinition("forbidden", "Forbidden", status.HTTP_403_FORBIDDEN),
    "not_found": ErrorDefinition("not_found", "Not found", status.HTTP_404_NOT_FOUND),
    "conflict": ErrorDefinition("conflict", "Conflict", status.HTTP_409_CONFLICT),
    "validation_error": ErrorDefinition(
        "validation_error",
        "Validation error",
        422,
    ),
    "rate_limited": ErrorDefinition(
        "rate_limited",
        "Too many requests",
        status.HTTP_429_TOO_MANY_REQUESTS,
    ),
    "service_unavailable": ErrorDefinition(
        "service_unavailable",
        "Service unavailable",
        status.HTTP_503_SERVICE_UNAVAILABLE,
    ),
    "internal_error": ErrorDefinition(
        "internal_error",
        "Internal server error",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    ),
}

STATUS_TO_ERROR_TYPE: dict[int, ErrorDefinition] = {
    definition.status: definition for definition in ERROR_DEFINITIONS.values()
}


class ProblemDetailsErrorItem(BaseSchema):
    """Structured error detail used for validation-style responses."""

    path: str | None = None
    message: str
    code: str | None = None


class ProblemDetails(BaseSchema):
    """Problem Details-style response payload."""

    type: str
    title: str
    status: int
    detail: str | None = None
    instance: str
    request_id: str | None = Field(default=None, alias="requestId")
    errors: list[ProblemDetailsErrorItem] | None = None


class ApiError(RuntimeError):
    """Exception carrying Problem Details metadata."""

    def __init__(
        self,
        *,
        error_type: str,
        status_code: int | None = None,
        detail: str | None = None,
        title: str | None = None,
        errors: list[ProblemDetailsErrorItem] | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        definition = ERROR_DEFINITIONS.get(error_type)
        resolved_status = status_code or (definition.status if definition else 500)
        super().__init__(detail or title or error_type)
        self.error_type = error_type
        self.status_code = resolved_status
        self.detail = detail
        self.title = title
        self.errors = errors
        self.headers = headers

    @classmethod
    def not_found(cls, detail: str) -> ApiError:
        return cls(error_type="not_found", detail=detail)

    @classmethod
    def forbidden(cls, detail: str = "Insufficient permissions") -> ApiError:
        return cls(error_type="forbidden", detail=detail)

    @classmethod
    def conflict(cls, detail: str) -> ApiError:
        return cls(error_type="conflict", detail=detail)

    @classmethod
    def bad_request(cls, detail: str) -> ApiError:
        return cls(error_type="bad_request", detail=detail)


def resolve_error_definition(status_code: int) -> ErrorDefinition:
    """Return the canonical error definition for ``status_code``."""

    return STATUS_TO_ERROR_TYPE.get(
        status_code,
        ErrorDefinition(type="error", title="Error", status=status_code),
    )


def format_error_path(loc: Iterable[Any] | None) -> str | None:
    """Convert a Pydantic-style loc tuple into a dotted path."""

    if not loc:
        return None
    parts: list[str] = []
    for entry in loc:
        if entry in {"body", "query", "path", "header", "cookie"}:
            continue
        if isinstance(entry, int):
            if parts:
                parts[-1] = f"{parts[-1]}[{entry}]"
            else:
                parts.append(f"[{entry}]")
            continue
        parts.append(str(entry))
    return ".".join(parts) or None


def error_items_from_pydantic(errors: Iterable[dict[str, Any]]) -> list[ProblemDetailsErrorItem]:
    """Convert Pydantic error dicts into Problem Details error items."""

    items: list[ProblemDetailsErrorItem] = []
    for entry in errors:
        loc = entry.get("loc")
        code = entry.get("type")
        items.append(
            ProblemDetailsErrorItem(
                path=format_error_path(loc) if isinstance(loc, (list, tuple)) else None,
                message=str(entry.get("msg") or "Invalid value"),
                code=str(code) if code else None,
            )
        )
    return items


def build_problem_details(
    *,
    status_code: int,
    instance: str,
    request_id: str | None,
    detail: str | None = None,
    errors: list[ProblemDetailsErrorItem] | None = None,
    error_type: str | None = None,
    title: str | None = None,
) -> ProblemDetails:
    """Construct a Problem Details payload."""

    definition = resolve_error_definition(status_code)
    return ProblemDetails(
        type=error_type or definition.type,
        title=title or definition.title,
        status=status_code,
        detail=detail,
        instance=instance,
        request_id=request_id,
        errors=errors,
    )


__all__ = [
    "ApiError",
    "ERROR_DEFINITIONS",
    "ProblemDetails",
    "ProblemDetailsErrorItem",
    "build_problem_details",
    "error_items_from_pydantic",
    "resolve_error_definition",
]
