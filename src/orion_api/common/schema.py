"""Shared Pydantic schema utilities."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """Base class for API response schemas."""

    model_config = ConfigDict(
        populate_by_name=True,
        from_attributes=True,
        use_enum_values=True,
        extra="ignore",
    )

    def serializable_dict(
        self,
        *,
        exclude_none: bool = True,
        by_alias: bool = True,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Return a JSON-ready dict representation."""

        return self.model_dump(
            mode="json", exclude_none=exclude_none, by_alias=by_alias, **kwargs
        )


class RequestSchema(BaseModel):
    """Base class for request bodies; unknown fields are rejected."""

    model_config = ConfigDict(
        populate_by_name=True,
        extra="forbid",
        str_strip_whitespace=True,
    )


__all__ = ["BaseSchema", "RequestSchema"]
