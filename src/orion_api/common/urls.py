"""URL sanitization and construction helpers."""

from __future__ import annotations

from collections.abc import Mapping
from urllib.parse import parse_qsl, urlencode, urlparse, urlsplit, urlunsplit


def sanitize_return_to(value: str | None) -> str | None:
    """Return a safe relative path or ``None`` when invalid."""

    if value is None:
        return None
    candidate = value.strip()
    if not candidate or not candidate.startswith("/") or candidate.startswith("//"):
        return None
    if any(ord(ch) < 32 or ord(ch) == 127 for ch in candidate):
        return None
    if "\\" in candidate:
        return None
    parsed = urlparse(candidate)
    if parsed.scheme or parsed.netloc:
        return None
    return candidate


def append_query(url: str, params: Mapping[str, str | None]) -> str:
    """Append ``params`` to ``url`` keeping its existing query and fragment.

    ``None`` values are dropped so optional parameters such as ``state`` are
    omitted rather than sent empty.
    """

    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend((key, value) for key, value in params.items() if value is not None)
    return urlunsplit(
        (parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment)
    )


__all__ = ["append_query", "sanitize_return_to"]
