from __future__ import annotations

from orion_api.features.oauth.scopes import (
    describe_scope,
    format_scope,
    normalize_scopes,
    scopes_hash,
    unknown_scopes,
)


def test_normalize_splits_dedupes_and_sorts() -> None:
    assert normalize_scopes("profile  openid email openid") == ["email", "openid", "profile"]
    assert normalize_scopes(None) == []
    assert normalize_scopes(["  openid", "", "email "]) == ["email", "openid"]


def test_scope_hash_ignores_order_and_duplicates() -> None:
    assert scopes_hash(["openid", "email"]) == scopes_hash(["email", "openid", "email"])
    assert scopes_hash(["openid"]) != scopes_hash(["openid", "email"])


def test_format_scope_is_space_delimited_and_sorted() -> None:
    assert format_scope(["profile", "openid"]) == "openid profile"


def test_unknown_scopes_are_reported_in_request_order() -> None:
    assert unknown_scopes(["openid", "admin", "root"], ["openid", "email"]) == ["admin", "root"]


def test_describe_scope_falls_back_to_the_name() -> None:
    assert describe_scope("email") == "View your email address"
    assert describe_scope("custom:scope") == "custom:scope"
