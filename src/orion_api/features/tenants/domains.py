"""Email domain helpers."""

from __future__ import annotations

PUBLIC_DOMAINS: frozenset[str] = frozenset(
    {
        "gmail.com",
        "googlemail.com",
        "yahoo.com",
        "yahoo.co.uk",
        "yahoo.fr",
        "yahoo.de",
        "yahoo.es",
        "yahoo.it",
        "outlook.com",
        "hotmail.com",
        "live.com",
        "msn.com",
        "icloud.com",
        "me.com",
        "mac.com",
        "aol.com",
        "protonmail.com",
        "proton.me",
        "zoho.com",
        "yandex.com",
        "yandex.ru",
        "mail.com",
        "email.com",
        "gmx.com",
        "gmx.net",
        "fastmail.com",
        "tutanota.com",
    }
)


def extract_domain(email: str) -> str | None:
    """Lower-cased domain of ``email`` or ``None`` when there is none."""

    _, sep, domain = email.strip().rpartition("@")
    domain = domain.strip().lower()
    if not sep or not domain:
        return None
    return domain


def is_public_domain(domain: str) -> bool:
    return domain.strip().lower() in PUBLIC_DOMAINS


def tenant_name_from_domain(domain: str) -> str:
    """``"contoso.com"`` -> ``"Contoso"``."""

    label = domain.split(".", 1)[0]
    return label[:1].upper() + label[1:]


__all__ = ["PUBLIC_DOMAINS", "extract_domain", "is_public_domain", "tenant_name_from_domain"]
