from __future__ import annotations

from typing import Final

LEGACY_ROLE_ALIASES: Final[dict[str, str]] = {
    "admin": "member",
    "editor": "member",
    "client": "viewer",
    "view_only": "viewer",
}

CANONICAL_ROLES: Final[set[str]] = {"owner", "member", "viewer"}

POSTS_READ: Final[str] = "posts.read"
POSTS_WRITE: Final[str] = "posts.write"
POSTS_DELETE: Final[str] = "posts.delete"
ANALYTICS_READ: Final[str] = "analytics.read"
ANALYTICS_SYNC: Final[str] = "analytics.sync"
CACHE_INVALIDATE: Final[str] = "cache.invalidate"

ROLE_PERMISSION_BUNDLES: Final[dict[str, set[str]]] = {
    "owner": {
        POSTS_READ,
        POSTS_WRITE,
        POSTS_DELETE,
        ANALYTICS_READ,
        ANALYTICS_SYNC,
        CACHE_INVALIDATE,
    },
    "member": {
        POSTS_READ,
        POSTS_WRITE,
        ANALYTICS_READ,
        ANALYTICS_SYNC,
        CACHE_INVALIDATE,
    },
    "viewer": {
        POSTS_READ,
        ANALYTICS_READ,
    },
}


def normalize_role(role: str | None) -> str:
    raw = (role or "").strip()
    if not raw:
        return "viewer"
    normalized = LEGACY_ROLE_ALIASES.get(raw, raw)
    if normalized not in CANONICAL_ROLES:
        raise ValueError(f"Unsupported role: {role}")
    return normalized


def permissions_for_role(role: str | None) -> set[str]:
    return set(ROLE_PERMISSION_BUNDLES[normalize_role(role)])


def role_has_permission(role: str | None, permission_key: str) -> bool:
    return permission_key in permissions_for_role(role)
