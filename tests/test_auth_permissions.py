import pytest
from fastapi import HTTPException

from fakes import FakeSupabase, install_fake_db
from socialops.auth import AuthContext, require_workspace_access
from socialops.auth.jwt import create_access_token, decode_access_token, decode_super_admin_token
from socialops.auth.permissions import (
    CACHE_INVALIDATE,
    POSTS_DELETE,
    POSTS_READ,
    normalize_role,
    permissions_for_role,
    role_has_permission,
)


def test_legacy_roles_map_to_canonical_roles():
    assert normalize_role("admin") == "member"
    assert normalize_role("editor") == "member"
    assert normalize_role("client") == "viewer"
    assert normalize_role(None) == "viewer"
    with pytest.raises(ValueError):
        normalize_role("root")


def test_viewer_is_read_only():
    assert permissions_for_role("viewer") == {"posts.read", "analytics.read"}
    assert role_has_permission("member", CACHE_INVALIDATE)
    assert not role_has_permission("member", POSTS_DELETE)
    assert role_has_permission("owner", POSTS_DELETE)


def test_session_and_operator_tokens_are_not_interchangeable():
    token = create_access_token("user-1", "user@example.com")
    assert decode_access_token(token)["sub"] == "user-1"
    assert decode_super_admin_token(token) is None
    assert decode_access_token("not-a-token") is None


def test_require_workspace_access(monkeypatch):
    install_fake_db(
        monkeypatch,
        FakeSupabase(
            {
                "workspace_members": [
                    {"workspace_id": "ws-1", "user_id": "user-1", "role": "editor"},
                    {"workspace_id": "ws-1", "user_id": "user-2", "role": "unexpected"},
                ]
            }
        ),
    )

    access = require_workspace_access(AuthContext(user_id="user-1"), "ws-1", POSTS_READ)
    assert access.role == "member"

    with pytest.raises(HTTPException) as not_member:
        require_workspace_access(AuthContext(user_id="user-3"), "ws-1")
    assert not_member.value.status_code == 403

    with pytest.raises(HTTPException) as missing_permission:
        require_workspace_access(AuthContext(user_id="user-2"), "ws-1", CACHE_INVALIDATE)
    assert missing_permission.value.detail == "Permission required: cache.invalidate"
