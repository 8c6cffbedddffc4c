from socialops.auth.context import AuthContext, SuperAdminContext, WorkspaceAccess
from socialops.auth.dependencies import (
    get_current_user,
    get_current_super_admin,
    require_workspace_access,
)
from socialops.auth.jwt import create_access_token, create_super_admin_token

__all__ = [
    "AuthContext",
    "SuperAdminContext",
    "WorkspaceAccess",
    "get_current_user",
    "get_current_super_admin",
    "require_workspace_access",
    "create_access_token",
    "create_super_admin_token",
]
