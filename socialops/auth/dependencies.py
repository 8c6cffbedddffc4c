from fastapi import Header, HTTPException, status
from socialops.auth.context import AuthContext, SuperAdminContext, WorkspaceAccess
from socialops.auth.jwt import decode_access_token, decode_super_admin_token
from socialops.auth.permissions import normalize_role, permissions_for_role
from socialops.db import supabase


def _extract_bearer_token(authorization: str | None) -> str | None:
    """Extract token from 'Bearer <token>' header."""
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


async def get_current_user(authorization: str | None = Header(None)) -> AuthContext:
    """
    JWT session auth for user-facing endpoints.
    """
    token = _extract_bearer_token(authorization)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization header",
        )

    payload = decode_access_token(token)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired session",
        )

    return AuthContext(user_id=payload["sub"], email=payload.get("email"))


async def get_current_super_admin(authorization: str | None = Header(None)) -> SuperAdminContext:
    """
    Super-admin JWT auth. Validates token type is 'super_admin' and user exists in super_admins table.
    """
    token = _extract_bearer_token(authorization)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization header",
        )

    payload = decode_super_admin_token(token)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired super-admin token",
        )

    result = supabase.table("super_admins").select("id, email").eq(
        "id", payload["sub"]
    ).execute()

    if not result.data:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Super-admin not found",
        )

    super_admin = result.data[0]
    return SuperAdminContext(
        super_admin_id=super_admin["id"],
        email=super_admin["email"],
    )


def require_workspace_access(
    auth: AuthContext,
    workspace_id: str,
    permission_key: str | None = None,
) -> WorkspaceAccess:
    """Load the caller's membership in a workspace, enforcing a permission when given."""
    result = supabase.table("workspace_members").select("workspace_id, user_id, role").eq(
        "workspace_id", workspace_id
    ).eq("user_id", auth.user_id).execute()
    if not result.data:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not a member of this workspace",
        )

    member = result.data[0]
    try:
        role = normalize_role(member.get("role"))
    except ValueError:
        role = "viewer"
    access = WorkspaceAccess(
        workspace_id=workspace_id,
        user_id=auth.user_id,
        role=role,
        permissions=tuple(sorted(permissions_for_role(role))),
    )
    if permission_key and permission_key not in access.permissions:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Permission required: {permission_key}",
        )
    return access
