from dataclasses import dataclass


@dataclass
class AuthContext:
    """Identity context for session-authenticated requests."""
    user_id: str
    email: str | None = None
    auth_method: str = "session"


@dataclass
class WorkspaceAccess:
    """Membership of the authenticated user in one workspace."""
    workspace_id: str
    user_id: str
    role: str
    permissions: tuple[str, ...] = ()


@dataclass
class SuperAdminContext:
    """Identity context for operator requests. Not scoped to a workspace."""
    super_admin_id: str
    email: str
