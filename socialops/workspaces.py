from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from socialops.config import settings
from socialops.db import supabase
from socialops.domain.normalization import is_usable_profile_key


WORKSPACE_FIELDS = (
    "id, name, owner_id, tier, subscription_status, add_ons, stripe_customer_id, "
    "stripe_subscription_id, ayr_profile_key, ayr_ref_id, provisioning_state, "
    "provisioning_error, provisioning_started_at, provisioned_at, created_at"
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def usable_profile_key(value: str | None) -> bool:
    return is_usable_profile_key(value, settings.ayrshare_placeholder_profile_key)


def workspace_profile_key(workspace: dict[str, Any] | None) -> str | None:
    if not workspace:
        return None
    key = workspace.get("ayr_profile_key")
    return key if usable_profile_key(key) else None


def get_workspace(workspace_id: str) -> dict[str, Any] | None:
    result = supabase.table("workspaces").select(WORKSPACE_FIELDS).eq("id", workspace_id).execute()
    return result.data[0] if result.data else None


def find_workspace_by_profile_key(profile_key: str | None) -> dict[str, Any] | None:
    if not usable_profile_key(profile_key):
        return None
    result = supabase.table("workspaces").select(WORKSPACE_FIELDS).eq(
        "ayr_profile_key", profile_key
    ).execute()
    return result.data[0] if result.data else None


def list_owned_workspaces(owner_id: str) -> list[dict[str, Any]]:
    result = supabase.table("workspaces").select(WORKSPACE_FIELDS).eq("owner_id", owner_id).execute()
    rows = result.data or []
    return sorted(rows, key=lambda row: (str(row.get("created_at") or ""), str(row.get("id"))))


def find_workspace_by_billing(
    *,
    subscription_id: str | None = None,
    customer_id: str | None = None,
) -> dict[str, Any] | None:
    if subscription_id:
        result = supabase.table("workspaces").select(WORKSPACE_FIELDS).eq(
            "stripe_subscription_id", subscription_id
        ).execute()
        if result.data:
            return result.data[0]
    if customer_id:
        result = supabase.table("workspaces").select(WORKSPACE_FIELDS).eq(
            "stripe_customer_id", customer_id
        ).execute()
        if result.data:
            return result.data[0]
    return None


def create_owned_workspace(owner_id: str, name: str, fields: dict[str, Any]) -> dict[str, Any]:
    """Insert a workspace and its owner membership row."""
    row = {
        "name": name,
        "owner_id": owner_id,
        "provisioning_state": "none",
        "add_ons": 0,
        "created_at": _now_iso(),
        "updated_at": _now_iso(),
    }
    row.update(fields)
    created = supabase.table("workspaces").insert(row).execute()
    workspace = created.data[0]
    supabase.table("workspace_members").upsert(
        {
            "workspace_id": workspace["id"],
            "user_id": owner_id,
            "role": "owner",
            "created_at": _now_iso(),
        },
        on_conflict="workspace_id,user_id",
        ignore_duplicates=True,
    ).execute()
    return workspace


def update_workspace(workspace_id: str, fields: dict[str, Any]) -> dict[str, Any] | None:
    payload = dict(fields)
    payload["updated_at"] = _now_iso()
    result = supabase.table("workspaces").update(payload).eq("id", workspace_id).execute()
    return result.data[0] if result.data else None
