from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status

from socialops.auth import SuperAdminContext, get_current_super_admin
from socialops.config import settings
from socialops.db import supabase
from socialops.models.provisioning import (
    ProvisioningRepairRequest,
    ProvisioningRepairResponse,
    WorkspaceProvisioningStatus,
)
from socialops.observability import log_event
from socialops.provisioning import WorkspaceNotFoundError, backfill_ref_id, provision_workspace
from socialops.workspaces import WORKSPACE_FIELDS, get_workspace, usable_profile_key


router = APIRouter(prefix="/api/internal/provisioning", tags=["internal-provisioning"])

_REPAIRABLE_BILLING_STATUSES = {"active", "trialing"}


def _request_id(request: Request | None) -> str | None:
    if not request:
        return None
    return getattr(getattr(request, "state", None), "request_id", None)


def _is_placeholder(workspace: dict[str, Any]) -> bool:
    key = workspace.get("ayr_profile_key")
    placeholder = settings.ayrshare_placeholder_profile_key
    return bool(key and placeholder and key.strip() == placeholder.strip())


def _needs_repair(workspace: dict[str, Any]) -> bool:
    if workspace.get("subscription_status") not in _REPAIRABLE_BILLING_STATUSES:
        return False
    if workspace.get("provisioning_state") == "provisioning_failed":
        return True
    if not usable_profile_key(workspace.get("ayr_profile_key")):
        return True
    return not workspace.get("ayr_ref_id")


def _to_status(workspace: dict[str, Any]) -> WorkspaceProvisioningStatus:
    return WorkspaceProvisioningStatus(
        workspace_id=workspace["id"],
        name=workspace.get("name"),
        subscription_status=workspace.get("subscription_status"),
        tier=workspace.get("tier"),
        provisioning_state=workspace.get("provisioning_state"),
        provisioning_error=workspace.get("provisioning_error"),
        has_profile=usable_profile_key(workspace.get("ayr_profile_key")),
        has_ref_id=bool(workspace.get("ayr_ref_id")),
        placeholder_profile=_is_placeholder(workspace),
        provisioned_at=workspace.get("provisioned_at"),
    )


def _get_workspace_or_404(workspace_id: str) -> dict[str, Any]:
    workspace = get_workspace(workspace_id)
    if not workspace:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workspace not found")
    return workspace


@router.get("/workspaces/needs-repair", response_model=list[WorkspaceProvisioningStatus])
async def list_workspaces_needing_repair(
    limit: int = 100,
    _ctx: SuperAdminContext = Depends(get_current_super_admin),
):
    bounded_limit = max(1, min(limit, 500))
    result = supabase.table("workspaces").select(WORKSPACE_FIELDS).in_(
        "subscription_status", sorted(_REPAIRABLE_BILLING_STATUSES)
    ).execute()
    rows = [row for row in result.data or [] if _needs_repair(row)]
    rows = sorted(rows, key=lambda row: str(row.get("created_at") or ""))
    return [_to_status(row) for row in rows[:bounded_limit]]


@router.get("/workspaces/{workspace_id}", response_model=WorkspaceProvisioningStatus)
async def get_workspace_provisioning_status(
    workspace_id: str,
    _ctx: SuperAdminContext = Depends(get_current_super_admin),
):
    return _to_status(_get_workspace_or_404(workspace_id))


@router.post("/workspaces/{workspace_id}/repair", response_model=ProvisioningRepairResponse)
async def repair_workspace_profile(
    workspace_id: str,
    data: ProvisioningRepairRequest,
    request: Request,
    ctx: SuperAdminContext = Depends(get_current_super_admin),
):
    req_id = _request_id(request)
    workspace = _get_workspace_or_404(workspace_id)
    if workspace.get("subscription_status") not in _REPAIRABLE_BILLING_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Workspace subscription is not active",
        )

    log_event(
        "provisioning_repair_requested",
        request_id=req_id,
        workspace_id=workspace_id,
        super_admin_id=ctx.super_admin_id,
        recreate=data.recreate,
    )

    if usable_profile_key(workspace.get("ayr_profile_key")) and not data.recreate:
        ref_id = backfill_ref_id(workspace, request_id=req_id)
        if workspace.get("provisioning_state") == "provisioning_failed":
            supabase.table("workspaces").update(
                {"provisioning_state": "provisioned", "provisioning_error": None}
            ).eq("id", workspace_id).execute()
        return ProvisioningRepairResponse(
            workspace_id=workspace_id,
            status="already_provisioned",
            has_profile=True,
            has_ref_id=bool(ref_id),
            attempts=0,
        )

    try:
        result = provision_workspace(
            workspace_id,
            data.display_name,
            recreate=data.recreate,
            request_id=req_id,
        )
    except WorkspaceNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workspace not found") from exc

    return ProvisioningRepairResponse(
        workspace_id=workspace_id,
        status=result.status,
        has_profile=usable_profile_key(result.profile_key),
        has_ref_id=bool(result.ref_id),
        attempts=result.attempts,
        error=result.error,
    )
