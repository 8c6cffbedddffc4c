from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Literal

from socialops.alerts import alert_operators
from socialops.config import settings
from socialops.db import supabase
from socialops.domain.normalization import DEFAULT_WORKSPACE_NAME
from socialops.observability import incr_metric, log_event
from socialops.providers.ayrshare.client import AyrshareProviderError, find_profile_ref_id
from socialops.providers.ayrshare.client import create_profile as ayrshare_create_profile
from socialops.providers.ayrshare.client import list_profiles as ayrshare_list_profiles
from socialops.workspaces import (
    create_owned_workspace,
    get_workspace,
    list_owned_workspaces,
    update_workspace,
    usable_profile_key,
)


ProvisioningStatus = Literal[
    "provisioned",
    "already_provisioned",
    "in_progress",
    "provisioning_failed",
]


class WorkspaceNotFoundError(LookupError):
    pass


@dataclass
class ProvisioningResult:
    workspace_id: str
    status: ProvisioningStatus
    profile_key: str | None = None
    ref_id: str | None = None
    attempts: int = 0
    error: str | None = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _claim(workspace_id: str) -> bool:
    """Take the per-workspace provisioning slot with a compare-and-set update."""
    now_iso = _now().isoformat()
    claim = {"provisioning_state": "in_progress", "provisioning_started_at": now_iso, "updated_at": now_iso}
    claimed = supabase.table("workspaces").update(claim).eq("id", workspace_id).neq(
        "provisioning_state", "in_progress"
    ).execute()
    if claimed.data:
        return True

    stale_before = (_now() - timedelta(seconds=settings.provisioning_stale_after_seconds)).isoformat()
    reclaimed = supabase.table("workspaces").update(claim).eq("id", workspace_id).eq(
        "provisioning_state", "in_progress"
    ).lt("provisioning_started_at", stale_before).execute()
    if reclaimed.data:
        log_event("provisioning_stale_claim_taken", level=logging.WARNING, workspace_id=workspace_id)
        return True
    return False


def _release(workspace_id: str, state: str, error: str | None = None) -> None:
    supabase.table("workspaces").update(
        {"provisioning_state": state, "provisioning_error": error, "updated_at": _now().isoformat()}
    ).eq("id", workspace_id).eq("provisioning_state", "in_progress").execute()


def backfill_ref_id(workspace: dict[str, Any], *, request_id: str | None = None) -> str | None:
    """Fill a missing secondary reference from the provider's profile list."""
    profile_key = workspace.get("ayr_profile_key")
    if not usable_profile_key(profile_key) or workspace.get("ayr_ref_id"):
        return workspace.get("ayr_ref_id")
    try:
        profiles = ayrshare_list_profiles(
            settings.ayrshare_api_key,
            base_url=settings.ayrshare_api_base,
            timeout_seconds=settings.ayrshare_timeout_seconds,
        )
    except AyrshareProviderError as exc:
        log_event(
            "provisioning_ref_backfill_failed",
            level=logging.WARNING,
            request_id=request_id,
            workspace_id=workspace["id"],
            category=exc.category,
            error=str(exc),
        )
        return None
    ref_id = find_profile_ref_id(profiles, profile_key)
    if ref_id:
        supabase.table("workspaces").update({"ayr_ref_id": ref_id, "updated_at": _now().isoformat()}).eq(
            "id", workspace["id"]
        ).is_("ayr_ref_id", "null").execute()
        incr_metric("provisioning.ref_backfilled")
        log_event("provisioning_ref_backfilled", request_id=request_id, workspace_id=workspace["id"])
    return ref_id


def _create_profile_with_retry(
    title: str,
    *,
    workspace_id: str,
    request_id: str | None,
    sleep: Callable[[float], None],
) -> tuple[dict[str, Any] | None, int, AyrshareProviderError | None]:
    max_attempts = max(1, settings.provisioning_max_attempts)
    last_exc: AyrshareProviderError | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            profile = ayrshare_create_profile(
                settings.ayrshare_api_key,
                title,
                base_url=settings.ayrshare_api_base,
                timeout_seconds=settings.ayrshare_timeout_seconds,
            )
            return profile, attempt, None
        except AyrshareProviderError as exc:
            last_exc = exc
            log_event(
                "provisioning_attempt_failed",
                level=logging.WARNING,
                request_id=request_id,
                workspace_id=workspace_id,
                attempt=attempt,
                category=exc.category,
                retryable=exc.retryable,
                error=str(exc),
            )
            if not exc.retryable or attempt >= max_attempts:
                return None, attempt, last_exc
            sleep(settings.provisioning_retry_base_seconds * (2 ** (attempt - 1)))
    return None, max_attempts, last_exc


def _persist_profile(
    workspace: dict[str, Any],
    profile: dict[str, Any],
    *,
    recreate: bool,
) -> bool:
    now_iso = _now().isoformat()
    query = supabase.table("workspaces").update(
        {
            "ayr_profile_key": profile["profileKey"],
            "ayr_ref_id": profile.get("refId"),
            "provisioning_state": "provisioned",
            "provisioning_error": None,
            "provisioned_at": now_iso,
            "subscription_status": "active",
            "updated_at": now_iso,
        }
    ).eq("id", workspace["id"]).eq("provisioning_state", "in_progress")
    if not recreate:
        existing = workspace.get("ayr_profile_key")
        if existing is None:
            query = query.is_("ayr_profile_key", "null")
        else:
            query = query.eq("ayr_profile_key", existing)
    return bool(query.execute().data)


def _release_after_error(workspace: dict[str, Any], exc: Exception, *, request_id: str | None) -> None:
    workspace_id = workspace["id"]
    error = f"{exc.__class__.__name__}: {exc}"[:500]
    try:
        _release(workspace_id, "provisioning_failed", error)
    except Exception as release_exc:
        log_event(
            "provisioning_release_failed",
            level=logging.ERROR,
            request_id=request_id,
            workspace_id=workspace_id,
            error=str(release_exc),
        )
    incr_metric("provisioning.failed", category="interrupted")
    alert_operators(
        "provisioning_interrupted",
        subject=f"Profile provisioning interrupted for workspace {workspace.get('name') or workspace_id}",
        rows={"workspace_id": workspace_id, "workspace_name": workspace.get("name"), "error": error},
        request_id=request_id,
    )


def _provision_claimed(
    workspace: dict[str, Any],
    display_name: str | None,
    *,
    recreate: bool,
    request_id: str | None,
    sleep: Callable[[float], None],
) -> ProvisioningResult:
    workspace_id = workspace["id"]
    # Another worker may have finished between the first read and the claim.
    workspace = get_workspace(workspace_id) or workspace
    if usable_profile_key(workspace.get("ayr_profile_key")) and not recreate:
        _release(workspace_id, "provisioned")
        return ProvisioningResult(
            workspace_id=workspace_id,
            status="already_provisioned",
            profile_key=workspace["ayr_profile_key"],
            ref_id=workspace.get("ayr_ref_id"),
        )

    title = display_name or workspace.get("name") or DEFAULT_WORKSPACE_NAME
    log_event("provisioning_started", request_id=request_id, workspace_id=workspace_id, recreate=recreate)
    profile, attempts, exc = _create_profile_with_retry(
        title,
        workspace_id=workspace_id,
        request_id=request_id,
        sleep=sleep,
    )

    if profile is None:
        error = str(exc) if exc else "Profile creation failed"
        update_workspace(
            workspace_id,
            {
                "provisioning_state": "provisioning_failed",
                "provisioning_error": error[:500],
                "subscription_status": "active",
            },
        )
        incr_metric("provisioning.failed", category=exc.category if exc else "unknown")
        alert_operators(
            "provisioning_failed",
            subject=f"Profile provisioning failed for workspace {workspace.get('name') or workspace_id}",
            rows={
                "workspace_id": workspace_id,
                "workspace_name": workspace.get("name"),
                "attempts": attempts,
                "category": exc.category if exc else "unknown",
                "error": error,
            },
            request_id=request_id,
        )
        return ProvisioningResult(
            workspace_id=workspace_id,
            status="provisioning_failed",
            attempts=attempts,
            error=error,
        )

    if not _persist_profile(workspace, profile, recreate=recreate):
        # The slot was lost or the reference changed underneath us; keep what is stored.
        current = get_workspace(workspace_id) or {}
        stored = usable_profile_key(current.get("ayr_profile_key"))
        if stored:
            _release(workspace_id, "provisioned")
        else:
            _release(workspace_id, "provisioning_failed", "Stored profile reference changed during provisioning")
        alert_operators(
            "provisioning_orphaned_profile",
            subject=f"Orphaned profile created for workspace {workspace_id}",
            rows={"workspace_id": workspace_id, "ref_id": profile.get("refId")},
            request_id=request_id,
        )
        return ProvisioningResult(
            workspace_id=workspace_id,
            status="already_provisioned" if stored else "provisioning_failed",
            profile_key=current.get("ayr_profile_key"),
            ref_id=current.get("ayr_ref_id"),
            attempts=attempts,
        )

    ref_id = profile.get("refId")
    if not ref_id:
        ref_id = backfill_ref_id({**workspace, "ayr_profile_key": profile["profileKey"], "ayr_ref_id": None})
    incr_metric("provisioning.succeeded", recreate=recreate)
    log_event(
        "provisioning_succeeded",
        request_id=request_id,
        workspace_id=workspace_id,
        attempts=attempts,
        recreate=recreate,
        has_ref_id=bool(ref_id),
    )
    return ProvisioningResult(
        workspace_id=workspace_id,
        status="provisioned",
        profile_key=profile["profileKey"],
        ref_id=ref_id,
        attempts=attempts,
    )


def provision_workspace(
    workspace_id: str,
    display_name: str | None = None,
    *,
    recreate: bool = False,
    request_id: str | None = None,
    sleep: Callable[[float], None] | None = None,
) -> ProvisioningResult:
    """
    Ensure a workspace owns exactly one external profile.

    Re-entry for an already provisioned workspace is a no-op unless `recreate`
    is requested. Concurrent callers for the same workspace are serialized by a
    claim on `provisioning_state`; the loser returns `in_progress`.
    """
    sleep = sleep or time.sleep
    workspace = get_workspace(workspace_id)
    if not workspace:
        raise WorkspaceNotFoundError(f"Workspace not found: {workspace_id}")

    if usable_profile_key(workspace.get("ayr_profile_key")) and not recreate:
        ref_id = workspace.get("ayr_ref_id") or backfill_ref_id(workspace, request_id=request_id)
        incr_metric("provisioning.skipped", reason="already_provisioned")
        return ProvisioningResult(
            workspace_id=workspace_id,
            status="already_provisioned",
            profile_key=workspace["ayr_profile_key"],
            ref_id=ref_id,
        )

    if not _claim(workspace_id):
        incr_metric("provisioning.skipped", reason="in_progress")
        log_event("provisioning_already_in_progress", request_id=request_id, workspace_id=workspace_id)
        return ProvisioningResult(workspace_id=workspace_id, status="in_progress")

    try:
        return _provision_claimed(
            workspace,
            display_name,
            recreate=recreate,
            request_id=request_id,
            sleep=sleep,
        )
    except Exception as exc:
        _release_after_error(workspace, exc, request_id=request_id)
        raise


def provision_for_owner(
    owner_id: str,
    workspace_name: str | None,
    billing_fields: dict[str, Any],
    *,
    request_id: str | None = None,
    sleep: Callable[[float], None] | None = None,
) -> ProvisioningResult:
    """
    Route a paid checkout to the right workspace, then provision it.

    An owner whose workspace already has a profile is left alone; an owner with
    a workspace lacking one gets that workspace provisioned; an owner with no
    workspace gets a new one.
    """
    owned = list_owned_workspaces(owner_id)
    provisioned = [row for row in owned if usable_profile_key(row.get("ayr_profile_key"))]
    if provisioned:
        target = provisioned[0]
        update_workspace(target["id"], billing_fields)
        log_event(
            "provisioning_owner_already_provisioned",
            request_id=request_id,
            owner_id=owner_id,
            workspace_id=target["id"],
        )
        return provision_workspace(target["id"], request_id=request_id, sleep=sleep)

    if owned:
        target = owned[0]
        update_workspace(target["id"], billing_fields)
        log_event("provisioning_owner_workspace_reused", request_id=request_id, owner_id=owner_id, workspace_id=target["id"])
    else:
        target = create_owned_workspace(owner_id, workspace_name or DEFAULT_WORKSPACE_NAME, billing_fields)
        incr_metric("workspaces.created", source="checkout")
        log_event("provisioning_owner_workspace_created", request_id=request_id, owner_id=owner_id, workspace_id=target["id"])

    return provision_workspace(
        target["id"],
        workspace_name or target.get("name"),
        request_id=request_id,
        sleep=sleep,
    )
