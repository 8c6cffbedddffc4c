from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from socialops import history_cache
from socialops.auth import AuthContext, get_current_user, require_workspace_access
from socialops.auth.permissions import CACHE_INVALIDATE, POSTS_READ
from socialops.db import supabase
from socialops.domain.normalization import APPROVAL_STATUSES, POST_STATUSES
from socialops.domain.schedule import reconcile_schedule
from socialops.models.schedule import (
    CacheInvalidateRequest,
    CacheInvalidateResponse,
    UnifiedScheduleResponse,
)
from socialops.observability import log_event
from socialops.rate_limit import rate_limited
from socialops.workspaces import get_workspace, workspace_profile_key


router = APIRouter(tags=["schedule"])

POST_FIELDS = (
    "id, workspace_id, caption, platforms, media_urls, scheduled_at, status, approval_status, "
    "ayr_post_id, posted_at, last_error, supersedes_post_id, retired_at"
)


def _request_id(request: Request | None) -> str | None:
    if not request:
        return None
    return getattr(getattr(request, "state", None), "request_id", None)


def _get_workspace_or_404(workspace_id: str) -> dict[str, Any]:
    workspace = get_workspace(workspace_id)
    if not workspace:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workspace not found")
    return workspace


def load_active_posts(workspace_id: str) -> list[dict[str, Any]]:
    result = supabase.table("posts").select(POST_FIELDS).eq(
        "workspace_id", workspace_id
    ).is_("retired_at", "null").execute()
    return result.data or []


def get_unified_schedule(
    workspace_id: str,
    *,
    status_filter: str | None = None,
    approval_filter: str | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    """
    Local posts are read in full first; history is only consulted when at
    least one post has been distributed, and only to enrich.
    """
    workspace = _get_workspace_or_404(workspace_id)
    posts = load_active_posts(workspace_id)

    history: list[dict[str, Any]] = []
    profile_key = workspace_profile_key(workspace)
    if profile_key and any(post.get("ayr_post_id") for post in posts):
        history = history_cache.get_history(profile_key, request_id=request_id)

    schedule = reconcile_schedule(
        posts,
        history,
        status_filter=status_filter,
        approval_filter=approval_filter,
    )
    schedule["workspace_id"] = workspace_id
    schedule["history_available"] = bool(history)
    return schedule


@router.get("/api/schedule", response_model=UnifiedScheduleResponse)
async def read_unified_schedule(
    workspace_id: str,
    request: Request,
    status_filter: str | None = Query(default=None, alias="status"),
    approval_status: str | None = None,
    auth: AuthContext = Depends(rate_limited("schedule")),
):
    if status_filter and status_filter != "all" and status_filter not in POST_STATUSES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unsupported status filter")
    if approval_status and approval_status != "all" and approval_status not in APPROVAL_STATUSES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unsupported approval status filter")
    require_workspace_access(auth, workspace_id, POSTS_READ)

    req_id = _request_id(request)
    schedule = get_unified_schedule(
        workspace_id,
        status_filter=status_filter,
        approval_filter=approval_status,
        request_id=req_id,
    )
    log_event(
        "unified_schedule_served",
        request_id=req_id,
        workspace_id=workspace_id,
        total=schedule["total"],
        history_available=schedule["history_available"],
    )
    schedule["generated_at"] = datetime.now(timezone.utc)
    return schedule


@router.post("/api/cache/invalidate", response_model=CacheInvalidateResponse)
async def invalidate_history_cache(
    data: CacheInvalidateRequest,
    request: Request,
    auth: AuthContext = Depends(get_current_user),
):
    require_workspace_access(auth, data.workspace_id, CACHE_INVALIDATE)
    workspace = _get_workspace_or_404(data.workspace_id)
    invalidated = history_cache.invalidate(
        workspace_profile_key(workspace),
        request_id=_request_id(request),
        reason="manual",
    )
    return CacheInvalidateResponse(workspace_id=data.workspace_id, invalidated=invalidated)
