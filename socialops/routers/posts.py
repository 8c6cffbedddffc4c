from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status

from socialops import history_cache
from socialops.auth import AuthContext, get_current_user, require_workspace_access
from socialops.auth.permissions import POSTS_DELETE, POSTS_WRITE
from socialops.config import settings
from socialops.db import supabase
from socialops.domain.provider_errors import provider_error_detail, provider_error_http_status
from socialops.models.posts import PostDeleteResponse, PostRescheduleRequest, PostRescheduleResponse
from socialops.observability import incr_metric, log_event
from socialops.providers.ayrshare.client import AyrshareProviderError
from socialops.providers.ayrshare.client import create_post as ayrshare_create_post
from socialops.providers.ayrshare.client import delete_post as ayrshare_delete_post
from socialops.workspaces import get_workspace, workspace_profile_key


router = APIRouter(prefix="/api/posts", tags=["posts"])


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _request_id(request: Request | None) -> str | None:
    if not request:
        return None
    return getattr(getattr(request, "state", None), "request_id", None)


def _raise_provider_http_error(operation: str, exc: AyrshareProviderError) -> None:
    raise HTTPException(
        status_code=provider_error_http_status(exc),
        detail=provider_error_detail(provider="ayrshare", operation=operation, exc=exc),
    ) from exc


def _get_post(post_id: str, workspace_id: str) -> dict[str, Any]:
    result = supabase.table("posts").select("*").eq("id", post_id).eq(
        "workspace_id", workspace_id
    ).is_("retired_at", "null").execute()
    if not result.data:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")
    return result.data[0]


def _require_profile_key(workspace_id: str) -> str:
    profile_key = workspace_profile_key(get_workspace(workspace_id))
    if not profile_key:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Workspace has no usable distribution profile",
        )
    return profile_key


def _delete_external(profile_key: str, ayr_post_id: str) -> bool:
    return ayrshare_delete_post(
        settings.ayrshare_api_key,
        profile_key,
        ayr_post_id,
        base_url=settings.ayrshare_api_base,
        timeout_seconds=settings.ayrshare_timeout_seconds,
    )


@router.delete("/{post_id}", response_model=PostDeleteResponse)
async def delete_post(
    post_id: str,
    workspace_id: str,
    request: Request,
    auth: AuthContext = Depends(get_current_user),
):
    require_workspace_access(auth, workspace_id, POSTS_DELETE)
    req_id = _request_id(request)
    post = _get_post(post_id, workspace_id)

    external_deleted = False
    profile_key: str | None = None
    if post.get("ayr_post_id"):
        profile_key = _require_profile_key(workspace_id)
        try:
            external_deleted = _delete_external(profile_key, post["ayr_post_id"])
        except AyrshareProviderError as exc:
            _raise_provider_http_error("delete_post", exc)

    supabase.table("posts").delete().eq("id", post_id).eq("workspace_id", workspace_id).execute()
    cache_invalidated = False
    if profile_key:
        cache_invalidated = history_cache.invalidate(profile_key, request_id=req_id, reason="post_deleted")

    incr_metric("posts.deleted", external=bool(post.get("ayr_post_id")))
    log_event(
        "post_deleted",
        request_id=req_id,
        workspace_id=workspace_id,
        post_id=post_id,
        external_deleted=external_deleted,
    )
    return PostDeleteResponse(
        post_id=post_id,
        deleted=True,
        external_deleted=external_deleted,
        cache_invalidated=cache_invalidated,
    )


@router.post("/{post_id}/reschedule", response_model=PostRescheduleResponse)
async def reschedule_post(
    post_id: str,
    data: PostRescheduleRequest,
    request: Request,
    auth: AuthContext = Depends(get_current_user),
):
    """
    Move a post to a new time. A distributed post is never edited in place:
    a new external post and local row replace it and the old row is retired.
    """
    require_workspace_access(auth, data.workspace_id, POSTS_WRITE)
    req_id = _request_id(request)
    post = _get_post(post_id, data.workspace_id)
    if post.get("status") == "posted":
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Published posts cannot be rescheduled")

    scheduled_iso = data.scheduled_at.isoformat()
    caption = data.caption if data.caption is not None else post.get("caption")
    platforms = data.platforms or post.get("platforms") or []

    if not post.get("ayr_post_id"):
        supabase.table("posts").update(
            {"scheduled_at": scheduled_iso, "caption": caption, "platforms": platforms, "updated_at": _now_iso()}
        ).eq("id", post_id).eq("workspace_id", data.workspace_id).execute()
        return PostRescheduleResponse(
            post_id=post_id,
            previous_post_id=post_id,
            scheduled_at=data.scheduled_at,
            previous_external_deleted=False,
            cache_invalidated=False,
        )

    profile_key = _require_profile_key(data.workspace_id)
    try:
        new_external_id = ayrshare_create_post(
            settings.ayrshare_api_key,
            profile_key,
            caption or "",
            platforms,
            schedule_date=scheduled_iso,
            media_urls=post.get("media_urls") or None,
            base_url=settings.ayrshare_api_base,
            timeout_seconds=settings.ayrshare_timeout_seconds,
        )
    except AyrshareProviderError as exc:
        _raise_provider_http_error("create_post", exc)

    try:
        created = supabase.table("posts").insert(
            {
                "workspace_id": data.workspace_id,
                "caption": caption,
                "platforms": platforms,
                "media_urls": post.get("media_urls"),
                "scheduled_at": scheduled_iso,
                "status": "scheduled",
                "approval_status": post.get("approval_status"),
                "ayr_post_id": new_external_id,
                "supersedes_post_id": post_id,
                "created_at": _now_iso(),
                "updated_at": _now_iso(),
            }
        ).execute()
    except Exception:
        # Do not leave an untracked external post behind.
        try:
            _delete_external(profile_key, new_external_id)
        except AyrshareProviderError as cleanup_exc:
            log_event(
                "post_reschedule_cleanup_failed",
                level=logging.ERROR,
                request_id=req_id,
                workspace_id=data.workspace_id,
                ayr_post_id=new_external_id,
                error=str(cleanup_exc),
            )
        raise
    new_post = created.data[0]

    supabase.table("posts").update(
        {"retired_at": _now_iso(), "superseded_by": new_post["id"], "updated_at": _now_iso()}
    ).eq("id", post_id).eq("workspace_id", data.workspace_id).execute()

    previous_external_deleted = False
    try:
        previous_external_deleted = _delete_external(profile_key, post["ayr_post_id"])
    except AyrshareProviderError as exc:
        incr_metric("posts.reschedule.retire_failed", category=exc.category)
        log_event(
            "post_reschedule_retire_failed",
            level=logging.WARNING,
            request_id=req_id,
            workspace_id=data.workspace_id,
            post_id=post_id,
            ayr_post_id=post["ayr_post_id"],
            category=exc.category,
            error=str(exc),
        )

    cache_invalidated = history_cache.invalidate(profile_key, request_id=req_id, reason="post_rescheduled")
    incr_metric("posts.rescheduled")
    log_event(
        "post_rescheduled",
        request_id=req_id,
        workspace_id=data.workspace_id,
        post_id=new_post["id"],
        previous_post_id=post_id,
    )
    return PostRescheduleResponse(
        post_id=new_post["id"],
        previous_post_id=post_id,
        ayr_post_id=new_external_id,
        previous_ayr_post_id=post["ayr_post_id"],
        scheduled_at=data.scheduled_at,
        previous_external_deleted=previous_external_deleted,
        cache_invalidated=cache_invalidated,
    )
