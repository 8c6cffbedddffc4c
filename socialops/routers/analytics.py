from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status

from socialops.auth import AuthContext, get_current_user, require_workspace_access
from socialops.auth.permissions import ANALYTICS_READ, ANALYTICS_SYNC
from socialops.config import settings
from socialops.db import supabase
from socialops.domain.analytics import normalize_analytics
from socialops.domain.provider_errors import provider_error_detail, provider_error_http_status
from socialops.models.analytics import (
    AnalyticsSyncItem,
    AnalyticsSyncRequest,
    AnalyticsSyncResponse,
    PostAnalyticsRequest,
    PostAnalyticsResponse,
)
from socialops.observability import incr_metric, log_event
from socialops.providers.ayrshare.client import AyrshareProviderError
from socialops.providers.ayrshare.client import get_post_analytics as ayrshare_get_post_analytics
from socialops.rate_limit import rate_limited
from socialops.workspaces import get_workspace, workspace_profile_key


router = APIRouter(prefix="/api/analytics", tags=["analytics"])

SYNC_LOOKBACK_DAYS = 30
SYNC_BATCH_LIMIT = 50


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _request_id(request: Request | None) -> str | None:
    if not request:
        return None
    return getattr(getattr(request, "state", None), "request_id", None)


def _get_workspace_or_404(workspace_id: str) -> dict[str, Any]:
    workspace = get_workspace(workspace_id)
    if not workspace:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workspace not found")
    return workspace


def _get_post_by_external_id(workspace_id: str, ayr_post_id: str) -> dict[str, Any] | None:
    result = supabase.table("posts").select(
        "id, workspace_id, ayr_post_id, platforms, analytics, analytics_updated_at"
    ).eq("workspace_id", workspace_id).eq("ayr_post_id", ayr_post_id).execute()
    return result.data[0] if result.data else None


def _store_analytics(post: dict[str, Any], raw: Any) -> None:
    supabase.table("posts").update(
        {"analytics": raw, "analytics_updated_at": _now_iso()}
    ).eq("id", post["id"]).eq("workspace_id", post["workspace_id"]).execute()


def _fetch_analytics(profile_key: str, ayr_post_id: str, platforms: list[str] | None = None) -> Any:
    return ayrshare_get_post_analytics(
        settings.ayrshare_api_key,
        profile_key,
        ayr_post_id,
        platforms=platforms,
        base_url=settings.ayrshare_api_base,
        timeout_seconds=settings.ayrshare_timeout_seconds,
    )


def _cached_response(
    workspace_id: str,
    ayr_post_id: str,
    post: dict[str, Any] | None,
) -> PostAnalyticsResponse | None:
    if not post or not post.get("analytics"):
        return None
    return PostAnalyticsResponse(
        workspace_id=workspace_id,
        ayr_post_id=ayr_post_id,
        analytics=normalize_analytics(post["analytics"], ayr_post_id),
        cached=True,
        analytics_updated_at=post.get("analytics_updated_at"),
    )


def fetch_post_analytics(
    workspace_id: str,
    ayr_post_id: str,
    *,
    platforms: list[str] | None = None,
    request_id: str | None = None,
) -> PostAnalyticsResponse:
    """Live analytics for one post, degrading to the last stored payload."""
    workspace = _get_workspace_or_404(workspace_id)
    post = _get_post_by_external_id(workspace_id, ayr_post_id)
    profile_key = workspace_profile_key(workspace)

    if not profile_key:
        cached = _cached_response(workspace_id, ayr_post_id, post)
        if cached:
            return cached
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Workspace has no usable distribution profile",
        )

    try:
        raw = _fetch_analytics(profile_key, ayr_post_id, platforms)
    except AyrshareProviderError as exc:
        incr_metric("analytics.fetch.failed", category=exc.category)
        log_event(
            "analytics_fetch_failed",
            level=logging.WARNING,
            request_id=request_id,
            workspace_id=workspace_id,
            ayr_post_id=ayr_post_id,
            category=exc.category,
            error=str(exc),
        )
        cached = _cached_response(workspace_id, ayr_post_id, post)
        if cached:
            return cached
        if exc.not_found:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Analytics for this post are not available yet",
            ) from exc
        raise HTTPException(
            status_code=provider_error_http_status(exc),
            detail=provider_error_detail(provider="ayrshare", operation="get_post_analytics", exc=exc),
        ) from exc

    if post:
        _store_analytics(post, raw)
    incr_metric("analytics.fetch.succeeded")
    return PostAnalyticsResponse(
        workspace_id=workspace_id,
        ayr_post_id=ayr_post_id,
        analytics=normalize_analytics(raw, ayr_post_id),
        cached=False,
        analytics_updated_at=datetime.now(timezone.utc),
    )


@router.get("/posts/{ayr_post_id}", response_model=PostAnalyticsResponse)
async def get_post_analytics(
    ayr_post_id: str,
    workspace_id: str,
    request: Request,
    auth: AuthContext = Depends(rate_limited("analytics")),
):
    require_workspace_access(auth, workspace_id, ANALYTICS_READ)
    return fetch_post_analytics(workspace_id, ayr_post_id, request_id=_request_id(request))


@router.post("/posts/{ayr_post_id}", response_model=PostAnalyticsResponse)
async def refresh_post_analytics(
    ayr_post_id: str,
    data: PostAnalyticsRequest,
    request: Request,
    auth: AuthContext = Depends(rate_limited("analytics")),
):
    require_workspace_access(auth, data.workspace_id, ANALYTICS_READ)
    return fetch_post_analytics(
        data.workspace_id,
        ayr_post_id,
        platforms=data.platforms,
        request_id=_request_id(request),
    )


def _posts_to_sync(workspace_id: str, post_id: str | None) -> list[dict[str, Any]]:
    query = supabase.table("posts").select(
        "id, workspace_id, ayr_post_id, platforms, status, posted_at"
    ).eq("workspace_id", workspace_id)
    if post_id:
        result = query.eq("id", post_id).execute()
        if not result.data:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")
        return result.data
    since = (datetime.now(timezone.utc) - timedelta(days=SYNC_LOOKBACK_DAYS)).isoformat()
    result = query.eq("status", "posted").gte("posted_at", since).order(
        "posted_at", desc=True
    ).limit(SYNC_BATCH_LIMIT).execute()
    return result.data or []


@router.post("/sync", response_model=AnalyticsSyncResponse)
async def sync_analytics(
    data: AnalyticsSyncRequest,
    request: Request,
    auth: AuthContext = Depends(get_current_user),
):
    require_workspace_access(auth, data.workspace_id, ANALYTICS_SYNC)
    req_id = _request_id(request)
    workspace = _get_workspace_or_404(data.workspace_id)
    profile_key = workspace_profile_key(workspace)
    if not profile_key:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Workspace has no usable distribution profile",
        )

    results: list[AnalyticsSyncItem] = []
    for post in _posts_to_sync(data.workspace_id, data.post_id):
        ayr_post_id = post.get("ayr_post_id")
        if not ayr_post_id:
            results.append(AnalyticsSyncItem(post_id=post["id"], status="skipped", error="Post not distributed"))
            continue
        try:
            raw = _fetch_analytics(profile_key, ayr_post_id)
        except AyrshareProviderError as exc:
            if exc.not_found:
                results.append(AnalyticsSyncItem(post_id=post["id"], ayr_post_id=ayr_post_id, status="skipped"))
                continue
            results.append(
                AnalyticsSyncItem(post_id=post["id"], ayr_post_id=ayr_post_id, status="failed", error=exc.category)
            )
            continue
        _store_analytics(post, raw)
        results.append(AnalyticsSyncItem(post_id=post["id"], ayr_post_id=ayr_post_id, status="synced"))

    synced = sum(1 for item in results if item.status == "synced")
    skipped = sum(1 for item in results if item.status == "skipped")
    failed = sum(1 for item in results if item.status == "failed")
    incr_metric("analytics.sync.posts", value=synced, outcome="synced")
    log_event(
        "analytics_sync_completed",
        request_id=req_id,
        workspace_id=data.workspace_id,
        synced=synced,
        skipped=skipped,
        failed=failed,
    )
    return AnalyticsSyncResponse(
        workspace_id=data.workspace_id,
        synced=synced,
        skipped=skipped,
        failed=failed,
        results=results,
    )
