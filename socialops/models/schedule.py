from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel


class AyrshareEnrichment(BaseModel):
    postId: str | None = None
    status: str | None = None
    type: str | None = None


class UnifiedPost(BaseModel):
    id: str
    workspace_id: str
    caption: str | None = None
    platforms: list[str] | None = None
    media_urls: list[str] | None = None
    scheduled_at: datetime | None = None
    status: Literal["pending", "scheduled", "posted", "failed"]
    approval_status: Literal["pending", "changes_requested", "approved", "rejected"]
    ayr_post_id: str | None = None
    posted_at: datetime | None = None
    last_error: str | None = None
    supersedes_post_id: str | None = None
    ayrshareData: AyrshareEnrichment | None = None


class UnifiedScheduleResponse(BaseModel):
    workspace_id: str
    posts: list[UnifiedPost]
    grouped: dict[str, list[UnifiedPost]]
    counts: dict[str, int]
    approval_groups: dict[str, list[UnifiedPost]]
    approval_counts: dict[str, int]
    total: int
    history_available: bool
    generated_at: datetime


class CacheInvalidateRequest(BaseModel):
    workspace_id: str


class CacheInvalidateResponse(BaseModel):
    workspace_id: str
    invalidated: bool


def to_unified_posts(rows: list[dict[str, Any]]) -> list[UnifiedPost]:
    return [UnifiedPost.model_validate(row) for row in rows]
