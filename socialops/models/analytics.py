from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class PostAnalyticsRequest(BaseModel):
    workspace_id: str
    platforms: list[str] | None = None


class PostAnalyticsResponse(BaseModel):
    workspace_id: str
    ayr_post_id: str
    analytics: dict[str, Any]
    cached: bool = False
    analytics_updated_at: datetime | None = None


class AnalyticsSyncRequest(BaseModel):
    workspace_id: str
    post_id: str | None = Field(
        default=None,
        description="Local post id to sync; omit to sync recently posted posts",
    )


class AnalyticsSyncItem(BaseModel):
    post_id: str
    ayr_post_id: str | None = None
    status: Literal["synced", "skipped", "failed"]
    error: str | None = None


class AnalyticsSyncResponse(BaseModel):
    workspace_id: str
    synced: int
    skipped: int
    failed: int
    results: list[AnalyticsSyncItem]
