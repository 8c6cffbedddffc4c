from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class PostDeleteResponse(BaseModel):
    post_id: str
    deleted: bool
    external_deleted: bool
    cache_invalidated: bool


class PostRescheduleRequest(BaseModel):
    workspace_id: str
    scheduled_at: datetime
    caption: str | None = None
    platforms: list[str] | None = Field(default=None, min_length=1)


class PostRescheduleResponse(BaseModel):
    post_id: str
    previous_post_id: str
    ayr_post_id: str | None = None
    previous_ayr_post_id: str | None = None
    scheduled_at: datetime
    previous_external_deleted: bool
    cache_invalidated: bool
