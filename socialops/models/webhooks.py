from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel


class WebhookAck(BaseModel):
    received: Literal[True] = True
    duplicate: bool | None = None
    quarantined: bool | None = None


class ProcessedEventListItem(BaseModel):
    event_id: str
    event_type: str | None = None
    provider: str | None = None
    status: Literal["processing", "processed", "failed"] | None = None
    last_error: str | None = None
    processed_at: datetime | None = None


class QuarantinedEventListItem(BaseModel):
    id: str
    provider: str
    event_type: str | None = None
    reason: str
    created_at: datetime | None = None
