from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from socialops.auth import SuperAdminContext, get_current_super_admin
from socialops.config import settings
from socialops.db import supabase
from socialops.observability import metrics_snapshot, persist_metrics_snapshot


router = APIRouter(prefix="/api/internal/observability", tags=["internal-observability"])


class MetricsSnapshotFlushRequest(BaseModel):
    source: str = "manual"
    reset_after_persist: bool = False


class MetricsSnapshotFlushResponse(BaseModel):
    persisted: bool
    source: str
    counter_count: int


@router.get("/metrics")
async def read_metrics(_ctx: SuperAdminContext = Depends(get_current_super_admin)):
    return {"counters": metrics_snapshot()}


@router.post("/metrics/flush", response_model=MetricsSnapshotFlushResponse)
async def flush_metrics_snapshot(
    data: MetricsSnapshotFlushRequest,
    request: Request,
    _ctx: SuperAdminContext = Depends(get_current_super_admin),
):
    counter_count = len(metrics_snapshot())
    persisted = persist_metrics_snapshot(
        supabase_client=supabase,
        source=data.source,
        request_id=getattr(request.state, "request_id", None),
        reset_after_persist=data.reset_after_persist,
        export_url=settings.observability_export_url,
        export_bearer_token=settings.observability_export_bearer_token,
        export_timeout_seconds=settings.observability_export_timeout_seconds,
    )
    return MetricsSnapshotFlushResponse(
        persisted=persisted,
        source=data.source,
        counter_count=counter_count,
    )
