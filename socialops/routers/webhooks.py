from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from socialops import ledger
from socialops.auth import SuperAdminContext, get_current_super_admin
from socialops.db import supabase
from socialops.gateway import (
    WebhookConfigurationError,
    WebhookVerificationError,
    ingest,
)
from socialops.models.webhooks import ProcessedEventListItem, QuarantinedEventListItem, WebhookAck
from socialops.observability import incr_metric, log_event


router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


def _request_id(request: Request | None) -> str | None:
    if not request:
        return None
    return getattr(getattr(request, "state", None), "request_id", None)


def _ingest_or_raise(
    request: Request,
    raw_body: bytes,
    signature: str | None,
    provider_kind: str,
    rejected_status: int,
) -> WebhookAck:
    req_id = _request_id(request)
    try:
        result = ingest(raw_body, signature, provider_kind, request_id=req_id)
    except WebhookConfigurationError as exc:
        log_event("webhook_not_configured", level=logging.ERROR, request_id=req_id, provider_slug=provider_kind)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"type": "webhook_ingress_configuration_error", "provider": provider_kind, "message": str(exc)},
        ) from exc
    except WebhookVerificationError as exc:
        incr_metric("webhook.events.rejected", provider_slug=provider_kind)
        log_event(
            "webhook_rejected",
            level=logging.WARNING,
            request_id=req_id,
            provider_slug=provider_kind,
            reason=str(exc),
        )
        raise HTTPException(
            status_code=rejected_status,
            detail={"type": "webhook_auth_failed", "provider": provider_kind, "message": "Webhook verification failed"},
        ) from exc
    return WebhookAck(**result.ack())


@router.post("/stripe", response_model=WebhookAck, response_model_exclude_none=True)
async def ingest_stripe_webhook(request: Request):
    raw_body = await request.body()
    return _ingest_or_raise(
        request,
        raw_body,
        request.headers.get("Stripe-Signature"),
        "stripe",
        status.HTTP_400_BAD_REQUEST,
    )


@router.post("/ayrshare", response_model=WebhookAck, response_model_exclude_none=True)
async def ingest_ayrshare_webhook(request: Request):
    raw_body = await request.body()
    return _ingest_or_raise(
        request,
        raw_body,
        request.headers.get("X-Ayrshare-Signature"),
        "ayrshare",
        status.HTTP_401_UNAUTHORIZED,
    )


@router.get("/processed-events", response_model=list[ProcessedEventListItem])
async def list_processed_events(
    provider: str | None = None,
    status_filter: str | None = None,
    limit: int = 50,
    offset: int = 0,
    _ctx: SuperAdminContext = Depends(get_current_super_admin),
):
    if provider and provider not in {"stripe", "ayrshare"}:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unsupported provider")
    bounded_limit = max(1, min(limit, 200))
    bounded_offset = max(0, offset)
    return ledger.list_events(
        provider=provider,
        status_filter=status_filter,
        limit=bounded_limit,
        offset=bounded_offset,
    )


@router.get("/quarantined", response_model=list[QuarantinedEventListItem])
async def list_quarantined_events(
    limit: int = 50,
    offset: int = 0,
    _ctx: SuperAdminContext = Depends(get_current_super_admin),
):
    bounded_limit = max(1, min(limit, 200))
    bounded_offset = max(0, offset)
    result = supabase.table("quarantined_events").select(
        "id, provider, event_type, reason, created_at"
    ).execute()
    rows = sorted(result.data or [], key=lambda row: row.get("created_at") or "", reverse=True)
    return rows[bounded_offset:bounded_offset + bounded_limit]
