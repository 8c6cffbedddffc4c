from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from socialops.config import settings
from socialops.db import supabase
from socialops.observability import incr_metric, log_event


LEDGER_TABLE = "processed_events"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def claim_event(
    event_id: str,
    event_type: str,
    *,
    provider: str,
    request_id: str | None = None,
) -> bool:
    """
    Record an external event id before acting on it.

    Returns True when this caller owns the event: the row did not exist, a
    previous attempt recorded a failure, or a previous attempt has sat in
    `processing` longer than `ledger_stale_after_seconds`.
    Returns False for events already processed or being processed.
    """
    inserted = supabase.table(LEDGER_TABLE).upsert(
        {
            "event_id": event_id,
            "event_type": event_type,
            "provider": provider,
            "status": "processing",
            "last_error": None,
            "processed_at": _now_iso(),
        },
        on_conflict="event_id",
        ignore_duplicates=True,
    ).execute()
    if inserted.data:
        return True

    reclaimed = supabase.table(LEDGER_TABLE).update(
        {"status": "processing", "last_error": None, "processed_at": _now_iso()}
    ).eq("event_id", event_id).eq("status", "failed").execute()
    if reclaimed.data:
        incr_metric("ledger.events.reclaimed", provider=provider)
        log_event(
            "ledger_event_reclaimed",
            request_id=request_id,
            provider=provider,
            event_id=event_id,
            event_type=event_type,
        )
        return True

    stale_before = (datetime.now(timezone.utc) - timedelta(seconds=settings.ledger_stale_after_seconds)).isoformat()
    taken_over = supabase.table(LEDGER_TABLE).update(
        {"status": "processing", "last_error": None, "processed_at": _now_iso()}
    ).eq("event_id", event_id).eq("status", "processing").lt("processed_at", stale_before).execute()
    if taken_over.data:
        incr_metric("ledger.events.stale_reclaimed", provider=provider)
        log_event(
            "ledger_stale_event_reclaimed",
            level=logging.WARNING,
            request_id=request_id,
            provider=provider,
            event_id=event_id,
            event_type=event_type,
        )
        return True
    return False


def mark_processed(event_id: str) -> None:
    supabase.table(LEDGER_TABLE).update(
        {"status": "processed", "last_error": None, "processed_at": _now_iso()}
    ).eq("event_id", event_id).execute()


def mark_failed(
    event_id: str,
    event_type: str,
    error: str,
    *,
    provider: str,
    request_id: str | None = None,
) -> None:
    """Record a handler failure. A ledger write failure is logged, never raised."""
    try:
        updated = supabase.table(LEDGER_TABLE).update(
            {"status": "failed", "last_error": error[:500], "processed_at": _now_iso()}
        ).eq("event_id", event_id).execute()
        if not updated.data:
            supabase.table(LEDGER_TABLE).upsert(
                {
                    "event_id": event_id,
                    "event_type": event_type,
                    "provider": provider,
                    "status": "failed",
                    "last_error": error[:500],
                    "processed_at": _now_iso(),
                },
                on_conflict="event_id",
            ).execute()
    except Exception as exc:
        log_event(
            "ledger_failure_persist_failed",
            level=logging.ERROR,
            request_id=request_id,
            provider=provider,
            event_id=event_id,
            error=str(exc),
        )
        return
    incr_metric("ledger.events.failed", provider=provider, event_type=event_type)


def has_processed(event_id: str) -> bool:
    result = supabase.table(LEDGER_TABLE).select("event_id, status").eq("event_id", event_id).execute()
    return any(row.get("status") == "processed" for row in result.data or [])


def list_events(
    *,
    provider: str | None = None,
    status_filter: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict[str, Any]]:
    query = supabase.table(LEDGER_TABLE).select(
        "event_id, event_type, provider, status, last_error, processed_at"
    )
    if provider:
        query = query.eq("provider", provider)
    if status_filter:
        query = query.eq("status", status_filter)
    rows = query.execute().data or []
    rows = sorted(rows, key=lambda row: row.get("processed_at") or "", reverse=True)
    return rows[offset:offset + limit]
