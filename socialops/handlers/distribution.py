from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from socialops import history_cache
from socialops.db import supabase
from socialops.domain.normalization import classify_distribution_event, normalize_platform
from socialops.observability import incr_metric, log_event
from socialops.workspaces import find_workspace_by_profile_key, update_workspace, usable_profile_key


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def extract_profile_key(payload: dict[str, Any]) -> str | None:
    for field in ("profileKey", "profile_key", "profile"):
        value = payload.get(field)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def extract_event_type(payload: dict[str, Any]) -> str:
    return str(payload.get("type") or payload.get("action") or payload.get("event") or "unknown")


def resolve_workspace(payload: dict[str, Any]) -> tuple[dict[str, Any] | None, str | None]:
    """Return (workspace, None) or (None, quarantine reason)."""
    profile_key = extract_profile_key(payload)
    if profile_key is None:
        return None, "missing_profile_key"
    if not usable_profile_key(profile_key):
        return None, "placeholder_profile_key"
    workspace = find_workspace_by_profile_key(profile_key)
    if not workspace:
        return None, "unknown_profile_key"
    return workspace, None


def quarantine_event(
    payload: dict[str, Any],
    *,
    event_type: str,
    reason: str,
    request_id: str | None = None,
) -> None:
    supabase.table("quarantined_events").insert(
        {
            "provider": "ayrshare",
            "event_type": event_type,
            "reason": reason,
            "payload": payload,
            "request_id": request_id,
            "created_at": _now_iso(),
        }
    ).execute()
    incr_metric("webhook.events.quarantined", provider_slug="ayrshare", reason=reason)
    log_event(
        "webhook_quarantined",
        level=logging.WARNING,
        request_id=request_id,
        provider_slug="ayrshare",
        event_type=event_type,
        reason=reason,
    )


def record_inbox_event(workspace_id: str, event_type: str, payload: dict[str, Any]) -> None:
    supabase.table("inbox_webhook_events").insert(
        {
            "workspace_id": workspace_id,
            "event_type": event_type,
            "payload": payload,
            "processed": False,
            "created_at": _now_iso(),
        }
    ).execute()


def _author_name(payload: dict[str, Any]) -> str | None:
    user = payload.get("user") if isinstance(payload.get("user"), dict) else {}
    return payload.get("username") or user.get("username") or user.get("name")


def _find_post_by_external_id(workspace_id: str, external_post_id: str | None) -> dict[str, Any] | None:
    if not external_post_id:
        return None
    result = supabase.table("posts").select("id, workspace_id, ayr_post_id").eq(
        "workspace_id", workspace_id
    ).eq("ayr_post_id", str(external_post_id)).execute()
    return result.data[0] if result.data else None


def _upsert_engagement_item(row: dict[str, Any]) -> None:
    row["updated_at"] = _now_iso()
    supabase.table("engagement_items").upsert(row, on_conflict="platform,external_id").execute()


def handle_comment(workspace: dict[str, Any], payload: dict[str, Any], *, request_id: str | None = None) -> str:
    external_id = payload.get("commentId") or payload.get("id")
    if not external_id:
        log_event("distribution_comment_missing_id", level=logging.WARNING, request_id=request_id, workspace_id=workspace["id"])
        return "ignored"
    post = _find_post_by_external_id(workspace["id"], payload.get("postId"))
    user = payload.get("user") if isinstance(payload.get("user"), dict) else {}
    _upsert_engagement_item(
        {
            "workspace_id": workspace["id"],
            "kind": "comment",
            "platform": normalize_platform(payload.get("platform")),
            "external_id": str(external_id),
            "post_id": post["id"] if post else None,
            "parent_ref": str(payload["postId"]) if payload.get("postId") else None,
            "author_name": _author_name(payload),
            "author_profile_url": user.get("profile_url"),
            "body": payload.get("text") or payload.get("message") or payload.get("comment"),
            "external_created_at": payload.get("timestamp") or payload.get("created_at") or _now_iso(),
        }
    )
    incr_metric("engagement.items.upserted", kind="comment")
    return "comment_upserted"


def handle_message(workspace: dict[str, Any], payload: dict[str, Any], *, request_id: str | None = None) -> str:
    external_id = payload.get("messageId") or payload.get("id")
    if not external_id:
        log_event("distribution_message_missing_id", level=logging.WARNING, request_id=request_id, workspace_id=workspace["id"])
        return "ignored"
    platform = normalize_platform(payload.get("platform"))
    sender = payload.get("from") or payload.get("sender") or "unknown"
    if isinstance(sender, dict):
        sender = sender.get("username") or sender.get("name") or sender.get("id") or "unknown"
    conversation_id = payload.get("conversationId") or payload.get("threadId") or f"{platform}_{sender}"
    body = payload.get("text") or payload.get("message")
    sent_at = payload.get("timestamp") or payload.get("created_at") or _now_iso()

    supabase.table("inbox_conversations").upsert(
        {
            "workspace_id": workspace["id"],
            "platform": platform,
            "conversation_id": str(conversation_id),
            "participant_name": str(sender),
            "last_message_preview": (body or "")[:200],
            "last_message_at": sent_at,
            "updated_at": _now_iso(),
        },
        on_conflict="workspace_id,platform,conversation_id",
    ).execute()
    _upsert_engagement_item(
        {
            "workspace_id": workspace["id"],
            "kind": "message",
            "platform": platform,
            "external_id": str(external_id),
            "post_id": None,
            "parent_ref": str(conversation_id),
            "author_name": str(sender),
            "author_profile_url": None,
            "body": body,
            "external_created_at": sent_at,
        }
    )
    incr_metric("engagement.items.upserted", kind="message")
    return "message_upserted"


def handle_analytics(workspace: dict[str, Any], payload: dict[str, Any], *, request_id: str | None = None) -> str:
    analytics = payload.get("analytics")
    post = _find_post_by_external_id(workspace["id"], payload.get("postId") or payload.get("id"))
    if not post or not isinstance(analytics, (dict, list)):
        log_event(
            "distribution_analytics_unmatched",
            level=logging.WARNING,
            request_id=request_id,
            workspace_id=workspace["id"],
            has_post=bool(post),
        )
        return "ignored"
    supabase.table("posts").update(
        {"analytics": analytics, "analytics_updated_at": _now_iso()}
    ).eq("id", post["id"]).eq("workspace_id", workspace["id"]).execute()
    incr_metric("analytics.updated", source="webhook")
    return "analytics_updated"


def handle_disconnected(workspace: dict[str, Any], payload: dict[str, Any], *, request_id: str | None = None) -> str:
    log_event(
        "distribution_account_disconnected",
        level=logging.WARNING,
        request_id=request_id,
        workspace_id=workspace["id"],
        platform=normalize_platform(payload.get("platform")),
    )
    history_cache.invalidate(workspace.get("ayr_profile_key"), request_id=request_id, reason="account_disconnected")
    return "disconnect_recorded"


def handle_profile_deleted(workspace: dict[str, Any], payload: dict[str, Any], *, request_id: str | None = None) -> str:
    history_cache.invalidate(workspace.get("ayr_profile_key"), request_id=request_id, reason="profile_deleted")
    update_workspace(
        workspace["id"],
        {"ayr_profile_key": None, "ayr_ref_id": None, "provisioning_state": "none"},
    )
    incr_metric("provisioning.profile_deleted")
    log_event("distribution_profile_deleted", level=logging.WARNING, request_id=request_id, workspace_id=workspace["id"])
    return "profile_cleared"


DISTRIBUTION_HANDLERS: dict[str, Callable[..., str]] = {
    "comment": handle_comment,
    "message": handle_message,
    "analytics": handle_analytics,
    "disconnected": handle_disconnected,
    "profile_deleted": handle_profile_deleted,
}


def dispatch(workspace: dict[str, Any], payload: dict[str, Any], *, request_id: str | None = None) -> str:
    kind = classify_distribution_event(extract_event_type(payload))
    handler = DISTRIBUTION_HANDLERS.get(kind)
    if handler is None:
        log_event(
            "distribution_event_unhandled",
            request_id=request_id,
            workspace_id=workspace["id"],
            event_type=extract_event_type(payload),
        )
        return "unhandled"
    return handler(workspace, payload, request_id=request_id)
