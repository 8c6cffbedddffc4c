from __future__ import annotations

from typing import Any

from socialops.domain.normalization import (
    APPROVAL_STATUSES,
    POST_STATUSES,
    normalize_approval_status,
    normalize_post_status,
)


def index_history(history: list[dict[str, Any]]) -> dict[str, dict[str, Any]]:
    index: dict[str, dict[str, Any]] = {}
    for item in history:
        if not isinstance(item, dict):
            continue
        external_id = item.get("id")
        if external_id is None or external_id == "":
            continue
        index[str(external_id)] = item
    return index


def _schedule_sort_key(post: dict[str, Any]) -> tuple[bool, str, str]:
    scheduled_at = post.get("scheduled_at")
    return (scheduled_at is None, str(scheduled_at or ""), str(post.get("id") or ""))


def merge_posts(posts: list[dict[str, Any]], history: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """
    Enrich local posts with external history in one pass over each side.

    Local rows are never added, dropped, or re-statused by history; only posts
    carrying an external id that appears in history get `ayrshareData`.
    """
    index = index_history(history)
    merged: list[dict[str, Any]] = []
    for post in sorted(posts, key=_schedule_sort_key):
        row = dict(post)
        row["status"] = normalize_post_status(post.get("status"))
        row["approval_status"] = normalize_approval_status(post.get("approval_status"))
        external_id = post.get("ayr_post_id")
        item = index.get(str(external_id)) if external_id else None
        row["ayrshareData"] = (
            {"postId": item.get("id"), "status": item.get("status"), "type": item.get("type")}
            if item is not None
            else None
        )
        merged.append(row)
    return merged


def group_posts(merged: list[dict[str, Any]]) -> dict[str, Any]:
    grouped: dict[str, list[dict[str, Any]]] = {name: [] for name in POST_STATUSES}
    approval_groups: dict[str, list[dict[str, Any]]] = {name: [] for name in APPROVAL_STATUSES}
    for post in merged:
        grouped[post["status"]].append(post)
        approval_groups[post["approval_status"]].append(post)

    return {
        "posts": merged,
        "grouped": grouped,
        "counts": {name: len(items) for name, items in grouped.items()},
        "approval_groups": approval_groups,
        "approval_counts": {name: len(items) for name, items in approval_groups.items()},
        "total": len(merged),
    }


def reconcile_schedule(
    posts: list[dict[str, Any]],
    history: list[dict[str, Any]],
    *,
    status_filter: str | None = None,
    approval_filter: str | None = None,
) -> dict[str, Any]:
    merged = merge_posts(posts, history)
    if status_filter and status_filter != "all":
        merged = [post for post in merged if post["status"] == status_filter]
    if approval_filter and approval_filter != "all":
        merged = [post for post in merged if post["approval_status"] == approval_filter]
    return group_posts(merged)
