from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Final

from socialops.domain.normalization import normalize_platform


CANONICAL_METRICS: Final[tuple[str, ...]] = ("views", "likes", "comments", "shares", "reach", "clicks")

# Per-platform source keys for each canonical metric, in priority order.
# None marks a metric the platform does not report.
_DEFAULT_FIELDS: Final[dict[str, tuple[str, ...] | None]] = {
    "views": ("impressions", "views"),
    "likes": ("likes",),
    "comments": ("comments",),
    "shares": ("shares",),
    "reach": ("reach",),
    "clicks": ("clicks",),
}

PLATFORM_FIELDS: Final[dict[str, dict[str, tuple[str, ...] | None]]] = {
    "facebook": {
        "views": ("impressions", "views"),
        "likes": ("likes", "reactions"),
        "comments": ("comments",),
        "shares": ("shares",),
        "reach": ("reach",),
        "clicks": ("clicks", "link_clicks"),
    },
    "instagram": {
        "views": ("impressions", "reach"),
        "likes": ("likes",),
        "comments": ("comments",),
        "shares": None,
        "reach": ("reach",),
        "clicks": ("profile_visits",),
    },
    "twitter": {
        "views": ("impressions", "views"),
        "likes": ("likes", "favorites"),
        "comments": ("replies", "comments"),
        "shares": ("retweets",),
        "reach": ("impressions",),
        "clicks": ("url_clicks", "clicks"),
    },
    "linkedin": {
        "views": ("impressions", "views"),
        "likes": ("likes", "reactions"),
        "comments": ("comments",),
        "shares": ("shares",),
        "reach": ("impressions",),
        "clicks": ("clicks",),
    },
    "tiktok": {
        "views": ("views", "video_views"),
        "likes": ("likes",),
        "comments": ("comments",),
        "shares": ("shares",),
        "reach": ("views", "video_views"),
        "clicks": None,
    },
    "youtube": {
        "views": ("views",),
        "likes": ("likes",),
        "comments": ("comments",),
        "shares": ("shares",),
        "reach": ("views",),
        "clicks": None,
    },
}

_NON_PLATFORM_KEYS: Final[set[str]] = {"status", "id", "code", "message", "postids", "errors", "lastupdated", "nextupdate"}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def coerce_metric(value: Any) -> int | float:
    """Numeric value of a raw metric; anything non-numeric becomes 0."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        number = value
    elif isinstance(value, str):
        try:
            number = float(value.strip().replace(",", ""))
        except ValueError:
            return 0
    else:
        return 0
    if isinstance(number, float):
        if not math.isfinite(number):
            return 0
        if number.is_integer():
            return int(number)
    return number


def _pick(data: dict[str, Any], keys: tuple[str, ...] | None) -> int | float | None:
    if keys is None:
        return None
    present = [coerce_metric(data[key]) for key in keys if data.get(key) is not None]
    if not present:
        return None
    for value in present:
        if value:
            return value
    return 0


def engagement_rate(likes: Any, comments: Any, shares: Any, views: Any) -> float:
    denominator = views or 0
    if denominator <= 0:
        return 0.0
    engagements = (likes or 0) + (comments or 0) + (shares or 0)
    return round(engagements / denominator * 100, 2)


def normalize_platform_metrics(platform: str, data: Any) -> dict[str, Any]:
    metrics = data if isinstance(data, dict) else {}
    if isinstance(metrics.get("analytics"), dict):
        metrics = metrics["analytics"]
    fields = PLATFORM_FIELDS.get(platform, _DEFAULT_FIELDS)
    normalized: dict[str, Any] = {"platform": platform}
    for metric in CANONICAL_METRICS:
        normalized[metric] = _pick(metrics, fields[metric])
    normalized["totalEngagements"] = (
        (normalized["likes"] or 0) + (normalized["comments"] or 0) + (normalized["shares"] or 0)
    )
    normalized["engagementRate"] = engagement_rate(
        normalized["likes"], normalized["comments"], normalized["shares"], normalized["views"]
    )
    return normalized


def _platform_entries(payload: Any) -> list[tuple[str, Any]]:
    source = payload
    if isinstance(payload, dict):
        for container in ("analytics", "platforms"):
            if isinstance(payload.get(container), (dict, list)):
                source = payload[container]
                break

    entries: list[tuple[str, Any]] = []
    if isinstance(source, list):
        for item in source:
            if isinstance(item, dict) and item.get("platform"):
                entries.append((normalize_platform(item["platform"]), item))
    elif isinstance(source, dict):
        for name, item in source.items():
            if str(name).strip().lower() in _NON_PLATFORM_KEYS or not isinstance(item, dict):
                continue
            entries.append((normalize_platform(name), item))
    return entries


def normalize_analytics(payload: Any, post_id: str) -> dict[str, Any]:
    """
    Map a provider analytics payload onto the canonical metric schema.

    Per-platform metrics keep `None` for metrics the platform does not report
    (or did not include); aggregates sum them as 0.
    """
    by_platform: dict[str, dict[str, Any]] = {}
    for platform, data in _platform_entries(payload):
        by_platform[platform] = normalize_platform_metrics(platform, data)

    aggregated: dict[str, Any] = {metric: 0 for metric in CANONICAL_METRICS}
    aggregated["totalEngagements"] = 0
    for metrics in by_platform.values():
        for metric in CANONICAL_METRICS:
            aggregated[metric] += metrics[metric] or 0
        aggregated["totalEngagements"] += metrics["totalEngagements"]
    aggregated["engagementRate"] = engagement_rate(
        aggregated["likes"], aggregated["comments"], aggregated["shares"], aggregated["views"]
    )

    return {
        "postId": post_id,
        "aggregated": aggregated,
        "byPlatform": by_platform,
        "platformCount": len(by_platform),
        "fetchedAt": _now_iso(),
    }
