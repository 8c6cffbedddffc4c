from __future__ import annotations

from typing import Literal


BillingStatus = Literal["active", "past_due", "cancelled", "unknown"]
PostStatus = Literal["pending", "scheduled", "posted", "failed"]
ApprovalStatus = Literal["pending", "changes_requested", "approved", "rejected"]
DistributionEventKind = Literal[
    "comment",
    "message",
    "analytics",
    "disconnected",
    "profile_deleted",
    "unknown",
]

APPROVAL_STATUSES: tuple[ApprovalStatus, ...] = ("pending", "changes_requested", "approved", "rejected")
POST_STATUSES: tuple[PostStatus, ...] = ("pending", "scheduled", "posted", "failed")
ADD_ON_TIERS = {"brand_bolt"}
DEFAULT_WORKSPACE_NAME = "My Business"


def normalize_billing_status(value: str | None) -> BillingStatus:
    if not value:
        return "unknown"
    key = str(value).strip().lower()
    mapping = {
        "active": "active",
        "trialing": "active",
        "past_due": "past_due",
        "unpaid": "past_due",
        "canceled": "cancelled",
        "cancelled": "cancelled",
        "incomplete_expired": "cancelled",
    }
    return mapping.get(key, "unknown")


def normalize_tier(value: str | None) -> str | None:
    if not value:
        return None
    return str(value).strip().lower().replace("-", "_") or None


def is_add_on_tier(tier: str | None) -> bool:
    return tier in ADD_ON_TIERS


def normalize_post_status(value: str | None) -> PostStatus:
    if not value:
        return "pending"
    key = str(value).strip().lower()
    mapping = {
        "draft": "pending",
        "pending": "pending",
        "pending_approval": "pending",
        "scheduled": "scheduled",
        "posted": "posted",
        "published": "posted",
        "success": "posted",
        "failed": "failed",
        "error": "failed",
    }
    return mapping.get(key, "pending")


def normalize_approval_status(value: str | None) -> ApprovalStatus:
    if not value:
        return "pending"
    key = str(value).strip().lower()
    if key in APPROVAL_STATUSES:
        return key  # type: ignore[return-value]
    return "pending"


def normalize_platform(value: str | None) -> str:
    if not value:
        return "unknown"
    key = str(value).strip().lower()
    if key == "x":
        return "twitter"
    return key


def classify_distribution_event(value: str | None) -> DistributionEventKind:
    if not value:
        return "unknown"
    key = str(value).strip().lower()
    mapping = {
        "comment": "comment",
        "new_comment": "comment",
        "message": "message",
        "new_message": "message",
        "direct_message": "message",
        "post_analytics": "analytics",
        "analytics": "analytics",
        "social_disconnected": "disconnected",
        "unlink": "disconnected",
        "disconnect": "disconnected",
        "profile_deleted": "profile_deleted",
        "delete_profile": "profile_deleted",
    }
    return mapping.get(key, "unknown")


def is_usable_profile_key(value: str | None, placeholder: str | None = None) -> bool:
    """False for missing, blank, or placeholder profile keys."""
    if value is None:
        return False
    key = str(value).strip()
    if not key:
        return False
    if placeholder and key == placeholder.strip():
        return False
    return True
