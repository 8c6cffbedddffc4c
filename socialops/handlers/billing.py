from __future__ import annotations

import logging
from typing import Any, Callable

from socialops.config import settings
from socialops.db import supabase
from socialops.domain.normalization import (
    DEFAULT_WORKSPACE_NAME,
    is_add_on_tier,
    normalize_billing_status,
    normalize_tier,
)
from socialops.observability import incr_metric, log_event
from socialops.provisioning import provision_for_owner
from socialops.workspaces import (
    find_workspace_by_billing,
    list_owned_workspaces,
    update_workspace,
)


CRITICAL_EVENT_TYPES = frozenset({"checkout.session.completed"})


class BillingEventError(ValueError):
    """Raised when a billing event cannot be applied as delivered."""


def _event_object(event: dict[str, Any]) -> dict[str, Any]:
    data = event.get("data") or {}
    obj = data.get("object") if isinstance(data, dict) else None
    return obj if isinstance(obj, dict) else {}


def _subscription_price_id(subscription: dict[str, Any]) -> str | None:
    items = (subscription.get("items") or {}).get("data") or []
    if not items or not isinstance(items[0], dict):
        return None
    price = items[0].get("price") or {}
    return price.get("id") if isinstance(price, dict) else None


def handle_checkout_completed(event: dict[str, Any], *, request_id: str | None = None) -> str:
    session = _event_object(event)
    metadata = session.get("metadata") or {}
    owner_id = metadata.get("supabase_user_id")
    if not owner_id:
        raise BillingEventError("Checkout session is missing supabase_user_id metadata")

    tier = normalize_tier(metadata.get("tier"))
    customer_id = session.get("customer")
    subscription_id = session.get("subscription")

    if is_add_on_tier(tier):
        owned = list_owned_workspaces(owner_id)
        if not owned:
            raise BillingEventError(f"Add-on purchased by {owner_id} who owns no workspace")
        target = owned[0]
        update_workspace(target["id"], {"add_ons": int(target.get("add_ons") or 0) + 1})
        incr_metric("billing.add_on.applied", tier=tier)
        log_event("billing_add_on_applied", request_id=request_id, workspace_id=target["id"], tier=tier)
        return "add_on_applied"

    billing_fields: dict[str, Any] = {"subscription_status": "active"}
    if tier:
        billing_fields["tier"] = tier
    if customer_id:
        billing_fields["stripe_customer_id"] = customer_id
    if subscription_id:
        billing_fields["stripe_subscription_id"] = subscription_id

    result = provision_for_owner(
        owner_id,
        metadata.get("workspace_name") or DEFAULT_WORKSPACE_NAME,
        billing_fields,
        request_id=request_id,
    )
    if result.status == "in_progress":
        # Not processed yet; a redelivery retries once the claim clears.
        raise BillingEventError(f"Provisioning already in progress for workspace {result.workspace_id}")
    return result.status


def _apply_status(
    *,
    subscription_id: str | None,
    customer_id: str | None,
    fields: dict[str, Any],
    request_id: str | None,
    event_type: str,
    only_if_status: str | None = None,
) -> str:
    workspace = find_workspace_by_billing(subscription_id=subscription_id, customer_id=customer_id)
    if not workspace:
        log_event(
            "billing_workspace_not_found",
            level=logging.WARNING,
            request_id=request_id,
            event_type=event_type,
            subscription_id=subscription_id,
            customer_id=customer_id,
        )
        return "workspace_not_found"

    query = supabase.table("workspaces").update(fields).eq("id", workspace["id"])
    if only_if_status:
        query = query.eq("subscription_status", only_if_status)
    updated = query.execute()
    if not updated.data:
        return "unchanged"
    incr_metric("billing.status.updated", event_type=event_type, status=fields.get("subscription_status"))
    log_event(
        "billing_status_updated",
        request_id=request_id,
        event_type=event_type,
        workspace_id=workspace["id"],
        subscription_status=fields.get("subscription_status"),
    )
    return "updated"


def handle_subscription_updated(event: dict[str, Any], *, request_id: str | None = None) -> str:
    subscription = _event_object(event)
    fields: dict[str, Any] = {"subscription_status": normalize_billing_status(subscription.get("status"))}
    price_id = _subscription_price_id(subscription)
    tier = settings.stripe_price_tiers.get(price_id) if price_id else None
    if tier:
        fields["tier"] = normalize_tier(tier)
    return _apply_status(
        subscription_id=subscription.get("id"),
        customer_id=subscription.get("customer"),
        fields=fields,
        request_id=request_id,
        event_type="customer.subscription.updated",
    )


def handle_subscription_deleted(event: dict[str, Any], *, request_id: str | None = None) -> str:
    subscription = _event_object(event)
    return _apply_status(
        subscription_id=subscription.get("id"),
        customer_id=subscription.get("customer"),
        fields={"subscription_status": "cancelled"},
        request_id=request_id,
        event_type="customer.subscription.deleted",
    )


def handle_invoice_payment_failed(event: dict[str, Any], *, request_id: str | None = None) -> str:
    invoice = _event_object(event)
    return _apply_status(
        subscription_id=invoice.get("subscription"),
        customer_id=invoice.get("customer"),
        fields={"subscription_status": "past_due"},
        request_id=request_id,
        event_type="invoice.payment_failed",
    )


def handle_invoice_paid(event: dict[str, Any], *, request_id: str | None = None) -> str:
    invoice = _event_object(event)
    return _apply_status(
        subscription_id=invoice.get("subscription"),
        customer_id=invoice.get("customer"),
        fields={"subscription_status": "active"},
        request_id=request_id,
        event_type="invoice.paid",
        only_if_status="past_due",
    )


BILLING_HANDLERS: dict[str, Callable[..., str]] = {
    "checkout.session.completed": handle_checkout_completed,
    "customer.subscription.updated": handle_subscription_updated,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.payment_failed": handle_invoice_payment_failed,
    "invoice.paid": handle_invoice_paid,
}
