from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Literal

import stripe

from socialops import ledger
from socialops.alerts import alert_operators
from socialops.config import settings
from socialops.handlers.billing import BILLING_HANDLERS, CRITICAL_EVENT_TYPES
from socialops.handlers.distribution import (
    dispatch as dispatch_distribution_event,
    extract_event_type as extract_distribution_event_type,
    quarantine_event,
    record_inbox_event,
    resolve_workspace,
)
from socialops.observability import incr_metric, log_event


ProviderKind = Literal["stripe", "ayrshare"]


class WebhookVerificationError(Exception):
    """Signature or payload failed verification; nothing was changed."""


class WebhookConfigurationError(Exception):
    """The provider's shared secret is not configured."""


@dataclass
class IngestResult:
    accepted: bool
    duplicate: bool = False
    quarantined: bool = False
    event_type: str | None = None
    event_id: str | None = None
    outcome: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def ack(self) -> dict[str, Any]:
        body: dict[str, Any] = {"received": True}
        if self.duplicate:
            body["duplicate"] = True
        if self.quarantined:
            body["quarantined"] = True
        return body


def verify_stripe_payload(raw_body: bytes, signature_header: str | None) -> dict[str, Any]:
    secret = settings.stripe_webhook_secret
    if not secret:
        raise WebhookConfigurationError("STRIPE_WEBHOOK_SECRET is not configured")
    if not signature_header:
        raise WebhookVerificationError("Missing Stripe-Signature header")
    try:
        stripe.Webhook.construct_event(raw_body, signature_header, secret)
    except (ValueError, stripe.SignatureVerificationError) as exc:
        raise WebhookVerificationError(f"Invalid Stripe webhook: {exc.__class__.__name__}") from exc
    payload = json.loads(raw_body.decode("utf-8"))
    if not isinstance(payload, dict) or not payload.get("id") or not payload.get("type"):
        raise WebhookVerificationError("Stripe event is missing id or type")
    return payload


def verify_hmac_payload(raw_body: bytes, signature_header: str | None, secret: str | None) -> dict[str, Any]:
    if not secret:
        raise WebhookConfigurationError("AYRSHARE_WEBHOOK_SECRET is not configured")
    if not signature_header:
        raise WebhookVerificationError("Missing webhook signature")
    computed = hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(computed, signature_header.strip()):
        raise WebhookVerificationError("Invalid webhook signature")
    try:
        payload = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise WebhookVerificationError("Invalid JSON payload") from exc
    if not isinstance(payload, dict):
        raise WebhookVerificationError("Webhook payload must be a JSON object")
    return payload


def _record_handler_failure(
    *,
    provider: str,
    event_type: str,
    event_id: str | None,
    exc: Exception,
    critical: bool,
    request_id: str | None,
) -> None:
    incr_metric("webhook.events.failed", provider_slug=provider, event_type=event_type)
    log_event(
        "webhook_failed",
        level=logging.ERROR,
        request_id=request_id,
        provider_slug=provider,
        event_type=event_type,
        event_id=event_id,
        error_type=exc.__class__.__name__,
        error=str(exc),
    )
    if event_id and critical:
        ledger.mark_failed(event_id, event_type, str(exc), provider=provider, request_id=request_id)
    alert_operators(
        "webhook_handler_failed",
        subject=f"{provider} webhook {event_type} failed",
        rows={"provider": provider, "event_type": event_type, "event_id": event_id, "error": str(exc)},
        request_id=request_id,
    )


def _ingest_stripe(raw_body: bytes, signature_header: str | None, request_id: str | None) -> IngestResult:
    event = verify_stripe_payload(raw_body, signature_header)
    event_id = str(event["id"])
    event_type = str(event["type"])
    critical = event_type in CRITICAL_EVENT_TYPES
    log_event("webhook_received", request_id=request_id, provider_slug="stripe", event_type=event_type, event_id=event_id)

    handler = BILLING_HANDLERS.get(event_type)
    if handler is None:
        incr_metric("webhook.events.unhandled", provider_slug="stripe")
        log_event("webhook_event_unhandled", request_id=request_id, provider_slug="stripe", event_type=event_type)
        return IngestResult(accepted=True, event_type=event_type, event_id=event_id, outcome="unhandled")

    try:
        if critical and not ledger.claim_event(event_id, event_type, provider="stripe", request_id=request_id):
            incr_metric("webhook.events.duplicate", provider_slug="stripe")
            log_event(
                "webhook_duplicate_ignored",
                request_id=request_id,
                provider_slug="stripe",
                event_type=event_type,
                event_id=event_id,
            )
            return IngestResult(accepted=True, duplicate=True, event_type=event_type, event_id=event_id, outcome="duplicate")
        outcome = handler(event, request_id=request_id)
        if critical:
            ledger.mark_processed(event_id)
    except Exception as exc:
        _record_handler_failure(
            provider="stripe",
            event_type=event_type,
            event_id=event_id,
            exc=exc,
            critical=critical,
            request_id=request_id,
        )
        return IngestResult(accepted=True, event_type=event_type, event_id=event_id, outcome="failed")

    incr_metric("webhook.events.processed", provider_slug="stripe", event_type=event_type)
    log_event(
        "webhook_processed",
        request_id=request_id,
        provider_slug="stripe",
        event_type=event_type,
        event_id=event_id,
        outcome=outcome,
    )
    return IngestResult(accepted=True, event_type=event_type, event_id=event_id, outcome=outcome)


def _ingest_ayrshare(raw_body: bytes, signature_header: str | None, request_id: str | None) -> IngestResult:
    payload = verify_hmac_payload(raw_body, signature_header, settings.ayrshare_webhook_secret)
    event_type = extract_distribution_event_type(payload)
    log_event("webhook_received", request_id=request_id, provider_slug="ayrshare", event_type=event_type)

    try:
        workspace, reason = resolve_workspace(payload)
        if workspace is None:
            quarantine_event(payload, event_type=event_type, reason=reason or "unroutable", request_id=request_id)
            return IngestResult(accepted=True, quarantined=True, event_type=event_type, outcome=reason)
        record_inbox_event(workspace["id"], event_type, payload)
        outcome = dispatch_distribution_event(workspace, payload, request_id=request_id)
    except Exception as exc:
        _record_handler_failure(
            provider="ayrshare",
            event_type=event_type,
            event_id=None,
            exc=exc,
            critical=False,
            request_id=request_id,
        )
        return IngestResult(accepted=True, event_type=event_type, outcome="failed")

    incr_metric("webhook.events.processed", provider_slug="ayrshare", event_type=event_type)
    log_event(
        "webhook_processed",
        request_id=request_id,
        provider_slug="ayrshare",
        event_type=event_type,
        workspace_id=workspace["id"],
        outcome=outcome,
    )
    return IngestResult(accepted=True, event_type=event_type, outcome=outcome)


def ingest(
    raw_body: bytes,
    signature_header: str | None,
    provider_kind: ProviderKind,
    *,
    request_id: str | None = None,
) -> IngestResult:
    """
    Verify, deduplicate, and dispatch one inbound provider event.

    Raises WebhookVerificationError before any state change when the signature
    or payload is rejected. Handler failures are recorded and still reported as
    accepted so the provider stops redelivering.
    """
    incr_metric("webhook.events.received", provider_slug=provider_kind)
    if provider_kind == "stripe":
        return _ingest_stripe(raw_body, signature_header, request_id)
    if provider_kind == "ayrshare":
        return _ingest_ayrshare(raw_body, signature_header, request_id)
    raise ValueError(f"Unsupported webhook provider: {provider_kind}")
