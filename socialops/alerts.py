from __future__ import annotations

import html
import logging
from typing import Any

from socialops.config import settings
from socialops.observability import incr_metric, log_event
from socialops.providers.resend.client import ResendProviderError, send_email


def admin_recipients() -> list[str]:
    raw = settings.admin_alert_emails or ""
    return [item.strip() for item in raw.split(",") if item.strip()]


def _render(title: str, rows: dict[str, Any]) -> str:
    cells = "".join(
        f"<tr><td><strong>{html.escape(str(label))}</strong></td>"
        f"<td>{html.escape('' if value is None else str(value))}</td></tr>"
        for label, value in rows.items()
    )
    return f"<h2>{html.escape(title)}</h2><table>{cells}</table>"


def alert_operators(
    kind: str,
    *,
    subject: str,
    rows: dict[str, Any],
    request_id: str | None = None,
) -> bool:
    """Surface a condition needing manual follow-up. Never raises."""
    incr_metric("operator.alerts", kind=kind)
    log_event("operator_alert", level=logging.ERROR, request_id=request_id, kind=kind, subject=subject, **rows)

    recipients = admin_recipients()
    if not recipients or not settings.resend_api_key:
        log_event(
            "operator_alert_email_skipped",
            level=logging.WARNING,
            request_id=request_id,
            kind=kind,
            reason="alert email not configured",
        )
        return False

    try:
        send_email(
            settings.resend_api_key,
            sender=settings.alert_from_email,
            recipients=recipients,
            subject=subject,
            html=_render(subject, rows),
        )
    except ResendProviderError as exc:
        incr_metric("operator.alerts.email_failed", kind=kind)
        log_event(
            "operator_alert_email_failed",
            level=logging.WARNING,
            request_id=request_id,
            kind=kind,
            category=exc.category,
            error=str(exc),
        )
        return False
    return True
