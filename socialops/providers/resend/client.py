from __future__ import annotations

from typing import Any

import httpx

from socialops.domain.provider_errors import classify_status_code


RESEND_API_BASE = "https://api.resend.com"
_EP_EMAILS = "/emails"


class ResendProviderError(Exception):
    """Provider-level exception for Resend integration failures."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def category(self) -> str:
        if self.status_code is not None:
            return classify_status_code(self.status_code)
        message = str(self).lower()
        if "connectivity error" in message:
            return "transient"
        if "missing resend api key" in message or "no recipients" in message:
            return "terminal"
        return "unknown"

    @property
    def retryable(self) -> bool:
        return self.category == "transient"


def send_email(
    api_key: str | None,
    *,
    sender: str,
    recipients: list[str],
    subject: str,
    html: str,
    base_url: str | None = None,
    timeout_seconds: float = 10.0,
) -> dict[str, Any]:
    if not api_key:
        raise ResendProviderError("Missing Resend API key")
    if not recipients:
        raise ResendProviderError("No recipients for Resend email")

    url = f"{(base_url or RESEND_API_BASE).rstrip('/')}{_EP_EMAILS}"
    try:
        with httpx.Client(timeout=timeout_seconds) as client:
            response = client.post(
                url,
                headers={
                    "Authorization": f"Bearer {api_key}",
                    "Content-Type": "application/json",
                },
                json={"from": sender, "to": recipients, "subject": subject, "html": html},
            )
    except httpx.HTTPError as exc:
        raise ResendProviderError(f"Resend connectivity error: {exc}") from exc

    if response.status_code >= 400:
        raise ResendProviderError(
            f"Resend API returned HTTP {response.status_code}: {response.text[:200]}",
            status_code=response.status_code,
        )
    try:
        data = response.json()
    except ValueError as exc:
        raise ResendProviderError("Resend returned non-JSON response") from exc
    return data if isinstance(data, dict) else {}
