from __future__ import annotations

from typing import Any, Literal, Protocol


ErrorCategory = Literal["transient", "terminal", "unknown"]
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class ProviderErrorLike(Protocol):
    @property
    def category(self) -> str: ...

    @property
    def retryable(self) -> bool: ...


def classify_status_code(status_code: int | None) -> ErrorCategory:
    if status_code is None:
        return "unknown"
    if status_code in RETRYABLE_STATUS_CODES or status_code >= 500:
        return "transient"
    if 400 <= status_code < 500:
        return "terminal"
    return "unknown"


def provider_error_http_status(exc: ProviderErrorLike) -> int:
    return 503 if exc.retryable else 502


def provider_error_detail(*, provider: str, operation: str, exc: ProviderErrorLike) -> dict[str, Any]:
    return {
        "type": "provider_error",
        "provider": provider,
        "operation": operation,
        "category": exc.category,
        "retryable": exc.retryable,
        "message": str(exc),
    }
