from __future__ import annotations

import json
import logging
from collections import Counter
from threading import Lock
from typing import Any

import httpx


logger = logging.getLogger("socialops")

_metrics_lock = Lock()
_metrics_counter: Counter[str] = Counter()

REDACTED = "[REDACTED]"
_SENSITIVE_FRAGMENTS = ("password", "token", "secret", "authorization", "api_key", "apikey")


def is_sensitive_key(key: str) -> bool:
    lowered = str(key).lower().replace("-", "_")
    if lowered == "key" or lowered.endswith("_key"):
        return True
    return any(fragment in lowered for fragment in _SENSITIVE_FRAGMENTS)


def _normalize(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, dict):
        return {
            str(k): (REDACTED if is_sensitive_key(k) else _normalize(v))
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple, set)):
        return [_normalize(v) for v in value]
    return str(value)


def metric_key(name: str, **labels: Any) -> str:
    if not labels:
        return name
    ordered = ",".join(f"{k}={labels[k]}" for k in sorted(labels))
    return f"{name}|{ordered}"


def incr_metric(name: str, value: int = 1, **labels: Any) -> None:
    key = metric_key(name, **{k: _normalize(v) for k, v in labels.items()})
    with _metrics_lock:
        _metrics_counter[key] += value


def metrics_snapshot() -> dict[str, int]:
    with _metrics_lock:
        return dict(_metrics_counter)


def reset_metrics() -> None:
    with _metrics_lock:
        _metrics_counter.clear()


def _drain_metrics() -> dict[str, int]:
    with _metrics_lock:
        drained = dict(_metrics_counter)
        _metrics_counter.clear()
    return drained


def _restore_metrics(counters: dict[str, int]) -> None:
    with _metrics_lock:
        _metrics_counter.update(counters)


def _export_snapshot(
    body: dict[str, Any],
    *,
    url: str,
    bearer_token: str | None,
    timeout_seconds: float,
) -> str | None:
    """POST a snapshot to the external sink. Returns an error description, or None."""
    headers = {"Content-Type": "application/json"}
    if bearer_token:
        headers["Authorization"] = f"Bearer {bearer_token}"
    try:
        with httpx.Client(timeout=timeout_seconds) as client:
            response = client.post(url, headers=headers, json=body)
    except httpx.HTTPError as exc:
        return f"{exc.__class__.__name__}: {exc}"
    if response.status_code >= 400:
        return f"HTTP {response.status_code}"
    return None


def persist_metrics_snapshot(
    *,
    supabase_client: Any,
    source: str,
    request_id: str | None = None,
    reset_after_persist: bool = False,
    export_url: str | None = None,
    export_bearer_token: str | None = None,
    export_timeout_seconds: float = 3.0,
) -> bool:
    """
    Write the in-process counters to `observability_metric_snapshots`.

    With `reset_after_persist` the counters are drained atomically and put back
    if the write fails, so increments racing the flush are never dropped. The
    optional export to an external sink is best-effort.
    """
    snapshot = _drain_metrics() if reset_after_persist else metrics_snapshot()
    body = {"source": source, "request_id": request_id, "counters": snapshot}
    try:
        supabase_client.table("observability_metric_snapshots").insert(body).execute()
    except Exception as exc:
        if reset_after_persist:
            _restore_metrics(snapshot)
        log_event(
            "metrics_snapshot_persist_failed",
            level=logging.WARNING,
            request_id=request_id,
            source=source,
            error=str(exc),
        )
        return False

    if export_url:
        export_error = _export_snapshot(
            body,
            url=export_url,
            bearer_token=export_bearer_token,
            timeout_seconds=export_timeout_seconds,
        )
        if export_error:
            incr_metric("observability.export.failed")
            log_event(
                "metrics_snapshot_export_failed",
                level=logging.WARNING,
                request_id=request_id,
                source=source,
                error=export_error,
            )

    log_event("metrics_snapshot_persisted", request_id=request_id, source=source, counter_count=len(snapshot))
    return True


def log_event(
    event: str,
    *,
    level: int = logging.INFO,
    request_id: str | None = None,
    **fields: Any,
) -> None:
    """Emit one JSON log line. Fields with credential-like names are redacted."""
    payload = {"event": event}
    if request_id:
        payload["request_id"] = request_id
    for key, value in fields.items():
        payload[key] = REDACTED if is_sensitive_key(key) else _normalize(value)
    logger.log(level, json.dumps(payload, sort_keys=True))
