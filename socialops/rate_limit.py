from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, Request, status

from socialops.auth import AuthContext, get_current_user
from socialops.config import settings
from socialops.kv import KeyValueStore, KeyValueStoreError, get_store
from socialops.observability import incr_metric, log_event


def check_rate_limit(
    store: KeyValueStore,
    identifier: str,
    *,
    limit: int,
    window_seconds: int,
) -> tuple[bool, int]:
    """Fixed-window counter. Returns (allowed, remaining)."""
    window_key = f"ratelimit:{identifier}"
    count = store.incr(window_key)
    # Re-arm the window when an earlier expire failed.
    if count == 1 or store.ttl(window_key) is None:
        store.expire(window_key, window_seconds)
    return count <= limit, max(0, limit - count)


def rate_limited(scope: str):
    async def _limit(request: Request, auth: AuthContext = Depends(get_current_user)) -> AuthContext:
        identifier = f"{scope}:{auth.user_id}"
        try:
            allowed, _remaining = check_rate_limit(
                get_store(),
                identifier,
                limit=settings.rate_limit_requests,
                window_seconds=settings.rate_limit_window_seconds,
            )
        except KeyValueStoreError as exc:
            log_event(
                "rate_limit_store_unavailable",
                level=logging.WARNING,
                request_id=getattr(request.state, "request_id", None),
                scope=scope,
                error=str(exc),
            )
            return auth
        if not allowed:
            incr_metric("rate_limit.rejected", scope=scope)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests",
                headers={"Retry-After": str(settings.rate_limit_window_seconds)},
            )
        return auth

    return _limit
