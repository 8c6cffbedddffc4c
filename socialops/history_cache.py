from __future__ import annotations

import json
import logging
from typing import Any

from socialops.config import settings
from socialops.kv import KeyValueStore, KeyValueStoreError, get_store
from socialops.observability import incr_metric, log_event
from socialops.providers.ayrshare.client import AyrshareProviderError
from socialops.providers.ayrshare.client import get_history as ayrshare_get_history
from socialops.workspaces import usable_profile_key


HISTORY_KEY_PREFIX = "ayrshare:history:"


def history_entry_name(profile_key: str, generation: str = "0") -> str:
    return f"{HISTORY_KEY_PREFIX}{profile_key}:g{generation}"


def _generation_name(profile_key: str) -> str:
    return f"{HISTORY_KEY_PREFIX}{profile_key}:generation"


def _current_generation(store: KeyValueStore, profile_key: str) -> str:
    return store.get(_generation_name(profile_key)) or "0"


def _fetch_live(profile_key: str, request_id: str | None) -> list[dict[str, Any]] | None:
    try:
        history = ayrshare_get_history(
            settings.ayrshare_api_key,
            profile_key,
            base_url=settings.ayrshare_api_base,
            timeout_seconds=settings.ayrshare_history_timeout_seconds,
        )
    except AyrshareProviderError as exc:
        incr_metric("history.fetch.failed", category=exc.category)
        log_event(
            "history_fetch_failed",
            level=logging.WARNING,
            request_id=request_id,
            category=exc.category,
            error=str(exc),
        )
        return None
    incr_metric("history.fetch.live")
    return [item for item in history if isinstance(item, dict)]


def get_history(
    profile_key: str | None,
    *,
    store: KeyValueStore | None = None,
    request_id: str | None = None,
) -> list[dict[str, Any]]:
    """
    Read-through history lookup bounded by a short TTL.

    A store outage falls through to a live fetch; a failed live fetch yields an
    empty list so callers can still render local data.
    """
    if not usable_profile_key(profile_key):
        return []
    store = store or get_store()

    generation: str | None = None
    try:
        generation = _current_generation(store, profile_key)
        cached = store.get(history_entry_name(profile_key, generation))
    except KeyValueStoreError as exc:
        incr_metric("history.cache.unavailable")
        log_event("history_cache_read_failed", level=logging.WARNING, request_id=request_id, error=str(exc))
        cached = None

    if cached is not None:
        try:
            items = json.loads(cached)
        except ValueError:
            items = None
        if isinstance(items, list):
            incr_metric("history.cache.hit")
            return items
    incr_metric("history.cache.miss")

    history = _fetch_live(profile_key, request_id)
    if history is None:
        return []

    if generation is not None:
        try:
            store.set(
                history_entry_name(profile_key, generation),
                json.dumps(history),
                ttl_seconds=settings.history_cache_ttl_seconds,
            )
        except KeyValueStoreError as exc:
            log_event("history_cache_write_failed", level=logging.WARNING, request_id=request_id, error=str(exc))
    return history


def invalidate(
    profile_key: str | None,
    *,
    store: KeyValueStore | None = None,
    request_id: str | None = None,
    reason: str | None = None,
) -> bool:
    """
    Drop cached history for a profile.

    Bumping the generation also orphans entries written by reads that were
    already in flight when the invalidation happened.
    """
    if not usable_profile_key(profile_key):
        return False
    store = store or get_store()
    try:
        previous = _current_generation(store, profile_key)
        generation_name = _generation_name(profile_key)
        store.incr(generation_name)
        store.expire(generation_name, max(settings.history_cache_ttl_seconds * 10, 3600))
        store.delete(history_entry_name(profile_key, previous))
    except KeyValueStoreError as exc:
        incr_metric("history.cache.invalidate_failed")
        log_event(
            "history_cache_invalidate_failed",
            level=logging.ERROR,
            request_id=request_id,
            reason=reason,
            error=str(exc),
        )
        return False
    incr_metric("history.cache.invalidated", reason=reason or "unspecified")
    log_event("history_cache_invalidated", request_id=request_id, reason=reason)
    return True
