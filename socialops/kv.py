from __future__ import annotations

import math
import time
from threading import Lock
from typing import Protocol

import redis

from socialops.config import settings


class KeyValueStoreError(Exception):
    """Raised when the backing key-value store cannot serve a request."""


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None: ...

    def delete(self, key: str) -> None: ...

    def incr(self, key: str) -> int: ...

    def expire(self, key: str, ttl_seconds: int) -> None: ...

    def ttl(self, key: str) -> int | None: ...


class MemoryStore:
    """
    Process-local store with TTL support.

    Only correct for a single service instance; multi-instance deployments
    configure REDIS_URL so counters and cache entries are shared.
    """

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._lock = Lock()
        self._data: dict[str, tuple[str, float | None]] = {}

    def _live(self, key: str) -> tuple[str, float | None] | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return entry

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._live(key)
            return entry[0] if entry else None

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        with self._lock:
            expires_at = self._clock() + ttl_seconds if ttl_seconds else None
            self._data[key] = (value, expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def incr(self, key: str) -> int:
        with self._lock:
            entry = self._live(key)
            current = int(entry[0]) if entry else 0
            expires_at = entry[1] if entry else None
            current += 1
            self._data[key] = (str(current), expires_at)
            return current

    def expire(self, key: str, ttl_seconds: int) -> None:
        with self._lock:
            entry = self._live(key)
            if entry is not None:
                self._data[key] = (entry[0], self._clock() + ttl_seconds)

    def ttl(self, key: str) -> int | None:
        """Seconds left before expiry; None for a missing key or one without expiry."""
        with self._lock:
            entry = self._live(key)
            if entry is None or entry[1] is None:
                return None
            return max(0, math.ceil(entry[1] - self._clock()))


class RedisStore:
    def __init__(self, client: redis.Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: str, timeout_seconds: float) -> "RedisStore":
        return cls(
            redis.Redis.from_url(
                url,
                decode_responses=True,
                socket_timeout=timeout_seconds,
                socket_connect_timeout=timeout_seconds,
            )
        )

    def get(self, key: str) -> str | None:
        try:
            return self._client.get(key)
        except redis.RedisError as exc:
            raise KeyValueStoreError(f"Redis get failed: {exc}") from exc

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        try:
            self._client.set(key, value, ex=ttl_seconds)
        except redis.RedisError as exc:
            raise KeyValueStoreError(f"Redis set failed: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self._client.delete(key)
        except redis.RedisError as exc:
            raise KeyValueStoreError(f"Redis delete failed: {exc}") from exc

    def incr(self, key: str) -> int:
        try:
            return int(self._client.incr(key))
        except redis.RedisError as exc:
            raise KeyValueStoreError(f"Redis incr failed: {exc}") from exc

    def expire(self, key: str, ttl_seconds: int) -> None:
        try:
            self._client.expire(key, ttl_seconds)
        except redis.RedisError as exc:
            raise KeyValueStoreError(f"Redis expire failed: {exc}") from exc

    def ttl(self, key: str) -> int | None:
        try:
            remaining = self._client.ttl(key)
        except redis.RedisError as exc:
            raise KeyValueStoreError(f"Redis ttl failed: {exc}") from exc
        # -1 means no expiry, -2 means missing.
        return None if remaining is None or remaining < 0 else int(remaining)


_store: KeyValueStore | None = None
_store_lock = Lock()


def get_store() -> KeyValueStore:
    global _store
    with _store_lock:
        if _store is None:
            if settings.redis_url:
                _store = RedisStore.from_url(settings.redis_url, settings.cache_timeout_seconds)
            else:
                _store = MemoryStore()
        return _store


def set_store(store: KeyValueStore | None) -> None:
    global _store
    with _store_lock:
        _store = store
