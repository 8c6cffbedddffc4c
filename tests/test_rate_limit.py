import pytest

from socialops.kv import KeyValueStoreError, MemoryStore
from socialops.rate_limit import check_rate_limit


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_fixed_window_allows_limit_then_rejects():
    store = MemoryStore()
    results = [check_rate_limit(store, "schedule:user-1", limit=3, window_seconds=60) for _ in range(4)]
    assert results == [(True, 2), (True, 1), (True, 0), (False, 0)]


def test_window_resets_after_expiry():
    clock = Clock()
    store = MemoryStore(clock=clock)
    for _ in range(3):
        check_rate_limit(store, "schedule:user-1", limit=3, window_seconds=60)
    assert check_rate_limit(store, "schedule:user-1", limit=3, window_seconds=60)[0] is False

    clock.now += 61
    assert check_rate_limit(store, "schedule:user-1", limit=3, window_seconds=60) == (True, 2)


def test_identifiers_are_counted_separately():
    store = MemoryStore()
    check_rate_limit(store, "schedule:user-1", limit=1, window_seconds=60)
    assert check_rate_limit(store, "schedule:user-2", limit=1, window_seconds=60) == (True, 0)


class FlakyExpireStore(MemoryStore):
    def __init__(self, clock):
        super().__init__(clock=clock)
        self.expire_failures = 1

    def expire(self, key, ttl_seconds):
        if self.expire_failures:
            self.expire_failures -= 1
            raise KeyValueStoreError("store timeout")
        super().expire(key, ttl_seconds)


def test_window_recovers_after_failed_expire():
    clock = Clock()
    store = FlakyExpireStore(clock)

    with pytest.raises(KeyValueStoreError):
        check_rate_limit(store, "schedule:user-1", limit=3, window_seconds=60)
    assert store.ttl("ratelimit:schedule:user-1") is None

    assert check_rate_limit(store, "schedule:user-1", limit=3, window_seconds=60) == (True, 1)
    assert store.ttl("ratelimit:schedule:user-1") == 60

    clock.now += 61
    assert check_rate_limit(store, "schedule:user-1", limit=3, window_seconds=60) == (True, 2)
