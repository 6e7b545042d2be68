"""Tests for the TTL/LRU cache with request coalescing."""

import sys
import threading
from pathlib import Path
from unittest.mock import Mock

import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from ado_metrics.cache import TtlLruCache


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_get_or_set_returns_fresh_value_without_reloading():
    """Verify a fresh hit does not call the loader again."""
    cache = TtlLruCache(clock=FakeClock())
    loader = Mock(return_value=[1, 2, 3])

    assert cache.get_or_set("wiql:a", 60_000, loader) == [1, 2, 3]
    assert cache.get_or_set("wiql:a", 60_000, loader) == [1, 2, 3]

    assert loader.call_count == 1


def test_get_or_set_reloads_after_ttl_expiry():
    """Verify an entry is reloaded once its TTL has elapsed."""
    clock = FakeClock()
    cache = TtlLruCache(clock=clock)
    loader = Mock(side_effect=["first", "second"])

    assert cache.get_or_set("key", 1_000, loader) == "first"
    clock.now += 0.999
    assert cache.get_or_set("key", 1_000, loader) == "first"
    clock.now += 0.001
    assert cache.get_or_set("key", 1_000, loader) == "second"

    assert loader.call_count == 2


def test_bypass_always_calls_loader():
    """Verify bypass skips both lookup and storage."""
    cache = TtlLruCache(clock=FakeClock())
    loader = Mock(side_effect=["a", "b"])

    assert cache.get_or_set("users", 60_000, loader, bypass=True) == "a"
    assert cache.get_or_set("users", 60_000, loader, bypass=True) == "b"
    assert "users" not in cache


def test_concurrent_callers_share_one_load():
    """Verify callers for an in-flight key wait on the same load."""
    cache = TtlLruCache()
    started = threading.Event()
    release = threading.Event()
    calls = []

    def slow_loader():
        calls.append(1)
        started.set()
        release.wait(5)
        return {"value": 42}

    results = []

    def worker():
        results.append(cache.get_or_set("shared", 60_000, slow_loader))

    first = threading.Thread(target=worker)
    first.start()
    assert started.wait(5)

    others = [threading.Thread(target=worker) for _ in range(4)]
    for thread in others:
        thread.start()
    release.set()
    for thread in [first] + others:
        thread.join(5)

    assert len(calls) == 1
    assert len(results) == 5
    assert all(result is results[0] for result in results)


def test_failed_load_is_not_cached_and_can_retry():
    """Verify a failed load propagates and the next call runs the loader again."""
    cache = TtlLruCache(clock=FakeClock())
    failing = Mock(side_effect=RuntimeError("boom"))

    with pytest.raises(RuntimeError):
        cache.get_or_set("key", 60_000, failing)

    assert "key" not in cache
    assert cache.get_or_set("key", 60_000, Mock(return_value="ok")) == "ok"


def test_waiters_receive_the_loader_failure():
    """Verify callers waiting on an in-flight load see the same failure."""
    cache = TtlLruCache()
    started = threading.Event()
    release = threading.Event()
    errors = []

    def failing_loader():
        started.set()
        release.wait(5)
        raise RuntimeError("remote down")

    def worker():
        try:
            cache.get_or_set("key", 60_000, failing_loader)
        except RuntimeError as exc:
            errors.append(str(exc))

    first = threading.Thread(target=worker)
    first.start()
    assert started.wait(5)
    second = threading.Thread(target=worker)
    second.start()
    release.set()
    first.join(5)
    second.join(5)

    assert errors == ["remote down", "remote down"]
    assert "key" not in cache


def test_least_recently_used_entry_is_evicted():
    """Verify reading a key protects it from eviction."""
    cache = TtlLruCache(max_entries=2, clock=FakeClock())
    cache.get_or_set("a", 60_000, lambda: 1)
    cache.get_or_set("b", 60_000, lambda: 2)

    cache.get_or_set("a", 60_000, lambda: 99)
    cache.get_or_set("c", 60_000, lambda: 3)

    assert "a" in cache
    assert "b" not in cache
    assert "c" in cache
    assert len(cache) == 2


def test_configure_trims_to_new_capacity():
    """Verify lowering the capacity evicts the oldest entries immediately."""
    cache = TtlLruCache(max_entries=5, clock=FakeClock())
    for key in ("a", "b", "c", "d"):
        cache.get_or_set(key, 60_000, lambda: key)

    cache.configure(max_entries=2)

    assert cache.max_entries == 2
    assert len(cache) == 2
    assert "c" in cache and "d" in cache


def test_configure_floors_capacity_at_one():
    """Verify a non-positive capacity still keeps one entry."""
    cache = TtlLruCache(clock=FakeClock())
    cache.configure(max_entries=0)

    cache.get_or_set("a", 60_000, lambda: 1)
    cache.get_or_set("b", 60_000, lambda: 2)

    assert cache.max_entries == 1
    assert len(cache) == 1
