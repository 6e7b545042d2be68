"""In-memory TTL cache with LRU eviction and request coalescing.

Usage::

    cache = TtlLruCache(max_entries=500)
    items = cache.get_or_set("wiql:1a2b3c4d", 60_000, lambda: fetch_ids())

A fresh value is returned without calling the loader. Concurrent callers for a
key that is already loading wait on the same pending result instead of calling
the loader again. A failed load is removed so the next call can retry.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass
class CacheEntry:
    """One cache slot; ``pending`` is set only while its loader is running."""

    key: str
    expires_at: float
    value: Any = _MISSING
    pending: Optional[Future] = None

    def has_value(self) -> bool:
        return self.value is not _MISSING


class TtlLruCache:
    """Thread-safe TTL/LRU cache owned by the host application."""

    def __init__(
        self,
        max_entries: int = 500,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._clock = clock
        self._max_entries = max(1, int(max_entries))

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._store

    def configure(self, max_entries: Optional[int] = None) -> None:
        """Update the capacity and evict excess entries immediately."""
        if max_entries is None:
            return
        with self._lock:
            self._max_entries = max(1, int(max_entries))
            self._trim()

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def _touch(self, key: str) -> None:
        self._store.move_to_end(key)

    def _trim(self) -> None:
        while len(self._store) > self._max_entries:
            evicted, _ = self._store.popitem(last=False)
            logger.debug("Evicted cache entry", extra={"cache_key": evicted})

    def get_or_set(
        self,
        key: str,
        ttl_ms: int,
        loader: Callable[[], T],
        bypass: bool = False,
    ) -> T:
        """Return the cached value for ``key`` or load, store and return it.

        Args:
            key: Collision-free cache key chosen by the caller.
            ttl_ms: Lifetime of a successfully loaded value in milliseconds.
            loader: Zero-argument callable producing the value.
            bypass: Skip the cache entirely and call ``loader`` directly.
        """
        if bypass:
            return loader()

        with self._lock:
            entry = self._store.get(key)
            if entry is not None:
                if entry.pending is not None:
                    self._touch(key)
                    waiting_on = entry.pending
                    entry = None
                elif entry.has_value() and self._clock() < entry.expires_at:
                    self._touch(key)
                    return entry.value
                else:
                    del self._store[key]
                    entry = None
                    waiting_on = None
            else:
                waiting_on = None

            if waiting_on is None:
                entry = CacheEntry(key=key, expires_at=0.0, pending=Future())
                self._store[key] = entry
                self._touch(key)
                self._trim()

        if waiting_on is not None:
            return waiting_on.result()

        pending = entry.pending
        try:
            value = loader()
        except BaseException as exc:
            with self._lock:
                if self._store.get(key) is entry:
                    del self._store[key]
            pending.set_exception(exc)
            raise

        with self._lock:
            if self._store.get(key) is entry:
                entry.value = value
                entry.pending = None
                entry.expires_at = self._clock() + max(0, int(ttl_ms)) / 1000.0
                self._touch(key)
                self._trim()
        pending.set_result(value)
        return value
