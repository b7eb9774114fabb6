"""
In-process alert deduplication.

A bounded time-to-live set of alert keys. The database unique index on
alerts is the cross-process guard; this cache only keeps a single process
from re-inserting (and re-notifying) the same transition within its TTL.
"""
from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional


@dataclass
class AlertRecord:
    """Tracks when an alert key was last recorded."""

    key: str
    recorded_at: float
    count: int = 1


class TTLCache:
    """
    Bounded TTL cache of alert keys.

    Usage:
        cache = TTLCache(ttl_seconds=3600, max_size=10_000)
        if cache.should_send(key):
            ...
            cache.record(key)

    Expired entries are evicted on every write; when full, the oldest
    entry is dropped.
    """

    def __init__(
        self,
        ttl_seconds: float = 3600,
        max_size: int = 10_000,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._ttl = ttl_seconds
        self._max_size = max_size
        self._clock = clock or time.monotonic
        self._entries: OrderedDict[str, AlertRecord] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return not self.should_send(key)

    def should_send(self, key: str) -> bool:
        """True if ``key`` has not been recorded within the TTL."""
        record = self._entries.get(key)
        if record is None:
            return True
        return (self._clock() - record.recorded_at) >= self._ttl

    def record(self, key: str) -> None:
        now = self._clock()
        self._evict_expired(now)

        record = self._entries.pop(key, None)
        if record is not None:
            record.recorded_at = now
            record.count += 1
        else:
            record = AlertRecord(key=key, recorded_at=now)
        self._entries[key] = record

        while len(self._entries) > self._max_size:
            self._entries.popitem(last=False)

    def discard(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def _evict_expired(self, now: float) -> None:
        # Insertion order equals record order, so stop at the first live entry
        while self._entries:
            key, record = next(iter(self._entries.items()))
            if now - record.recorded_at < self._ttl:
                break
            del self._entries[key]
