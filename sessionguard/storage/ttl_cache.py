from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Callable, Generic, List, Optional, Tuple, TypeVar

K = TypeVar("K")
V = TypeVar("V")

Clock = Callable[[], float]


class BoundedTTLCache(Generic[K, V]):
    """Thread-safe key/value map with LRU eviction and a per-entry TTL.

    Entries past their TTL are invisible to readers and removed lazily on
    access; ``purge_expired`` reclaims memory for entries nobody reads again.
    Writes (and reads) move an entry to the most-recently-used end; when the
    map is full the least-recently-used entry is dropped.
    """

    def __init__(
        self,
        max_entries: int,
        ttl_seconds: float,
        *,
        clock: Optional[Clock] = None,
    ) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.max_entries = max_entries
        self.ttl_seconds = float(ttl_seconds)
        self._clock: Clock = clock or time.time
        # threading.Lock: every critical section is synchronous, never await inside.
        self._lock = threading.Lock()
        self._data: "OrderedDict[K, Tuple[V, float]]" = OrderedDict()

    def _live(self, key: K, now: float) -> Optional[Tuple[V, float]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry[1] <= now:
            del self._data[key]
            return None
        return entry

    def _store(self, key: K, value: V, now: float) -> None:
        self._data[key] = (value, now + self.ttl_seconds)
        self._data.move_to_end(key)
        while len(self._data) > self.max_entries:
            self._data.popitem(last=False)

    def get(self, key: K, default: Optional[V] = None) -> Optional[V]:
        with self._lock:
            entry = self._live(key, self._clock())
            if entry is None:
                return default
            self._data.move_to_end(key)
            return entry[0]

    def peek(self, key: K, default: Optional[V] = None) -> Optional[V]:
        """Like ``get`` but does not refresh the entry's recency."""
        with self._lock:
            entry = self._live(key, self._clock())
            return default if entry is None else entry[0]

    def set(self, key: K, value: V) -> None:
        with self._lock:
            self._store(key, value, self._clock())

    def update(
        self,
        key: K,
        fn: Callable[[Optional[V]], V],
    ) -> V:
        """Atomically replace the value for ``key`` with ``fn(current)``.

        ``current`` is ``None`` when the key is missing or expired. The TTL
        restarts from now.
        """
        with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            value = fn(entry[0] if entry else None)
            self._store(key, value, now)
            return value

    def pop(self, key: K, default: Optional[V] = None) -> Optional[V]:
        with self._lock:
            entry = self._live(key, self._clock())
            if entry is None:
                return default
            del self._data[key]
            return entry[0]

    def items(self) -> List[Tuple[K, V]]:
        """Snapshot of live entries, least-recently-used first."""
        with self._lock:
            now = self._clock()
            return [(k, v) for k, (v, expires_at) in self._data.items() if expires_at > now]

    def purge_expired(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [k for k, (_, expires_at) in self._data.items() if expires_at <= now]
            for key in expired:
                del self._data[key]
            return len(expired)

    def __len__(self) -> int:
        return len(self.items())
