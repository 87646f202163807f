"""
In-process StateStore for tests and single-process deployments.

A single re-entrant lock serializes every operation, which gives each method
the same atomicity the Redis scripts provide. Expiry is checked lazily against
the injected clock whenever a key is touched.
"""

import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

from ..utils.time_utils import utc_now
from .state_store import StateStore, WindowHit


class _Entry:
    __slots__ = ('value', 'expires_at')

    def __init__(self, value: Any, expires_at: Optional[float] = None):
        self.value = value
        self.expires_at = expires_at


class InMemoryStateStore(StateStore):
    """StateStore kept in a dictionary guarded by a threading.RLock."""

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self.clock = clock
        self._data: Dict[str, _Entry] = {}
        self._lock = threading.RLock()

    def _now(self) -> float:
        return self.clock().timestamp()

    def _expires_at(self, ttl_seconds) -> Optional[float]:
        if ttl_seconds is None:
            return None
        return self._now() + max(1, int(ttl_seconds))

    def _entry(self, key: str) -> Optional[_Entry]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._now():
            del self._data[key]
            return None
        return entry

    def _collection(self, key: str, factory) -> _Entry:
        entry = self._entry(key)
        if entry is None:
            entry = _Entry(factory())
            self._data[key] = entry
        return entry

    def ttl(self, key: str) -> Optional[float]:
        """Seconds until the key expires, or None if it has no TTL or is absent."""
        with self._lock:
            entry = self._entry(key)
            if entry is None or entry.expires_at is None:
                return None
            return entry.expires_at - self._now()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entry(key)
            return entry.value if entry is not None else None

    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None,
            only_if_exists: bool = False) -> bool:
        with self._lock:
            if only_if_exists and self._entry(key) is None:
                return False
            self._data[key] = _Entry(value, self._expires_at(ttl_seconds))
            return True

    def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        with self._lock:
            if self._entry(key) is not None:
                return False
            self._data[key] = _Entry(value, self._expires_at(ttl_seconds))
            return True

    def delete(self, *keys: str) -> int:
        with self._lock:
            deleted = 0
            for key in keys:
                if self._entry(key) is not None:
                    del self._data[key]
                    deleted += 1
            return deleted

    def exists(self, key: str) -> bool:
        with self._lock:
            return self._entry(key) is not None

    def sadd(self, key: str, *members: str) -> int:
        with self._lock:
            entry = self._collection(key, set)
            before = len(entry.value)
            entry.value.update(members)
            return len(entry.value) - before

    def srem(self, key: str, *members: str) -> int:
        with self._lock:
            entry = self._entry(key)
            if entry is None:
                return 0
            removed = len(entry.value & set(members))
            entry.value.difference_update(members)
            if not entry.value:
                del self._data[key]
            return removed

    def smembers(self, key: str) -> Set[str]:
        with self._lock:
            entry = self._entry(key)
            return set(entry.value) if entry is not None else set()

    def compare_and_set(self, key: str, expected: Optional[str], value: str,
                        ttl_seconds: int) -> bool:
        with self._lock:
            entry = self._entry(key)
            current = entry.value if entry is not None else None
            if current != expected:
                return False
            self._data[key] = _Entry(value, self._expires_at(ttl_seconds))
            return True

    def compare_and_delete(self, key: str, expected: str) -> bool:
        with self._lock:
            entry = self._entry(key)
            if entry is None or entry.value != expected:
                return False
            del self._data[key]
            return True

    def _prune_window(self, key: str, window_seconds: int, now_ms: int) -> Dict[str, int]:
        entry = self._collection(key, dict)
        cutoff = now_ms - window_seconds * 1000
        for member in [m for m, score in entry.value.items() if score <= cutoff]:
            del entry.value[member]
        return entry.value

    def sliding_window_hit(self, key: str, limit: int, window_seconds: int,
                           now_ms: int, member: str) -> WindowHit:
        with self._lock:
            window = self._prune_window(key, window_seconds, now_ms)
            admitted = len(window) < limit
            if admitted:
                window[member] = now_ms
                self._data[key].expires_at = self._now() + window_seconds

            count = len(window)
            oldest_ms = min(window.values()) if window else None
            if not window:
                del self._data[key]
            return WindowHit(count=count, limit=limit, admitted=admitted, oldest_ms=oldest_ms)

    def sliding_window_count(self, key: str, window_seconds: int, now_ms: int) -> int:
        with self._lock:
            entry = self._entry(key)
            if entry is None:
                return 0
            cutoff = now_ms - window_seconds * 1000
            return sum(1 for score in entry.value.values() if score > cutoff)

    def push_capped(self, key: str, value: str, max_len: int, ttl_seconds: int) -> None:
        with self._lock:
            entry = self._collection(key, list)
            entry.value.insert(0, value)
            del entry.value[max_len:]
            entry.expires_at = self._expires_at(ttl_seconds)

    def list_range(self, key: str, start: int = 0, end: int = -1) -> List[str]:
        with self._lock:
            entry = self._entry(key)
            if entry is None:
                return []
            # Redis LRANGE treats the end index as inclusive
            stop = None if end == -1 else end + 1
            return list(entry.value[start:stop])

    def ping(self) -> bool:
        return True
