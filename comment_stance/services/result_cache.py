from __future__ import annotations

from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock
from time import monotonic
from typing import Generic, TypeVar

V = TypeVar("V")


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    key: str
    value: V
    expires_at: float


class ResultCache(Generic[V]):
    """
    In-memory TTL cache shared by concurrent callers.

    Expired entries are never returned: `get` drops them on sight and
    `purge_expired` sweeps the rest. With `max_entries` set, the oldest insertion
    is evicted once the bound is reached.
    """

    def __init__(
        self,
        name: str,
        *,
        default_ttl_seconds: float,
        max_entries: int | None = None,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        self._name = name
        self._default_ttl_seconds = max(0.0, default_ttl_seconds)
        self._max_entries = max(1, max_entries) if max_entries is not None else None
        self._clock = clock
        self._lock = Lock()
        self._entries: OrderedDict[str, CacheEntry[V]] = OrderedDict()

    @property
    def name(self) -> str:
        return self._name

    def get(self, key: str) -> V | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() >= entry.expires_at:
                del self._entries[key]
                return None
            return entry.value

    def put(self, key: str, value: V, ttl_seconds: float | None = None) -> None:
        ttl = self._default_ttl_seconds if ttl_seconds is None else max(0.0, ttl_seconds)
        with self._lock:
            # Re-inserting moves the key to the back, so overwrites also refresh eviction order.
            self._entries.pop(key, None)
            self._entries[key] = CacheEntry(key=key, value=value, expires_at=self._clock() + ttl)
            if self._max_entries is not None:
                while len(self._entries) > self._max_entries:
                    self._entries.popitem(last=False)

    def purge_expired(self) -> int:
        with self._lock:
            now = self._clock()
            expired_keys = [key for key, entry in self._entries.items() if now >= entry.expires_at]
            for key in expired_keys:
                del self._entries[key]
            return len(expired_keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
