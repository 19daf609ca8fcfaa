"""
Small in-process cache with an explicit TTL and an injectable clock.

Used for data that changes rarely and is read on every notification
(message templates). The clock is a constructor argument so expiry can be
driven deterministically.
"""

from dataclasses import dataclass
import threading
import time
from typing import Callable, Dict, Generic, Hashable, Optional, TypeVar

V = TypeVar("V")

Clock = Callable[[], float]


@dataclass
class _Entry(Generic[V]):
    value: V
    expires_at: float


class TimeBoxedCache(Generic[V]):
    """Thread-safe key/value cache where each entry lives ``ttl_seconds``."""

    def __init__(self, ttl_seconds: float, clock: Optional[Clock] = None):
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")
        self.ttl_seconds = ttl_seconds
        self._clock: Clock = clock or time.monotonic
        self._entries: Dict[Hashable, _Entry[V]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Optional[V]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() >= entry.expires_at:
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: Hashable, value: V) -> None:
        with self._lock:
            self._entries[key] = _Entry(value=value, expires_at=self._clock() + self.ttl_seconds)

    def get_or_load(self, key: Hashable, loader: Callable[[], V]) -> V:
        """
        Return the cached value or call ``loader`` and cache its result.

        Loader exceptions propagate and nothing is cached.
        """
        cached = self.get(key)
        if cached is not None:
            return cached
        value = loader()
        self.set(key, value)
        return value

    def invalidate(self, key: Optional[Hashable] = None) -> None:
        """Drop one key, or everything when ``key`` is None."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
