# photoguide/services/ttl_cache.py
"""Process-local key/value store with per-entry expiry.

Used for the geo context cache and the photo context cache. Entries are
replaced whole, never mutated in place, so concurrent handlers need no lock.
Expired entries are invisible to ``get`` and physically removed by ``sweep``.
"""
import time
from typing import Callable, Dict, Generic, Optional, Tuple, TypeVar

V = TypeVar("V")

Clock = Callable[[], float]


class TTLCache(Generic[V]):
    def __init__(self, ttl_seconds: float, clock: Clock = time.time, name: str = "cache"):
        self.ttl_seconds = ttl_seconds
        self.name = name
        self._clock = clock
        self._entries: Dict[str, Tuple[float, V]] = {}

    def get(self, key: str) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return value

    def set(self, key: str, value: V, ttl_seconds: Optional[float] = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        self._entries[key] = (self._clock() + ttl, value)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def sweep(self) -> int:
        """Drop every expired entry and return how many were removed."""
        now = self._clock()
        expired = [key for key, (expires_at, _) in list(self._entries.items()) if now >= expires_at]
        for key in expired:
            self._entries.pop(key, None)
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
