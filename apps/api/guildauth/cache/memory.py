from __future__ import annotations

import threading
from collections.abc import Callable

from guildauth.cache.base import Cache, now_ms


class MemoryCache(Cache):
    """Process-local cache. Suitable for a single worker and for tests."""

    def __init__(self, *, clock: Callable[[], int] = now_ms) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[object, int]] = {}

    def get(self, key: str) -> object | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at_ms = entry
            if expires_at_ms <= self._clock():
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: object, *, ttl_ms: int) -> None:
        with self._lock:
            now = self._clock()
            self._entries = {k: e for k, e in self._entries.items() if e[1] > now}
            self._entries[key] = (value, now + max(0, ttl_ms))

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def pop(self, key: str) -> object | None:
        with self._lock:
            entry = self._entries.pop(key, None)
        if entry is None:
            return None
        value, expires_at_ms = entry
        if expires_at_ms <= self._clock():
            return None
        return value
