from __future__ import annotations

import time


class Cache:
    """TTL key-value store holding JSON-serializable values."""

    def get(self, key: str) -> object | None:  # pragma: no cover
        raise NotImplementedError

    def set(self, key: str, value: object, *, ttl_ms: int) -> None:  # pragma: no cover
        raise NotImplementedError

    def delete(self, key: str) -> None:  # pragma: no cover
        raise NotImplementedError

    def pop(self, key: str) -> object | None:  # pragma: no cover
        """Atomically remove a live key and return its value, or None when absent/expired."""
        raise NotImplementedError


def now_ms() -> int:
    return int(time.time() * 1000)
