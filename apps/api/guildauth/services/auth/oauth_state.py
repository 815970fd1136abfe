from __future__ import annotations

from guildauth.cache.base import Cache, now_ms
from guildauth.core.security import new_random_token

STATE_KEY_PREFIX = "oauth:state:"
DEFAULT_STATE_TTL_MS = 600_000


def state_key(token: str) -> str:
    return f"{STATE_KEY_PREFIX}{token}"


class OAuthStateStore:
    """One-time CSRF state tokens for the Discord login round-trip."""

    def __init__(self, cache: Cache, *, ttl_ms: int = DEFAULT_STATE_TTL_MS) -> None:
        self._cache = cache
        self._ttl_ms = ttl_ms

    def issue(self) -> str:
        token = new_random_token(nbytes=32)
        self._cache.set(state_key(token), {"token": token, "issued_at_ms": now_ms()}, ttl_ms=self._ttl_ms)
        return token

    def consume(self, token: str) -> bool:
        if not token:
            return False
        # Presence is checked and removed in one step; a second caller sees nothing.
        return self._cache.pop(state_key(token)) is not None
