from __future__ import annotations

from collections.abc import Callable

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from guildauth.cache.base import Cache, now_ms
from guildauth.models.cache import CacheEntry


class DatabaseCache(Cache):
    """Cache stored in `cache_entries`, shared by every API worker."""

    def __init__(self, *, session: Session, clock: Callable[[], int] = now_ms) -> None:
        self._session = session
        self._clock = clock

    def get(self, key: str) -> object | None:
        row = self._session.execute(
            select(CacheEntry.value).where(
                CacheEntry.key == key,
                CacheEntry.expires_at_ms > self._clock(),
            )
        ).first()
        if row is None:
            return None
        return row[0]

    def set(self, key: str, value: object, *, ttl_ms: int) -> None:
        now = self._clock()
        # Every write sweeps expired rows.
        self._session.execute(delete(CacheEntry).where(CacheEntry.expires_at_ms <= now))
        expires_at_ms = now + max(0, ttl_ms)
        entry = self._session.get(CacheEntry, key)
        if entry is None:
            self._session.add(CacheEntry(key=key, value=value, expires_at_ms=expires_at_ms))
        else:
            entry.value = value
            entry.expires_at_ms = expires_at_ms
        self._session.commit()

    def delete(self, key: str) -> None:
        self._session.execute(delete(CacheEntry).where(CacheEntry.key == key))
        self._session.commit()

    def pop(self, key: str) -> object | None:
        now = self._clock()
        row = self._session.execute(
            select(CacheEntry.value).where(CacheEntry.key == key, CacheEntry.expires_at_ms > now)
        ).first()
        if row is None:
            return None

        # Only the caller whose DELETE actually removed the live row wins.
        res = self._session.execute(
            delete(CacheEntry).where(CacheEntry.key == key, CacheEntry.expires_at_ms > now)
        )
        self._session.commit()
        if res.rowcount != 1:
            return None
        return row[0]

