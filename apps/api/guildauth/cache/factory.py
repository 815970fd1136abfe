from __future__ import annotations

from functools import lru_cache

from sqlalchemy.orm import Session

from guildauth.cache.base import Cache
from guildauth.cache.database import DatabaseCache
from guildauth.cache.memory import MemoryCache
from guildauth.core.config import get_settings


@lru_cache(maxsize=1)
def _process_memory_cache() -> MemoryCache:
    return MemoryCache()


def build_cache(*, session: Session) -> Cache:
    settings = get_settings()
    if settings.CACHE_BACKEND == "database":
        return DatabaseCache(session=session)
    if settings.CACHE_BACKEND == "memory":
        return _process_memory_cache()
    raise ValueError(f"Unsupported CACHE_BACKEND: {settings.CACHE_BACKEND}")
