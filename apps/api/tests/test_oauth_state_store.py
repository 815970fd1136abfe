from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from guildauth.cache.database import DatabaseCache
from guildauth.cache.memory import MemoryCache
from guildauth.models import CacheEntry
from guildauth.services.auth.oauth_state import OAuthStateStore, state_key


class _Clock:
    def __init__(self, now_ms: int = 1_000_000) -> None:
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms


def test_state_is_single_use() -> None:
    store = OAuthStateStore(MemoryCache())

    token = store.issue()
    assert len(token) >= 40

    assert store.consume(token) is True
    assert store.consume(token) is False


def test_issued_states_are_unique() -> None:
    store = OAuthStateStore(MemoryCache())
    assert len({store.issue() for _ in range(50)}) == 50


def test_expired_state_is_rejected() -> None:
    clock = _Clock()
    store = OAuthStateStore(MemoryCache(clock=clock), ttl_ms=600_000)

    token = store.issue()
    clock.now_ms += 600_001
    assert store.consume(token) is False


def test_unknown_or_empty_state_is_rejected() -> None:
    store = OAuthStateStore(MemoryCache())
    assert store.consume("never-issued") is False
    assert store.consume("") is False


def test_database_cache_backs_state_across_instances(db_session: Session) -> None:
    issuer = OAuthStateStore(DatabaseCache(session=db_session))
    token = issuer.issue()

    stored = db_session.scalar(select(CacheEntry).where(CacheEntry.key == state_key(token)))
    assert stored is not None
    assert stored.value["token"] == token

    # A second worker (separate store instance) sees the same state exactly once.
    consumer = OAuthStateStore(DatabaseCache(session=db_session))
    assert consumer.consume(token) is True
    assert issuer.consume(token) is False
    assert db_session.scalar(select(func.count()).select_from(CacheEntry)) == 0


def test_database_cache_respects_ttl(db_session: Session) -> None:
    clock = _Clock()
    cache = DatabaseCache(session=db_session, clock=clock)

    cache.set("short", {"v": 1}, ttl_ms=1_000)
    cache.set("long", [1, 2, 3], ttl_ms=60_000)
    assert cache.get("short") == {"v": 1}

    clock.now_ms += 5_000
    assert cache.get("short") is None
    assert cache.pop("short") is None
    assert cache.pop("long") == [1, 2, 3]
    assert cache.get("long") is None


def test_database_cache_write_sweeps_expired_entries(db_session: Session) -> None:
    clock = _Clock()
    store = OAuthStateStore(DatabaseCache(session=db_session, clock=clock), ttl_ms=600_000)
    abandoned = [store.issue() for _ in range(3)]
    assert db_session.scalar(select(func.count()).select_from(CacheEntry)) == 3

    clock.now_ms += 600_001
    fresh = store.issue()

    keys = set(db_session.scalars(select(CacheEntry.key)).all())
    assert keys == {state_key(fresh)}
    assert not any(store.consume(token) for token in abandoned)
    assert store.consume(fresh) is True


def test_memory_cache_write_sweeps_expired_entries() -> None:
    clock = _Clock()
    cache = MemoryCache(clock=clock)
    cache.set("old", 1, ttl_ms=1_000)

    clock.now_ms += 2_000
    cache.set("new", 2, ttl_ms=1_000)

    assert list(cache._entries) == ["new"]


def test_memory_cache_set_overwrites_and_delete_removes() -> None:
    cache = MemoryCache()
    cache.set("k", "a", ttl_ms=10_000)
    cache.set("k", "b", ttl_ms=10_000)
    assert cache.get("k") == "b"

    cache.delete("k")
    assert cache.get("k") is None
    assert cache.pop("k") is None
