from __future__ import annotations

import base64
import os
from collections.abc import Callable, Iterator
from contextlib import suppress
from pathlib import Path

import httpx
import pytest
from alembic.config import Config
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from alembic import command

DISCORD_API_URL = "https://discord.test/api/v10"
DISCORD_API_PATH = "/api/v10"


@pytest.fixture(scope="session", autouse=True)
def _test_database(tmp_path_factory: pytest.TempPathFactory) -> Iterator[None]:
    # Each test session migrates a throwaway SQLite file; nothing touches a dev database.
    db_path = tmp_path_factory.mktemp("db") / "guildauth_test.sqlite3"
    os.environ["DATABASE_URL"] = f"sqlite+pysqlite:///{db_path}"
    os.environ["APP_ENV"] = "test"
    os.environ["COOKIE_SECURE"] = "false"
    os.environ["ENCRYPTION_KEY_BASE64"] = base64.b64encode(b"k" * 32).decode("ascii")
    os.environ["JWT_SECRET"] = "test-jwt-secret-with-enough-entropy"
    os.environ["DISCORD_CLIENT_ID"] = "client-id"
    os.environ["DISCORD_CLIENT_SECRET"] = "client-secret"
    os.environ["DISCORD_BOT_TOKEN"] = "bot-token"
    os.environ["DISCORD_API_URL"] = DISCORD_API_URL
    os.environ["DISCORD_CALLBACK_URL"] = "http://localhost:8000/auth/discord/callback"
    os.environ["DISCORD_RETRY_BASE_DELAY_SECONDS"] = "0"
    os.environ["FRONTEND_URL"] = "http://localhost:3000"
    os.environ["ALLOWED_REDIRECT_URIS"] = "http://localhost:3000,https://app.example.com"
    os.environ["SYSTEM_ADMIN_USER_IDS"] = "900"
    os.environ["CACHE_BACKEND"] = "database"
    os.environ["RATE_LIMIT_REQUESTS_PER_MINUTE"] = "0"
    os.environ["LOGIN_RATE_LIMIT_REQUESTS_PER_MINUTE"] = "0"

    # Clear cached settings/engines so imports inside the test session use the test DB.
    from guildauth.core.config import get_settings
    from guildauth.db.session import get_engine, get_sessionmaker

    get_settings.cache_clear()
    get_engine.cache_clear()
    get_sessionmaker.cache_clear()

    alembic_ini = Path(__file__).resolve().parents[1] / "alembic.ini"
    cfg = Config(str(alembic_ini))
    command.upgrade(cfg, "head")

    yield

    with suppress(Exception):
        get_engine().dispose()
    get_engine.cache_clear()
    get_sessionmaker.cache_clear()
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def _clean_tables() -> None:
    from guildauth.cache.factory import _process_memory_cache
    from guildauth.db.session import get_sessionmaker
    from guildauth.models import Base

    with get_sessionmaker()() as session:
        for table in reversed(Base.metadata.sorted_tables):
            session.execute(table.delete())
        session.commit()
    _process_memory_cache.cache_clear()


@pytest.fixture()
def db_session() -> Iterator[Session]:
    from guildauth.db.session import get_sessionmaker

    SessionLocal = get_sessionmaker()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


class FakeDiscord:
    """httpx transport handler standing in for the Discord REST API.

    Routes are keyed by (method, path) with the API version prefix stripped. A route
    is either a `(status, json)` pair, or a callable taking the request.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], object] = {}
        self.requests: list[httpx.Request] = []

    def on(self, method: str, path: str, status_code: int = 200, json: object = None) -> None:
        self.routes[(method, path)] = (status_code, json)

    def handle(self, method: str, path: str, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.routes[(method, path)] = handler

    def calls(self, method: str, path: str) -> int:
        return sum(1 for r in self.requests if r.method == method and _path(r) == path)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, _path(request)))
        if route is None:
            return httpx.Response(404, json={"message": "Unknown route", "code": 0})
        if callable(route):
            return route(request)
        status_code, body = route
        return httpx.Response(status_code, json=body)


def _path(request: httpx.Request) -> str:
    path = request.url.path
    if path.startswith(DISCORD_API_PATH):
        return path[len(DISCORD_API_PATH) :]
    return path


@pytest.fixture()
def discord() -> FakeDiscord:
    return FakeDiscord()


@pytest.fixture()
def http_client(discord: FakeDiscord) -> Iterator[httpx.Client]:
    with httpx.Client(transport=httpx.MockTransport(discord)) as client:
        yield client


class Seeder:
    def __init__(self, session: Session) -> None:
        self._session = session

    def user(
        self,
        user_id: str,
        *,
        username: str | None = None,
        access_token: str | None = None,
        refresh_token: str | None = None,
    ) -> None:
        from guildauth.core.crypto import encrypt_token
        from guildauth.models import User

        self._session.add(
            User(
                id=user_id,
                username=username or f"user{user_id}",
                encrypted_access_token=(
                    encrypt_token(access_token, user_id=user_id, kind="access") if access_token else None
                ),
                encrypted_refresh_token=(
                    encrypt_token(refresh_token, user_id=user_id, kind="refresh") if refresh_token else None
                ),
            )
        )
        self._session.commit()

    def guild(self, guild_id: str, *, name: str | None = None, is_active: bool = True) -> None:
        from guildauth.models import Guild

        self._session.add(Guild(id=guild_id, name=name or f"Guild {guild_id}", is_active=is_active))
        self._session.commit()

    def membership(self, user_id: str, guild_id: str, *, roles: list[str] | None = None) -> None:
        from guildauth.models import GuildMember

        self._session.add(GuildMember(user_id=user_id, guild_id=guild_id, roles=list(roles or [])))
        self._session.commit()

    def guild_roles(self, guild_id: str, **roles: list[str]) -> None:
        from guildauth.services.guilds.settings import GuildSettingsService
        from guildauth.stores.sql import SqlSettingsStore

        service = GuildSettingsService(store=SqlSettingsStore(session=self._session))
        service.update_roles(guild_id, {kind: [{"id": r} for r in ids] for kind, ids in roles.items()})

    def league(self, league_id: str, guild_id: str) -> None:
        from guildauth.models import League

        self._session.add(League(id=league_id, guild_id=guild_id, name=f"League {league_id}"))
        self._session.commit()

    def organization(self, organization_id: str, league_id: str) -> None:
        from guildauth.models import Organization

        self._session.add(Organization(id=organization_id, league_id=league_id, name=f"Org {organization_id}"))
        self._session.commit()

    def tracker(self, tracker_id: str, user_id: str) -> None:
        from guildauth.models import Tracker

        self._session.add(Tracker(id=tracker_id, user_id=user_id, url=f"https://tracker.test/{tracker_id}"))
        self._session.commit()


@pytest.fixture()
def seed(db_session: Session) -> Seeder:
    return Seeder(db_session)


@pytest.fixture()
def api_client(http_client: httpx.Client) -> Iterator[TestClient]:
    from guildauth.core.http import get_http_client
    from guildauth.main import create_app

    app = create_app()
    app.dependency_overrides[get_http_client] = lambda: http_client
    yield TestClient(app)
    app.dependency_overrides.clear()
