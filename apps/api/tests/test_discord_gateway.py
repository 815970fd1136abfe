from __future__ import annotations

import httpx
import pytest
from conftest import DISCORD_API_URL, FakeDiscord

from guildauth.services.discord.api import (
    DiscordPermissionGateway,
    DiscordRateLimitedError,
    DiscordUnauthorizedError,
    DiscordUnavailableError,
    has_administrator,
)

MEMBER_PATH = "/users/@me/guilds/g1/member"


def _gateway(client: httpx.Client, sleeps: list[float], *, bot_token: str = "bot-token") -> DiscordPermissionGateway:
    return DiscordPermissionGateway(
        client,
        api_url=DISCORD_API_URL,
        bot_token=bot_token,
        retry_attempts=3,
        retry_base_delay_seconds=0.5,
        sleep=sleeps.append,
    )


def test_rate_limit_is_not_retried(discord: FakeDiscord, http_client: httpx.Client) -> None:
    discord.handle(
        "GET",
        "/users/@me",
        lambda r: httpx.Response(429, headers={"Retry-After": "2.5"}, json={"message": "You are being rate limited."}),
    )
    sleeps: list[float] = []

    with pytest.raises(DiscordRateLimitedError) as exc:
        _gateway(http_client, sleeps).get_user_profile("token")

    assert exc.value.retry_after == 2.5
    assert discord.calls("GET", "/users/@me") == 1
    assert sleeps == []


def test_unauthorized_is_not_retried(discord: FakeDiscord, http_client: httpx.Client) -> None:
    discord.on("GET", "/users/@me", 401, {"message": "401: Unauthorized"})
    sleeps: list[float] = []

    with pytest.raises(DiscordUnauthorizedError):
        _gateway(http_client, sleeps).get_user_profile("token")
    assert discord.calls("GET", "/users/@me") == 1


def test_server_errors_retry_with_exponential_backoff(discord: FakeDiscord, http_client: httpx.Client) -> None:
    discord.on("GET", "/users/@me/guilds", 502, {"message": "Bad Gateway"})
    sleeps: list[float] = []

    with pytest.raises(DiscordUnavailableError) as exc:
        _gateway(http_client, sleeps).get_user_guilds("token")

    assert exc.value.status_code == 502
    assert discord.calls("GET", "/users/@me/guilds") == 4
    assert sleeps == [0.5, 1.0, 2.0]


def test_transient_failure_recovers(discord: FakeDiscord, http_client: httpx.Client) -> None:
    attempts = {"n": 0}

    def flaky(request: httpx.Request) -> httpx.Response:
        attempts["n"] += 1
        if attempts["n"] == 1:
            raise httpx.ConnectError("connection reset", request=request)
        if attempts["n"] == 2:
            return httpx.Response(500, json={"message": "oops"})
        return httpx.Response(200, json={"id": "42", "username": "alice", "global_name": "Alice"})

    discord.handle("GET", "/users/@me", flaky)
    sleeps: list[float] = []

    profile = _gateway(http_client, sleeps).get_user_profile("token")

    assert profile.id == "42"
    assert profile.global_name == "Alice"
    assert attempts["n"] == 3
    assert sleeps == [0.5, 1.0]


def test_user_token_is_sent_as_bearer(discord: FakeDiscord, http_client: httpx.Client) -> None:
    discord.on("GET", "/users/@me/guilds", 200, [{"id": "g1", "name": "One", "owner": True}, {"name": "no id"}])

    guilds = _gateway(http_client, []).get_user_guilds("user-token")

    assert [(g.id, g.name, g.owner) for g in guilds] == [("g1", "One", True)]
    assert discord.requests[0].headers["Authorization"] == "Bearer user-token"


def test_check_guild_permissions_for_non_member(discord: FakeDiscord, http_client: httpx.Client) -> None:
    discord.on("GET", MEMBER_PATH, 404, {"message": "Unknown Guild", "code": 10004})

    perms = _gateway(http_client, []).check_guild_permissions("token", "g1")

    assert perms.is_member is False
    assert perms.has_administrator is False
    assert discord.calls("GET", MEMBER_PATH) == 1


def test_check_guild_permissions_detects_administrator(discord: FakeDiscord, http_client: httpx.Client) -> None:
    discord.on("GET", MEMBER_PATH, 200, {"roles": ["r1", 222], "nick": "Al", "permissions": "8"})

    perms = _gateway(http_client, []).check_guild_permissions("token", "g1")

    assert perms.is_member is True
    assert perms.has_administrator is True
    assert perms.roles == ["r1", "222"]
    assert perms.nick == "Al"


def test_get_guild_member_returns_none_when_not_in_guild(discord: FakeDiscord, http_client: httpx.Client) -> None:
    assert _gateway(http_client, []).get_guild_member("token", "g1") is None


def test_guild_roles_use_bot_token(discord: FakeDiscord, http_client: httpx.Client) -> None:
    discord.on("GET", "/guilds/g1/roles", 200, [{"id": "r1", "name": "Admins"}, {"id": "r2", "name": "Mods"}])

    roles = _gateway(http_client, []).get_guild_roles("g1")

    assert [r.id for r in roles] == ["r1", "r2"]
    assert discord.requests[0].headers["Authorization"] == "Bot bot-token"


def test_guild_roles_require_bot_token(discord: FakeDiscord, http_client: httpx.Client) -> None:
    with pytest.raises(DiscordUnavailableError):
        _gateway(http_client, [], bot_token="").get_guild_roles("g1")
    assert discord.requests == []


@pytest.mark.parametrize(
    ("permissions", "expected"),
    [
        (["ADMINISTRATOR"], True),
        (["8"], True),
        (["2147483656"], True),
        (["2147483648"], True),
        (["0"], False),
        (["2048", "SEND_MESSAGES"], False),
        ([], False),
    ],
)
def test_has_administrator(permissions: list[str], expected: bool) -> None:
    assert has_administrator(permissions) is expected


def test_zero_retry_attempts_makes_a_single_call(discord: FakeDiscord, http_client: httpx.Client) -> None:
    discord.on("GET", "/guilds/g1/roles", 403, {"message": "Missing Access"})
    sleeps: list[float] = []
    gateway = DiscordPermissionGateway(
        http_client,
        api_url=DISCORD_API_URL,
        bot_token="bot-token",
        retry_attempts=0,
        sleep=sleeps.append,
    )

    with pytest.raises(DiscordUnavailableError) as exc:
        gateway.get_guild_roles("g1")

    assert exc.value.status_code == 403
    assert discord.calls("GET", "/guilds/g1/roles") == 1
    assert sleeps == []
