from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

import httpx
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from guildauth.core.config import Settings
from guildauth.core.metrics import observe_discord_request

logger = logging.getLogger("guildauth.api")

ADMINISTRATOR_PERMISSION = "ADMINISTRATOR"
ADMINISTRATOR_FLAG = 0x8
# Some payloads report the full permission set as this single value.
LEGACY_ALL_PERMISSIONS = 0x80000000


@dataclass(frozen=True)
class DiscordUser:
    id: str
    username: str
    discriminator: str | None = None
    global_name: str | None = None
    avatar: str | None = None
    email: str | None = None


@dataclass(frozen=True)
class DiscordGuild:
    id: str
    name: str
    icon: str | None = None
    owner: bool = False
    permissions: str | None = None


@dataclass(frozen=True)
class DiscordGuildMember:
    roles: list[str]
    nick: str | None = None


@dataclass(frozen=True)
class DiscordRole:
    id: str
    name: str
    permissions: str | None = None


@dataclass(frozen=True)
class GuildPermissions:
    is_member: bool
    permissions: list[str] = field(default_factory=list)
    roles: list[str] = field(default_factory=list)
    has_administrator: bool = False
    nick: str | None = None


class DiscordApiError(RuntimeError):
    def __init__(self, *, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code


class DiscordRateLimitedError(DiscordApiError):
    def __init__(self, *, retry_after: float | None = None) -> None:
        super().__init__(status_code=429, message="Discord API rate limited")
        self.retry_after = retry_after


class DiscordUnauthorizedError(DiscordApiError):
    def __init__(self) -> None:
        super().__init__(status_code=401, message="Invalid Discord access token")


class DiscordUnavailableError(DiscordApiError):
    def __init__(self, *, status_code: int = 503, message: str = "Discord API unavailable") -> None:
        super().__init__(status_code=status_code, message=message)


def has_administrator(permissions: list[str]) -> bool:
    for permission in permissions:
        if permission == ADMINISTRATOR_PERMISSION:
            return True
        try:
            value = int(permission)
        except (TypeError, ValueError):
            continue
        if value == LEGACY_ALL_PERMISSIONS or value & ADMINISTRATOR_FLAG:
            return True
    return False


def _permission_list(raw: object) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, list):
        return [str(p) for p in raw]
    return [str(raw)]


class DiscordPermissionGateway:
    """Thin Discord REST client with a retry policy that keeps 429/401 terminal."""

    def __init__(
        self,
        client: httpx.Client,
        *,
        api_url: str,
        bot_token: str = "",
        retry_attempts: int = 3,
        retry_base_delay_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._api_url = api_url.rstrip("/")
        self._bot_token = bot_token
        self._retry_attempts = max(0, retry_attempts)
        self._retry_base_delay_seconds = max(0.0, retry_base_delay_seconds)
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        client: httpx.Client,
        settings: Settings,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> DiscordPermissionGateway:
        return cls(
            client,
            api_url=settings.DISCORD_API_URL,
            bot_token=settings.DISCORD_BOT_TOKEN,
            retry_attempts=settings.DISCORD_RETRY_ATTEMPTS,
            retry_base_delay_seconds=settings.DISCORD_RETRY_BASE_DELAY_SECONDS,
            sleep=sleep,
        )

    def get_user_profile(self, access_token: str) -> DiscordUser:
        res = self._get("/users/@me", endpoint="users.me", authorization=f"Bearer {access_token}")
        payload = res.json()
        return DiscordUser(
            id=str(payload["id"]),
            username=payload.get("username") or "",
            discriminator=payload.get("discriminator"),
            global_name=payload.get("global_name"),
            avatar=payload.get("avatar"),
            email=payload.get("email"),
        )

    def get_user_guilds(self, access_token: str) -> list[DiscordGuild]:
        res = self._get("/users/@me/guilds", endpoint="users.me.guilds", authorization=f"Bearer {access_token}")
        guilds: list[DiscordGuild] = []
        for item in res.json() or []:
            guild_id = item.get("id")
            if not guild_id:
                continue
            guilds.append(
                DiscordGuild(
                    id=str(guild_id),
                    name=item.get("name") or "",
                    icon=item.get("icon"),
                    owner=bool(item.get("owner")),
                    permissions=item.get("permissions"),
                )
            )
        logger.info("Fetched %s guilds from Discord", len(guilds))
        return guilds

    def get_guild_member(self, access_token: str, guild_id: str) -> DiscordGuildMember | None:
        res = self._find(
            f"/users/@me/guilds/{guild_id}/member",
            endpoint="users.me.guilds.member",
            authorization=f"Bearer {access_token}",
        )
        if res is None:
            return None
        payload = res.json() or {}
        return DiscordGuildMember(roles=[str(r) for r in payload.get("roles") or []], nick=payload.get("nick"))

    def check_guild_permissions(self, access_token: str, guild_id: str) -> GuildPermissions:
        res = self._find(
            f"/users/@me/guilds/{guild_id}/member",
            endpoint="users.me.guilds.member",
            authorization=f"Bearer {access_token}",
        )
        if res is None:
            return GuildPermissions(is_member=False)

        payload = res.json() or {}
        permissions = _permission_list(payload.get("permissions"))
        return GuildPermissions(
            is_member=True,
            permissions=permissions,
            roles=[str(r) for r in payload.get("roles") or []],
            has_administrator=has_administrator(permissions),
            nick=payload.get("nick"),
        )

    def get_guild_roles(self, guild_id: str) -> list[DiscordRole]:
        if not self._bot_token:
            raise DiscordUnavailableError(message="DISCORD_BOT_TOKEN is not configured")

        res = self._get(f"/guilds/{guild_id}/roles", endpoint="guilds.roles", authorization=f"Bot {self._bot_token}")
        return [
            DiscordRole(id=str(item["id"]), name=item.get("name") or "", permissions=item.get("permissions"))
            for item in res.json() or []
            if item.get("id")
        ]

    def _get(self, path: str, *, endpoint: str, authorization: str) -> httpx.Response:
        return self._request(path, endpoint=endpoint, authorization=authorization, not_found_ok=False)

    def _find(self, path: str, *, endpoint: str, authorization: str) -> httpx.Response | None:
        res = self._request(path, endpoint=endpoint, authorization=authorization, not_found_ok=True)
        if res.status_code == 404:
            return None
        return res

    def _request(self, path: str, *, endpoint: str, authorization: str, not_found_ok: bool) -> httpx.Response:
        attempts = self._retry_attempts + 1
        retrying = Retrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=self._retry_base_delay_seconds),
            # 429 and 401 raise other DiscordApiError subclasses and are never retried.
            retry=retry_if_exception_type(DiscordUnavailableError),
            before_sleep=_log_retry(endpoint, attempts),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            return retrying(
                self._send,
                f"{self._api_url}{path}",
                endpoint=endpoint,
                authorization=authorization,
                not_found_ok=not_found_ok,
            )
        except DiscordUnavailableError as e:
            logger.error("Discord %s unavailable after %s attempts: %s", endpoint, attempts, e)
            raise

    def _send(self, url: str, *, endpoint: str, authorization: str, not_found_ok: bool) -> httpx.Response:
        try:
            res = self._client.get(url, headers={"Authorization": authorization})
        except httpx.HTTPError as e:
            observe_discord_request(endpoint=endpoint, outcome="transport_error")
            raise DiscordUnavailableError(message=f"Discord request failed: {type(e).__name__}") from e

        if res.status_code == 429:
            observe_discord_request(endpoint=endpoint, outcome="rate_limited")
            raise DiscordRateLimitedError(retry_after=_retry_after(res))
        if res.status_code == 401:
            observe_discord_request(endpoint=endpoint, outcome="unauthorized")
            raise DiscordUnauthorizedError()
        if res.status_code == 404 and not_found_ok:
            observe_discord_request(endpoint=endpoint, outcome="not_found")
            return res
        if res.status_code >= 400:
            observe_discord_request(endpoint=endpoint, outcome="error")
            raise DiscordUnavailableError(
                status_code=res.status_code,
                message=f"Discord returned HTTP {res.status_code}",
            )

        observe_discord_request(endpoint=endpoint, outcome="ok")
        return res


def _log_retry(endpoint: str, attempts: int) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        logger.warning(
            "Discord %s failed (%s); retrying in %.1fs (attempt %s/%s)",
            endpoint,
            retry_state.outcome.exception() if retry_state.outcome else None,
            retry_state.next_action.sleep if retry_state.next_action else 0,
            retry_state.attempt_number,
            attempts,
        )

    return before_sleep


def _retry_after(res: httpx.Response) -> float | None:
    raw = res.headers.get("retry-after")
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        return None
