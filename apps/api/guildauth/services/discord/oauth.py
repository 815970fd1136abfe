from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlencode

import httpx

DISCORD_OAUTH_SCOPES = ["identify", "email", "guilds", "guilds.members.read"]


@dataclass(frozen=True)
class DiscordTokenResponse:
    access_token: str
    refresh_token: str | None
    expires_in: int
    scope: str | None
    token_type: str | None

    @property
    def scopes(self) -> list[str]:
        if not self.scope:
            return []
        return [s for s in self.scope.split(" ") if s]


class DiscordOAuthError(RuntimeError):
    def __init__(self, *, status_code: int | None, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code


def build_authorization_url(
    *,
    api_url: str,
    client_id: str,
    redirect_uri: str,
    state: str,
    scopes: list[str] | None = None,
) -> str:
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": " ".join(scopes or DISCORD_OAUTH_SCOPES),
        "state": state,
    }
    return f"{api_url.rstrip('/')}/oauth2/authorize?{urlencode(params)}"


def exchange_code_for_tokens(
    client: httpx.Client,
    *,
    api_url: str,
    code: str,
    client_id: str,
    client_secret: str,
    redirect_uri: str,
) -> DiscordTokenResponse:
    return _token_request(
        client,
        api_url=api_url,
        data={
            "code": code,
            "client_id": client_id,
            "client_secret": client_secret,
            "redirect_uri": redirect_uri,
            "grant_type": "authorization_code",
        },
        failure="Discord token exchange failed",
    )


def refresh_access_token(
    client: httpx.Client,
    *,
    api_url: str,
    refresh_token: str,
    client_id: str,
    client_secret: str,
) -> DiscordTokenResponse:
    return _token_request(
        client,
        api_url=api_url,
        data={
            "refresh_token": refresh_token,
            "client_id": client_id,
            "client_secret": client_secret,
            "grant_type": "refresh_token",
        },
        failure="Discord access token refresh failed",
    )


def revoke_token(
    client: httpx.Client,
    *,
    api_url: str,
    token: str,
    client_id: str,
    client_secret: str,
    token_type_hint: str = "access_token",
) -> None:
    try:
        res = client.post(
            f"{api_url.rstrip('/')}/oauth2/token/revoke",
            data={
                "token": token,
                "token_type_hint": token_type_hint,
                "client_id": client_id,
                "client_secret": client_secret,
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
    except httpx.HTTPError as e:
        raise DiscordOAuthError(status_code=None, message="Discord token revoke failed") from e

    if res.status_code >= 400:
        raise DiscordOAuthError(status_code=res.status_code, message="Discord token revoke failed")


def _token_request(client: httpx.Client, *, api_url: str, data: dict[str, str], failure: str) -> DiscordTokenResponse:
    try:
        res = client.post(
            f"{api_url.rstrip('/')}/oauth2/token",
            data=data,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
    except httpx.HTTPError as e:
        raise DiscordOAuthError(status_code=None, message=failure) from e

    if res.status_code >= 400:
        # Upstream error bodies can echo client credentials; keep them out of messages.
        raise DiscordOAuthError(status_code=res.status_code, message=failure)

    payload = res.json()
    access_token = payload.get("access_token")
    if not access_token:
        raise DiscordOAuthError(status_code=res.status_code, message=failure)

    return DiscordTokenResponse(
        access_token=access_token,
        refresh_token=payload.get("refresh_token"),
        expires_in=int(payload.get("expires_in") or 0),
        scope=payload.get("scope"),
        token_type=payload.get("token_type"),
    )
