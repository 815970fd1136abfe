from __future__ import annotations

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from guildauth.core.config import get_settings
from guildauth.core.deps import (
    get_callback_flow,
    get_membership_sync,
    get_oauth_state_store,
    get_token_vault,
    require_user,
)
from guildauth.core.errors import InvalidRedirectUriError
from guildauth.core.security import Principal, clear_auth_cookie, set_auth_cookie
from guildauth.db.session import get_session
from guildauth.schemas.auth import AvailableGuildOut, GuildListResponse, MeResponse
from guildauth.services.auth.callback import CallbackParams, OAuthCallbackFlow
from guildauth.services.auth.oauth_state import OAuthStateStore
from guildauth.services.auth.redirect_uris import RedirectUriValidator
from guildauth.services.auth.tokens import TokenVault
from guildauth.services.discord.oauth import build_authorization_url
from guildauth.services.guilds.sync import GuildMembershipSync
from guildauth.stores.sql import SqlUserStore

logger = logging.getLogger("guildauth.api")

router = APIRouter(prefix="/auth", tags=["auth"])

# Carries the requested frontend target across the Discord round-trip. Re-validated on callback.
REDIRECT_URI_COOKIE = "oauth_redirect_uri"
REDIRECT_URI_COOKIE_PATH = "/auth/discord"


@router.get("/discord")
def discord_login(
    redirect_uri: str | None = None,
    states: OAuthStateStore = Depends(get_oauth_state_store),
) -> RedirectResponse:
    settings = get_settings()
    validator = RedirectUriValidator()
    if redirect_uri:
        try:
            validator.validate(redirect_uri, settings.allowed_redirect_uris, settings.FRONTEND_URL)
        except InvalidRedirectUriError as e:
            base = validator.normalize(settings.FRONTEND_URL)
            query = urlencode({"error": e.code, "description": e.description})
            return RedirectResponse(f"{base}/auth/error?{query}", status_code=status.HTTP_302_FOUND)

    state = states.issue()
    url = build_authorization_url(
        api_url=settings.DISCORD_API_URL,
        client_id=settings.DISCORD_CLIENT_ID,
        redirect_uri=settings.DISCORD_CALLBACK_URL,
        state=state,
    )
    logger.info("Discord OAuth flow initiated")

    response = RedirectResponse(url, status_code=status.HTTP_302_FOUND)
    if redirect_uri:
        response.set_cookie(
            key=REDIRECT_URI_COOKIE,
            value=redirect_uri,
            httponly=True,
            secure=settings.cookie_secure,
            samesite="lax",
            path=REDIRECT_URI_COOKIE_PATH,
            max_age=max(1, settings.OAUTH_STATE_TTL_MS // 1000),
        )
    return response


@router.get("/discord/callback")
def discord_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
    redirect_uri: str | None = None,
    flow: OAuthCallbackFlow = Depends(get_callback_flow),
) -> RedirectResponse:
    outcome = flow.run(
        CallbackParams(
            code=code,
            state=state,
            error=error,
            error_description=error_description,
            redirect_uri=redirect_uri or request.cookies.get(REDIRECT_URI_COOKIE),
        )
    )

    response = RedirectResponse(outcome.redirect_url, status_code=status.HTTP_302_FOUND)
    if outcome.jwt:
        set_auth_cookie(response, outcome.jwt)
    response.delete_cookie(key=REDIRECT_URI_COOKIE, path=REDIRECT_URI_COOKIE_PATH)
    return response


@router.get("/me", response_model=MeResponse)
def me(user: Principal = Depends(require_user), session: Session = Depends(get_session)) -> MeResponse:
    record = SqlUserStore(session=session).find_one(user.id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User no longer exists")
    return MeResponse.model_validate(record)


@router.get("/guilds", response_model=GuildListResponse)
def guilds(
    user: Principal = Depends(require_user),
    sync: GuildMembershipSync = Depends(get_membership_sync),
) -> GuildListResponse:
    available = sync.get_available_guilds(user.id)
    return GuildListResponse(guilds=[AvailableGuildOut.model_validate(g) for g in available])


@router.post("/logout")
def logout(
    response: Response,
    user: Principal = Depends(require_user),
    tokens: TokenVault = Depends(get_token_vault),
) -> dict[str, str]:
    tokens.revoke(user.id)
    clear_auth_cookie(response)
    logger.info("User %s logged out", user.id)
    return {"status": "ok"}
