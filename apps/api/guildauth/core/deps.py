from __future__ import annotations

import httpx
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from guildauth.cache.base import Cache
from guildauth.cache.factory import build_cache
from guildauth.core.config import get_settings
from guildauth.core.http import get_http_client
from guildauth.core.security import InvalidTokenError, Principal, decode_jwt
from guildauth.db.session import get_session
from guildauth.services.audit import SqlAuditSink
from guildauth.services.auth.callback import OAuthCallbackFlow
from guildauth.services.auth.oauth_state import OAuthStateStore
from guildauth.services.auth.redirect_uris import RedirectUriValidator
from guildauth.services.auth.tokens import TokenVault
from guildauth.services.authz.orchestrator import AuthorizationOrchestrator
from guildauth.services.authz.roles import AdminRoleEvaluator
from guildauth.services.discord.api import DiscordPermissionGateway
from guildauth.services.guilds.access import GuildAccessValidator
from guildauth.services.guilds.settings import GuildSettingsService
from guildauth.services.guilds.sync import GuildMembershipSync
from guildauth.stores.sql import (
    SqlGuildMembershipStore,
    SqlGuildStore,
    SqlLeagueStore,
    SqlOrganizationStore,
    SqlSettingsStore,
    SqlUserStore,
)


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization") or ""
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return None


def require_user(request: Request) -> Principal:
    settings = get_settings()
    raw = request.cookies.get(settings.AUTH_COOKIE_NAME) or _bearer_token(request)
    if not raw:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    try:
        return decode_jwt(raw)
    except InvalidTokenError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e)) from e


def get_cache(session: Session = Depends(get_session)) -> Cache:
    return build_cache(session=session)


def get_gateway(client: httpx.Client = Depends(get_http_client)) -> DiscordPermissionGateway:
    return DiscordPermissionGateway.from_settings(client, get_settings())


def get_token_vault(
    session: Session = Depends(get_session),
    client: httpx.Client = Depends(get_http_client),
    gateway: DiscordPermissionGateway = Depends(get_gateway),
) -> TokenVault:
    return TokenVault(users=SqlUserStore(session=session), gateway=gateway, client=client, settings=get_settings())


def get_settings_service(session: Session = Depends(get_session)) -> GuildSettingsService:
    return GuildSettingsService(store=SqlSettingsStore(session=session))


def get_oauth_state_store(cache: Cache = Depends(get_cache)) -> OAuthStateStore:
    return OAuthStateStore(cache, ttl_ms=get_settings().OAUTH_STATE_TTL_MS)


def get_membership_sync(
    session: Session = Depends(get_session),
    gateway: DiscordPermissionGateway = Depends(get_gateway),
    tokens: TokenVault = Depends(get_token_vault),
    settings_service: GuildSettingsService = Depends(get_settings_service),
    cache: Cache = Depends(get_cache),
) -> GuildMembershipSync:
    return GuildMembershipSync(
        guilds=SqlGuildStore(session=session),
        memberships=SqlGuildMembershipStore(session=session),
        gateway=gateway,
        tokens=tokens,
        settings_service=settings_service,
        roles=AdminRoleEvaluator(gateway),
        cache=cache,
        cache_ttl_seconds=get_settings().GUILD_LIST_CACHE_TTL_SECONDS,
    )


def get_callback_flow(
    session: Session = Depends(get_session),
    client: httpx.Client = Depends(get_http_client),
    gateway: DiscordPermissionGateway = Depends(get_gateway),
    tokens: TokenVault = Depends(get_token_vault),
    states: OAuthStateStore = Depends(get_oauth_state_store),
    sync: GuildMembershipSync = Depends(get_membership_sync),
) -> OAuthCallbackFlow:
    return OAuthCallbackFlow(
        redirect_uris=RedirectUriValidator(),
        states=states,
        tokens=tokens,
        gateway=gateway,
        users=SqlUserStore(session=session),
        sync=sync,
        client=client,
        settings=get_settings(),
    )


def get_orchestrator(
    session: Session = Depends(get_session),
    gateway: DiscordPermissionGateway = Depends(get_gateway),
    tokens: TokenVault = Depends(get_token_vault),
    settings_service: GuildSettingsService = Depends(get_settings_service),
) -> AuthorizationOrchestrator:
    memberships = SqlGuildMembershipStore(session=session)
    return AuthorizationOrchestrator(
        tokens=tokens,
        gateway=gateway,
        access=GuildAccessValidator(
            guilds=SqlGuildStore(session=session),
            memberships=memberships,
            tokens=tokens,
            gateway=gateway,
        ),
        roles=AdminRoleEvaluator(gateway),
        settings_service=settings_service,
        memberships=memberships,
        leagues=SqlLeagueStore(session=session),
        organizations=SqlOrganizationStore(session=session),
        audit=SqlAuditSink(session=session),
        system_admin_user_ids=get_settings().system_admin_user_ids,
    )
