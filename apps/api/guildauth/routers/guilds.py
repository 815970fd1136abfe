from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from guildauth.core.deps import get_orchestrator, get_settings_service, require_user
from guildauth.core.security import Principal
from guildauth.db.session import get_session
from guildauth.schemas.guilds import (
    AuditEventListResponse,
    AuditEventOut,
    GuildSettingsResponse,
    UpdateGuildRolesRequest,
)
from guildauth.services.audit import list_audit_events
from guildauth.services.authz.orchestrator import AuthorizationOrchestrator
from guildauth.services.guilds.settings import GuildSettings, GuildSettingsService

router = APIRouter(prefix="/guilds", tags=["guilds"])


def _settings_response(settings: GuildSettings) -> GuildSettingsResponse:
    return GuildSettingsResponse(
        guild_id=settings.guild_id,
        roles=settings.roles,
        bot_command_channels=settings.bot_command_channels,
        register_command_channels=settings.register_command_channels,
        schema_version=settings.schema_version,
    )


@router.get("/{guild_id}/settings", response_model=GuildSettingsResponse)
def get_guild_settings(
    guild_id: str,
    request: Request,
    user: Principal = Depends(require_user),
    authz: AuthorizationOrchestrator = Depends(get_orchestrator),
    settings_service: GuildSettingsService = Depends(get_settings_service),
) -> GuildSettingsResponse:
    authz.check_guild_admin_access(user, guild_id, resource=request.url.path)
    return _settings_response(settings_service.get_settings(guild_id))


@router.put("/{guild_id}/settings/roles", response_model=GuildSettingsResponse)
def update_guild_roles(
    guild_id: str,
    payload: UpdateGuildRolesRequest,
    request: Request,
    user: Principal = Depends(require_user),
    authz: AuthorizationOrchestrator = Depends(get_orchestrator),
    settings_service: GuildSettingsService = Depends(get_settings_service),
) -> GuildSettingsResponse:
    authz.check_guild_admin(user, guild_id, resource=request.url.path)

    patch = payload.as_patch()
    if not patch:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No role lists provided")
    return _settings_response(settings_service.update_roles(guild_id, patch))


@router.get("/{guild_id}/audit-events", response_model=AuditEventListResponse)
def guild_audit_events(
    guild_id: str,
    request: Request,
    limit: int = Query(default=50, ge=1, le=200),
    user: Principal = Depends(require_user),
    authz: AuthorizationOrchestrator = Depends(get_orchestrator),
    session: Session = Depends(get_session),
) -> AuditEventListResponse:
    authz.check_guild_admin(user, guild_id, resource=request.url.path)
    events = list_audit_events(session=session, guild_id=guild_id, limit=limit)
    return AuditEventListResponse(events=[AuditEventOut.model_validate(e) for e in events])
