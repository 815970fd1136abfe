from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from guildauth.services.guilds.settings import GuildRoles, RoleRef


class GuildSettingsResponse(BaseModel):
    guild_id: str
    roles: GuildRoles
    bot_command_channels: list[str]
    register_command_channels: list[str]
    schema_version: int


class UpdateGuildRolesRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    admin: list[RoleRef] | None = None
    moderator: list[RoleRef] | None = None
    member: list[RoleRef] | None = None
    league_manager: list[RoleRef] | None = None
    tournament_manager: list[RoleRef] | None = None

    def as_patch(self) -> dict[str, list[RoleRef]]:
        return {kind: refs for kind, refs in self if refs is not None}


class AuditEventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: str
    guild_id: str | None
    action: str
    resource: str
    result: str
    metadata: dict = Field(validation_alias="event_metadata")
    created_at: datetime


class AuditEventListResponse(BaseModel):
    events: list[AuditEventOut]


class LeaguePermissionsResponse(BaseModel):
    league_id: str
    is_admin: bool
    is_moderator: bool


class TrackerAccessResponse(BaseModel):
    tracker_id: str
    owner_user_id: str
    can_read: bool
    can_modify: bool
