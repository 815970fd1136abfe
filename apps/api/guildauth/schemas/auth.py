from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class MeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    username: str
    global_name: str | None
    avatar: str | None
    email: str | None
    created_at: datetime | None = None
    last_login_at: datetime | None = None


class AvailableGuildOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    icon: str | None
    owner: bool
    is_member: bool
    is_admin: bool
    roles: list[str]


class GuildListResponse(BaseModel):
    guilds: list[AvailableGuildOut]
