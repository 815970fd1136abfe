from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict, Field, field_validator

from guildauth.stores.base import SettingsStore

logger = logging.getLogger("guildauth.api")

GUILD_OWNER_TYPE = "guild"
# v1 stored role lists as bare role-id strings; v2 stores {id, name} objects.
CURRENT_SCHEMA_VERSION = 2

ROLE_KINDS: tuple[str, ...] = ("admin", "moderator", "member", "league_manager", "tournament_manager")


class RoleRef(BaseModel):
    id: str
    name: str = ""


def _coerce_role_list(value: object) -> list[object]:
    if value is None:
        return []
    if not isinstance(value, list):
        value = [value]

    coerced: list[object] = []
    for item in value:
        if isinstance(item, (str, int)):
            coerced.append({"id": str(item), "name": ""})
        elif isinstance(item, dict) and "id" in item:
            coerced.append({**item, "id": str(item["id"]), "name": item.get("name") or ""})
        else:
            coerced.append(item)
    return coerced


class GuildRoles(BaseModel):
    model_config = ConfigDict(extra="ignore")

    admin: list[RoleRef] = Field(default_factory=list)
    moderator: list[RoleRef] = Field(default_factory=list)
    member: list[RoleRef] = Field(default_factory=list)
    league_manager: list[RoleRef] = Field(default_factory=list)
    tournament_manager: list[RoleRef] = Field(default_factory=list)

    @field_validator("*", mode="before")
    @classmethod
    def _legacy_role_ids(cls, v: object) -> object:
        return _coerce_role_list(v)


class GuildSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    guild_id: str
    roles: GuildRoles = Field(default_factory=GuildRoles)
    bot_command_channels: list[str] = Field(default_factory=list)
    register_command_channels: list[str] = Field(default_factory=list)
    schema_version: int = CURRENT_SCHEMA_VERSION

    def role_ids(self, kind: str) -> list[str]:
        return [r.id for r in getattr(self.roles, kind)]

    def to_blob(self) -> dict:
        return {
            "_metadata": {"schemaVersion": self.schema_version},
            "roles": self.roles.model_dump(),
            "bot_command_channels": list(self.bot_command_channels),
            "register_command_channels": list(self.register_command_channels),
        }

    @classmethod
    def defaults(cls, guild_id: str) -> GuildSettings:
        return cls(guild_id=guild_id)

    @classmethod
    def from_blob(cls, guild_id: str, blob: dict) -> GuildSettings:
        return cls(
            guild_id=guild_id,
            roles=blob.get("roles") or {},
            bot_command_channels=[str(c) for c in blob.get("bot_command_channels") or []],
            register_command_channels=[str(c) for c in blob.get("register_command_channels") or []],
            schema_version=CURRENT_SCHEMA_VERSION,
        )


def blob_schema_version(blob: dict, *, fallback: int = 0) -> int:
    metadata = blob.get("_metadata")
    if isinstance(metadata, dict) and isinstance(metadata.get("schemaVersion"), int):
        return int(metadata["schemaVersion"])
    return fallback


def _has_legacy_roles(blob: dict) -> bool:
    roles = blob.get("roles")
    if not isinstance(roles, dict):
        return False
    return any(
        isinstance(item, (str, int))
        for kind in ROLE_KINDS
        for item in (roles.get(kind) if isinstance(roles.get(kind), list) else [])
    )


class GuildSettingsService:
    def __init__(self, *, store: SettingsStore) -> None:
        self._store = store

    def get_settings(self, guild_id: str) -> GuildSettings:
        stored = self._store.get_settings(GUILD_OWNER_TYPE, guild_id)
        if stored is None:
            # Missing settings mean the guild was never initialized; create them instead of 404ing.
            logger.info("Initializing default settings for guild %s", guild_id)
            settings = GuildSettings.defaults(guild_id)
            self._save(settings)
            return settings

        blob = stored.settings
        settings = GuildSettings.from_blob(guild_id, blob)
        version = blob_schema_version(blob, fallback=stored.schema_version)
        if version < CURRENT_SCHEMA_VERSION or _has_legacy_roles(blob):
            logger.info(
                "Migrating settings for guild %s from schema %s to %s",
                guild_id,
                version,
                CURRENT_SCHEMA_VERSION,
            )
            self._save(settings)
        return settings

    def update_roles(self, guild_id: str, roles_patch: dict[str, list]) -> GuildSettings:
        unknown = set(roles_patch) - set(ROLE_KINDS)
        if unknown:
            raise ValueError(f"Unknown role kinds: {', '.join(sorted(unknown))}")

        current = self.get_settings(guild_id)
        merged = current.roles.model_dump()
        for kind, refs in roles_patch.items():
            merged[kind] = [r.model_dump() if isinstance(r, RoleRef) else r for r in refs]

        updated = current.model_copy(update={"roles": GuildRoles.model_validate(merged)})
        self._save(updated)
        return updated

    def _save(self, settings: GuildSettings) -> None:
        self._store.upsert_settings(
            GUILD_OWNER_TYPE,
            settings.guild_id,
            settings=settings.to_blob(),
            schema_version=settings.schema_version,
        )
