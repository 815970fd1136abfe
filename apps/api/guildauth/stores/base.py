from __future__ import annotations

from dataclasses import dataclass, field

from guildauth.models.guilds import GuildMember
from guildauth.models.identity import User


@dataclass(frozen=True)
class UserProfile:
    id: str
    username: str
    discriminator: str | None = None
    global_name: str | None = None
    avatar: str | None = None
    email: str | None = None


@dataclass(frozen=True)
class MembershipUpsert:
    user_id: str
    guild_id: str
    roles: list[str] = field(default_factory=list)
    username: str | None = None
    nickname: str | None = None


@dataclass(frozen=True)
class StoredSettings:
    settings: dict
    schema_version: int


class UserStore:
    def exists(self, user_id: str) -> bool:  # pragma: no cover
        raise NotImplementedError

    def find_one(self, user_id: str) -> User | None:  # pragma: no cover
        raise NotImplementedError

    def create(self, profile: UserProfile) -> User:  # pragma: no cover
        raise NotImplementedError

    def update(self, user_id: str, patch: dict[str, object]) -> None:  # pragma: no cover
        raise NotImplementedError


class GuildMembershipStore:
    def find_one(self, user_id: str, guild_id: str) -> GuildMember | None:  # pragma: no cover
        raise NotImplementedError

    def find_by_user(self, user_id: str) -> list[GuildMember]:  # pragma: no cover
        raise NotImplementedError

    def upsert_many(self, memberships: list[MembershipUpsert]) -> None:  # pragma: no cover
        """Insert or refresh rows keyed by (user_id, guild_id). Safe under concurrent callers."""
        raise NotImplementedError

    def delete_many(self, user_id: str, *, keep_guild_ids: list[str]) -> int:  # pragma: no cover
        raise NotImplementedError

    def create(self, membership: MembershipUpsert) -> None:
        self.upsert_many([membership])


class GuildStore:
    def exists(self, guild_id: str) -> bool:  # pragma: no cover
        raise NotImplementedError

    def find_active_guild_ids(self) -> list[str]:  # pragma: no cover
        raise NotImplementedError


class SettingsStore:
    def get_settings(self, owner_type: str, owner_id: str) -> StoredSettings | None:  # pragma: no cover
        raise NotImplementedError

    def upsert_settings(
        self, owner_type: str, owner_id: str, *, settings: dict, schema_version: int
    ) -> None:  # pragma: no cover
        raise NotImplementedError


class LeagueStore:
    def find_guild_id(self, league_id: str) -> str | None:  # pragma: no cover
        raise NotImplementedError


class OrganizationStore:
    def find_guild_id(self, organization_id: str) -> str | None:  # pragma: no cover
        raise NotImplementedError


class TrackerStore:
    def find_owner_id(self, tracker_id: str) -> str | None:  # pragma: no cover
        raise NotImplementedError
