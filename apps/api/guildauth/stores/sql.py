from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from guildauth.models.guilds import Guild, GuildMember, League, Organization, Tracker
from guildauth.models.identity import User
from guildauth.models.settings import SettingsRecord
from guildauth.stores.base import (
    GuildMembershipStore,
    GuildStore,
    LeagueStore,
    MembershipUpsert,
    OrganizationStore,
    SettingsStore,
    StoredSettings,
    TrackerStore,
    UserProfile,
    UserStore,
)

# Writes commit immediately: self-healed memberships and settings must survive
# a request that later ends in a 403.


def _dialect_insert(session: Session, table):  # type: ignore[no-untyped-def]
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise RuntimeError(f"Upserts are not supported on dialect {dialect!r}")


class SqlUserStore(UserStore):
    def __init__(self, *, session: Session) -> None:
        self._session = session

    def exists(self, user_id: str) -> bool:
        return self._session.scalar(select(User.id).where(User.id == user_id)) is not None

    def find_one(self, user_id: str) -> User | None:
        # Tokens may be rotated by another request; never serve a stale identity-map copy.
        return self._session.get(User, user_id, populate_existing=True)

    def create(self, profile: UserProfile) -> User:
        user = User(
            id=profile.id,
            username=profile.username,
            discriminator=profile.discriminator,
            global_name=profile.global_name,
            avatar=profile.avatar,
            email=profile.email,
            last_login_at=datetime.now(UTC),
        )
        self._session.add(user)
        self._session.commit()
        return user

    def update(self, user_id: str, patch: dict[str, object]) -> None:
        if not patch:
            return
        self._session.execute(update(User).where(User.id == user_id).values(**patch))
        self._session.commit()
        self._session.expire_all()


class SqlGuildMembershipStore(GuildMembershipStore):
    def __init__(self, *, session: Session) -> None:
        self._session = session

    def find_one(self, user_id: str, guild_id: str) -> GuildMember | None:
        return self._session.scalar(
            select(GuildMember).where(GuildMember.user_id == user_id, GuildMember.guild_id == guild_id)
        )

    def find_by_user(self, user_id: str) -> list[GuildMember]:
        return list(
            self._session.scalars(
                select(GuildMember).where(GuildMember.user_id == user_id).order_by(GuildMember.guild_id)
            ).all()
        )

    def upsert_many(self, memberships: list[MembershipUpsert]) -> None:
        if not memberships:
            return

        stmt = _dialect_insert(self._session, GuildMember).values(
            [
                {
                    "id": uuid4(),
                    "user_id": m.user_id,
                    "guild_id": m.guild_id,
                    "roles": list(m.roles),
                    "username": m.username,
                    "nickname": m.nickname,
                }
                for m in memberships
            ]
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[GuildMember.user_id, GuildMember.guild_id],
            set_={
                "roles": stmt.excluded.roles,
                "username": func.coalesce(stmt.excluded.username, GuildMember.username),
                "nickname": stmt.excluded.nickname,
                "updated_at": func.now(),
            },
        )
        self._session.execute(stmt)
        self._session.commit()
        self._session.expire_all()

    def delete_many(self, user_id: str, *, keep_guild_ids: list[str]) -> int:
        stmt = delete(GuildMember).where(GuildMember.user_id == user_id)
        if keep_guild_ids:
            stmt = stmt.where(GuildMember.guild_id.not_in(keep_guild_ids))
        res = self._session.execute(stmt)
        self._session.commit()
        return int(res.rowcount or 0)


class SqlGuildStore(GuildStore):
    def __init__(self, *, session: Session) -> None:
        self._session = session

    def exists(self, guild_id: str) -> bool:
        found = self._session.scalar(
            select(Guild.id).where(Guild.id == guild_id, Guild.is_active.is_(True))
        )
        return found is not None

    def find_active_guild_ids(self) -> list[str]:
        return list(self._session.scalars(select(Guild.id).where(Guild.is_active.is_(True))).all())


class SqlSettingsStore(SettingsStore):
    def __init__(self, *, session: Session) -> None:
        self._session = session

    def get_settings(self, owner_type: str, owner_id: str) -> StoredSettings | None:
        row = self._session.execute(
            select(SettingsRecord.settings, SettingsRecord.schema_version).where(
                SettingsRecord.owner_type == owner_type,
                SettingsRecord.owner_id == owner_id,
            )
        ).first()
        if row is None:
            return None
        return StoredSettings(settings=dict(row.settings or {}), schema_version=int(row.schema_version))

    def upsert_settings(self, owner_type: str, owner_id: str, *, settings: dict, schema_version: int) -> None:
        stmt = _dialect_insert(self._session, SettingsRecord).values(
            id=uuid4(),
            owner_type=owner_type,
            owner_id=owner_id,
            settings=settings,
            schema_version=schema_version,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[SettingsRecord.owner_type, SettingsRecord.owner_id],
            set_={
                "settings": stmt.excluded.settings,
                "schema_version": stmt.excluded.schema_version,
                "updated_at": func.now(),
            },
        )
        self._session.execute(stmt)
        self._session.commit()


class SqlLeagueStore(LeagueStore):
    def __init__(self, *, session: Session) -> None:
        self._session = session

    def find_guild_id(self, league_id: str) -> str | None:
        return self._session.scalar(select(League.guild_id).where(League.id == league_id))


class SqlOrganizationStore(OrganizationStore):
    def __init__(self, *, session: Session) -> None:
        self._session = session

    def find_guild_id(self, organization_id: str) -> str | None:
        return self._session.scalar(
            select(League.guild_id)
            .join(Organization, Organization.league_id == League.id)
            .where(Organization.id == organization_id)
        )


class SqlTrackerStore(TrackerStore):
    def __init__(self, *, session: Session) -> None:
        self._session = session

    def find_owner_id(self, tracker_id: str) -> str | None:
        return self._session.scalar(select(Tracker.user_id).where(Tracker.id == tracker_id))
