from __future__ import annotations

import httpx
import pytest
from conftest import FakeDiscord, Seeder
from sqlalchemy import select
from sqlalchemy.orm import Session

from guildauth.core.config import get_settings
from guildauth.core.errors import GuildNotFoundError, NotAMemberError
from guildauth.models import GuildMember
from guildauth.services.auth.tokens import TokenVault
from guildauth.services.discord.api import DiscordPermissionGateway
from guildauth.services.guilds.access import GuildAccessValidator
from guildauth.stores.base import MembershipUpsert
from guildauth.stores.sql import SqlGuildMembershipStore, SqlGuildStore, SqlUserStore

MEMBER_PATH = "/users/@me/guilds/g1/member"


def _validator(session: Session, client: httpx.Client) -> tuple[GuildAccessValidator, SqlGuildMembershipStore]:
    settings = get_settings()
    gateway = DiscordPermissionGateway.from_settings(client, settings, sleep=lambda _s: None)
    memberships = SqlGuildMembershipStore(session=session)
    validator = GuildAccessValidator(
        guilds=SqlGuildStore(session=session),
        memberships=memberships,
        tokens=TokenVault(users=SqlUserStore(session=session), gateway=gateway, client=client, settings=settings),
        gateway=gateway,
    )
    return validator, memberships


def test_unknown_guild_fails_before_discord(
    db_session: Session,
    seed: Seeder,
    discord: FakeDiscord,
    http_client: httpx.Client,
) -> None:
    seed.user("1", access_token="a1")
    validator, _ = _validator(db_session, http_client)

    with pytest.raises(GuildNotFoundError) as exc:
        validator.validate_access("1", "g1")
    assert exc.value.status_code == 404
    assert discord.requests == []


def test_inactive_guild_is_not_found(db_session: Session, seed: Seeder, http_client: httpx.Client) -> None:
    seed.user("1")
    seed.guild("g1", is_active=False)
    seed.membership("1", "g1")
    validator, _ = _validator(db_session, http_client)

    with pytest.raises(GuildNotFoundError):
        validator.validate_access("1", "g1")


def test_local_membership_is_the_fast_path(
    db_session: Session,
    seed: Seeder,
    discord: FakeDiscord,
    http_client: httpx.Client,
) -> None:
    seed.user("1")
    seed.guild("g1")
    seed.membership("1", "g1", roles=["r1"])
    validator, _ = _validator(db_session, http_client)

    validator.validate_access("1", "g1")
    assert discord.requests == []


def test_missing_membership_is_confirmed_and_persisted(
    db_session: Session,
    seed: Seeder,
    discord: FakeDiscord,
    http_client: httpx.Client,
) -> None:
    seed.user("1", access_token="a1")
    seed.guild("g1")
    discord.on("GET", "/users/@me", 200, {"id": "1", "username": "alice"})
    discord.on("GET", MEMBER_PATH, 200, {"roles": ["r1", "r2"], "nick": "Ally", "permissions": "0"})
    validator, memberships = _validator(db_session, http_client)

    validator.validate_access("1", "g1")

    row = memberships.find_one("1", "g1")
    assert row is not None
    assert row.roles == ["r1", "r2"]
    assert row.nickname == "Ally"

    # Second call hits the stored row.
    validator.validate_access("1", "g1")
    assert discord.calls("GET", MEMBER_PATH) == 1


def test_non_member_is_rejected(
    db_session: Session,
    seed: Seeder,
    discord: FakeDiscord,
    http_client: httpx.Client,
) -> None:
    seed.user("1", access_token="a1")
    seed.guild("g1")
    discord.on("GET", "/users/@me", 200, {"id": "1", "username": "alice"})
    discord.on("GET", MEMBER_PATH, 404, {"message": "Unknown Guild"})
    validator, memberships = _validator(db_session, http_client)

    with pytest.raises(NotAMemberError) as exc:
        validator.validate_access("1", "g1")
    assert exc.value.status_code == 403
    assert memberships.find_one("1", "g1") is None


def test_discord_errors_collapse_to_not_a_member(
    db_session: Session,
    seed: Seeder,
    discord: FakeDiscord,
    http_client: httpx.Client,
) -> None:
    seed.user("1", access_token="a1")
    seed.guild("g1")
    discord.on("GET", "/users/@me", 200, {"id": "1", "username": "alice"})
    discord.on("GET", MEMBER_PATH, 429, {"message": "You are being rate limited.", "retry_after": 1})
    validator, _ = _validator(db_session, http_client)

    with pytest.raises(NotAMemberError):
        validator.validate_access("1", "g1")
    assert discord.calls("GET", MEMBER_PATH) == 1


def test_user_without_token_is_rejected(db_session: Session, seed: Seeder, http_client: httpx.Client) -> None:
    seed.user("1")
    seed.guild("g1")
    validator, _ = _validator(db_session, http_client)

    with pytest.raises(NotAMemberError):
        validator.validate_access("1", "g1")


class _StaleMembershipReads(SqlGuildMembershipStore):
    """Reads as a request that checked before a concurrent one wrote the row."""

    def find_one(self, user_id: str, guild_id: str) -> GuildMember | None:
        return None


def test_racing_self_heal_writes_are_idempotent(
    db_session: Session,
    seed: Seeder,
    discord: FakeDiscord,
    http_client: httpx.Client,
) -> None:
    seed.user("1", access_token="a1")
    seed.guild("g1")
    discord.on("GET", "/users/@me", 200, {"id": "1", "username": "alice"})
    discord.on("GET", MEMBER_PATH, 200, {"roles": ["r1"], "nick": "Ally", "permissions": "0"})
    settings = get_settings()
    gateway = DiscordPermissionGateway.from_settings(http_client, settings, sleep=lambda _s: None)
    validator = GuildAccessValidator(
        guilds=SqlGuildStore(session=db_session),
        memberships=_StaleMembershipReads(session=db_session),
        tokens=TokenVault(
            users=SqlUserStore(session=db_session),
            gateway=gateway,
            client=http_client,
            settings=settings,
        ),
        gateway=gateway,
    )

    validator.validate_access("1", "g1")
    validator.validate_access("1", "g1")

    rows = db_session.scalars(select(GuildMember).where(GuildMember.user_id == "1")).all()
    assert [(r.guild_id, r.roles) for r in rows] == [("g1", ["r1"])]
    assert discord.calls("GET", MEMBER_PATH) == 2


def test_upsert_of_existing_membership_refreshes_the_row(db_session: Session, seed: Seeder) -> None:
    seed.user("1")
    seed.guild("g1")
    memberships = SqlGuildMembershipStore(session=db_session)
    memberships.upsert_many([MembershipUpsert(user_id="1", guild_id="g1", roles=["r1"], username="alice")])

    memberships.upsert_many([MembershipUpsert(user_id="1", guild_id="g1", roles=["r2"], nickname="Al")])

    rows = db_session.scalars(select(GuildMember).where(GuildMember.user_id == "1")).all()
    assert len(rows) == 1
    assert (rows[0].roles, rows[0].username, rows[0].nickname) == (["r2"], "alice", "Al")
