from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field

from guildauth.cache.base import Cache
from guildauth.services.auth.tokens import TokenVault
from guildauth.services.authz.roles import AdminRoleEvaluator
from guildauth.services.discord.api import DiscordApiError, DiscordGuild, DiscordPermissionGateway
from guildauth.services.guilds.settings import GuildSettingsService
from guildauth.stores.base import GuildMembershipStore, GuildStore, MembershipUpsert

logger = logging.getLogger("guildauth.api")

DEFAULT_GUILD_LIST_TTL_SECONDS = 300


def guild_list_cache_key(user_id: str) -> str:
    return f"user:{user_id}:guilds"


@dataclass(frozen=True)
class AvailableGuild:
    id: str
    name: str
    icon: str | None = None
    owner: bool = False
    is_member: bool = False
    is_admin: bool = False
    roles: list[str] = field(default_factory=list)


class GuildMembershipSync:
    def __init__(
        self,
        *,
        guilds: GuildStore,
        memberships: GuildMembershipStore,
        gateway: DiscordPermissionGateway,
        tokens: TokenVault,
        settings_service: GuildSettingsService,
        roles: AdminRoleEvaluator,
        cache: Cache,
        cache_ttl_seconds: int = DEFAULT_GUILD_LIST_TTL_SECONDS,
    ) -> None:
        self._guilds = guilds
        self._memberships = memberships
        self._gateway = gateway
        self._tokens = tokens
        self._settings_service = settings_service
        self._roles = roles
        self._cache = cache
        self._cache_ttl_ms = cache_ttl_seconds * 1000

    def sync_user_memberships(self, user_id: str, access_token: str) -> list[str]:
        """Mirror the user's mutual guilds (and their roles there) into `guild_members`."""
        mutual = self._mutual_guilds(self._gateway.get_user_guilds(access_token))
        existing = {m.guild_id: m for m in self._memberships.find_by_user(user_id)}

        upserts: list[MembershipUpsert] = []
        for guild in mutual:
            previous = existing.get(guild.id)
            try:
                member = self._gateway.get_guild_member(access_token, guild.id)
            except DiscordApiError as e:
                # Keep what we had; roles get refreshed on a later login or access check.
                logger.warning("Could not fetch roles for user %s in guild %s: %s", user_id, guild.id, e)
                upserts.append(
                    MembershipUpsert(
                        user_id=user_id,
                        guild_id=guild.id,
                        roles=list(previous.roles) if previous else [],
                        nickname=previous.nickname if previous else None,
                    )
                )
                continue

            if member is None:
                continue
            upserts.append(
                MembershipUpsert(user_id=user_id, guild_id=guild.id, roles=member.roles, nickname=member.nick)
            )

        self._memberships.upsert_many(upserts)
        kept = [u.guild_id for u in upserts]
        removed = self._memberships.delete_many(user_id, keep_guild_ids=kept)
        self._cache.delete(guild_list_cache_key(user_id))

        logger.info(
            "Synced %s guild memberships for user %s (%s removed)",
            len(kept),
            user_id,
            removed,
        )
        return kept

    def get_available_guilds(self, user_id: str) -> list[AvailableGuild]:
        try:
            mutual = self._cached_mutual_guilds(user_id)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to list available guilds for user %s", user_id)
            return []

        memberships = {m.guild_id: m for m in self._memberships.find_by_user(user_id)}
        available: list[AvailableGuild] = []
        for guild in mutual:
            membership = memberships.get(guild.id)
            roles = list(membership.roles) if membership else []
            is_admin = False
            if membership is not None:
                # Listing stays local; live role validation happens on the guarded endpoints.
                settings = self._settings_service.get_settings(guild.id)
                is_admin = self._roles.is_admin(roles, settings, validate_with_discord=False)
            available.append(
                AvailableGuild(
                    id=guild.id,
                    name=guild.name,
                    icon=guild.icon,
                    owner=guild.owner,
                    is_member=membership is not None,
                    is_admin=is_admin,
                    roles=roles,
                )
            )
        return available

    def _cached_mutual_guilds(self, user_id: str) -> list[DiscordGuild]:
        key = guild_list_cache_key(user_id)
        cached = self._cache.get(key)
        if isinstance(cached, list):
            return [DiscordGuild(**item) for item in cached]

        access_token = self._tokens.get_valid_access_token(user_id)
        if not access_token:
            logger.warning("No valid Discord token for user %s; returning no guilds", user_id)
            return []

        mutual = self._mutual_guilds(self._gateway.get_user_guilds(access_token))
        self._cache.set(key, [asdict(g) for g in mutual], ttl_ms=self._cache_ttl_ms)
        return mutual

    def _mutual_guilds(self, user_guilds: list[DiscordGuild]) -> list[DiscordGuild]:
        active = set(self._guilds.find_active_guild_ids())
        return [g for g in user_guilds if g.id in active]
