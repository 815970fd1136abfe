from __future__ import annotations

import logging

from guildauth.core.errors import GuildNotFoundError, NotAMemberError
from guildauth.services.auth.tokens import TokenVault
from guildauth.services.discord.api import DiscordPermissionGateway
from guildauth.stores.base import GuildMembershipStore, GuildStore, MembershipUpsert

logger = logging.getLogger("guildauth.api")


class GuildAccessValidator:
    """Confirms the bot and the user are both in a guild.

    Local membership rows are the fast path. On a miss Discord is asked directly
    and a confirmed membership is written back.
    """

    def __init__(
        self,
        *,
        guilds: GuildStore,
        memberships: GuildMembershipStore,
        tokens: TokenVault,
        gateway: DiscordPermissionGateway,
    ) -> None:
        self._guilds = guilds
        self._memberships = memberships
        self._tokens = tokens
        self._gateway = gateway

    def validate_access(self, user_id: str, guild_id: str) -> None:
        # Unknown guilds fail before any per-user lookup.
        if not self._guilds.exists(guild_id):
            raise GuildNotFoundError()

        if self._memberships.find_one(user_id, guild_id) is not None:
            return

        try:
            confirmed = self._confirm_with_discord(user_id, guild_id)
        except Exception as e:  # noqa: BLE001
            logger.warning(
                "Membership check via Discord failed for user %s in guild %s: %s",
                user_id,
                guild_id,
                type(e).__name__,
            )
            confirmed = False

        if not confirmed:
            raise NotAMemberError()

    def _confirm_with_discord(self, user_id: str, guild_id: str) -> bool:
        access_token = self._tokens.get_valid_access_token(user_id)
        if not access_token:
            logger.info("No usable Discord token for user %s; cannot confirm guild %s", user_id, guild_id)
            return False

        perms = self._gateway.check_guild_permissions(access_token, guild_id)
        if not perms.is_member:
            return False

        self._memberships.create(
            MembershipUpsert(user_id=user_id, guild_id=guild_id, roles=perms.roles, nickname=perms.nick)
        )
        logger.info("Recorded membership for user %s in guild %s from Discord", user_id, guild_id)
        return True
