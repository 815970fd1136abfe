from __future__ import annotations

import logging

from guildauth.services.discord.api import DiscordPermissionGateway
from guildauth.services.guilds.settings import GuildSettings

logger = logging.getLogger("guildauth.api")


class AdminRoleEvaluator:
    """Pure role matching against guild settings, optionally confirmed against live Discord roles.

    An empty configured list never matches. Whether an unconfigured guild should
    be open for bootstrap is decided by the caller, not here.
    """

    def __init__(self, gateway: DiscordPermissionGateway) -> None:
        self._gateway = gateway

    def is_admin(self, user_role_ids: list[str], settings: GuildSettings, *, validate_with_discord: bool) -> bool:
        return self._matches(user_role_ids, settings, ("admin",), validate_with_discord=validate_with_discord)

    def is_moderator(
        self, user_role_ids: list[str], settings: GuildSettings, *, validate_with_discord: bool
    ) -> bool:
        return self._matches(user_role_ids, settings, ("moderator",), validate_with_discord=validate_with_discord)

    def is_admin_or_moderator(
        self, user_role_ids: list[str], settings: GuildSettings, *, validate_with_discord: bool
    ) -> bool:
        return self._matches(
            user_role_ids, settings, ("admin", "moderator"), validate_with_discord=validate_with_discord
        )

    def _matches(
        self,
        user_role_ids: list[str],
        settings: GuildSettings,
        kinds: tuple[str, ...],
        *,
        validate_with_discord: bool,
    ) -> bool:
        configured = {role_id for kind in kinds for role_id in settings.role_ids(kind)}
        if not configured or not user_role_ids:
            return False

        matched = configured.intersection(str(r) for r in user_role_ids)
        if not matched:
            return False
        if not validate_with_discord:
            return True

        try:
            live_role_ids = {role.id for role in self._gateway.get_guild_roles(settings.guild_id)}
        except Exception as e:  # noqa: BLE001
            logger.warning(
                "Could not validate roles against Discord for guild %s: %s",
                settings.guild_id,
                type(e).__name__,
            )
            return False

        if matched.isdisjoint(live_role_ids):
            logger.warning(
                "Configured %s role(s) %s no longer exist in guild %s",
                "/".join(kinds),
                sorted(matched),
                settings.guild_id,
            )
            return False
        return True
