from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import HTTPException

from guildauth.core.errors import (
    ForbiddenError,
    GuildNotFoundError,
    LeagueNotFoundError,
    NoAdminAccessError,
    NotAMemberError,
    OrganizationNotFoundError,
    TokenUnavailableError,
)
from guildauth.core.metrics import observe_authz_decision
from guildauth.core.security import Principal
from guildauth.services.audit import ALLOWED, DENIED, AuditRecord, AuditSink
from guildauth.services.auth.tokens import TokenVault
from guildauth.services.authz.roles import AdminRoleEvaluator
from guildauth.services.discord.api import DiscordPermissionGateway
from guildauth.services.guilds.access import GuildAccessValidator
from guildauth.services.guilds.settings import GuildSettingsService
from guildauth.stores.base import GuildMembershipStore, LeagueStore, OrganizationStore

logger = logging.getLogger("guildauth.api")

CHECK_GUILD_ADMIN = "guild_admin"
CHECK_GUILD_ADMIN_ACCESS = "guild_admin_access"
CHECK_GUILD_MODERATOR_ACCESS = "guild_moderator_access"
CHECK_SYSTEM_ADMIN = "system_admin"
CHECK_TRACKER_ACCESS = "tracker_access"

ADMIN_REQUIRED_DETAIL = "Admin access required - Discord Administrator permission or configured admin role needed"


class AuthorizationOrchestrator:
    """Allow/deny decisions for guild, league, organization and tracker scoped actions.

    Every entry point returns True or raises a 403/404 `HTTPException`. Anything
    else that goes wrong inside a check is logged and surfaced as a generic 403.
    """

    def __init__(
        self,
        *,
        tokens: TokenVault,
        gateway: DiscordPermissionGateway,
        access: GuildAccessValidator,
        roles: AdminRoleEvaluator,
        settings_service: GuildSettingsService,
        memberships: GuildMembershipStore,
        leagues: LeagueStore,
        organizations: OrganizationStore,
        audit: AuditSink,
        system_admin_user_ids: list[str],
    ) -> None:
        self._tokens = tokens
        self._gateway = gateway
        self._access = access
        self._roles = roles
        self._settings_service = settings_service
        self._memberships = memberships
        self._leagues = leagues
        self._organizations = organizations
        self._audit = audit
        self._system_admin_user_ids = frozenset(system_admin_user_ids)

    def check_guild_admin(self, user: Principal, guild_id: str, *, resource: str = "guild") -> bool:
        """Discord-validated admin check for sensitive guild actions."""
        check = CHECK_GUILD_ADMIN
        with self._guard(check, user_id=user.id, guild_id=guild_id, resource=resource):
            access_token = self._tokens.get_valid_access_token(user.id)
            if not access_token:
                self._deny(check, user.id, guild_id, resource, "token_unavailable")
                raise TokenUnavailableError()

            perms = self._gateway.check_guild_permissions(access_token, guild_id)
            if not perms.is_member:
                self._deny(check, user.id, guild_id, resource, "not_a_member")
                raise NotAMemberError()

            # Discord's own Administrator bit outranks local role configuration.
            if perms.has_administrator:
                self._allow(check, user.id, guild_id, resource, "discord_administrator_permission")
                return True

            settings = self._settings_service.get_settings(guild_id)
            if not settings.role_ids("admin"):
                # Bootstrap fail-open: a guild with no admin roles configured lets its
                # members in so someone can configure them. Only this entry point does this.
                logger.warning("No admin roles configured for guild %s; allowing access for initial setup", guild_id)
                self._allow(check, user.id, guild_id, resource, "no_admin_roles_configured")
                return True

            membership = self._memberships.find_one(user.id, guild_id)
            if membership is None:
                self._deny(check, user.id, guild_id, resource, "not_a_member")
                raise NotAMemberError()

            if not self._roles.is_admin(list(membership.roles), settings, validate_with_discord=True):
                self._deny(check, user.id, guild_id, resource, "no_admin_access")
                raise NoAdminAccessError(ADMIN_REQUIRED_DETAIL)

            self._allow(check, user.id, guild_id, resource, "configured_admin_role")
            return True

    def check_guild_admin_access(self, user: Principal, guild_id: str, *, resource: str = "guild") -> bool:
        """Cheaper admin check: membership plus configured admin role, no Administrator-bit shortcut."""
        return self._check_guild_role_access(
            CHECK_GUILD_ADMIN_ACCESS,
            user,
            guild_id,
            resource=resource,
            include_moderators=False,
        )

    def check_guild_moderator_access(self, user: Principal, guild_id: str, *, resource: str = "guild") -> bool:
        return self._check_guild_role_access(
            CHECK_GUILD_MODERATOR_ACCESS,
            user,
            guild_id,
            resource=resource,
            include_moderators=True,
        )

    def check_system_admin(self, user: Principal, *, resource: str = "system") -> bool:
        check = CHECK_SYSTEM_ADMIN
        with self._guard(check, user_id=user.id, guild_id=None, resource=resource):
            if user.id in self._system_admin_user_ids:
                self._allow(check, user.id, None, resource, "system_admin_user_id")
                return True

            self._deny(check, user.id, None, resource, "not_system_admin")
            raise ForbiddenError("System admin access required")

    def check_league_admin(self, user: Principal, league_id: str) -> bool:
        guild_id = self._league_guild_id(user, league_id)
        return self.check_guild_admin_access(user, guild_id, resource=f"league:{league_id}")

    def check_league_admin_or_moderator(self, user: Principal, league_id: str) -> bool:
        guild_id = self._league_guild_id(user, league_id)
        return self.check_guild_moderator_access(user, guild_id, resource=f"league:{league_id}")

    def check_organization_admin(self, user: Principal, organization_id: str) -> bool:
        guild_id = self._organization_guild_id(user, organization_id)
        return self.check_guild_admin_access(user, guild_id, resource=f"organization:{organization_id}")

    def validate_tracker_ownership(self, current_user_id: str, owner_user_id: str) -> bool:
        """Owner-only gate for destructive tracker operations. No admin override."""
        if current_user_id != owner_user_id:
            raise ForbiddenError("You can only modify your own trackers")
        return True

    def validate_tracker_access(self, current_user_id: str, target_user_id: str, *, resource: str = "tracker") -> bool:
        """Read access: the owner, or an admin of any guild the two users share."""
        if current_user_id == target_user_id:
            return True

        check = CHECK_TRACKER_ACCESS
        with self._guard(check, user_id=current_user_id, guild_id=None, resource=resource):
            own = {m.guild_id: m for m in self._memberships.find_by_user(current_user_id)}
            shared = sorted(set(own).intersection(m.guild_id for m in self._memberships.find_by_user(target_user_id)))

            for guild_id in shared:
                settings = self._settings_service.get_settings(guild_id)
                if self._roles.is_admin(list(own[guild_id].roles), settings, validate_with_discord=True):
                    self._allow(check, current_user_id, guild_id, resource, "shared_guild_admin")
                    return True

            self._deny(check, current_user_id, None, resource, "not_owner_or_admin")
            raise ForbiddenError("You do not have access to this tracker")

    def _check_guild_role_access(
        self,
        check: str,
        user: Principal,
        guild_id: str,
        *,
        resource: str,
        include_moderators: bool,
    ) -> bool:
        with self._guard(check, user_id=user.id, guild_id=guild_id, resource=resource):
            try:
                self._access.validate_access(user.id, guild_id)
            except GuildNotFoundError:
                self._deny(check, user.id, guild_id, resource, "guild_not_found")
                raise
            except NotAMemberError:
                self._deny(check, user.id, guild_id, resource, "not_a_member")
                raise

            membership = self._memberships.find_one(user.id, guild_id)
            if membership is None:
                self._deny(check, user.id, guild_id, resource, "not_a_member")
                raise NotAMemberError()

            settings = self._settings_service.get_settings(guild_id)
            roles = list(membership.roles)
            if include_moderators:
                granted = self._roles.is_admin_or_moderator(roles, settings, validate_with_discord=True)
                allowed_reason, denied_reason = "configured_moderator_role", "no_moderator_access"
            else:
                granted = self._roles.is_admin(roles, settings, validate_with_discord=True)
                allowed_reason, denied_reason = "configured_admin_role", "no_admin_access"

            if not granted:
                self._deny(check, user.id, guild_id, resource, denied_reason)
                raise NoAdminAccessError("Moderator access required" if include_moderators else None)

            self._allow(check, user.id, guild_id, resource, allowed_reason)
            return True

    def _league_guild_id(self, user: Principal, league_id: str) -> str:
        with self._guard("league_lookup", user_id=user.id, guild_id=None, resource=league_id, audited=False):
            guild_id = self._leagues.find_guild_id(league_id)
        if guild_id is None:
            raise LeagueNotFoundError(league_id)
        return guild_id

    def _organization_guild_id(self, user: Principal, organization_id: str) -> str:
        with self._guard(
            "organization_lookup",
            user_id=user.id,
            guild_id=None,
            resource=organization_id,
            audited=False,
        ):
            guild_id = self._organizations.find_guild_id(organization_id)
        if guild_id is None:
            raise OrganizationNotFoundError(organization_id)
        return guild_id

    @contextmanager
    def _guard(
        self,
        check: str,
        *,
        user_id: str,
        guild_id: str | None,
        resource: str,
        audited: bool = True,
    ) -> Iterator[None]:
        try:
            yield
        except HTTPException:
            raise
        except Exception as e:
            logger.exception(
                "Authorization check %s failed unexpectedly for user %s in guild %s",
                check,
                user_id,
                guild_id,
            )
            if audited:
                self._record(check, user_id, guild_id, resource, DENIED, "error", error=type(e).__name__)
            raise ForbiddenError("Error checking permissions") from e

    def _allow(self, check: str, user_id: str, guild_id: str | None, resource: str, reason: str) -> None:
        self._record(check, user_id, guild_id, resource, ALLOWED, reason)

    def _deny(self, check: str, user_id: str, guild_id: str | None, resource: str, reason: str) -> None:
        self._record(check, user_id, guild_id, resource, DENIED, reason)

    def _record(
        self,
        check: str,
        user_id: str,
        guild_id: str | None,
        resource: str,
        result: str,
        reason: str,
        **extra: str,
    ) -> None:
        observe_authz_decision(check=check, result=result, reason=reason)
        self._audit.log_admin_action(
            AuditRecord(
                user_id=user_id,
                guild_id=guild_id,
                action=f"{check}.check",
                resource=resource,
                result=result,
                metadata={"reason": reason, **extra},
            )
        )
