from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from urllib.parse import urlencode

import httpx

from guildauth.core.config import Settings
from guildauth.core.errors import (
    InvalidRedirectUriError,
    InvalidStateError,
    NoAuthorizationCodeError,
    OAuthExchangeFailedError,
    OAuthFlowError,
)
from guildauth.core.metrics import observe_oauth_callback
from guildauth.core.security import issue_jwt
from guildauth.services.auth.oauth_state import OAuthStateStore
from guildauth.services.auth.redirect_uris import RedirectUriValidator
from guildauth.services.auth.tokens import TokenVault
from guildauth.services.discord.api import DiscordApiError, DiscordPermissionGateway, DiscordUser
from guildauth.services.discord.oauth import DiscordOAuthError, exchange_code_for_tokens
from guildauth.services.guilds.sync import GuildMembershipSync
from guildauth.stores.base import UserProfile, UserStore

logger = logging.getLogger("guildauth.api")


@dataclass(frozen=True)
class CallbackParams:
    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None
    redirect_uri: str | None = None


@dataclass(frozen=True)
class CallbackOutcome:
    redirect_url: str
    jwt: str | None = None
    user_id: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class OAuthCallbackFlow:
    """Discord login callback: redirect URI, state, code exchange, user upsert, guild sync, JWT.

    `run` never raises. Every failure becomes a redirect to `<base>/auth/error`.
    """

    def __init__(
        self,
        *,
        redirect_uris: RedirectUriValidator,
        states: OAuthStateStore,
        tokens: TokenVault,
        gateway: DiscordPermissionGateway,
        users: UserStore,
        sync: GuildMembershipSync,
        client: httpx.Client,
        settings: Settings,
    ) -> None:
        self._redirect_uris = redirect_uris
        self._states = states
        self._tokens = tokens
        self._gateway = gateway
        self._users = users
        self._sync = sync
        self._client = client
        self._settings = settings

    def run(self, params: CallbackParams) -> CallbackOutcome:
        # The redirect target is settled first so no later error path can bounce to an unvetted URI.
        try:
            base = self._redirect_uris.validate(
                params.redirect_uri,
                self._settings.allowed_redirect_uris,
                self._settings.FRONTEND_URL,
            )
        except InvalidRedirectUriError as e:
            return self._error(self._default_base(), e.code, e.description)

        if params.error:
            logger.warning("Discord OAuth returned error %s", params.error)
            return self._error(base, params.error, params.error_description or "")

        try:
            return self._complete(base, params)
        except OAuthFlowError as e:
            return self._error(base, e.code, e.description)
        except Exception:  # noqa: BLE001
            logger.exception("OAuth callback failed")
            failure = OAuthExchangeFailedError()
            return self._error(base, failure.code, failure.description)

    def _complete(self, base: str, params: CallbackParams) -> CallbackOutcome:
        if not params.state:
            raise InvalidStateError("State parameter missing")
        # Consuming deletes the state whatever happens next, so a replay always fails.
        if not self._states.consume(params.state):
            logger.warning("OAuth callback with invalid or expired state (possible CSRF)")
            raise InvalidStateError()

        if not params.code:
            logger.warning("OAuth callback without authorization code")
            raise NoAuthorizationCodeError()

        try:
            tokens = exchange_code_for_tokens(
                self._client,
                api_url=self._settings.DISCORD_API_URL,
                code=params.code,
                client_id=self._settings.DISCORD_CLIENT_ID,
                client_secret=self._settings.DISCORD_CLIENT_SECRET,
                redirect_uri=self._settings.DISCORD_CALLBACK_URL,
            )
            profile = self._gateway.get_user_profile(tokens.access_token)
        except (DiscordOAuthError, DiscordApiError) as e:
            logger.warning("Discord code exchange or profile lookup failed: %s", e)
            raise OAuthExchangeFailedError() from e

        self._upsert_user(profile)
        self._tokens.store(profile.id, tokens.access_token, tokens.refresh_token)

        guild_ids: list[str] = []
        try:
            guild_ids = self._sync.sync_user_memberships(profile.id, tokens.access_token)
        except Exception:  # noqa: BLE001
            # Login must not depend on role sync.
            logger.exception("Guild membership sync failed for user %s; continuing login", profile.id)

        jwt = issue_jwt(
            user_id=profile.id,
            username=profile.username,
            global_name=profile.global_name,
            avatar=profile.avatar,
            email=profile.email,
            guild_ids=guild_ids,
        )
        logger.info("OAuth login succeeded for user %s", profile.id)
        observe_oauth_callback(outcome="ok")
        return CallbackOutcome(redirect_url=f"{base}/auth/callback", jwt=jwt, user_id=profile.id)

    def _upsert_user(self, profile: DiscordUser) -> None:
        if self._users.exists(profile.id):
            self._users.update(
                profile.id,
                {
                    "username": profile.username,
                    "discriminator": profile.discriminator,
                    "global_name": profile.global_name,
                    "avatar": profile.avatar,
                    "email": profile.email,
                    "last_login_at": datetime.now(UTC),
                },
            )
            return

        self._users.create(
            UserProfile(
                id=profile.id,
                username=profile.username,
                discriminator=profile.discriminator,
                global_name=profile.global_name,
                avatar=profile.avatar,
                email=profile.email,
            )
        )

    def _default_base(self) -> str:
        try:
            return self._redirect_uris.normalize(self._settings.FRONTEND_URL)
        except InvalidRedirectUriError:
            return self._settings.FRONTEND_URL.rstrip("/")

    def _error(self, base: str, code: str, description: str) -> CallbackOutcome:
        observe_oauth_callback(outcome=code if code in _KNOWN_ERROR_CODES else "upstream_error")
        query = urlencode({"error": code, "description": description})
        return CallbackOutcome(redirect_url=f"{base}/auth/error?{query}", error=code)


_KNOWN_ERROR_CODES = frozenset({"invalid_redirect_uri", "invalid_state", "no_code", "oauth_failed"})
