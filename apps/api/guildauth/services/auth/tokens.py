from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime

import httpx
from cryptography.exceptions import InvalidTag

from guildauth.core.config import Settings
from guildauth.core.crypto import EncryptionKeyError, decrypt_token, encrypt_token
from guildauth.services.discord.api import DiscordPermissionGateway
from guildauth.services.discord.oauth import DiscordOAuthError, refresh_access_token, revoke_token
from guildauth.stores.base import UserStore

logger = logging.getLogger("guildauth.api")

ACCESS = "access"
REFRESH = "refresh"


class _UserLocks:
    """Per-user locks, dropped once the last holder or waiter leaves."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, tuple[threading.Lock, int]] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, user_id: str) -> Iterator[None]:
        with self._guard:
            lock, users = self._locks.get(user_id) or (threading.Lock(), 0)
            self._locks[user_id] = (lock, users + 1)
        try:
            with lock:
                yield
        finally:
            with self._guard:
                _, users = self._locks[user_id]
                if users <= 1:
                    del self._locks[user_id]
                else:
                    self._locks[user_id] = (lock, users - 1)


# Shared across requests so concurrent refreshes for one user are serialized in-process.
_refresh_locks = _UserLocks()


class TokenVault:
    """Encrypted Discord OAuth tokens with lazy validate/refresh and revoke."""

    def __init__(
        self,
        *,
        users: UserStore,
        gateway: DiscordPermissionGateway,
        client: httpx.Client,
        settings: Settings,
    ) -> None:
        self._users = users
        self._gateway = gateway
        self._client = client
        self._settings = settings

    def store(self, user_id: str, access_token: str, refresh_token: str | None) -> None:
        self._users.update(
            user_id,
            {
                "encrypted_access_token": encrypt_token(access_token, user_id=user_id, kind=ACCESS),
                "encrypted_refresh_token": (
                    encrypt_token(refresh_token, user_id=user_id, kind=REFRESH) if refresh_token else None
                ),
                "tokens_updated_at": datetime.now(UTC),
            },
        )

    def validate(self, access_token: str) -> bool:
        try:
            self._gateway.get_user_profile(access_token)
        except Exception as e:  # noqa: BLE001
            logger.info("Discord access token failed validation: %s", type(e).__name__)
            return False
        return True

    def get_valid_access_token(self, user_id: str) -> str | None:
        access_token = self._read(user_id, ACCESS)
        if not access_token:
            return None
        if self.validate(access_token):
            return access_token
        return self.refresh(user_id, stale_access_token=access_token)

    def refresh(self, user_id: str, *, stale_access_token: str | None = None) -> str | None:
        with _refresh_locks.hold(user_id):
            try:
                return self._refresh_locked(user_id, stale_access_token=stale_access_token)
            except Exception:  # noqa: BLE001
                logger.exception("Token refresh failed for user %s", user_id)
                return None

    def revoke(self, user_id: str) -> None:
        """Best-effort revoke at Discord, then clear the stored pair. Never raises."""
        try:
            access_token = self._read(user_id, ACCESS)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to read stored tokens for user %s", user_id)
            access_token = None

        if access_token:
            try:
                revoke_token(
                    self._client,
                    api_url=self._settings.DISCORD_API_URL,
                    token=access_token,
                    client_id=self._settings.DISCORD_CLIENT_ID,
                    client_secret=self._settings.DISCORD_CLIENT_SECRET,
                )
            except DiscordOAuthError as e:
                logger.warning("Discord token revoke failed for user %s (status %s)", user_id, e.status_code)

        try:
            self._users.update(
                user_id,
                {
                    "encrypted_access_token": None,
                    "encrypted_refresh_token": None,
                    "tokens_updated_at": datetime.now(UTC),
                },
            )
        except Exception:  # noqa: BLE001
            logger.exception("Failed to clear stored tokens for user %s", user_id)

    def _refresh_locked(self, user_id: str, *, stale_access_token: str | None) -> str | None:
        if stale_access_token is not None:
            current = self._read(user_id, ACCESS)
            if current and current != stale_access_token:
                # Another request rotated the pair while we waited on the lock.
                return current

        refresh_token = self._read(user_id, REFRESH)
        if not refresh_token:
            return None

        try:
            tokens = refresh_access_token(
                self._client,
                api_url=self._settings.DISCORD_API_URL,
                refresh_token=refresh_token,
                client_id=self._settings.DISCORD_CLIENT_ID,
                client_secret=self._settings.DISCORD_CLIENT_SECRET,
            )
        except DiscordOAuthError as e:
            logger.warning("Discord token refresh rejected for user %s (status %s)", user_id, e.status_code)
            return None

        self.store(user_id, tokens.access_token, tokens.refresh_token or refresh_token)
        logger.info("Refreshed Discord access token for user %s", user_id)
        return tokens.access_token

    def _read(self, user_id: str, kind: str) -> str | None:
        user = self._users.find_one(user_id)
        if user is None:
            return None

        blob = user.encrypted_access_token if kind == ACCESS else user.encrypted_refresh_token
        if not blob:
            return None

        try:
            return decrypt_token(blob, user_id=user_id, kind=kind)
        except (InvalidTag, ValueError, EncryptionKeyError):
            logger.warning("Stored %s token for user %s could not be decrypted", kind, user_id)
            return None
