from __future__ import annotations

import logging
from urllib.parse import urlsplit

from guildauth.core.errors import (
    InvalidRedirectUriError,
    InvalidRedirectUriFormatError,
    InvalidRedirectUriProtocolError,
)

logger = logging.getLogger("guildauth.api")

_DEFAULT_PORTS = {"https": 443, "http": 80}


class RedirectUriValidator:
    """Normalizes redirect URIs and checks them against a whitelist."""

    def validate(self, candidate: str | None, allowed: list[str], fallback: str) -> str:
        if not candidate:
            return self.normalize(fallback)

        normalized = self.normalize(candidate)
        if normalized not in self._normalized_whitelist(allowed):
            logger.warning("Rejected redirect URI not in whitelist (possible open redirect): %s", candidate)
            raise InvalidRedirectUriError()
        return normalized

    def normalize(self, uri: str) -> str:
        try:
            parts = urlsplit(uri.strip())
            port = parts.port
        except ValueError as e:
            raise InvalidRedirectUriFormatError(f"Invalid redirect URI format: {uri}") from e

        if not parts.scheme:
            raise InvalidRedirectUriFormatError(f"Invalid redirect URI format: {uri}")

        host = (parts.hostname or "").lower()
        if parts.scheme != "https" and host != "localhost":
            raise InvalidRedirectUriProtocolError()
        if not host:
            raise InvalidRedirectUriFormatError(f"Invalid redirect URI format: {uri}")

        if ":" in host:
            host = f"[{host}]"

        # Root "/" becomes the empty path; every trailing slash is stripped.
        path = parts.path.rstrip("/")

        result = f"{parts.scheme}://{host}"
        if port is not None and port != _DEFAULT_PORTS.get(parts.scheme):
            result += f":{port}"
        result += path
        if parts.query:
            result += f"?{parts.query}"
        if parts.fragment:
            result += f"#{parts.fragment}"
        return result

    def is_allowed(self, uri: str, allowed: list[str]) -> bool:
        return uri in self._normalized_whitelist(allowed)

    def _normalized_whitelist(self, allowed: list[str]) -> set[str]:
        normalized: set[str] = set()
        for entry in allowed:
            try:
                normalized.add(self.normalize(entry))
            except InvalidRedirectUriError:
                # A broken entry must not lock out the valid ones.
                logger.warning("Skipping invalid redirect URI in whitelist configuration: %s", entry)
        return normalized
