from __future__ import annotations

from fastapi import HTTPException, status


class OAuthFlowError(RuntimeError):
    """Failure inside the login callback, mapped to an `/auth/error` redirect."""

    code = "oauth_failed"
    default_description = "Authentication failed"

    def __init__(self, description: str | None = None) -> None:
        self.description = description or self.default_description
        super().__init__(self.description)


class InvalidRedirectUriError(OAuthFlowError):
    code = "invalid_redirect_uri"
    default_description = "Invalid redirect URI. The provided redirect URI is not allowed."


class InvalidRedirectUriProtocolError(InvalidRedirectUriError):
    default_description = "Invalid redirect URI protocol. Only HTTPS is allowed (except localhost)."


class InvalidRedirectUriFormatError(InvalidRedirectUriError):
    default_description = "Invalid redirect URI format"


class InvalidStateError(OAuthFlowError):
    code = "invalid_state"
    default_description = "Invalid or expired state parameter"


class NoAuthorizationCodeError(OAuthFlowError):
    code = "no_code"
    default_description = "Authorization code missing"


class OAuthExchangeFailedError(OAuthFlowError):
    code = "oauth_failed"
    default_description = "Authentication failed"


class GuildNotFoundError(HTTPException):
    def __init__(self, detail: str = "Guild not found or bot is not a member") -> None:
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class LeagueNotFoundError(HTTPException):
    def __init__(self, league_id: str) -> None:
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=f"League {league_id} not found")


class OrganizationNotFoundError(HTTPException):
    def __init__(self, organization_id: str) -> None:
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Organization {organization_id} not found",
        )


class ForbiddenError(HTTPException):
    default_detail = "Forbidden"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail or self.default_detail)


class NotAMemberError(ForbiddenError):
    default_detail = "You are not a member of this guild"


class NoAdminAccessError(ForbiddenError):
    default_detail = "Admin access required"


class TokenUnavailableError(ForbiddenError):
    default_detail = "Access token not available"


class TrackerNotFoundError(HTTPException):
    def __init__(self, tracker_id: str) -> None:
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=f"Tracker {tracker_id} not found")
