from __future__ import annotations

from fastapi import APIRouter, Depends

from guildauth.core.deps import get_orchestrator, require_user
from guildauth.core.errors import ForbiddenError
from guildauth.core.security import Principal
from guildauth.schemas.guilds import LeaguePermissionsResponse
from guildauth.services.authz.orchestrator import AuthorizationOrchestrator

router = APIRouter(prefix="/leagues", tags=["leagues"])


@router.get("/{league_id}/permissions", response_model=LeaguePermissionsResponse)
def league_permissions(
    league_id: str,
    user: Principal = Depends(require_user),
    authz: AuthorizationOrchestrator = Depends(get_orchestrator),
) -> LeaguePermissionsResponse:
    # Moderator access is the floor here; anyone below it gets the 403 from the check.
    authz.check_league_admin_or_moderator(user, league_id)
    try:
        is_admin = authz.check_league_admin(user, league_id)
    except ForbiddenError:
        is_admin = False
    return LeaguePermissionsResponse(league_id=league_id, is_admin=is_admin, is_moderator=True)
