from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from guildauth.core.deps import get_orchestrator, require_user
from guildauth.core.errors import TrackerNotFoundError
from guildauth.core.security import Principal
from guildauth.db.session import get_session
from guildauth.schemas.guilds import TrackerAccessResponse
from guildauth.services.authz.orchestrator import AuthorizationOrchestrator
from guildauth.stores.sql import SqlTrackerStore

router = APIRouter(prefix="/trackers", tags=["trackers"])


def _owner_id(session: Session, tracker_id: str) -> str:
    owner_id = SqlTrackerStore(session=session).find_owner_id(tracker_id)
    if owner_id is None:
        raise TrackerNotFoundError(tracker_id)
    return owner_id


@router.get("/{tracker_id}/access", response_model=TrackerAccessResponse)
def tracker_access(
    tracker_id: str,
    user: Principal = Depends(require_user),
    authz: AuthorizationOrchestrator = Depends(get_orchestrator),
    session: Session = Depends(get_session),
) -> TrackerAccessResponse:
    owner_id = _owner_id(session, tracker_id)
    authz.validate_tracker_access(user.id, owner_id, resource=f"tracker:{tracker_id}")
    return TrackerAccessResponse(
        tracker_id=tracker_id,
        owner_user_id=owner_id,
        can_read=True,
        can_modify=user.id == owner_id,
    )


@router.post("/{tracker_id}/ownership-check", response_model=TrackerAccessResponse)
def tracker_ownership_check(
    tracker_id: str,
    user: Principal = Depends(require_user),
    authz: AuthorizationOrchestrator = Depends(get_orchestrator),
    session: Session = Depends(get_session),
) -> TrackerAccessResponse:
    owner_id = _owner_id(session, tracker_id)
    authz.validate_tracker_ownership(user.id, owner_id)
    return TrackerAccessResponse(tracker_id=tracker_id, owner_user_id=owner_id, can_read=True, can_modify=True)
