from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from guildauth.core.deps import get_orchestrator, require_user
from guildauth.core.security import Principal
from guildauth.db.session import get_session
from guildauth.schemas.guilds import AuditEventListResponse, AuditEventOut
from guildauth.services.audit import list_audit_events
from guildauth.services.authz.orchestrator import AuthorizationOrchestrator

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/audit-events", response_model=AuditEventListResponse)
def audit_events(
    request: Request,
    guild_id: str | None = None,
    user_id: str | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    user: Principal = Depends(require_user),
    authz: AuthorizationOrchestrator = Depends(get_orchestrator),
    session: Session = Depends(get_session),
) -> AuditEventListResponse:
    authz.check_system_admin(user, resource=request.url.path)
    events = list_audit_events(session=session, guild_id=guild_id, user_id=user_id, limit=limit)
    return AuditEventListResponse(events=[AuditEventOut.model_validate(e) for e in events])
