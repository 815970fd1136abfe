from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.orm import Session

from guildauth.core.middleware import request_id_ctx
from guildauth.models.audit import AuditEvent

logger = logging.getLogger("guildauth.api")

ALLOWED = "allowed"
DENIED = "denied"


@dataclass(frozen=True)
class AuditRecord:
    user_id: str
    action: str
    resource: str
    result: str
    guild_id: str | None = None
    metadata: dict = field(default_factory=dict)


class AuditSink:
    def log_admin_action(self, record: AuditRecord) -> None:  # pragma: no cover
        raise NotImplementedError


class SqlAuditSink(AuditSink):
    """Appends to `audit_events`. A failed write is logged and never fails the caller."""

    def __init__(self, *, session: Session) -> None:
        self._session = session

    def log_admin_action(self, record: AuditRecord) -> None:
        metadata = dict(record.metadata)
        request_id = request_id_ctx.get()
        if request_id:
            metadata.setdefault("request_id", request_id)

        try:
            self._session.add(
                AuditEvent(
                    user_id=record.user_id,
                    guild_id=record.guild_id,
                    action=record.action,
                    resource=record.resource,
                    result=record.result,
                    event_metadata=metadata,
                )
            )
            self._session.commit()
        except Exception:  # noqa: BLE001
            self._session.rollback()
            logger.exception(
                "Failed to write audit event action=%s user=%s guild=%s",
                record.action,
                record.user_id,
                record.guild_id,
            )


def list_audit_events(
    *,
    session: Session,
    guild_id: str | None = None,
    user_id: str | None = None,
    limit: int = 50,
) -> list[AuditEvent]:
    stmt = select(AuditEvent)
    if guild_id is not None:
        stmt = stmt.where(AuditEvent.guild_id == guild_id)
    if user_id is not None:
        stmt = stmt.where(AuditEvent.user_id == user_id)
    stmt = stmt.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(max(1, min(200, limit)))
    return list(session.scalars(stmt).all())
