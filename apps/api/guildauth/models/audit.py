from __future__ import annotations

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import JSON, DateTime, Index, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from guildauth.models.base import Base


class AuditEvent(Base):
    __tablename__ = "audit_events"
    __table_args__ = (
        Index("ix_audit_events_guild_created", "guild_id", "created_at"),
        Index("ix_audit_events_user_created", "user_id", "created_at"),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    # No FK: denied checks are recorded even for ids we have never seen.
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    guild_id: Mapped[str | None] = mapped_column(Text, nullable=True)

    action: Mapped[str] = mapped_column(Text, nullable=False)
    resource: Mapped[str] = mapped_column(Text, nullable=False)
    result: Mapped[str] = mapped_column(Text, nullable=False)  # allowed|denied
    event_metadata: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)
    # Set client-side: sub-second precision keeps same-request events in order.
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        server_default=func.now(),
    )
