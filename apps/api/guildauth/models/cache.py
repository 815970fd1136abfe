from __future__ import annotations

from sqlalchemy import JSON, BigInteger, Text
from sqlalchemy.orm import Mapped, mapped_column

from guildauth.models.base import Base


class CacheEntry(Base):
    __tablename__ = "cache_entries"

    key: Mapped[str] = mapped_column(Text, primary_key=True)
    value: Mapped[object] = mapped_column(JSON, nullable=True)
    # Epoch millis; rows past this are treated as absent and swept on the next write.
    expires_at_ms: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
