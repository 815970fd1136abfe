from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from guildauth.core.config import get_settings
from guildauth.db.session import get_session
from guildauth.models.cache import CacheEntry

router = APIRouter(tags=["health"])


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz")
def readyz(session: Session = Depends(get_session)) -> dict[str, str]:
    backend = get_settings().CACHE_BACKEND
    try:
        session.execute(text("select 1"))
        if backend == "database":
            # OAuth state lives here; login is down without it.
            session.execute(select(CacheEntry.key).limit(1))
    except SQLAlchemyError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="database not ready",
        ) from e
    return {"status": "ready", "cache": backend}
