from __future__ import annotations

import base64
import os
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import jwt
from fastapi import Response

from guildauth.core.config import get_settings

JWT_ALGORITHM = "HS256"


class InvalidTokenError(ValueError):
    pass


@dataclass(frozen=True)
class Principal:
    id: str
    username: str
    global_name: str | None = None
    avatar: str | None = None
    email: str | None = None
    guild_ids: list[str] = field(default_factory=list)


def new_random_token(*, nbytes: int = 32) -> str:
    raw = os.urandom(nbytes)
    # URL-safe base64 without padding to keep cookie/header compact.
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def issue_jwt(
    *,
    user_id: str,
    username: str,
    global_name: str | None,
    avatar: str | None,
    email: str | None,
    guild_ids: list[str],
) -> str:
    settings = get_settings()
    now = datetime.now(UTC)
    payload = {
        "sub": user_id,
        "username": username,
        "globalName": global_name,
        "avatar": avatar,
        "email": email,
        "guildIds": guild_ids,
        "iat": now,
        "exp": now + timedelta(seconds=settings.JWT_TTL_SECONDS),
        "iss": settings.JWT_ISSUER,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_jwt(token: str) -> Principal:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[JWT_ALGORITHM],
            issuer=settings.JWT_ISSUER,
            options={"require": ["sub", "exp", "iss"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise InvalidTokenError("Token has expired") from e
    except jwt.InvalidTokenError as e:
        raise InvalidTokenError("Invalid token") from e

    return Principal(
        id=str(payload["sub"]),
        username=str(payload.get("username") or ""),
        global_name=payload.get("globalName"),
        avatar=payload.get("avatar"),
        email=payload.get("email"),
        guild_ids=[str(g) for g in payload.get("guildIds") or []],
    )


def set_auth_cookie(response: Response, token: str) -> None:
    settings = get_settings()
    response.set_cookie(
        key=settings.AUTH_COOKIE_NAME,
        value=token,
        httponly=True,
        secure=settings.cookie_secure,
        samesite=settings.COOKIE_SAMESITE,
        domain=settings.COOKIE_DOMAIN,
        path="/",
        max_age=settings.JWT_TTL_SECONDS,
    )


def clear_auth_cookie(response: Response) -> None:
    settings = get_settings()
    response.delete_cookie(
        key=settings.AUTH_COOKIE_NAME,
        domain=settings.COOKIE_DOMAIN,
        path="/",
    )
