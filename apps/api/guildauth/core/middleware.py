from __future__ import annotations

import json
import logging
import threading
import time
from collections import deque
from contextvars import ContextVar
from dataclasses import dataclass, field

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.responses import Response

from guildauth.core.config import Settings
from guildauth.core.security import new_random_token

request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)
logger = logging.getLogger("guildauth.api")

# Login endpoints get their own, tighter bucket so callback floods can't starve the API.
LOGIN_PATH_PREFIX = "/auth/discord"


class RequestIdLogFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_ctx.get() or "-"
        return True


def install_request_id_log_filter() -> None:
    if not any(isinstance(f, RequestIdLogFilter) for f in logger.filters):
        logger.addFilter(RequestIdLogFilter())


@dataclass
class RateLimiter:
    max_requests: int
    window_seconds: int = 60
    _lock: threading.Lock = field(default_factory=threading.Lock)
    _buckets: dict[str, deque[float]] = field(default_factory=dict)

    def allow(self, key: str, *, now_ts: float) -> bool:
        with self._lock:
            bucket = self._buckets.setdefault(key, deque())

            cutoff = now_ts - float(self.window_seconds)
            while bucket and bucket[0] <= cutoff:
                bucket.popleft()

            if len(bucket) >= self.max_requests:
                return False

            bucket.append(now_ts)
            return True


@dataclass
class RateLimitPolicy:
    default: RateLimiter | None
    login: RateLimiter | None

    @classmethod
    def from_settings(cls, settings: Settings) -> RateLimitPolicy:
        def _build(limit: int) -> RateLimiter | None:
            return RateLimiter(max_requests=limit) if limit > 0 else None

        return cls(
            default=_build(settings.RATE_LIMIT_REQUESTS_PER_MINUTE),
            login=_build(settings.LOGIN_RATE_LIMIT_REQUESTS_PER_MINUTE),
        )

    def allow(self, request: Request, *, now_ts: float) -> bool:
        client = client_ip(request)
        path = request.url.path
        if path.startswith(LOGIN_PATH_PREFIX) and self.login is not None:
            if not self.login.allow(f"login:{client}", now_ts=now_ts):
                return False
        if self.default is not None:
            return self.default.allow(client, now_ts=now_ts)
        return True


def build_request_id(request: Request, *, header_name: str) -> str:
    incoming = (request.headers.get(header_name) or "").strip()
    if incoming:
        return incoming[:128]
    return new_random_token(nbytes=18)


def apply_security_headers(response: Response, *, path: str, settings: Settings) -> None:
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "same-origin")
    response.headers.setdefault("Content-Security-Policy", settings.CONTENT_SECURITY_POLICY)
    if path.startswith("/auth"):
        # Auth responses carry cookies and redirects with state; never cache them.
        response.headers.setdefault("Cache-Control", "no-store")


def client_ip(request: Request) -> str:
    forwarded_for = (request.headers.get("x-forwarded-for") or "").strip()
    if forwarded_for:
        return forwarded_for.split(",", 1)[0].strip()
    return request.client.host if request.client else "unknown"


def rate_limit_response() -> JSONResponse:
    return JSONResponse(status_code=429, content={"detail": "Rate limit exceeded"})


def log_request_completion(
    *,
    request_id: str,
    method: str,
    path: str,
    status_code: int,
    duration_ms: int,
    rate_limited: bool,
) -> None:
    logger.info(
        json.dumps(
            {
                "event": "http.request.completed",
                "request_id": request_id,
                "method": method,
                "path": path,
                "status_code": status_code,
                "duration_ms": duration_ms,
                "rate_limited": rate_limited,
            },
            separators=(",", ":"),
            sort_keys=True,
        )
    )


def now_ts() -> float:
    return time.time()
