from __future__ import annotations

from prometheus_client import Counter, Histogram

_HTTP_REQUESTS_TOTAL = Counter(
    "guildauth_http_requests_total",
    "Total HTTP requests handled by the API.",
    labelnames=("method", "path", "status_code"),
)
_HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "guildauth_http_request_duration_seconds",
    "HTTP request duration in seconds.",
    labelnames=("method", "path"),
)
_HTTP_RATE_LIMITED_TOTAL = Counter(
    "guildauth_http_rate_limited_total",
    "Total HTTP requests blocked by rate limiting.",
    labelnames=("method", "path"),
)
_AUTHZ_DECISIONS_TOTAL = Counter(
    "guildauth_authz_decisions_total",
    "Authorization decisions by check, result and reason.",
    labelnames=("check", "result", "reason"),
)
_DISCORD_REQUESTS_TOTAL = Counter(
    "guildauth_discord_requests_total",
    "Outbound Discord API requests by endpoint and outcome.",
    labelnames=("endpoint", "outcome"),
)
_OAUTH_CALLBACKS_TOTAL = Counter(
    "guildauth_oauth_callbacks_total",
    "OAuth callback outcomes (ok or the error code returned to the frontend).",
    labelnames=("outcome",),
)


def observe_http_request(
    *,
    method: str,
    path: str,
    status_code: int,
    duration_ms: int,
    rate_limited: bool,
) -> None:
    safe_path = path or "unknown"
    safe_method = method or "UNKNOWN"

    _HTTP_REQUESTS_TOTAL.labels(
        method=safe_method,
        path=safe_path,
        status_code=str(status_code),
    ).inc()
    _HTTP_REQUEST_DURATION_SECONDS.labels(method=safe_method, path=safe_path).observe(
        max(0.0, duration_ms / 1000.0)
    )
    if rate_limited:
        _HTTP_RATE_LIMITED_TOTAL.labels(method=safe_method, path=safe_path).inc()


def observe_authz_decision(*, check: str, result: str, reason: str) -> None:
    _AUTHZ_DECISIONS_TOTAL.labels(check=check, result=result, reason=reason).inc()


def observe_discord_request(*, endpoint: str, outcome: str) -> None:
    _DISCORD_REQUESTS_TOTAL.labels(endpoint=endpoint, outcome=outcome).inc()


def observe_oauth_callback(*, outcome: str) -> None:
    _OAUTH_CALLBACKS_TOTAL.labels(outcome=outcome).inc()
