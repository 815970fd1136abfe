from __future__ import annotations

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from guildauth.core.config import get_settings
from guildauth.core.metrics import observe_http_request
from guildauth.core.middleware import (
    RateLimitPolicy,
    apply_security_headers,
    build_request_id,
    install_request_id_log_filter,
    log_request_completion,
    now_ts,
    rate_limit_response,
    request_id_ctx,
)
from guildauth.routers.admin import router as admin_router
from guildauth.routers.auth import router as auth_router
from guildauth.routers.guilds import router as guilds_router
from guildauth.routers.health import router as health_router
from guildauth.routers.leagues import router as leagues_router
from guildauth.routers.trackers import router as trackers_router


def create_app() -> FastAPI:
    app = FastAPI(title="Guild Auth API")

    settings = get_settings()
    install_request_id_log_filter()
    rate_limits = RateLimitPolicy.from_settings(settings)
    origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_security_headers_and_request_context(request, call_next):  # type: ignore[no-untyped-def]
        request_id = build_request_id(request, header_name=settings.REQUEST_ID_HEADER)
        token = request_id_ctx.set(request_id)
        start_ts = now_ts()
        method = request.method
        path = request.url.path
        response = None
        blocked = False
        status_code = 500

        try:
            if not rate_limits.allow(request, now_ts=now_ts()):
                blocked = True
                response = rate_limit_response()

            if response is None:
                response = await call_next(request)

            status_code = response.status_code
            response.headers[settings.REQUEST_ID_HEADER] = request_id
            apply_security_headers(response, path=path, settings=settings)
            return response
        finally:
            duration_ms = int((now_ts() - start_ts) * 1000)
            log_request_completion(
                request_id=request_id,
                method=method,
                path=path,
                status_code=status_code,
                duration_ms=duration_ms,
                rate_limited=blocked,
            )
            if settings.ENABLE_PROMETHEUS_METRICS and path != settings.PROMETHEUS_METRICS_PATH:
                observe_http_request(
                    method=method,
                    path=_route_template(request) or path,
                    status_code=status_code,
                    duration_ms=duration_ms,
                    rate_limited=blocked,
                )
            request_id_ctx.reset(token)

    if settings.ENABLE_PROMETHEUS_METRICS:

        @app.get(settings.PROMETHEUS_METRICS_PATH, include_in_schema=False)
        def metrics() -> Response:
            return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(guilds_router)
    app.include_router(leagues_router)
    app.include_router(trackers_router)
    app.include_router(admin_router)
    return app


def _route_template(request) -> str | None:  # type: ignore[no-untyped-def]
    # Label by route pattern so snowflake ids don't explode metric cardinality.
    route = request.scope.get("route")
    return getattr(route, "path", None)


app = create_app()
