from __future__ import annotations

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from studio_site import __version__
from studio_site.api.middleware import request_context_middleware
from studio_site.api.routes_admin import router as admin_router
from studio_site.api.routes_auth import router as auth_router
from studio_site.api.security import CSRF_HEADER, is_https_request
from studio_site.config import get_settings
from studio_site.security.auth import AuthOrchestrator, build_auth
from studio_site.security.errors import AuthError
from studio_site.utils.log import logger

_PERMISSIONS_POLICY = ", ".join(
    [
        "accelerometer=()",
        "autoplay=()",
        "camera=()",
        "cross-origin-isolated=()",
        "display-capture=()",
        "encrypted-media=()",
        "fullscreen=(self)",
        "geolocation=()",
        "gyroscope=()",
        "keyboard-map=()",
        "magnetometer=()",
        "microphone=()",
        "midi=()",
        "payment=()",
        "picture-in-picture=()",
        "publickey-credentials-get=()",
        "screen-wake-lock=()",
        "sync-xhr=()",
        "usb=()",
        "web-share=()",
        "xr-spatial-tracking=()",
    ]
)


def _csp_header_value() -> str:
    """
    CSP baseline for the studio pages (gallery images come from object storage).
    """
    return "; ".join(
        [
            "default-src 'self'",
            "script-src 'self' 'unsafe-inline'",
            "style-src 'self' 'unsafe-inline' https://fonts.googleapis.com",
            "font-src 'self' https://fonts.gstatic.com data:",
            "img-src 'self' data: blob: https://*.your-objectstorage.com",
            "connect-src 'self' https://*.your-objectstorage.com",
            "frame-ancestors 'self'",
            "form-action 'self'",
            "base-uri 'self'",
            "object-src 'none'",
        ]
    )


def create_app(*, auth: AuthOrchestrator | None = None) -> FastAPI:
    """
    Build the ASGI app. `auth` replaces the settings-built orchestrator (tests).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        orchestrator = auth or build_auth()
        app.state.auth = orchestrator
        orchestrator.start()
        logger.info("server_started", version=__version__)
        try:
            yield
        finally:
            orchestrator.shutdown()
            app.state.auth = None
            logger.info("server_stopped")

    app = FastAPI(title="studio-site", version=__version__, lifespan=lifespan)

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
        logger.info(
            "auth_denied",
            path=request.url.path,
            kind=type(exc).__name__,
            status=exc.status_code,
            reason=exc.reason,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.public_message},
            headers=exc.headers(),
        )

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        resp = await call_next(request)
        resp.headers.setdefault("x-frame-options", "SAMEORIGIN")
        resp.headers.setdefault("x-content-type-options", "nosniff")
        resp.headers.setdefault("referrer-policy", "strict-origin-when-cross-origin")
        resp.headers.setdefault("permissions-policy", _PERMISSIONS_POLICY)
        resp.headers.setdefault("cross-origin-opener-policy", "same-origin")
        resp.headers.setdefault("cross-origin-resource-policy", "same-origin")
        resp.headers.setdefault("x-permitted-cross-domain-policies", "none")
        ct = (resp.headers.get("content-type") or "").lower()
        if "text/html" in ct:
            resp.headers.setdefault("content-security-policy", _csp_header_value())
        if is_https_request(request):
            resp.headers.setdefault(
                "strict-transport-security", "max-age=31536000; includeSubDomains"
            )
        return resp

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        t0 = time.perf_counter()
        status_code = 0
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            logger.info(
                "http_done",
                method=request.method,
                path=request.url.path,
                status=status_code,
                duration_ms=(time.perf_counter() - t0) * 1000.0,
            )

    # Must be outermost so request_id is present for all logs (including log_requests).
    app.middleware("http")(request_context_middleware)

    # Strict CORS: only configured origins, credentials on for cookies
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_settings().cors_origin_list(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", CSRF_HEADER],
        expose_headers=[CSRF_HEADER],
    )

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    app.include_router(auth_router)
    app.include_router(admin_router)
    return app


app = create_app()
