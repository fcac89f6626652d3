from __future__ import annotations

import logging
import time as _t

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from config import Settings, settings
from errors import register_error_handlers
from middleware import AccessGuardMiddleware
from routers import (
    auth as auth_router,
    onboarding as onboarding_router,
)

_log = logging.getLogger("uvicorn.error")


def create_app(cfg: Settings = settings) -> FastAPI:
    app = FastAPI(title="learner-onboarding-api", version="1.0.0")
    app.state.settings = cfg

    # Session guard for protected areas; added first so CORS wraps it
    app.add_middleware(
        AccessGuardMiddleware,
        protected_prefixes=cfg.protected_path_prefixes,
        login_path=cfg.login_path,
        cookie_name=cfg.session_cookie_name,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = _t.perf_counter()  # monotonic for durations
        response = None
        try:
            response = await call_next(request)
            return response
        finally:
            dur_ms = int((_t.perf_counter() - start) * 1000)
            status = getattr(response, "status_code", "-")
            _log.info(
                "path=%s status=%s dur_ms=%s ua=%s",
                request.url.path,
                status,
                dur_ms,
                request.headers.get("user-agent", "-"),
            )

    register_error_handlers(app)

    # Routers
    app.include_router(onboarding_router.router)
    app.include_router(auth_router.router)

    @app.get("/ping")
    def ping():
        return {"ok": True, "ts": _t.time()}

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.get("/")
    def root():
        return {"ok": True, "service": "learner-onboarding-api"}

    return app


app = create_app()
