from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from design_platform import __version__
from design_platform.auth import bootstrap_admin_if_needed
from design_platform.catalog.packages import seed_default_packages
from design_platform.config import Config, load_config
from design_platform.content.repository import ContentRepository, sql_repositories
from design_platform.db import connect, init_db
from design_platform.errors import AppError, UpstreamError
from design_platform.web.middleware import route_guard_middleware, session_middleware

from .admin_routes import router as admin_router
from .auth_routes import router as auth_router
from .billing_routes import router as billing_router
from .content_routes import router as content_router
from .request_routes import router as request_router


def _debug(msg: str) -> None:
    print(f"[api] {msg}")


async def _app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if isinstance(exc, UpstreamError):
        _debug(f"upstream failure on {request.url.path}: {exc.detail} {exc.context}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = ".".join(str(x) for x in first.get("loc", ()) if x != "body")
    msg = str(first.get("msg") or "invalid_request")
    return JSONResponse(status_code=400, content={"detail": f"{loc}: {msg}" if loc else msg})


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    _debug(f"unhandled {type(exc).__name__} on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": "internal_error"})


def create_app(
    cfg: Config,
    *,
    content_repos: Optional[Dict[str, ContentRepository]] = None,
) -> FastAPI:
    app = FastAPI(title="DesignDesk", version=__version__)
    app.state.cfg = cfg
    app.state.content_repos = content_repos if content_repos is not None else sql_repositories(cfg.DB_DSN)

    # CORS is mainly needed for local development (frontend dev server -> API).
    cors_origins = [o.strip() for o in (cfg.CORS_ALLOW_ORIGINS or "").split(",") if o.strip()]
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Registered last runs first: the session middleware wraps the guard.
    app.middleware("http")(route_guard_middleware)
    app.middleware("http")(session_middleware)

    app.add_exception_handler(AppError, _app_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)

    @app.on_event("startup")
    def _on_startup() -> None:
        # Ensure schema exists.
        init_db(cfg.DB_DSN)

        with connect(cfg.DB_DSN) as conn:
            seed_default_packages(conn)

        # Bootstrap first admin if needed (only when users table is empty)
        boot = bootstrap_admin_if_needed(cfg)
        if boot:
            _debug(f"Bootstrapped initial admin user: email={boot.get('email')} role={boot.get('role')}")

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {"status": "ok"}

    app.include_router(auth_router)
    app.include_router(billing_router)
    app.include_router(request_router)
    app.include_router(admin_router)
    app.include_router(content_router)
    return app


app = create_app(load_config())
