"""Application factory wiring the waitlist components into one FastAPI app."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .analytics import AnalyticsEngine
from .api import WEBSOCKET_PATH, error_response_for, register_api_routes
from .config import Settings, load_settings
from .database import Database
from .mailer import Mailer
from .ratelimit import RateLimiter
from .realtime import ConnectionRegistry
from .security import AdminTokenAuth
from .signup import SignupPipeline
from .web import register_ui_routes

logger = logging.getLogger("zintle.service")

RATE_LIMITED_PREFIX = "/api/"


def _client_key(request: Request) -> str:
    client = request.client
    return client.host if client is not None and client.host else "unknown"


def create_app(
    *,
    settings: Settings | None = None,
    database: Database | None = None,
    mailer: Mailer | None = None,
    registry: ConnectionRegistry | None = None,
    rate_limiter: RateLimiter | None = None,
    analytics: AnalyticsEngine | None = None,
) -> FastAPI:
    """Instantiate the FastAPI application for the waitlist."""

    settings = settings or load_settings()

    db = database or Database(settings.database_path)
    db.initialize()

    app_mailer = mailer or Mailer.from_settings(settings)
    app_registry = registry or ConnectionRegistry()
    limiter = rate_limiter or RateLimiter(
        limit=settings.rate_limit_requests,
        window=settings.rate_limit_window,
    )
    engine = analytics or AnalyticsEngine(db, spots_total=settings.spots_total)
    pipeline = SignupPipeline(db, app_mailer, app_registry, spots_total=settings.spots_total)
    admin = AdminTokenAuth(settings.admin_tokens)

    if not admin.enabled:
        logger.warning("No admin tokens configured; analytics and broadcast endpoints are open")

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        logger.info("Waitlist service starting (database %s)", db.path)
        try:
            yield
        finally:
            await app_registry.close_all()
            logger.info("Waitlist service stopped")

    app = FastAPI(
        title="Zintle Waitlist",
        version="1.0.0",
        description="Waitlist signups, live counters and launch analytics for Zintle.",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.database = db
    app.state.mailer = app_mailer
    app.state.registry = app_registry
    app.state.rate_limiter = limiter

    @app.middleware("http")
    async def rate_limit(request: Request, call_next):
        if request.url.path.startswith(RATE_LIMITED_PREFIX):
            key = _client_key(request)
            if not limiter.hit(key):
                logger.warning("Rate limit of %s requests exceeded for %s", limiter.limit, key)
                return JSONResponse(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    content={"error": "Too many requests from this IP"},
                    headers={"Retry-After": str(limiter.retry_after(key))},
                )
        return await call_next(request)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(_: Request, exc: StarletteHTTPException):
        return error_response_for(exc)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.exception("Unhandled error while serving %s", request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error"},
        )

    @app.get("/health")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    register_api_routes(
        app,
        database=db,
        mailer=app_mailer,
        registry=app_registry,
        analytics=engine,
        pipeline=pipeline,
        admin=admin,
    )
    register_ui_routes(
        app,
        database=db,
        analytics=engine,
        admin=admin,
        spots_total=settings.spots_total,
        websocket_path=WEBSOCKET_PATH,
    )

    return app


__all__ = ["create_app"]
