"""
FastAPI Application Factory

Creates and configures the analytics API application.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import structlog

from scout_analytics.access.policy import AccessPolicy
from scout_analytics.audit.recorder import install_audit_listener
from scout_analytics.config import Settings, get_settings
from scout_analytics.config.logging import configure_logging
from scout_analytics.database.connection import close_database, get_session_factory, init_database
from scout_analytics.exceptions import (
    AccessDenied,
    InvalidQueryError,
    UnknownViewError,
    ViewNotReadyError,
)
from scout_analytics.refresh.scheduler import RefreshScheduler
from scout_analytics.refresh.view_store import ViewStore, get_view_store
from .middleware import RequestLoggingMiddleware
from .routes import admin_router, anomalies_router, health_router, insights_router, views_router

logger = structlog.get_logger(__name__)


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AccessDenied)
    async def access_denied_handler(request: Request, exc: AccessDenied) -> JSONResponse:
        logger.warning("Access denied", path=request.url.path, reason=exc.reason, detail=exc.detail)
        return JSONResponse(status_code=403, content={"error": "access_denied", "reason": exc.reason, "detail": exc.detail})

    @app.exception_handler(UnknownViewError)
    async def unknown_view_handler(request: Request, exc: UnknownViewError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"error": "unknown_view", "view": exc.view_name})

    @app.exception_handler(ViewNotReadyError)
    async def view_not_ready_handler(request: Request, exc: ViewNotReadyError) -> JSONResponse:
        return JSONResponse(
            status_code=503,
            content={"error": "view_not_ready", "view": exc.view_name},
            headers={"Retry-After": "60"},
        )

    @app.exception_handler(InvalidQueryError)
    async def invalid_query_handler(request: Request, exc: InvalidQueryError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": "invalid_query", "view": exc.view_name, "detail": exc.detail})


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    view_store: Optional[ViewStore] = None,
    scheduler: Optional[RefreshScheduler] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Without a session_factory the lifespan connects to the configured
    database; tests pass their own factory and skip that.

    Returns:
        Configured FastAPI app instance
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        install_audit_listener()
        logger.info("Starting Scout Analytics API", environment=settings.app_env)

        owns_database = app.state.session_factory is None
        if owns_database:
            await init_database()
            app.state.session_factory = get_session_factory()
        if app.state.scheduler is None:
            app.state.scheduler = RefreshScheduler(
                app.state.session_factory,
                view_store=app.state.view_store,
                settings=settings,
            )

        try:
            async with app.state.session_factory() as session:
                synced = await app.state.view_store.sync_all(session)
            logger.info("Published views loaded", views=synced)
        except Exception as e:
            logger.warning("Could not load published views", error=str(e))

        yield

        logger.info("Shutting down...")
        if owns_database:
            await close_database()

    app = FastAPI(
        title="Scout Retail Analytics API",
        description="Scoped read access to retail aggregates and anomalies",
        version=settings.version,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.view_store = view_store or get_view_store()
    if scheduler is None and session_factory is not None:
        scheduler = RefreshScheduler(session_factory, view_store=app.state.view_store, settings=settings)
    app.state.scheduler = scheduler
    app.state.policy = AccessPolicy(settings.access, settings.aggregation)
    app.state.clock = clock or datetime.utcnow

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(RequestLoggingMiddleware)

    _register_exception_handlers(app)

    app.include_router(health_router, prefix="/api/v1", tags=["Health"])
    app.include_router(views_router, prefix="/api/v1/views", tags=["Views"])
    app.include_router(anomalies_router, prefix="/api/v1/anomalies", tags=["Anomalies"])
    app.include_router(insights_router, prefix="/api/v1/insights", tags=["Insights"])
    app.include_router(admin_router, prefix="/api/v1/admin", tags=["Admin"])

    @app.get("/api/v1/info")
    async def api_info():
        """API information endpoint."""
        return {
            "name": "Scout Retail Analytics API",
            "version": settings.version,
            "environment": settings.app_env,
        }

    return app
