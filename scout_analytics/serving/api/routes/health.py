"""
Health Check Endpoints

Provides health and readiness checks for orchestration systems, plus the
operational health report of the capture network.
"""

from datetime import datetime
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scout_analytics.config.settings import Settings
from scout_analytics.database.connection import check_database_health
from scout_analytics.quality.alerts import check_system_alerts, system_health
from scout_analytics.refresh.view_store import ViewStore
from ..dependencies import get_app_settings, get_session, get_session_factory, get_view_store

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    version: str
    environment: str
    timestamp: datetime
    checks: Dict[str, Any]


class SystemHealthResponse(BaseModel):
    health: Dict[str, Any]
    alerts: List[Dict[str, Any]]


@router.get("/health", response_model=HealthResponse)
async def health_check(
    settings: Settings = Depends(get_app_settings),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    view_store: ViewStore = Depends(get_view_store),
) -> HealthResponse:
    """
    Comprehensive health check endpoint.

    Checks:
    - Database connectivity
    - Published views
    """
    checks = {}
    overall_status = "healthy"

    db_health = await check_database_health(session_factory)
    checks["database"] = db_health
    if db_health.get("status") != "healthy":
        overall_status = "unhealthy"

    listing = view_store.list_views()
    unpublished = [v["name"] for v in listing if v["published"] is None]
    checks["views"] = {
        "registered": len(listing),
        "published": len(listing) - len(unpublished),
        "unpublished": unpublished,
    }
    if unpublished and overall_status == "healthy":
        overall_status = "degraded"

    return HealthResponse(
        status=overall_status,
        version=settings.version,
        environment=settings.app_env,
        timestamp=datetime.utcnow(),
        checks=checks,
    )


@router.get("/health/live")
async def liveness_check() -> Dict[str, str]:
    """
    Kubernetes liveness probe endpoint.

    Returns 200 if the application is running.
    """
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness_check(
    response: Response,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> Dict[str, str]:
    """Returns 503 until the database answers."""
    db_health = await check_database_health(session_factory)
    if db_health.get("status") != "healthy":
        response.status_code = 503
        return {"status": "not_ready", "reason": "database_unavailable"}
    return {"status": "ready"}


@router.get("/health/system", response_model=SystemHealthResponse)
async def system_health_check(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    session: AsyncSession = Depends(get_session),
) -> SystemHealthResponse:
    """Device, transaction and anomaly health with the active alerts."""
    now = request.app.state.clock()
    health = await system_health(session, now=now, settings=settings)
    alerts = await check_system_alerts(session, now=now, settings=settings)
    return SystemHealthResponse(health=health, alerts=[a.to_dict() for a in alerts])
