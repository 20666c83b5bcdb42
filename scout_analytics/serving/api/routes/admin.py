"""
Admin Endpoints

Manual triggers for refresh, detection and purge, and store grant
management.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import structlog

from scout_analytics.access.context import CallerContext, to_naive_utc
from scout_analytics.access.grants import grant_store_access, revoke_store_access
from scout_analytics.aggregation.registry import RefreshCadence
from scout_analytics.config.settings import Settings
from scout_analytics.database.models import AccessLevel, AnomalyType
from scout_analytics.maintenance.retention import run_retention_purge
from scout_analytics.quality.anomaly_store import run_anomaly_detection
from scout_analytics.refresh.scheduler import RefreshScheduler, RefreshTrigger
from ..dependencies import (
    get_app_settings,
    get_caller,
    get_scheduler,
    get_session_factory,
    require_admin,
)

router = APIRouter()
logger = structlog.get_logger(__name__)

ADMIN_ORIGIN = "admin_api"


class RefreshRequest(BaseModel):
    """Refresh one view, one cadence, or everything"""
    view: Optional[str] = None
    cadence: Optional[RefreshCadence] = None


class DetectRequest(BaseModel):
    types: Optional[List[AnomalyType]] = None


class PurgeRequest(BaseModel):
    retention_months: Optional[int] = Field(default=None, ge=1)


class GrantRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    store_id: int
    access_level: AccessLevel = AccessLevel.READ
    expires_at: Optional[datetime] = None

    @field_validator("expires_at")
    @classmethod
    def normalize_expiry(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Offsets are converted to UTC before the naive column stores them"""
        return to_naive_utc(v)


class GrantResponse(BaseModel):
    user_id: str
    store_id: int
    access_level: AccessLevel
    granted_by: Optional[str]
    granted_at: datetime
    expires_at: Optional[datetime]
    is_active: bool


@router.post("/refresh")
async def trigger_refresh(
    request: RefreshRequest,
    caller: CallerContext = Depends(require_admin),
    scheduler: RefreshScheduler = Depends(get_scheduler),
) -> Dict[str, Any]:
    logger.info("Manual refresh requested", view=request.view, cadence=request.cadence, actor=caller.user_id)
    if request.view is not None:
        outcome = await scheduler.refresh_view(request.view, trigger=RefreshTrigger.MANUAL)
        return outcome.to_dict()
    report = await scheduler.refresh_all(cadence=request.cadence, trigger=RefreshTrigger.MANUAL)
    return report.to_dict()


@router.post("/anomalies/detect")
async def trigger_detection(
    request: DetectRequest,
    caller: CallerContext = Depends(require_admin),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    settings: Settings = Depends(get_app_settings),
) -> Dict[str, Any]:
    run = await run_anomaly_detection(
        session_factory,
        settings=settings,
        types=request.types,
        actor=caller.user_id,
    )
    return run.to_dict()


@router.post("/purge")
async def trigger_purge(
    request: PurgeRequest,
    caller: CallerContext = Depends(require_admin),
    scheduler: RefreshScheduler = Depends(get_scheduler),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    settings: Settings = Depends(get_app_settings),
) -> Dict[str, Any]:
    result = await run_retention_purge(
        session_factory,
        scheduler,
        retention_months=request.retention_months,
        actor=caller.user_id,
        settings=settings,
    )
    return result.to_dict()


@router.post("/grants", response_model=GrantResponse)
async def create_grant(
    request: GrantRequest,
    caller: CallerContext = Depends(get_caller),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> GrantResponse:
    """Admins, or holders of an admin grant on the store, may grant access."""
    async with session_factory() as session:
        session.info["actor"] = caller.user_id
        session.info["origin"] = ADMIN_ORIGIN
        try:
            async with session.begin():
                grant = await grant_store_access(
                    session,
                    caller,
                    request.user_id,
                    request.store_id,
                    access_level=request.access_level,
                    expires_at=request.expires_at,
                )
        except LookupError as e:
            raise HTTPException(status_code=404, detail=str(e)) from None

        return GrantResponse(
            user_id=grant.user_id,
            store_id=grant.store_id,
            access_level=grant.access_level,
            granted_by=grant.granted_by,
            granted_at=grant.granted_at,
            expires_at=grant.expires_at,
            is_active=grant.is_active,
        )


@router.delete("/grants/{user_id}/{store_id}")
async def delete_grant(
    user_id: str,
    store_id: int,
    caller: CallerContext = Depends(get_caller),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> Dict[str, Any]:
    async with session_factory() as session:
        session.info["actor"] = caller.user_id
        session.info["origin"] = ADMIN_ORIGIN
        async with session.begin():
            revoked = await revoke_store_access(session, caller, user_id, store_id)

    if not revoked:
        raise HTTPException(status_code=404, detail=f"No active grant for {user_id} on store {store_id}")
    return {"user_id": user_id, "store_id": store_id, "revoked": True}
