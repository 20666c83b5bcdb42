"""
Anomaly Endpoints
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from scout_analytics.access.context import CallerContext
from scout_analytics.access.policy import AccessPolicy
from scout_analytics.serving.queries import AnomalyPage, AnomalyQuery, query_anomalies
from ..dependencies import get_caller, get_policy, get_session

router = APIRouter()


@router.get("", response_model=AnomalyPage)
async def list_anomalies(
    query: Annotated[AnomalyQuery, Query()],
    caller: CallerContext = Depends(get_caller),
    policy: AccessPolicy = Depends(get_policy),
    session: AsyncSession = Depends(get_session),
) -> AnomalyPage:
    """Anomalies by type, severity, status, store and detection date."""
    return await query_anomalies(session, policy, caller, query)
