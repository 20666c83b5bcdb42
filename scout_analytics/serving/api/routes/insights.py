"""
Insight Endpoints

Ad-hoc reports over the fact store and the published customer segments.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from scout_analytics.access.context import CallerContext
from scout_analytics.access.policy import AccessPolicy
from scout_analytics.refresh.view_store import ViewStore
from scout_analytics.serving.queries import (
    CustomerInsightsQuery,
    InsightReport,
    MarketShareQuery,
    query_customer_insights,
    query_market_share,
)
from ..dependencies import get_caller, get_policy, get_session, get_view_store

router = APIRouter()


@router.get("/market-share", response_model=InsightReport)
async def get_market_share(
    query: Annotated[MarketShareQuery, Query()],
    caller: CallerContext = Depends(get_caller),
    policy: AccessPolicy = Depends(get_policy),
    session: AsyncSession = Depends(get_session),
) -> InsightReport:
    """Brand revenue share and rank within each region."""
    return await query_market_share(session, policy, caller, query)


@router.get("/customers", response_model=InsightReport)
async def get_customer_insights(
    query: Annotated[CustomerInsightsQuery, Query()],
    caller: CallerContext = Depends(get_caller),
    view_store: ViewStore = Depends(get_view_store),
    policy: AccessPolicy = Depends(get_policy),
    session: AsyncSession = Depends(get_session),
) -> InsightReport:
    """Customer counts and spend per segment from customer_segments."""
    await view_store.sync_view(session, "customer_segments")
    return query_customer_insights(view_store, policy, caller, query)
