"""
View Endpoints

Read API over the published derived views.
"""

from typing import Annotated, Any, Dict, List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from scout_analytics.access.context import CallerContext
from scout_analytics.access.policy import AccessPolicy
from scout_analytics.aggregation.registry import get_view_definition
from scout_analytics.refresh.view_store import ViewStore
from scout_analytics.serving.queries import ViewPage, ViewQuery, query_view
from ..dependencies import get_caller, get_policy, get_session, get_view_store

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.get("")
async def list_views(
    caller: CallerContext = Depends(get_caller),
    view_store: ViewStore = Depends(get_view_store),
    session: AsyncSession = Depends(get_session),
) -> List[Dict[str, Any]]:
    """Registered views with their latest published version."""
    await view_store.sync_all(session)
    return view_store.list_views()


@router.get("/{name}", response_model=ViewPage)
async def get_view(
    name: str,
    query: Annotated[ViewQuery, Query()],
    caller: CallerContext = Depends(get_caller),
    view_store: ViewStore = Depends(get_view_store),
    policy: AccessPolicy = Depends(get_policy),
    session: AsyncSession = Depends(get_session),
) -> ViewPage:
    """
    One page of a view, filtered by date range, region, brand and store
    and bounded by the caller's access scope.
    """
    get_view_definition(name)
    await view_store.sync_view(session, name)
    return query_view(view_store, policy, caller, name, query)
