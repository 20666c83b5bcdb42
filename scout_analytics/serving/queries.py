"""
Read Queries

Scoped, paginated reads over published views and persisted anomalies.
Every read is authorized against the caller first; a request for rows
outside the caller's scope raises AccessDenied instead of returning a
narrower result.
"""

from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional
import uuid

import polars as pl
import structlog
from pydantic import BaseModel, ConfigDict, Field, model_validator
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from scout_analytics.access.context import CallerContext
from scout_analytics.access.policy import AccessPolicy
from scout_analytics.aggregation.insights import customer_insights, market_share
from scout_analytics.aggregation.integrity import prepare_facts
from scout_analytics.aggregation.registry import ViewDefinition, get_view_definition
from scout_analytics.aggregation.snapshot import load_fact_snapshot
from scout_analytics.database.models import Anomaly, AnomalySeverity, AnomalyStatus, AnomalyType, Region, Store
from scout_analytics.exceptions import InvalidQueryError
from scout_analytics.refresh.view_store import ViewStore

logger = structlog.get_logger(__name__)

MAX_PAGE_SIZE = 1000


# =============================================================================
# REQUEST / RESPONSE MODELS
# =============================================================================

class PageParams(BaseModel):
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=100, ge=1, le=MAX_PAGE_SIZE)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


class DateRangeParams(PageParams):
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @model_validator(mode="after")
    def check_range(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class ViewQuery(DateRangeParams):
    """Filters accepted by GET /views/{name}"""
    region: Optional[str] = None
    brand: Optional[str] = None
    store_id: Optional[int] = None


class AnomalyQuery(DateRangeParams):
    """Filters accepted by GET /anomalies"""
    anomaly_type: Optional[AnomalyType] = None
    severity: Optional[AnomalySeverity] = None
    status: Optional[AnomalyStatus] = None
    store_id: Optional[int] = None
    region: Optional[str] = None


class MarketShareQuery(BaseModel):
    """Parameters of GET /insights/market-share"""
    brand: Optional[str] = None
    region: Optional[str] = None
    days: int = Field(default=30, ge=1, le=365)


class CustomerInsightsQuery(BaseModel):
    """Parameters of GET /insights/customers"""
    active_since: Optional[date] = None


class ViewPage(BaseModel):
    view: str
    version: int
    as_of: datetime
    refreshed_at: datetime
    total_rows: int
    page: int
    page_size: int
    rows: List[Dict[str, Any]]
    scope: Dict[str, Any]


class AnomalyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    anomaly_id: uuid.UUID
    anomaly_key: str
    anomaly_type: AnomalyType
    severity: AnomalySeverity
    status: AnomalyStatus
    store_id: Optional[int]
    details: Dict[str, Any]
    detection_count: int
    first_detected_at: datetime
    last_detected_at: datetime
    resolved_at: Optional[datetime]


class AnomalyPage(BaseModel):
    total: int
    page: int
    page_size: int
    anomalies: List[AnomalyOut]
    scope: Dict[str, Any]


class InsightReport(BaseModel):
    insight: str
    as_of: datetime
    rows: List[Dict[str, Any]]
    scope: Dict[str, Any]


# =============================================================================
# VIEWS
# =============================================================================

def _day_start(value: date) -> datetime:
    return datetime(value.year, value.month, value.day)


def _date_filter(definition: ViewDefinition, start: Optional[date], end: Optional[date]) -> List[pl.Expr]:
    column = definition.date_column
    is_date = definition.schema[column] == pl.Date
    predicates = []
    if start is not None:
        predicates.append(pl.col(column) >= (start if is_date else _day_start(start)))
    if end is not None:
        if is_date:
            predicates.append(pl.col(column) <= end)
        else:
            predicates.append(pl.col(column) < _day_start(end) + timedelta(days=1))
    return predicates


def _validate_filters(definition: ViewDefinition, query: ViewQuery) -> None:
    unsupported = []
    if (query.start_date or query.end_date) and definition.date_column is None:
        unsupported.append("date range")
    if query.region is not None and definition.region_column is None:
        unsupported.append("region")
    if query.brand is not None and definition.brand_column is None:
        unsupported.append("brand")
    if query.store_id is not None and definition.store_column is None:
        unsupported.append("store_id")
    if unsupported:
        raise InvalidQueryError(definition.name, f"unsupported filters: {', '.join(unsupported)}")


def query_view(
    view_store: ViewStore,
    policy: AccessPolicy,
    ctx: CallerContext,
    name: str,
    query: Optional[ViewQuery] = None,
) -> ViewPage:
    """
    One page of a published view as seen by ctx.

    Raises:
        UnknownViewError: no such view
        InvalidQueryError: a filter the view has no column for
        AccessDenied: view or bounds outside the caller's scope
        ViewNotReadyError: view never published
    """
    query = query or ViewQuery()
    definition = get_view_definition(name)
    _validate_filters(definition, query)

    scope = policy.authorize_view(ctx, definition, start=query.start_date, store_id=query.store_id)
    published = view_store.get(definition.name)

    predicates: List[pl.Expr] = []
    scope_predicate = policy.view_predicate(scope, definition)
    if scope_predicate is not None:
        predicates.append(scope_predicate)
    if definition.date_column is not None:
        predicates.extend(_date_filter(definition, query.start_date, query.end_date))
    if query.region is not None:
        predicates.append(pl.col(definition.region_column) == pl.lit(query.region))
    if query.brand is not None:
        predicates.append(pl.col(definition.brand_column) == pl.lit(query.brand))

    frame = published.frame
    if predicates:
        frame = frame.filter(*predicates)

    total = frame.height
    rows = frame.slice(query.offset, query.page_size).to_dicts()
    logger.debug("View queried", view=name, user_id=ctx.user_id, total=total, page=query.page)

    return ViewPage(
        view=definition.name,
        version=published.version,
        as_of=published.as_of,
        refreshed_at=published.refreshed_at,
        total_rows=total,
        page=query.page,
        page_size=query.page_size,
        rows=rows,
        scope=scope.to_dict(),
    )


# =============================================================================
# ANOMALIES
# =============================================================================

async def query_anomalies(
    session: AsyncSession,
    policy: AccessPolicy,
    ctx: CallerContext,
    query: Optional[AnomalyQuery] = None,
) -> AnomalyPage:
    """
    One page of anomalies as seen by ctx, most recently detected first.

    Raises:
        AccessDenied: bounds outside the caller's scope
    """
    query = query or AnomalyQuery()
    scope = policy.authorize_anomalies(ctx, start=query.start_date, store_id=query.store_id)

    clauses = policy.anomaly_clauses(scope)
    if query.anomaly_type is not None:
        clauses.append(Anomaly.anomaly_type == query.anomaly_type)
    if query.severity is not None:
        clauses.append(Anomaly.severity == query.severity)
    if query.status is not None:
        clauses.append(Anomaly.status == query.status)
    if query.region is not None:
        clauses.append(Anomaly.store_id.in_(
            select(Store.store_id).join(Region, Store.region_id == Region.region_id).where(Region.name == query.region)
        ))
    if query.start_date is not None:
        clauses.append(Anomaly.last_detected_at >= _day_start(query.start_date))
    if query.end_date is not None:
        clauses.append(Anomaly.last_detected_at < _day_start(query.end_date) + timedelta(days=1))

    total = (await session.execute(
        select(func.count()).select_from(Anomaly).where(*clauses)
    )).scalar_one()

    result = await session.execute(
        select(Anomaly)
        .where(*clauses)
        .order_by(Anomaly.last_detected_at.desc(), Anomaly.anomaly_key)
        .offset(query.offset)
        .limit(query.page_size)
    )
    anomalies = [AnomalyOut.model_validate(row) for row in result.scalars()]

    return AnomalyPage(
        total=total,
        page=query.page,
        page_size=query.page_size,
        anomalies=anomalies,
        scope=scope.to_dict(),
    )


# =============================================================================
# INSIGHTS
# =============================================================================

async def query_market_share(
    session: AsyncSession,
    policy: AccessPolicy,
    ctx: CallerContext,
    query: Optional[MarketShareQuery] = None,
) -> InsightReport:
    """
    Brand revenue share per region over the last query.days, computed from
    the fact store at ctx.now.

    Raises:
        AccessDenied: store managers, or a window wider than the caller's
    """
    query = query or MarketShareQuery()
    scope = policy.authorize_insight(ctx, "market_share", query.days)

    snapshot = await load_fact_snapshot(session, ctx.now, query.days)
    facts, _ = prepare_facts(snapshot)
    frame = market_share(facts, query.brand, ctx.now, days=query.days, region_name=query.region)
    logger.debug("Market share computed", user_id=ctx.user_id, brand=query.brand, rows=frame.height)

    return InsightReport(insight="market_share", as_of=ctx.now, rows=frame.to_dicts(), scope=scope.to_dict())


def query_customer_insights(
    view_store: ViewStore,
    policy: AccessPolicy,
    ctx: CallerContext,
    query: Optional[CustomerInsightsQuery] = None,
) -> InsightReport:
    """Segment summary of the published customer_segments view."""
    query = query or CustomerInsightsQuery()
    definition = get_view_definition("customer_segments")
    scope = policy.authorize_view(ctx, definition)
    published = view_store.get(definition.name)

    active_since = _day_start(query.active_since) if query.active_since is not None else None
    frame = customer_insights(published.frame, active_since=active_since)

    return InsightReport(
        insight="customer_insights",
        as_of=published.as_of,
        rows=frame.to_dicts(),
        scope=scope.to_dict(),
    )
