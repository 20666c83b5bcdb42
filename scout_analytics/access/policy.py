"""
Row-Level Access Policy

Rules by role:
- admin: unrestricted
- analyst: business hours (in business_timezone) only, last analyst_window_days
- store_manager: business hours only, last store_manager_window_days,
  only stores with an active unexpired grant, only store-scoped views

A request that asks for more than the caller may see is refused with
AccessDenied. Unspecified bounds are filled in from the caller's scope
and reported back in the AccessScope.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import FrozenSet, List, Optional
from zoneinfo import ZoneInfo

import polars as pl
import structlog

from scout_analytics.aggregation.registry import ViewDefinition
from scout_analytics.config.settings import AccessSettings, AggregationSettings, get_settings
from scout_analytics.database.models import Anomaly
from scout_analytics.exceptions import AccessDenied
from .context import CallerContext, Role

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AccessScope:
    """Bounds applied to a read on behalf of a caller"""
    role: Role
    earliest: Optional[datetime] = None
    store_ids: Optional[FrozenSet[int]] = None

    @property
    def unrestricted(self) -> bool:
        return self.earliest is None and self.store_ids is None

    def to_dict(self) -> dict:
        return {
            "role": self.role.value,
            "earliest": self.earliest.isoformat() if self.earliest else None,
            "store_ids": sorted(self.store_ids) if self.store_ids is not None else None,
        }


def _as_datetime(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    raise TypeError(f"Expected date or datetime, got {type(value).__name__}")


class AccessPolicy:
    """Evaluates reads against a CallerContext"""

    def __init__(
        self,
        settings: Optional[AccessSettings] = None,
        aggregation: Optional[AggregationSettings] = None,
    ):
        app_settings = get_settings() if settings is None or aggregation is None else None
        self.settings = settings or app_settings.access
        self.aggregation = aggregation or app_settings.aggregation

    def window_days(self, role: Role) -> Optional[int]:
        if role == Role.ANALYST:
            return self.settings.analyst_window_days
        if role == Role.STORE_MANAGER:
            return self.settings.store_manager_window_days
        return None

    def local_time(self, now: datetime) -> datetime:
        """now (naive UTC or aware) on the business clock."""
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now.astimezone(ZoneInfo(self.settings.business_timezone))

    def check_business_hours(self, ctx: CallerContext) -> None:
        if ctx.is_admin:
            return
        hour = self.local_time(ctx.now).hour
        if not (self.settings.business_hours_start <= hour <= self.settings.business_hours_end):
            raise AccessDenied(
                "outside_business_hours",
                f"{ctx.role.value} access is limited to "
                f"{self.settings.business_hours_start:02d}:00-{self.settings.business_hours_end:02d}:59",
            )

    def _resolve_scope(
        self,
        ctx: CallerContext,
        start: Optional[datetime],
        store_id: Optional[int],
    ) -> AccessScope:
        self.check_business_hours(ctx)
        if ctx.is_admin:
            return AccessScope(
                role=ctx.role,
                store_ids=frozenset([store_id]) if store_id is not None else None,
            )

        earliest = ctx.now - timedelta(days=self.window_days(ctx.role))
        if start is None:
            too_early = False
        elif isinstance(start, datetime):
            too_early = start < earliest
        else:
            # A bare date is checked at day granularity
            too_early = start < earliest.date()
        start = _as_datetime(start)
        if too_early:
            raise AccessDenied(
                "window_exceeded",
                f"{ctx.role.value} may read from {earliest.isoformat()} onwards",
            )

        store_ids: Optional[FrozenSet[int]] = None
        if ctx.role == Role.STORE_MANAGER:
            granted = ctx.granted_store_ids
            if not granted:
                raise AccessDenied("no_store_grants", f"user {ctx.user_id} has no active store grants")
            if store_id is not None and store_id not in granted:
                raise AccessDenied("store_not_granted", f"user {ctx.user_id} has no grant for store {store_id}")
            store_ids = frozenset([store_id]) if store_id is not None else granted
        elif store_id is not None:
            store_ids = frozenset([store_id])

        return AccessScope(role=ctx.role, earliest=start or earliest, store_ids=store_ids)

    def authorize_view(
        self,
        ctx: CallerContext,
        definition: ViewDefinition,
        start: Optional[datetime] = None,
        store_id: Optional[int] = None,
    ) -> AccessScope:
        """
        Decide whether ctx may read a view and with which bounds.

        Raises:
            AccessDenied: the view or the requested bounds are out of scope
        """
        if not ctx.is_admin:
            if ctx.role == Role.STORE_MANAGER and not definition.store_scoped:
                raise AccessDenied(
                    "view_not_store_scoped",
                    f"{definition.name} cannot be restricted to granted stores",
                )
            window = self.window_days(ctx.role)
            lookback = definition.lookback_days(self.aggregation)
            if not definition.time_partitioned and lookback > window:
                raise AccessDenied(
                    "view_window_exceeds_role",
                    f"{definition.name} covers {lookback} days; {ctx.role.value} may read {window}",
                )

        scope = self._resolve_scope(ctx, start, store_id)
        logger.debug("View access granted", view=definition.name, user_id=ctx.user_id, **scope.to_dict())
        return scope

    def authorize_insight(self, ctx: CallerContext, name: str, lookback_days: int) -> AccessScope:
        """
        Ad-hoc reports aggregate across stores over lookback_days, so store
        managers are refused and other roles must cover the whole lookback.
        """
        if not ctx.is_admin:
            if ctx.role == Role.STORE_MANAGER:
                raise AccessDenied("insight_not_store_scoped", f"{name} cannot be restricted to granted stores")
            window = self.window_days(ctx.role)
            if lookback_days > window:
                raise AccessDenied(
                    "insight_window_exceeds_role",
                    f"{name} covers {lookback_days} days; {ctx.role.value} may read {window}",
                )
        return self._resolve_scope(ctx, None, None)

    def authorize_anomalies(
        self,
        ctx: CallerContext,
        start: Optional[datetime] = None,
        store_id: Optional[int] = None,
    ) -> AccessScope:
        return self._resolve_scope(ctx, start, store_id)

    # =========================================================================
    # PREDICATES
    # =========================================================================

    def view_predicate(self, scope: AccessScope, definition: ViewDefinition) -> Optional[pl.Expr]:
        """polars filter enforcing the scope on a view frame."""
        predicates: List[pl.Expr] = []

        if scope.earliest is not None and definition.date_column is not None:
            bound = scope.earliest
            if definition.schema[definition.date_column] == pl.Date:
                bound = bound.date()
            predicates.append(pl.col(definition.date_column) >= bound)

        if scope.store_ids is not None:
            if definition.store_column is None:
                raise AccessDenied("view_not_store_scoped", f"{definition.name} has no store column")
            predicates.append(pl.col(definition.store_column).is_in(sorted(scope.store_ids)))

        if not predicates:
            return None
        combined = predicates[0]
        for predicate in predicates[1:]:
            combined = combined & predicate
        return combined

    def anomaly_clauses(self, scope: AccessScope) -> list:
        """SQLAlchemy where clauses enforcing the scope on anomaly reads."""
        clauses = []
        if scope.earliest is not None:
            clauses.append(Anomaly.last_detected_at >= scope.earliest)
        if scope.store_ids is not None:
            clauses.append(Anomaly.store_id.in_(sorted(scope.store_ids)))
        return clauses
