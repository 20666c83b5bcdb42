"""
View Registry

Static catalog of derived views: how each is built, how often it is
refreshed, which table it is published to and which columns the serving
layer may filter on.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Type

import polars as pl

from scout_analytics.config.settings import AggregationSettings
from scout_analytics.database.models import (
    AggBrandCompetition,
    AggCategoryPerformance,
    AggCustomerSegment,
    AggDailySales,
    AggHourlyPattern,
    AggProductPerformance,
    AggRegionalClientBrand,
    AggRegionalPerformance,
    AggStorePerformance,
    Base,
)
from scout_analytics.exceptions import UnknownViewError
from . import views
from .integrity import PreparedFacts

ViewBuilder = Callable[[PreparedFacts, datetime, AggregationSettings], pl.DataFrame]


class RefreshCadence(str, Enum):
    """How often a view is rebuilt"""
    HOURLY = "hourly"
    NIGHTLY = "nightly"


@dataclass(frozen=True)
class ViewDefinition:
    """A derived view and its serving metadata"""
    name: str
    builder: ViewBuilder
    cadence: RefreshCadence
    lookback_setting: str
    schema: Dict[str, pl.DataType]
    table: Type[Base]
    description: str = ""
    depends_on: Tuple[str, ...] = field(default_factory=tuple)
    date_column: Optional[str] = None
    region_column: Optional[str] = None
    brand_column: Optional[str] = None
    store_column: Optional[str] = None
    # Each row describes a single date, so a date filter bounds its data exactly
    time_partitioned: bool = False

    @property
    def store_scoped(self) -> bool:
        """Whether rows can be restricted to a set of stores"""
        return self.store_column is not None

    def lookback_days(self, settings: AggregationSettings) -> int:
        return getattr(settings, self.lookback_setting)

    def build(self, facts: PreparedFacts, as_of: datetime, settings: AggregationSettings) -> pl.DataFrame:
        return self.builder(facts, as_of, settings)


VIEW_REGISTRY: Dict[str, ViewDefinition] = {
    definition.name: definition
    for definition in [
        ViewDefinition(
            name="daily_sales",
            builder=views.build_daily_sales,
            cadence=RefreshCadence.HOURLY,
            lookback_setting="daily_sales_days",
            schema=views.DAILY_SALES_SCHEMA,
            table=AggDailySales,
            description="Sales by date, store, day of week and hour",
            date_column="sale_date",
            region_column="region_name",
            store_column="store_id",
            time_partitioned=True,
        ),
        ViewDefinition(
            name="hourly_patterns",
            builder=views.build_hourly_patterns,
            cadence=RefreshCadence.HOURLY,
            lookback_setting="hourly_days",
            schema=views.HOURLY_PATTERNS_SCHEMA,
            table=AggHourlyPattern,
            description="Transaction volume by day of week and hour",
        ),
        ViewDefinition(
            name="product_performance",
            builder=views.build_product_performance,
            cadence=RefreshCadence.NIGHTLY,
            lookback_setting="product_days",
            schema=views.PRODUCT_PERFORMANCE_SCHEMA,
            table=AggProductPerformance,
            description="Units, revenue, share and category rank per product",
            depends_on=("daily_sales",),
            brand_column="brand_name",
        ),
        ViewDefinition(
            name="regional_performance",
            builder=views.build_regional_performance,
            cadence=RefreshCadence.NIGHTLY,
            lookback_setting="regional_days",
            schema=views.REGIONAL_PERFORMANCE_SCHEMA,
            table=AggRegionalPerformance,
            description="Regional totals and client brand share",
            depends_on=("daily_sales", "product_performance"),
            region_column="region_name",
        ),
        ViewDefinition(
            name="regional_client_brands",
            builder=views.build_regional_client_brands,
            cadence=RefreshCadence.NIGHTLY,
            lookback_setting="regional_days",
            schema=views.REGIONAL_CLIENT_BRANDS_SCHEMA,
            table=AggRegionalClientBrand,
            description="Client brand revenue per region",
            depends_on=("regional_performance",),
            region_column="region_name",
            brand_column="brand_name",
        ),
        ViewDefinition(
            name="brand_competition",
            builder=views.build_brand_competition,
            cadence=RefreshCadence.NIGHTLY,
            lookback_setting="brand_days",
            schema=views.BRAND_COMPETITION_SCHEMA,
            table=AggBrandCompetition,
            description="Brand share and market position within category",
            depends_on=("product_performance",),
            brand_column="brand_name",
        ),
        ViewDefinition(
            name="category_performance",
            builder=views.build_category_performance,
            cadence=RefreshCadence.NIGHTLY,
            lookback_setting="category_days",
            schema=views.CATEGORY_PERFORMANCE_SCHEMA,
            table=AggCategoryPerformance,
            description="Category totals with client vs competitor split",
            depends_on=("product_performance",),
        ),
        ViewDefinition(
            name="store_performance",
            builder=views.build_store_performance,
            cadence=RefreshCadence.HOURLY,
            lookback_setting="store_days",
            schema=views.STORE_PERFORMANCE_SCHEMA,
            table=AggStorePerformance,
            description="Store totals with device health alerts",
            depends_on=("daily_sales",),
            region_column="region_name",
            store_column="store_id",
        ),
        ViewDefinition(
            name="customer_segments",
            builder=views.build_customer_segments,
            cadence=RefreshCadence.NIGHTLY,
            lookback_setting="segment_days",
            schema=views.CUSTOMER_SEGMENTS_SCHEMA,
            table=AggCustomerSegment,
            description="RFM segmentation per identified customer",
            depends_on=("daily_sales",),
            date_column="last_transaction_at",
        ),
    ]
}


def get_view_definition(name: str) -> ViewDefinition:
    """Look up a view by name; raises UnknownViewError."""
    try:
        return VIEW_REGISTRY[name]
    except KeyError:
        raise UnknownViewError(name) from None


def views_for_cadence(cadence: Optional[RefreshCadence] = None) -> List[str]:
    """View names refreshed at a cadence, all views when cadence is None."""
    return [
        name for name, definition in VIEW_REGISTRY.items()
        if cadence is None or definition.cadence == cadence
    ]


def resolve_refresh_order(names: Iterable[str]) -> List[str]:
    """
    Order views so each follows the views it depends on.

    Only dependencies inside the selection are considered; otherwise
    registry order is kept.
    """
    selected = {get_view_definition(name).name for name in names}
    ordered: List[str] = []
    visiting = set()

    def visit(name: str) -> None:
        if name in ordered:
            return
        if name in visiting:
            raise ValueError(f"Dependency cycle at view {name}")
        visiting.add(name)
        for dependency in VIEW_REGISTRY[name].depends_on:
            if dependency in selected:
                visit(dependency)
        visiting.discard(name)
        ordered.append(name)

    for name in VIEW_REGISTRY:
        if name in selected:
            visit(name)
    return ordered


def max_lookback_days(names: Iterable[str], settings: AggregationSettings) -> int:
    """Widest window needed to build all named views from one snapshot"""
    return max(
        (get_view_definition(name).lookback_days(settings) for name in names),
        default=0,
    )
