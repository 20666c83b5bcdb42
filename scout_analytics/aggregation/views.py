"""
Derived View Definitions

Each builder is a deterministic pure function of (PreparedFacts, as_of,
AggregationSettings) that returns a frame with a fixed schema:

- daily_sales: rollup by date, store, day of week and hour
- hourly_patterns: transactions by day of week and hour
- product_performance: units, revenue, global share and category rank
- regional_performance: regional totals, behavior rates, client share
- regional_client_brands: revenue of each client brand per region
- brand_competition: category share and market position per brand
- category_performance: category totals, client vs competitor revenue
- store_performance: store totals with device health alerts
- customer_segments: RFM segmentation per identified customer

Ranks break ties by entity id ascending.
"""

from datetime import datetime, timedelta
from enum import Enum

import polars as pl

from scout_analytics.config.settings import AggregationSettings
from .expressions import (
    day_of_week,
    in_window,
    ordinal_rank,
    raw_percent,
    round_half_up,
    safe_ratio,
    share_percent,
)
from .integrity import PreparedFacts


# =============================================================================
# LABELS
# =============================================================================

class PerformanceTier(str, Enum):
    """Product performance by units sold"""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class MarketPosition(str, Enum):
    """Brand position by category revenue share"""
    LEADER = "leader"
    STRONG = "strong"
    CHALLENGER = "challenger"
    NICHE = "niche"


class StoreTier(str, Enum):
    """Store performance by window revenue"""
    TOP = "top"
    STRONG = "strong"
    AVERAGE = "average"
    UNDERPERFORMER = "underperformer"
    NO_ACTIVITY = "no_activity"


class RecencySegment(str, Enum):
    RECENT = "recent"
    ACTIVE = "active"
    INACTIVE = "inactive"


class FrequencySegment(str, Enum):
    FREQUENT = "frequent"
    REGULAR = "regular"
    OCCASIONAL = "occasional"


class MonetarySegment(str, Enum):
    PREMIUM = "premium"
    STANDARD = "standard"
    BUDGET = "budget"


class CustomerSegment(str, Enum):
    """Combined RFM segment, evaluated in declaration order"""
    VIP = "vip"
    LOYAL = "loyal"
    ACTIVE = "active"
    AT_RISK = "at_risk"


# Inclusive lower bounds on category revenue share (percent)
MARKET_POSITION_THRESHOLDS = [
    (25.0, MarketPosition.LEADER),
    (15.0, MarketPosition.STRONG),
    (5.0, MarketPosition.CHALLENGER),
]


# =============================================================================
# SCHEMAS
# =============================================================================

DAILY_SALES_SCHEMA = {
    "sale_date": pl.Date,
    "store_id": pl.Int64,
    "store_name": pl.Utf8,
    "region_name": pl.Utf8,
    "day_of_week": pl.Int64,
    "hour_of_day": pl.Int64,
    "transaction_count": pl.Int64,
    "total_revenue": pl.Float64,
    "avg_transaction_value": pl.Float64,
    "influenced_transactions": pl.Int64,
    "substitution_transactions": pl.Int64,
}

HOURLY_PATTERNS_SCHEMA = {
    "day_of_week": pl.Int64,
    "hour_of_day": pl.Int64,
    "transaction_count": pl.Int64,
    "total_revenue": pl.Float64,
    "avg_transaction_value": pl.Float64,
    "active_stores": pl.Int64,
    "influenced_transactions": pl.Int64,
}

PRODUCT_PERFORMANCE_SCHEMA = {
    "product_id": pl.Int64,
    "product_name": pl.Utf8,
    "brand_name": pl.Utf8,
    "category": pl.Utf8,
    "is_fmcg": pl.Boolean,
    "total_units_sold": pl.Int64,
    "total_revenue": pl.Float64,
    "transaction_count": pl.Int64,
    "avg_quantity": pl.Float64,
    "market_share_percent": pl.Float64,
    "category_rank": pl.Int64,
    "first_sale_at": pl.Datetime("us"),
    "last_sale_at": pl.Datetime("us"),
    "daily_velocity": pl.Float64,
    "performance_tier": pl.Utf8,
}

REGIONAL_PERFORMANCE_SCHEMA = {
    "region_id": pl.Int64,
    "region_name": pl.Utf8,
    "mega_region": pl.Utf8,
    "store_count": pl.Int64,
    "total_transactions": pl.Int64,
    "total_revenue": pl.Float64,
    "avg_transaction_value": pl.Float64,
    "unique_customers": pl.Int64,
    "revenue_per_store": pl.Float64,
    "influence_rate_percent": pl.Float64,
    "substitution_rate_percent": pl.Float64,
    "client_brand_revenue": pl.Float64,
    "client_market_share_percent": pl.Float64,
    "revenue_rank": pl.Int64,
}

REGIONAL_CLIENT_BRANDS_SCHEMA = {
    "region_id": pl.Int64,
    "region_name": pl.Utf8,
    "brand_id": pl.Int64,
    "brand_name": pl.Utf8,
    "revenue": pl.Float64,
    "share_of_region_percent": pl.Float64,
}

BRAND_COMPETITION_SCHEMA = {
    "brand_id": pl.Int64,
    "brand_name": pl.Utf8,
    "brand_category": pl.Utf8,
    "brand_type": pl.Utf8,
    "transaction_count": pl.Int64,
    "total_units": pl.Int64,
    "total_revenue": pl.Float64,
    "avg_quantity": pl.Float64,
    "regional_presence": pl.Int64,
    "store_presence": pl.Int64,
    "category_market_share_percent": pl.Float64,
    "category_volume_share_percent": pl.Float64,
    "revenue_rank_in_category": pl.Int64,
    "overall_revenue_rank": pl.Int64,
    "market_position": pl.Utf8,
}

CATEGORY_PERFORMANCE_SCHEMA = {
    "category": pl.Utf8,
    "transaction_count": pl.Int64,
    "total_units": pl.Int64,
    "total_revenue": pl.Float64,
    "avg_revenue_per_line": pl.Float64,
    "product_count": pl.Int64,
    "brand_count": pl.Int64,
    "client_revenue": pl.Float64,
    "competitor_revenue": pl.Float64,
    "revenue_rank": pl.Int64,
    "regional_presence": pl.Int64,
}

STORE_PERFORMANCE_SCHEMA = {
    "store_id": pl.Int64,
    "store_name": pl.Utf8,
    "region_name": pl.Utf8,
    "store_type": pl.Utf8,
    "transaction_count": pl.Int64,
    "total_revenue": pl.Float64,
    "avg_transaction_value": pl.Float64,
    "influence_rate_percent": pl.Float64,
    "substitution_rate_percent": pl.Float64,
    "client_share_percent": pl.Float64,
    "device_count": pl.Int64,
    "active_devices": pl.Int64,
    "last_seen_at": pl.Datetime("us"),
    "performance_tier": pl.Utf8,
    "device_alert": pl.Boolean,
    "connectivity_alert": pl.Boolean,
}

CUSTOMER_SEGMENTS_SCHEMA = {
    "customer_id": pl.Utf8,
    "transaction_count": pl.Int64,
    "total_spent": pl.Float64,
    "avg_transaction_value": pl.Float64,
    "first_transaction_at": pl.Datetime("us"),
    "last_transaction_at": pl.Datetime("us"),
    "lifetime_days": pl.Int64,
    "active_days": pl.Int64,
    "days_since_last": pl.Int64,
    "recency_segment": pl.Utf8,
    "frequency_segment": pl.Utf8,
    "monetary_segment": pl.Utf8,
    "customer_segment": pl.Utf8,
}


def _finalize(df: pl.DataFrame, schema: dict) -> pl.DataFrame:
    return df.select(list(schema)).cast(schema)


def _lit(label: Enum) -> pl.Expr:
    return pl.lit(label.value)


# =============================================================================
# TIME ROLLUPS
# =============================================================================

def build_daily_sales(
    facts: PreparedFacts,
    as_of: datetime,
    settings: AggregationSettings,
) -> pl.DataFrame:
    """
    Daily sales rollup.

    One row per (sale_date, store, day_of_week, hour_of_day); the day and
    hour are stored alongside the date so they can be filtered without
    re-deriving them from timestamps.
    """
    tx = in_window(facts.transactions, "transaction_ts", as_of, settings.daily_sales_days)

    daily = (
        tx.with_columns([
            pl.col("transaction_ts").dt.date().alias("sale_date"),
            day_of_week("transaction_ts").alias("day_of_week"),
            pl.col("transaction_ts").dt.hour().cast(pl.Int64).alias("hour_of_day"),
        ])
        .group_by(
            ["sale_date", "store_id", "store_name", "region_name", "day_of_week", "hour_of_day"],
            maintain_order=True,
        )
        .agg([
            pl.len().alias("transaction_count"),
            pl.col("total_amount").sum().alias("total_revenue"),
            round_half_up(pl.col("total_amount").mean()).alias("avg_transaction_value"),
            pl.col("is_attendant_influenced").sum().alias("influenced_transactions"),
            pl.col("substitution_occurred").sum().alias("substitution_transactions"),
        ])
        .sort(["sale_date", "store_id", "hour_of_day"])
    )
    return _finalize(daily, DAILY_SALES_SCHEMA)


def build_hourly_patterns(
    facts: PreparedFacts,
    as_of: datetime,
    settings: AggregationSettings,
) -> pl.DataFrame:
    """Transaction volume by day of week (0 = Sunday) and hour of day."""
    tx = in_window(facts.transactions, "transaction_ts", as_of, settings.hourly_days)

    hourly = (
        tx.with_columns([
            day_of_week("transaction_ts").alias("day_of_week"),
            pl.col("transaction_ts").dt.hour().cast(pl.Int64).alias("hour_of_day"),
        ])
        .group_by(["day_of_week", "hour_of_day"], maintain_order=True)
        .agg([
            pl.len().alias("transaction_count"),
            pl.col("total_amount").sum().alias("total_revenue"),
            round_half_up(pl.col("total_amount").mean()).alias("avg_transaction_value"),
            pl.col("store_id").n_unique().alias("active_stores"),
            pl.col("is_attendant_influenced").sum().alias("influenced_transactions"),
        ])
        .sort(["day_of_week", "hour_of_day"])
    )
    return _finalize(hourly, HOURLY_PATTERNS_SCHEMA)


# =============================================================================
# PRODUCT, BRAND AND CATEGORY
# =============================================================================

def build_product_performance(
    facts: PreparedFacts,
    as_of: datetime,
    settings: AggregationSettings,
) -> pl.DataFrame:
    """
    Product performance.

    market_share_percent is the product's share of total window revenue
    across all products (a global share, not per category). category_rank
    orders products by units sold within their category, ties broken by
    product_id ascending.
    """
    items = in_window(facts.line_items, "transaction_ts", as_of, settings.product_days)
    window_revenue = float(items["line_revenue"].sum() or 0.0)

    units = pl.col("total_units_sold")
    products = (
        items.group_by(
            ["product_id", "product_name", "brand_name", "category", "is_fmcg"],
            maintain_order=True,
        )
        .agg([
            pl.col("quantity").sum().alias("total_units_sold"),
            pl.col("line_revenue").sum().alias("total_revenue"),
            pl.col("transaction_id").n_unique().alias("transaction_count"),
            pl.col("transaction_ts").min().alias("first_sale_at"),
            pl.col("transaction_ts").max().alias("last_sale_at"),
        ])
        .with_columns([
            safe_ratio(units, pl.col("transaction_count")).alias("avg_quantity"),
            share_percent(pl.col("total_revenue"), window_revenue).alias("market_share_percent"),
            (pl.col("last_sale_at").dt.date() - pl.col("first_sale_at").dt.date())
            .dt.total_days()
            .alias("_selling_days"),
        ])
        .with_columns([
            pl.when(pl.col("_selling_days") > 0)
            .then(round_half_up(units / pl.col("_selling_days")))
            .otherwise(None)
            .alias("daily_velocity"),
            pl.when(units > settings.high_performer_units).then(_lit(PerformanceTier.HIGH))
            .when(units > settings.medium_performer_units).then(_lit(PerformanceTier.MEDIUM))
            .otherwise(_lit(PerformanceTier.LOW))
            .alias("performance_tier"),
        ])
        .sort(["category", "total_units_sold", "product_id"], descending=[False, True, False])
        .with_columns(ordinal_rank(over="category").alias("category_rank"))
    )
    return _finalize(products, PRODUCT_PERFORMANCE_SCHEMA)


def build_brand_competition(
    facts: PreparedFacts,
    as_of: datetime,
    settings: AggregationSettings,
) -> pl.DataFrame:
    """
    Brand competition within each brand category.

    category_market_share_percent = brand revenue / category revenue × 100.
    market_position thresholds are inclusive lower bounds on the unrounded
    share: 25 leader, 15 strong, 5 challenger, otherwise niche.
    """
    items = in_window(facts.line_items, "transaction_ts", as_of, settings.brand_days)

    revenue = pl.col("total_revenue")
    category_revenue = revenue.sum().over("brand_category")
    category_units = pl.col("total_units").sum().over("brand_category")

    position = pl.when(pl.col("_share") >= MARKET_POSITION_THRESHOLDS[0][0]).then(
        _lit(MARKET_POSITION_THRESHOLDS[0][1])
    )
    for threshold, label in MARKET_POSITION_THRESHOLDS[1:]:
        position = position.when(pl.col("_share") >= threshold).then(_lit(label))
    position = position.otherwise(_lit(MarketPosition.NICHE))

    brands = (
        items.group_by(
            ["brand_id", "brand_name", "brand_category", "is_client_brand"],
            maintain_order=True,
        )
        .agg([
            pl.col("transaction_id").n_unique().alias("transaction_count"),
            pl.col("quantity").sum().alias("total_units"),
            pl.col("line_revenue").sum().alias("total_revenue"),
            pl.col("region_id").n_unique().alias("regional_presence"),
            pl.col("store_id").n_unique().alias("store_presence"),
        ])
        .with_columns([
            pl.when(pl.col("is_client_brand")).then(pl.lit("client"))
            .otherwise(pl.lit("competitor"))
            .alias("brand_type"),
            safe_ratio(pl.col("total_units"), pl.col("transaction_count")).alias("avg_quantity"),
            share_percent(revenue, category_revenue).alias("category_market_share_percent"),
            share_percent(pl.col("total_units"), category_units).alias("category_volume_share_percent"),
            raw_percent(revenue, category_revenue).alias("_share"),
        ])
        .with_columns(position.alias("market_position"))
        .sort(["total_revenue", "brand_id"], descending=[True, False])
        .with_columns(ordinal_rank().alias("overall_revenue_rank"))
        .sort(["brand_category", "total_revenue", "brand_id"], descending=[False, True, False])
        .with_columns(ordinal_rank(over="brand_category").alias("revenue_rank_in_category"))
    )
    return _finalize(brands, BRAND_COMPETITION_SCHEMA)


def build_category_performance(
    facts: PreparedFacts,
    as_of: datetime,
    settings: AggregationSettings,
) -> pl.DataFrame:
    """Product category totals with client vs competitor revenue split."""
    items = in_window(facts.line_items, "transaction_ts", as_of, settings.category_days)

    client = pl.col("is_client_brand")
    categories = (
        items.group_by("category", maintain_order=True)
        .agg([
            pl.col("transaction_id").n_unique().alias("transaction_count"),
            pl.col("quantity").sum().alias("total_units"),
            pl.col("line_revenue").sum().alias("total_revenue"),
            round_half_up(pl.col("line_revenue").mean()).alias("avg_revenue_per_line"),
            pl.col("product_id").n_unique().alias("product_count"),
            pl.col("brand_id").n_unique().alias("brand_count"),
            pl.when(client).then(pl.col("line_revenue")).otherwise(0.0).sum().alias("client_revenue"),
            pl.when(~client).then(pl.col("line_revenue")).otherwise(0.0).sum().alias("competitor_revenue"),
            pl.col("region_id").n_unique().alias("regional_presence"),
        ])
        .sort(["total_revenue", "category"], descending=[True, False])
        .with_columns(ordinal_rank().alias("revenue_rank"))
    )
    return _finalize(categories, CATEGORY_PERFORMANCE_SCHEMA)


# =============================================================================
# REGIONS AND STORES
# =============================================================================

def _regional_totals(tx: pl.DataFrame) -> pl.DataFrame:
    return tx.group_by("region_id", maintain_order=True).agg(
        pl.col("total_amount").sum().alias("region_revenue")
    )


def build_regional_performance(
    facts: PreparedFacts,
    as_of: datetime,
    settings: AggregationSettings,
) -> pl.DataFrame:
    """
    Regional performance.

    client_market_share_percent = client brand revenue / region revenue ×
    100, and 0 for a region without revenue.
    """
    tx = in_window(facts.transactions, "transaction_ts", as_of, settings.regional_days)
    items = in_window(facts.line_items, "transaction_ts", as_of, settings.regional_days)

    client_revenue = (
        items.filter(pl.col("is_client_brand"))
        .group_by("region_id", maintain_order=True)
        .agg(pl.col("line_revenue").sum().alias("client_brand_revenue"))
    )

    total = pl.col("total_transactions")
    regions = (
        tx.group_by(["region_id", "region_name", "mega_region"], maintain_order=True)
        .agg([
            pl.col("store_id").n_unique().alias("store_count"),
            pl.len().alias("total_transactions"),
            pl.col("total_amount").sum().alias("total_revenue"),
            round_half_up(pl.col("total_amount").mean()).alias("avg_transaction_value"),
            pl.col("customer_id").drop_nulls().n_unique().alias("unique_customers"),
            pl.col("is_attendant_influenced").sum().alias("_influenced"),
            pl.col("substitution_occurred").sum().alias("_substituted"),
        ])
        .join(client_revenue, on="region_id", how="left")
        .with_columns(pl.col("client_brand_revenue").fill_null(0.0))
        .with_columns([
            safe_ratio(pl.col("total_revenue"), pl.col("store_count")).alias("revenue_per_store"),
            share_percent(pl.col("_influenced"), total).alias("influence_rate_percent"),
            share_percent(pl.col("_substituted"), total).alias("substitution_rate_percent"),
            share_percent(pl.col("client_brand_revenue"), pl.col("total_revenue"))
            .alias("client_market_share_percent"),
        ])
        .sort(["total_revenue", "region_id"], descending=[True, False])
        .with_columns(ordinal_rank().alias("revenue_rank"))
    )
    return _finalize(regions, REGIONAL_PERFORMANCE_SCHEMA)


def build_regional_client_brands(
    facts: PreparedFacts,
    as_of: datetime,
    settings: AggregationSettings,
) -> pl.DataFrame:
    """Revenue of each client brand per region, with share of region revenue."""
    tx = in_window(facts.transactions, "transaction_ts", as_of, settings.regional_days)
    items = in_window(facts.line_items, "transaction_ts", as_of, settings.regional_days)

    breakdown = (
        items.filter(pl.col("is_client_brand"))
        .group_by(["region_id", "region_name", "brand_id", "brand_name"], maintain_order=True)
        .agg(pl.col("line_revenue").sum().alias("revenue"))
        .join(_regional_totals(tx), on="region_id", how="left")
        .with_columns(
            share_percent(pl.col("revenue"), pl.col("region_revenue")).alias("share_of_region_percent")
        )
        .sort(["region_id", "revenue", "brand_id"], descending=[False, True, False])
    )
    return _finalize(breakdown, REGIONAL_CLIENT_BRANDS_SCHEMA)


def build_store_performance(
    facts: PreparedFacts,
    as_of: datetime,
    settings: AggregationSettings,
) -> pl.DataFrame:
    """
    Store performance for every known store, active or not.

    device_alert is raised when any of the store's devices is not active;
    connectivity_alert when no device has been seen within
    device_stale_hours of as_of.
    """
    tx = in_window(facts.transactions, "transaction_ts", as_of, settings.store_days)
    items = in_window(facts.line_items, "transaction_ts", as_of, settings.store_days)
    stale_before = as_of - timedelta(hours=settings.device_stale_hours)

    activity = tx.group_by("store_id", maintain_order=True).agg([
        pl.len().alias("transaction_count"),
        pl.col("total_amount").sum().alias("total_revenue"),
        pl.col("is_attendant_influenced").sum().alias("_influenced"),
        pl.col("substitution_occurred").sum().alias("_substituted"),
    ])
    client_revenue = (
        items.filter(pl.col("is_client_brand"))
        .group_by("store_id", maintain_order=True)
        .agg(pl.col("line_revenue").sum().alias("_client_revenue"))
    )
    devices = facts.devices.group_by("store_id", maintain_order=True).agg([
        pl.len().alias("device_count"),
        (pl.col("status") == "active").sum().alias("active_devices"),
        pl.col("last_seen").max().alias("last_seen_at"),
    ])

    revenue = pl.col("total_revenue")
    count = pl.col("transaction_count")
    tier = (
        pl.when(revenue >= settings.top_store_revenue).then(_lit(StoreTier.TOP))
        .when(revenue >= settings.strong_store_revenue).then(_lit(StoreTier.STRONG))
        .when(revenue >= settings.average_store_revenue).then(_lit(StoreTier.AVERAGE))
        .when(revenue > 0).then(_lit(StoreTier.UNDERPERFORMER))
        .otherwise(_lit(StoreTier.NO_ACTIVITY))
    )

    stores = (
        facts.stores.select(["store_id", "store_name", "region_name", "store_type"])
        .join(activity, on="store_id", how="left")
        .join(client_revenue, on="store_id", how="left")
        .join(devices, on="store_id", how="left")
        .with_columns([
            pl.col("transaction_count").fill_null(0),
            pl.col("total_revenue").fill_null(0.0),
            pl.col("_influenced").fill_null(0),
            pl.col("_substituted").fill_null(0),
            pl.col("_client_revenue").fill_null(0.0),
            pl.col("device_count").fill_null(0),
            pl.col("active_devices").fill_null(0),
        ])
        .with_columns([
            safe_ratio(revenue, count).alias("avg_transaction_value"),
            share_percent(pl.col("_influenced"), count).alias("influence_rate_percent"),
            share_percent(pl.col("_substituted"), count).alias("substitution_rate_percent"),
            share_percent(pl.col("_client_revenue"), revenue).alias("client_share_percent"),
            tier.alias("performance_tier"),
            (pl.col("active_devices") < pl.col("device_count")).alias("device_alert"),
            (pl.col("last_seen_at").is_null() | (pl.col("last_seen_at") < stale_before))
            .alias("connectivity_alert"),
        ])
        .sort(["total_revenue", "store_id"], descending=[True, False])
    )
    return _finalize(stores, STORE_PERFORMANCE_SCHEMA)


# =============================================================================
# CUSTOMERS
# =============================================================================

def build_customer_segments(
    facts: PreparedFacts,
    as_of: datetime,
    settings: AggregationSettings,
) -> pl.DataFrame:
    """
    RFM-style customer segmentation over identified customers.

    Recency is counted in whole calendar days between as_of and the last
    transaction. The combined segment is the first match of: vip (all top
    thresholds and recent), loyal (mid thresholds and within
    loyal_recency_days), active (recent), at_risk.
    """
    tx = in_window(facts.transactions, "transaction_ts", as_of, settings.segment_days).filter(
        pl.col("customer_id").is_not_null()
    )

    days = pl.col("days_since_last")
    count = pl.col("transaction_count")
    spent = pl.col("total_spent")

    customers = (
        tx.group_by("customer_id", maintain_order=True)
        .agg([
            pl.len().alias("transaction_count"),
            pl.col("total_amount").sum().alias("total_spent"),
            round_half_up(pl.col("total_amount").mean()).alias("avg_transaction_value"),
            pl.col("transaction_ts").min().alias("first_transaction_at"),
            pl.col("transaction_ts").max().alias("last_transaction_at"),
            pl.col("transaction_ts").dt.date().n_unique().alias("active_days"),
        ])
        .with_columns([
            (
                (pl.col("last_transaction_at").dt.date() - pl.col("first_transaction_at").dt.date())
                .dt.total_days() + 1
            ).alias("lifetime_days"),
            (pl.lit(as_of.date()) - pl.col("last_transaction_at").dt.date())
            .dt.total_days()
            .alias("days_since_last"),
        ])
        .with_columns([
            pl.when(days <= settings.recent_days).then(_lit(RecencySegment.RECENT))
            .when(days <= settings.active_days).then(_lit(RecencySegment.ACTIVE))
            .otherwise(_lit(RecencySegment.INACTIVE))
            .alias("recency_segment"),
            pl.when(count >= settings.frequent_transactions).then(_lit(FrequencySegment.FREQUENT))
            .when(count >= settings.regular_transactions).then(_lit(FrequencySegment.REGULAR))
            .otherwise(_lit(FrequencySegment.OCCASIONAL))
            .alias("frequency_segment"),
            pl.when(spent >= settings.premium_spend).then(_lit(MonetarySegment.PREMIUM))
            .when(spent >= settings.standard_spend).then(_lit(MonetarySegment.STANDARD))
            .otherwise(_lit(MonetarySegment.BUDGET))
            .alias("monetary_segment"),
            pl.when(
                (count >= settings.frequent_transactions)
                & (spent >= settings.premium_spend)
                & (days <= settings.recent_days)
            ).then(_lit(CustomerSegment.VIP))
            .when(
                (count >= settings.regular_transactions)
                & (spent >= settings.standard_spend)
                & (days <= settings.loyal_recency_days)
            ).then(_lit(CustomerSegment.LOYAL))
            .when(days <= settings.recent_days).then(_lit(CustomerSegment.ACTIVE))
            .otherwise(_lit(CustomerSegment.AT_RISK))
            .alias("customer_segment"),
        ])
        .sort(["total_spent", "customer_id"], descending=[True, False])
    )
    return _finalize(customers, CUSTOMER_SEGMENTS_SCHEMA)
