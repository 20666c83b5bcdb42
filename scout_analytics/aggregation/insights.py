"""
Ad-hoc Business Insights

On-demand reports computed from prepared facts or published views rather
than persisted as views of their own.
"""

from datetime import datetime
from typing import Optional

import polars as pl

from .expressions import in_window, round_half_up, share_percent
from .integrity import PreparedFacts

MARKET_SHARE_SCHEMA = {
    "brand_name": pl.Utf8,
    "region_name": pl.Utf8,
    "total_revenue": pl.Float64,
    "market_share_percent": pl.Float64,
    "rank_in_region": pl.Int64,
}

CUSTOMER_INSIGHTS_SCHEMA = {
    "customer_segment": pl.Utf8,
    "customer_count": pl.Int64,
    "avg_transaction_value": pl.Float64,
    "total_revenue": pl.Float64,
    "avg_frequency": pl.Float64,
}


def market_share(
    facts: PreparedFacts,
    brand_name: Optional[str],
    as_of: datetime,
    days: int = 30,
    region_name: Optional[str] = None,
) -> pl.DataFrame:
    """
    Revenue share of a brand within each region's brand revenue.

    The market of a region is every brand sold there in the window, so
    the share is computed before filtering to brand_name. Passing None
    returns every brand. Rank is by revenue descending within the region,
    ties by brand_id.
    """
    items = in_window(facts.line_items, "transaction_ts", as_of, days)
    if region_name is not None:
        items = items.filter(pl.col("region_name") == region_name)

    shares = (
        items.group_by(["region_name", "brand_id", "brand_name"], maintain_order=True)
        .agg(pl.col("line_revenue").sum().alias("total_revenue"))
        .with_columns(
            share_percent(
                pl.col("total_revenue"),
                pl.col("total_revenue").sum().over("region_name"),
            ).alias("market_share_percent")
        )
        .sort(["region_name", "total_revenue", "brand_id"], descending=[False, True, False])
        .with_columns(
            (pl.int_range(0, pl.len(), dtype=pl.Int64).over("region_name") + 1).alias("rank_in_region")
        )
    )
    if brand_name is not None:
        shares = shares.filter(pl.col("brand_name") == brand_name)

    return shares.select(list(MARKET_SHARE_SCHEMA)).cast(MARKET_SHARE_SCHEMA)


def customer_insights(
    segments: pl.DataFrame,
    active_since: Optional[datetime] = None,
) -> pl.DataFrame:
    """
    Summarize the customer_segments view by combined segment.

    Args:
        segments: Published customer_segments frame
        active_since: Only customers with a transaction at or after this time
    """
    if active_since is not None:
        segments = segments.filter(pl.col("last_transaction_at") >= active_since)

    summary = (
        segments.group_by("customer_segment", maintain_order=True)
        .agg([
            pl.len().alias("customer_count"),
            round_half_up(pl.col("avg_transaction_value").mean()).alias("avg_transaction_value"),
            round_half_up(pl.col("total_spent").sum()).alias("total_revenue"),
            round_half_up(pl.col("transaction_count").mean()).alias("avg_frequency"),
        ])
        .sort(["total_revenue", "customer_segment"], descending=[True, False])
    )
    return summary.select(list(CUSTOMER_INSIGHTS_SCHEMA)).cast(CUSTOMER_INSIGHTS_SCHEMA)
