"""
Shared polars expressions for derived views.

Rounding is half-up to two decimals everywhere; shares over an empty
denominator are 0 rather than null.
"""

from datetime import datetime, timedelta
from typing import Union

import polars as pl

IntoExpr = Union[pl.Expr, float, int]


def round_half_up(expr: pl.Expr, decimals: int = 2) -> pl.Expr:
    """Round half away from zero for non-negative values."""
    factor = 10 ** decimals
    # Collapse binary representation error (12.345 * 100 = 1234.4999...) first
    scaled = (expr * factor).round(6)
    return (scaled + 0.5).floor() / factor


def share_percent(numerator: IntoExpr, denominator: IntoExpr, decimals: int = 2) -> pl.Expr:
    """numerator / denominator × 100, rounded; 0 when the denominator is 0 or null."""
    numerator = numerator if isinstance(numerator, pl.Expr) else pl.lit(numerator)
    denominator = denominator if isinstance(denominator, pl.Expr) else pl.lit(denominator)
    return (
        pl.when(denominator.fill_null(0) == 0)
        .then(pl.lit(0.0))
        .otherwise(round_half_up(numerator * 100 / denominator, decimals))
    )


def raw_percent(numerator: pl.Expr, denominator: pl.Expr) -> pl.Expr:
    """Unrounded percentage for threshold comparisons."""
    return (
        pl.when(denominator.fill_null(0) == 0)
        .then(pl.lit(0.0))
        .otherwise((numerator * 100 / denominator).round(6))
    )


def safe_ratio(numerator: pl.Expr, denominator: pl.Expr, decimals: int = 2) -> pl.Expr:
    """Rounded ratio; 0 when the denominator is 0 or null."""
    return (
        pl.when(denominator.fill_null(0) == 0)
        .then(pl.lit(0.0))
        .otherwise(round_half_up(numerator / denominator, decimals))
    )


def in_window(df: pl.DataFrame, column: str, as_of: datetime, days: int) -> pl.DataFrame:
    """Rows with column in [as_of - days, as_of]."""
    start = as_of - timedelta(days=days)
    return df.filter((pl.col(column) >= start) & (pl.col(column) <= as_of))


def day_of_week(column: str) -> pl.Expr:
    """Day of week with 0 = Sunday."""
    return (pl.col(column).dt.weekday() % 7).cast(pl.Int64)


def ordinal_rank(over: Union[str, None] = None) -> pl.Expr:
    """1-based position in the current row order, optionally per group."""
    position = pl.int_range(0, pl.len(), dtype=pl.Int64)
    if over is not None:
        position = position.over(over)
    return position + 1
