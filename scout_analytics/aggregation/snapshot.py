"""
Fact Snapshot Loading

Reads the Fact Store and Reference Data into polars frames as of a single
point in time. Every aggregation and detection run works from one snapshot
so that all views of a run agree with each other.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, Optional

import polars as pl
import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from scout_analytics.database.models import (
    Brand,
    Device,
    LineItem,
    Product,
    Region,
    Store,
    Transaction,
)

logger = structlog.get_logger(__name__)


# =============================================================================
# SCHEMAS
# =============================================================================

TRANSACTION_SCHEMA = {
    "transaction_id": pl.Utf8,
    "store_id": pl.Int64,
    "device_id": pl.Utf8,
    "transaction_ts": pl.Datetime("us"),
    "customer_id": pl.Utf8,
    "gender": pl.Utf8,
    "age": pl.Int64,
    "emotion": pl.Utf8,
    "duration_seconds": pl.Int64,
    "is_attendant_influenced": pl.Boolean,
    "substitution_occurred": pl.Boolean,
}

LINE_ITEM_SCHEMA = {
    "line_item_id": pl.Int64,
    "transaction_id": pl.Utf8,
    "product_id": pl.Int64,
    "quantity": pl.Int64,
}

PRODUCT_SCHEMA = {
    "product_id": pl.Int64,
    "product_name": pl.Utf8,
    "brand_id": pl.Int64,
    "category": pl.Utf8,
    "unit_price": pl.Float64,
    "is_fmcg": pl.Boolean,
}

BRAND_SCHEMA = {
    "brand_id": pl.Int64,
    "brand_name": pl.Utf8,
    "brand_category": pl.Utf8,
    "is_client_brand": pl.Boolean,
}

STORE_SCHEMA = {
    "store_id": pl.Int64,
    "store_name": pl.Utf8,
    "region_id": pl.Int64,
    "store_type": pl.Utf8,
    "size_tier": pl.Utf8,
}

REGION_SCHEMA = {
    "region_id": pl.Int64,
    "region_name": pl.Utf8,
    "mega_region": pl.Utf8,
}

DEVICE_SCHEMA = {
    "device_id": pl.Utf8,
    "store_id": pl.Int64,
    "status": pl.Utf8,
    "last_seen": pl.Datetime("us"),
}


def frame_from_records(records: Iterable[Dict[str, Any]], schema: Dict[str, Any]) -> pl.DataFrame:
    """Build a frame with a fixed schema, empty input included."""
    rows = list(records)
    if not rows:
        return pl.DataFrame(schema=schema)
    return pl.from_dicts(rows, schema=schema)


@dataclass(frozen=True)
class FactSnapshot:
    """
    Raw facts and reference data as of a point in time.

    Frames are treated as immutable; transformations always produce new
    frames.
    """
    as_of: datetime
    transactions: pl.DataFrame
    line_items: pl.DataFrame
    products: pl.DataFrame
    brands: pl.DataFrame
    stores: pl.DataFrame
    regions: pl.DataFrame
    devices: pl.DataFrame = field(default_factory=lambda: pl.DataFrame(schema=DEVICE_SCHEMA))

    @classmethod
    def from_records(
        cls,
        as_of: datetime,
        transactions: Iterable[Dict[str, Any]] = (),
        line_items: Iterable[Dict[str, Any]] = (),
        products: Iterable[Dict[str, Any]] = (),
        brands: Iterable[Dict[str, Any]] = (),
        stores: Iterable[Dict[str, Any]] = (),
        regions: Iterable[Dict[str, Any]] = (),
        devices: Iterable[Dict[str, Any]] = (),
    ) -> "FactSnapshot":
        """Build a snapshot from plain dict rows (used by loaders and fixtures)."""
        return cls(
            as_of=as_of,
            transactions=frame_from_records(transactions, TRANSACTION_SCHEMA),
            line_items=frame_from_records(line_items, LINE_ITEM_SCHEMA),
            products=frame_from_records(products, PRODUCT_SCHEMA),
            brands=frame_from_records(brands, BRAND_SCHEMA),
            stores=frame_from_records(stores, STORE_SCHEMA),
            regions=frame_from_records(regions, REGION_SCHEMA),
            devices=frame_from_records(devices, DEVICE_SCHEMA),
        )

    @property
    def row_counts(self) -> Dict[str, int]:
        return {
            "transactions": self.transactions.height,
            "line_items": self.line_items.height,
            "products": self.products.height,
            "brands": self.brands.height,
            "stores": self.stores.height,
            "devices": self.devices.height,
        }


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


async def load_fact_snapshot(
    session: AsyncSession,
    as_of: datetime,
    lookback_days: int,
) -> FactSnapshot:
    """
    Load facts in [as_of - lookback_days, as_of] plus all reference data.

    Transactions stamped after as_of are ignored so that rows appended
    while the snapshot is read cannot leak into it.

    Args:
        session: Open async session
        as_of: Snapshot time
        lookback_days: Widest window any consumer of the snapshot needs
    """
    window_start = as_of - timedelta(days=lookback_days)
    in_window = (Transaction.transaction_ts >= window_start) & (Transaction.transaction_ts <= as_of)

    tx_result = await session.execute(
        select(
            Transaction.transaction_id,
            Transaction.store_id,
            Transaction.device_id,
            Transaction.transaction_ts,
            Transaction.customer_id,
            Transaction.gender,
            Transaction.age,
            Transaction.emotion,
            Transaction.duration_seconds,
            Transaction.is_attendant_influenced,
            Transaction.substitution_occurred,
        ).where(in_window)
    )
    transactions = [dict(r._mapping) for r in tx_result]

    item_result = await session.execute(
        select(
            LineItem.line_item_id,
            LineItem.transaction_id,
            LineItem.product_id,
            LineItem.quantity,
        )
        .join(Transaction, Transaction.transaction_id == LineItem.transaction_id)
        .where(in_window)
    )
    line_items = [dict(r._mapping) for r in item_result]

    product_result = await session.execute(
        select(
            Product.product_id,
            Product.name.label("product_name"),
            Product.brand_id,
            Product.category,
            Product.unit_price,
            Product.is_fmcg,
        )
    )
    products = [
        {**r._mapping, "unit_price": float(r.unit_price)}
        for r in product_result
    ]

    brand_result = await session.execute(
        select(
            Brand.brand_id,
            Brand.name.label("brand_name"),
            Brand.category.label("brand_category"),
            Brand.is_client_brand,
        )
    )
    brands = [dict(r._mapping) for r in brand_result]

    store_result = await session.execute(
        select(Store.store_id, Store.name, Store.region_id, Store.store_type, Store.size_tier)
    )
    stores = [
        {
            "store_id": r.store_id,
            "store_name": r.name,
            "region_id": r.region_id,
            "store_type": _enum_value(r.store_type),
            "size_tier": _enum_value(r.size_tier),
        }
        for r in store_result
    ]

    region_result = await session.execute(
        select(Region.region_id, Region.name.label("region_name"), Region.mega_region)
    )
    regions = [dict(r._mapping) for r in region_result]

    device_result = await session.execute(
        select(Device.device_id, Device.store_id, Device.status, Device.last_seen)
    )
    devices = [
        {
            "device_id": r.device_id,
            "store_id": r.store_id,
            "status": _enum_value(r.status),
            "last_seen": r.last_seen,
        }
        for r in device_result
    ]

    snapshot = FactSnapshot.from_records(
        as_of=as_of,
        transactions=transactions,
        line_items=line_items,
        products=products,
        brands=brands,
        stores=stores,
        regions=regions,
        devices=devices,
    )

    logger.info(
        "Fact snapshot loaded",
        as_of=as_of.isoformat(),
        lookback_days=lookback_days,
        **snapshot.row_counts,
    )
    return snapshot


async def recompute_transaction_totals(
    session: AsyncSession,
    since: Optional[datetime] = None,
) -> int:
    """
    Rewrite transactions.total_amount from line items and current prices.

    Line items with non-positive quantity or an unknown product contribute
    nothing. Returns the number of transactions updated.
    """
    line_total = (
        select(func.coalesce(func.sum(LineItem.quantity * Product.unit_price), 0))
        .select_from(LineItem)
        .join(Product, Product.product_id == LineItem.product_id)
        .where(
            LineItem.transaction_id == Transaction.transaction_id,
            LineItem.quantity > 0,
        )
        .scalar_subquery()
    )

    stmt = update(Transaction).values(total_amount=line_total)
    if since is not None:
        stmt = stmt.where(Transaction.transaction_ts >= since)

    result = await session.execute(stmt.execution_options(synchronize_session=False))
    logger.info("Transaction totals recomputed", updated=result.rowcount, since=since)
    return result.rowcount
