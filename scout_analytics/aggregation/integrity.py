"""
Fact Integrity and Preparation

Cleans a FactSnapshot before aggregation:
- Excludes transactions whose store is unknown
- Excludes line items that are orphaned, carry a non-positive quantity or
  reference a product (or brand) that does not resolve
- Recomputes every transaction total from its valid line items
- Joins store, region, product and brand attributes onto the facts

Malformed rows never raise; they are counted in an IntegrityReport.
"""

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Dict, Tuple

import polars as pl
import structlog

from .snapshot import FactSnapshot

logger = structlog.get_logger(__name__)


@dataclass
class IntegrityReport:
    """Counts of rows excluded from aggregation"""
    input_transactions: int
    input_line_items: int
    unknown_store_transactions: int = 0
    orphan_line_items: int = 0
    invalid_quantity_line_items: int = 0
    dangling_product_line_items: int = 0

    @property
    def excluded_line_items(self) -> int:
        return (
            self.orphan_line_items
            + self.invalid_quantity_line_items
            + self.dangling_product_line_items
        )

    @property
    def excluded_rows(self) -> int:
        return self.unknown_store_transactions + self.excluded_line_items

    def as_dict(self) -> Dict[str, int]:
        data = asdict(self)
        data["excluded_rows"] = self.excluded_rows
        return data


@dataclass(frozen=True)
class PreparedFacts:
    """
    Validated facts ready for aggregation.

    transactions: one row per valid transaction with recomputed
        total_amount and store/region attributes.
    line_items: one row per valid line item with product, brand,
        transaction time, store and region attributes and line_revenue.
    stores: every known store with region attributes.
    devices: devices as loaded.
    """
    as_of: datetime
    transactions: pl.DataFrame
    line_items: pl.DataFrame
    stores: pl.DataFrame
    devices: pl.DataFrame


def _store_dimension(snapshot: FactSnapshot) -> pl.DataFrame:
    return (
        snapshot.stores
        .join(snapshot.regions, on="region_id", how="left")
        .with_columns([
            pl.col("region_name").fill_null("Unassigned"),
            pl.col("mega_region").fill_null("Unassigned"),
        ])
    )


def _product_catalog(snapshot: FactSnapshot) -> pl.DataFrame:
    # Products whose brand does not resolve are unusable for brand views
    return snapshot.products.join(snapshot.brands, on="brand_id", how="inner")


def prepare_facts(snapshot: FactSnapshot) -> Tuple[PreparedFacts, IntegrityReport]:
    """
    Validate and enrich a snapshot.

    Returns:
        (PreparedFacts, IntegrityReport)
    """
    report = IntegrityReport(
        input_transactions=snapshot.transactions.height,
        input_line_items=snapshot.line_items.height,
    )

    stores = _store_dimension(snapshot)
    catalog = _product_catalog(snapshot)

    # Transactions must belong to a known store
    transactions = snapshot.transactions.join(stores, on="store_id", how="inner")
    report.unknown_store_transactions = snapshot.transactions.height - transactions.height

    # Line items must belong to a kept transaction
    attached = snapshot.line_items.join(
        transactions.select("transaction_id"), on="transaction_id", how="semi"
    )
    report.orphan_line_items = snapshot.line_items.height - attached.height

    positive = attached.filter(pl.col("quantity").is_not_null() & (pl.col("quantity") > 0))
    report.invalid_quantity_line_items = attached.height - positive.height

    resolved = positive.join(catalog, on="product_id", how="inner")
    report.dangling_product_line_items = positive.height - resolved.height

    line_items = (
        resolved
        .with_columns((pl.col("quantity") * pl.col("unit_price")).alias("line_revenue"))
        .join(
            transactions.select([
                "transaction_id",
                "transaction_ts",
                "store_id",
                "region_id",
                "region_name",
                "customer_id",
            ]),
            on="transaction_id",
            how="inner",
        )
        .sort(["transaction_ts", "transaction_id", "line_item_id"])
    )

    totals = line_items.group_by("transaction_id").agg(
        pl.col("line_revenue").sum().alias("total_amount")
    )
    transactions = (
        transactions
        .join(totals, on="transaction_id", how="left")
        .with_columns(pl.col("total_amount").fill_null(0.0))
        .sort(["transaction_ts", "transaction_id"])
    )

    if report.excluded_rows:
        logger.warning("Rows excluded from aggregation", **report.as_dict())
    else:
        logger.debug("Fact integrity check passed", **report.as_dict())

    prepared = PreparedFacts(
        as_of=snapshot.as_of,
        transactions=transactions,
        line_items=line_items,
        stores=stores,
        devices=snapshot.devices,
    )
    return prepared, report
