"""
Database Seeder

Loads a generated RetailDataset into the fact store with chunked Core
inserts, then derives transaction totals and FMCG flags.
"""

import time
from typing import Any, Dict, List

import structlog
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession

from scout_analytics.aggregation.snapshot import recompute_transaction_totals
from scout_analytics.data.generators import RetailDataset
from scout_analytics.database.models import (
    Brand,
    Device,
    LineItem,
    Product,
    Region,
    Store,
    Transaction,
)
from scout_analytics.maintenance.housekeeping import flag_fmcg_transactions

logger = structlog.get_logger(__name__)

CHUNK_SIZE = 1000


async def execute_batch_insert(
    session: AsyncSession,
    model: Any,
    records: List[Dict[str, Any]],
    chunk_size: int = CHUNK_SIZE,
) -> int:
    """Insert records in chunks using Core insert"""
    if not records:
        return 0

    for i in range(0, len(records), chunk_size):
        await session.execute(insert(model), records[i:i + chunk_size])

    logger.info("Inserted records", table=model.__tablename__, count=len(records))
    return len(records)


async def seed_database(session: AsyncSession, dataset: RetailDataset) -> Dict[str, int]:
    """
    Load every table of the dataset, parents first.

    Runs inside the caller's transaction. Returns inserted row counts
    plus the number of transactions whose totals were recomputed.
    """
    start = time.perf_counter()
    counts = {}
    for model, frame in (
        (Region, dataset.regions),
        (Brand, dataset.brands),
        (Product, dataset.products),
        (Store, dataset.stores),
        (Device, dataset.devices),
        (Transaction, dataset.transactions),
        (LineItem, dataset.line_items),
    ):
        counts[model.__tablename__] = await execute_batch_insert(session, model, frame.to_dicts())

    counts["totals_recomputed"] = await recompute_transaction_totals(session)
    counts["fmcg_flagged"] = await flag_fmcg_transactions(session)

    logger.info(
        "Database seeded",
        elapsed_seconds=round(time.perf_counter() - start, 2),
        **counts,
    )
    return counts
