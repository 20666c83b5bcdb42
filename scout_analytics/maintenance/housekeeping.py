"""
Fact housekeeping jobs.
"""

import time

import structlog
from sqlalchemy import and_, exists, update
from sqlalchemy.ext.asyncio import AsyncSession

from scout_analytics.audit.recorder import record_audit
from scout_analytics.database.models import AuditAction, LineItem, Product, Transaction

logger = structlog.get_logger(__name__)


async def flag_fmcg_transactions(session: AsyncSession) -> int:
    """
    Set is_fmcg on transactions containing at least one FMCG product.

    Only unflagged transactions are touched. Returns the number updated.
    """
    start = time.perf_counter()
    has_fmcg_item = exists().where(
        and_(
            LineItem.transaction_id == Transaction.transaction_id,
            LineItem.product_id == Product.product_id,
            Product.is_fmcg.is_(True),
        )
    )
    result = await session.execute(
        update(Transaction)
        .where(has_fmcg_item, Transaction.is_fmcg.is_(False))
        .values(is_fmcg=True)
        .execution_options(synchronize_session=False)
    )
    updated = result.rowcount or 0
    elapsed = round(time.perf_counter() - start, 3)

    await record_audit(
        session,
        Transaction.__tablename__,
        AuditAction.FMCG_FLAGGED,
        new_data={"updated_count": updated, "execution_time_seconds": elapsed},
    )
    logger.info("FMCG transactions flagged", updated=updated, elapsed_seconds=elapsed)
    return updated
