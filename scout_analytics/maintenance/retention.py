"""
Data Retention

Periodic purge of aged data:
- Line items, then transactions, older than the retention cutoff
- Audit entries older than audit_months
- Resolved anomalies resolved more than resolved_anomaly_months ago

Each purge writes a PURGE_COMPLETE audit entry with the counts.
"""

import calendar
import time
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scout_analytics.audit.recorder import record_audit
from scout_analytics.config.settings import Settings, get_settings
from scout_analytics.database.models import (
    Anomaly,
    AnomalyStatus,
    AuditAction,
    AuditEntry,
    LineItem,
    Transaction,
)

logger = structlog.get_logger(__name__)


def subtract_months(value: datetime, months: int) -> datetime:
    """Calendar month arithmetic; the day is clamped to the target month."""
    month_index = value.year * 12 + (value.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


@dataclass
class PurgeResult:
    """Rows removed by one purge"""
    cutoff: datetime
    retention_months: int
    deleted_line_items: int = 0
    deleted_transactions: int = 0
    deleted_audit_entries: int = 0
    deleted_anomalies: int = 0
    duration_seconds: float = 0.0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["cutoff"] = self.cutoff.isoformat()
        return data


async def purge_old_data(
    session: AsyncSession,
    retention_months: Optional[int] = None,
    as_of: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> PurgeResult:
    """
    Delete aged facts and operational rows inside the caller's transaction.

    Args:
        retention_months: Months of transactions to keep (default from settings)
        as_of: Reference time (default now); cutoffs are taken at midnight

    Raises:
        ValueError: retention_months below 1
    """
    settings = settings or get_settings()
    months = retention_months if retention_months is not None else settings.retention.transaction_months
    if months < 1:
        raise ValueError(f"retention_months must be at least 1, got {months}")

    start = time.perf_counter()
    as_of = as_of or datetime.utcnow()
    today = datetime(as_of.year, as_of.month, as_of.day)
    cutoff = subtract_months(today, months)
    audit_cutoff = subtract_months(today, settings.retention.audit_months)
    anomaly_cutoff = subtract_months(today, settings.retention.resolved_anomaly_months)

    result = PurgeResult(cutoff=cutoff, retention_months=months)

    aged = select(Transaction.transaction_id).where(Transaction.transaction_ts < cutoff)
    deleted = await session.execute(
        delete(LineItem)
        .where(LineItem.transaction_id.in_(aged))
        .execution_options(synchronize_session=False)
    )
    result.deleted_line_items = deleted.rowcount or 0

    deleted = await session.execute(
        delete(Transaction)
        .where(Transaction.transaction_ts < cutoff)
        .execution_options(synchronize_session=False)
    )
    result.deleted_transactions = deleted.rowcount or 0

    deleted = await session.execute(
        delete(AuditEntry)
        .where(AuditEntry.recorded_at < audit_cutoff)
        .execution_options(synchronize_session=False)
    )
    result.deleted_audit_entries = deleted.rowcount or 0

    deleted = await session.execute(
        delete(Anomaly)
        .where(
            Anomaly.status == AnomalyStatus.RESOLVED,
            Anomaly.resolved_at < anomaly_cutoff,
        )
        .execution_options(synchronize_session=False)
    )
    result.deleted_anomalies = deleted.rowcount or 0

    result.duration_seconds = round(time.perf_counter() - start, 3)

    await record_audit(
        session,
        "data_cleanup",
        AuditAction.PURGE_COMPLETE,
        new_data=result.to_dict(),
    )
    logger.info("Data purge completed", **result.to_dict())
    return result


async def run_retention_purge(
    session_factory: async_sessionmaker[AsyncSession],
    scheduler,
    retention_months: Optional[int] = None,
    as_of: Optional[datetime] = None,
    actor: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> PurgeResult:
    """Purge while every view refresh is held off."""
    async with scheduler.quiesce():
        async with session_factory() as session:
            session.info["actor"] = actor
            session.info["origin"] = "retention_purge"
            async with session.begin():
                return await purge_old_data(
                    session,
                    retention_months=retention_months,
                    as_of=as_of,
                    settings=settings,
                )
