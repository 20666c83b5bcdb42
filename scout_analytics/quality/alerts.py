"""
Operational Alerts and System Health

- check_system_alerts(): device connectivity, stores without revenue today
  and active high severity anomaly count
- system_health(): device, transaction, anomaly and refresh status with a
  0-100 health score
"""

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import and_, case, exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from scout_analytics.config.settings import Settings, get_settings
from scout_analytics.database.models import (
    Anomaly,
    AnomalySeverity,
    AnomalyStatus,
    Device,
    DeviceStatus,
    RefreshLogEntry,
    RefreshStatus,
    Store,
    Transaction,
)

logger = structlog.get_logger(__name__)


class AlertType(str, Enum):
    DEVICE_CONNECTIVITY = "DEVICE_CONNECTIVITY"
    REVENUE_ANOMALY = "REVENUE_ANOMALY"
    ANOMALY_COUNT = "ANOMALY_COUNT"


@dataclass
class SystemAlert:
    """One raised operational alert"""
    alert_type: AlertType
    severity: AnomalySeverity
    message: str
    affected_count: int

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["alert_type"] = self.alert_type.value
        data["severity"] = self.severity.value
        return data


def _day_bounds(now: datetime):
    start = datetime(now.year, now.month, now.day)
    return start, start + timedelta(days=1)


async def _stale_device_count(session: AsyncSession, now: datetime, stale_hours: int) -> int:
    cutoff = now - timedelta(hours=stale_hours)
    result = await session.execute(
        select(func.count())
        .select_from(Device)
        .where((Device.last_seen.is_(None)) | (Device.last_seen < cutoff))
    )
    return result.scalar_one()


async def _zero_revenue_store_count(session: AsyncSession, now: datetime) -> int:
    day_start, day_end = _day_bounds(now)
    sold_today = exists().where(
        and_(
            Transaction.store_id == Store.store_id,
            Transaction.transaction_ts >= day_start,
            Transaction.transaction_ts < day_end,
        )
    )
    result = await session.execute(select(func.count()).select_from(Store).where(~sold_today))
    return result.scalar_one()


async def _active_high_severity_count(session: AsyncSession) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(Anomaly)
        .where(
            Anomaly.status == AnomalyStatus.ACTIVE,
            Anomaly.severity == AnomalySeverity.HIGH,
        )
    )
    return result.scalar_one()


async def check_system_alerts(
    session: AsyncSession,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> List[SystemAlert]:
    """Evaluate the operational alert conditions."""
    settings = settings or get_settings()
    now = now or datetime.utcnow()
    alerts: List[SystemAlert] = []

    stale = await _stale_device_count(session, now, settings.aggregation.device_stale_hours)
    if stale > 0:
        alerts.append(SystemAlert(
            alert_type=AlertType.DEVICE_CONNECTIVITY,
            severity=AnomalySeverity.HIGH,
            message=f"Devices not seen for more than {settings.aggregation.device_stale_hours} hours",
            affected_count=stale,
        ))

    zero_revenue = await _zero_revenue_store_count(session, now)
    if zero_revenue > settings.anomaly.zero_revenue_store_limit:
        alerts.append(SystemAlert(
            alert_type=AlertType.REVENUE_ANOMALY,
            severity=AnomalySeverity.MEDIUM,
            message="Stores with zero revenue today",
            affected_count=zero_revenue,
        ))

    high_severity = await _active_high_severity_count(session)
    if high_severity > settings.anomaly.high_severity_limit:
        alerts.append(SystemAlert(
            alert_type=AlertType.ANOMALY_COUNT,
            severity=AnomalySeverity.HIGH,
            message="High number of active anomalies",
            affected_count=high_severity,
        ))

    if alerts:
        logger.warning("System alerts raised", alerts=[a.alert_type.value for a in alerts])
    return alerts


async def _latest_run_failures(session: AsyncSession) -> int:
    latest = await session.execute(
        select(RefreshLogEntry.run_id).order_by(RefreshLogEntry.started_at.desc()).limit(1)
    )
    run_id = latest.scalar_one_or_none()
    if run_id is None:
        return 0
    result = await session.execute(
        select(func.count())
        .select_from(RefreshLogEntry)
        .where(
            RefreshLogEntry.run_id == run_id,
            RefreshLogEntry.status.in_([RefreshStatus.FAILED, RefreshStatus.TIMED_OUT]),
        )
    )
    return result.scalar_one()


def health_score(active_devices: int, total_devices: int, high_severity: int, failed_views: int) -> float:
    """
    0-100 score: 40 points device uptime, 30 points minus 10 per active
    high severity anomaly, 30 points minus 10 per failed view in the
    latest refresh run.
    """
    device_points = (active_devices / total_devices * 40) if total_devices else 0.0
    anomaly_points = 30 - min(high_severity * 10, 30)
    refresh_points = 30 - min(failed_views * 10, 30)
    return float(round(device_points + anomaly_points + refresh_points))


async def system_health(
    session: AsyncSession,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> Dict[str, Any]:
    """Snapshot of operational health."""
    settings = settings or get_settings()
    now = now or datetime.utcnow()
    day_start, day_end = _day_bounds(now)

    device_row = (await session.execute(
        select(
            func.count().label("total"),
            func.coalesce(func.sum(case((Device.status == DeviceStatus.ACTIVE, 1), else_=0)), 0).label("active"),
            func.coalesce(func.sum(case((Device.status == DeviceStatus.MAINTENANCE, 1), else_=0)), 0).label("maintenance"),
            func.coalesce(func.sum(case((Device.status == DeviceStatus.OFFLINE, 1), else_=0)), 0).label("offline"),
        ).select_from(Device)
    )).one()
    stale = await _stale_device_count(session, now, settings.aggregation.device_stale_hours)

    tx_row = (await session.execute(
        select(
            func.count().label("total"),
            func.coalesce(func.sum(case((Transaction.total_amount == 0, 1), else_=0)), 0).label("zero_amount"),
            func.avg(Transaction.total_amount).label("avg_amount"),
        ).where(Transaction.transaction_ts >= day_start, Transaction.transaction_ts < day_end)
    )).one()

    anomaly_row = (await session.execute(
        select(
            func.count().label("total"),
            func.coalesce(func.sum(case((Anomaly.status == AnomalyStatus.ACTIVE, 1), else_=0)), 0).label("active"),
            func.coalesce(func.sum(case((Anomaly.last_detected_at >= day_start, 1), else_=0)), 0).label("today"),
        ).select_from(Anomaly)
    )).one()
    high_severity = await _active_high_severity_count(session)
    failed_views = await _latest_run_failures(session)

    total_devices = int(device_row.total)
    active_devices = int(device_row.active)
    uptime = round(active_devices / total_devices * 100, 2) if total_devices else 0.0

    return {
        "checked_at": now.isoformat(),
        "devices": {
            "total": total_devices,
            "active": active_devices,
            "maintenance": int(device_row.maintenance),
            "offline": int(device_row.offline),
            "stale": stale,
            "uptime_percent": uptime,
        },
        "transactions_today": {
            "total": int(tx_row.total),
            "zero_amount": int(tx_row.zero_amount),
            "avg_amount": round(float(tx_row.avg_amount), 2) if tx_row.avg_amount is not None else None,
        },
        "anomalies": {
            "total": int(anomaly_row.total),
            "active": int(anomaly_row.active),
            "high_severity_active": high_severity,
            "detected_today": int(anomaly_row.today),
        },
        "refresh": {
            "failed_views_latest_run": failed_views,
        },
        "health_score": health_score(active_devices, total_devices, high_severity, failed_views),
    }
