"""
Anomaly Persistence

Applies a detection report to the anomalies table in one transaction:
- New findings are inserted
- Findings seen before (same anomaly_key) are updated in place and
  reactivated if they had been resolved
- Active anomalies of the checked types that were not re-detected are
  resolved
- The run is recorded as a DETECTION_RUN audit entry

A failed or timed-out run changes nothing.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scout_analytics.aggregation.integrity import prepare_facts
from scout_analytics.aggregation.snapshot import load_fact_snapshot
from scout_analytics.audit.recorder import record_audit
from scout_analytics.config.logging import bind_run_context, clear_run_context
from scout_analytics.config.settings import Settings, get_settings
from scout_analytics.database.models import (
    Anomaly,
    AnomalyStatus,
    AnomalyType,
    AuditAction,
    RefreshStatus,
)
from scout_analytics.exceptions import RefreshTimeoutError
from .anomaly_detector import AnomalyDetector, AnomalyReport

logger = structlog.get_logger(__name__)

DETECTION_ORIGIN = "anomaly_detector"


@dataclass
class PersistResult:
    """Row changes applied by one detection run"""
    inserted: int = 0
    updated: int = 0
    reactivated: int = 0
    resolved: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            "inserted": self.inserted,
            "updated": self.updated,
            "reactivated": self.reactivated,
            "resolved": self.resolved,
        }


@dataclass
class DetectionRunResult:
    """Outcome of a scheduled or manual detection run"""
    run_id: str
    as_of: datetime
    started_at: datetime
    status: RefreshStatus = RefreshStatus.STARTED
    completed_at: Optional[datetime] = None
    anomalies_found: int = 0
    high_severity: int = 0
    counts_by_type: Dict[str, int] = field(default_factory=dict)
    changes: PersistResult = field(default_factory=PersistResult)
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == RefreshStatus.SUCCEEDED

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "as_of": self.as_of.isoformat(),
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "anomalies_found": self.anomalies_found,
            "high_severity": self.high_severity,
            "counts_by_type": self.counts_by_type,
            "changes": self.changes.as_dict(),
            "error": self.error,
        }


async def persist_findings(
    session: AsyncSession,
    report: AnomalyReport,
    now: Optional[datetime] = None,
) -> PersistResult:
    """
    Upsert findings and resolve anomalies that were not re-detected.

    Runs inside the caller's transaction; does not commit.
    """
    now = now or datetime.utcnow()
    result = PersistResult()

    # A rule can report the same subject twice only through a bug; last one wins
    findings = {finding.key: finding for finding in report.findings}
    keys = list(findings)

    existing: Dict[str, Anomaly] = {}
    if keys:
        rows = await session.execute(select(Anomaly).where(Anomaly.anomaly_key.in_(keys)))
        existing = {row.anomaly_key: row for row in rows.scalars()}

    for key, finding in findings.items():
        anomaly = existing.get(key)
        if anomaly is None:
            session.add(Anomaly(
                anomaly_key=key,
                anomaly_type=finding.anomaly_type,
                severity=finding.severity,
                status=AnomalyStatus.ACTIVE,
                store_id=finding.store_id,
                details=finding.details,
                detection_count=1,
                first_detected_at=now,
                last_detected_at=now,
            ))
            result.inserted += 1
            continue

        if anomaly.status == AnomalyStatus.RESOLVED:
            anomaly.status = AnomalyStatus.ACTIVE
            anomaly.resolved_at = None
            result.reactivated += 1
        else:
            result.updated += 1
        anomaly.severity = finding.severity
        anomaly.details = finding.details
        anomaly.last_detected_at = now
        anomaly.detection_count = anomaly.detection_count + 1

    await session.flush()

    resolve = (
        update(Anomaly)
        .where(
            Anomaly.anomaly_type.in_(report.types_checked),
            Anomaly.status == AnomalyStatus.ACTIVE,
            Anomaly.anomaly_key.not_in(keys),
        )
        .values(status=AnomalyStatus.RESOLVED, resolved_at=now)
        .execution_options(synchronize_session=False)
    )
    resolved = await session.execute(resolve)
    result.resolved = resolved.rowcount or 0

    await record_audit(
        session,
        "anomalies",
        AuditAction.DETECTION_RUN,
        new_data={
            "as_of": report.as_of,
            "anomalies_found": report.anomalies_found,
            "counts_by_type": report.counts_by_type(),
            "statistics": report.statistics,
            **result.as_dict(),
        },
        origin=session.info.get("origin", DETECTION_ORIGIN),
    )
    return result


async def run_anomaly_detection(
    session_factory: async_sessionmaker[AsyncSession],
    as_of: Optional[datetime] = None,
    settings: Optional[Settings] = None,
    types: Optional[Iterable[AnomalyType]] = None,
    actor: Optional[str] = None,
) -> DetectionRunResult:
    """
    Load facts, run every rule and persist the findings atomically.

    Detection is bounded by detection_timeout_seconds. On failure or
    timeout the previous anomaly state stands.
    """
    settings = settings or get_settings()
    started_at = datetime.utcnow()
    run = DetectionRunResult(run_id=str(uuid.uuid4()), as_of=as_of or started_at, started_at=started_at)

    if not settings.anomaly.enabled:
        logger.info("Anomaly detection disabled")
        run.status = RefreshStatus.SUCCEEDED
        run.completed_at = datetime.utcnow()
        return run

    detector = AnomalyDetector(settings.anomaly)
    selected: List[AnomalyType] = list(types) if types is not None else list(AnomalyType)
    timeout = settings.refresh.detection_timeout_seconds

    bind_run_context(detection_run_id=run.run_id)
    try:
        async with session_factory() as session:
            snapshot = await load_fact_snapshot(session, run.as_of, detector.lookback_days)

        def evaluate() -> AnomalyReport:
            facts, _ = prepare_facts(snapshot)
            return detector.detect(facts, as_of=run.as_of, types=selected)

        try:
            report = await asyncio.wait_for(asyncio.to_thread(evaluate), timeout=timeout)
        except asyncio.TimeoutError:
            raise RefreshTimeoutError("anomaly_detection", timeout) from None

        async with session_factory() as session:
            session.info["actor"] = actor
            session.info["origin"] = DETECTION_ORIGIN
            async with session.begin():
                run.changes = await persist_findings(session, report)

        run.status = RefreshStatus.SUCCEEDED
        run.anomalies_found = report.anomalies_found
        run.high_severity = report.high_severity_count
        run.counts_by_type = report.counts_by_type()

    except RefreshTimeoutError as e:
        run.status = RefreshStatus.TIMED_OUT
        run.error = str(e)
        logger.error("Anomaly detection timed out", timeout_seconds=timeout)

    except Exception as e:
        run.status = RefreshStatus.FAILED
        run.error = f"{type(e).__name__}: {e}"
        logger.error("Anomaly detection failed", error=run.error, exc_info=True)

    finally:
        clear_run_context("detection_run_id")

    run.completed_at = datetime.utcnow()
    logger.info(
        "Anomaly detection run finished",
        run_id=run.run_id,
        status=run.status.value,
        anomalies=run.anomalies_found,
        duration_seconds=run.duration_seconds,
        **run.changes.as_dict(),
    )
    return run
