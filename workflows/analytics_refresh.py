"""
Prefect Workflow Orchestration - Analytics Refresh

Scheduled jobs of the analytics pipeline:
- Hourly and nightly view refresh
- Anomaly detection during business hours
- Weekly retention purge
- Daily expired grant sweep
- FMCG transaction flagging

Run `python workflows/analytics_refresh.py` to serve every flow on the
cron schedules from RefreshSettings.
"""

from datetime import datetime
from typing import List, Optional

from prefect import flow, serve, task, get_run_logger

from scout_analytics.access.grants import sweep_expired_grants
from scout_analytics.aggregation.registry import RefreshCadence
from scout_analytics.audit.recorder import install_audit_listener
from scout_analytics.config import get_settings
from scout_analytics.config.logging import configure_logging
from scout_analytics.database.connection import get_db, get_session_factory, init_database
from scout_analytics.database.models import AnomalyType
from scout_analytics.maintenance.housekeeping import flag_fmcg_transactions
from scout_analytics.maintenance.retention import run_retention_purge
from scout_analytics.quality.alerts import check_system_alerts
from scout_analytics.quality.anomaly_store import run_anomaly_detection
from scout_analytics.refresh.scheduler import RefreshScheduler, RefreshTrigger, init_refresh_scheduler

settings = get_settings()

WORKFLOW_ACTOR = "prefect"


async def _scheduler() -> RefreshScheduler:
    configure_logging()
    install_audit_listener()
    await init_database()
    return init_refresh_scheduler(get_session_factory(), settings=settings)


# =============================================================================
# TASKS
# =============================================================================

@task(
    name="refresh_views",
    description="Rebuild and publish the views of one cadence",
    retries=2,
    retry_delay_seconds=60,
)
async def refresh_views(cadence: Optional[str] = None, as_of: Optional[datetime] = None) -> dict:
    logger = get_run_logger()
    scheduler = await _scheduler()

    report = await scheduler.refresh_all(
        cadence=RefreshCadence(cadence) if cadence else None,
        trigger=RefreshTrigger.SCHEDULED,
        as_of=as_of,
    )
    if report.failed:
        logger.warning(f"Refresh finished with failures: {report.failed}")
    else:
        logger.info(f"Refreshed {len(report.succeeded)} views in {report.duration_seconds:.1f}s")
    return report.to_dict()


@task(
    name="detect_anomalies",
    description="Run anomaly rules and persist findings",
    retries=1,
    retry_delay_seconds=120,
)
async def detect_anomalies(types: Optional[List[str]] = None) -> dict:
    logger = get_run_logger()
    await _scheduler()

    run = await run_anomaly_detection(
        get_session_factory(),
        settings=settings,
        types=[AnomalyType(t) for t in types] if types else None,
        actor=WORKFLOW_ACTOR,
    )
    logger.info(f"Detection {run.status.value}: {run.anomalies_found} anomalies ({run.high_severity} high)")
    return run.to_dict()


@task(
    name="check_alerts",
    description="Evaluate operational alert conditions",
)
async def check_alerts() -> List[dict]:
    logger = get_run_logger()
    async with get_db(actor=WORKFLOW_ACTOR) as db:
        alerts = await check_system_alerts(db, settings=settings)

    for alert in alerts:
        logger.warning(f"[{alert.severity.value.upper()}] {alert.alert_type.value}: {alert.message} ({alert.affected_count})")
    return [a.to_dict() for a in alerts]


# =============================================================================
# FLOWS
# =============================================================================

@flow(name="hourly_view_refresh", description="Refresh the hourly views")
async def hourly_view_refresh() -> dict:
    return await refresh_views(RefreshCadence.HOURLY.value)


@flow(name="nightly_view_refresh", description="Refresh the nightly views")
async def nightly_view_refresh() -> dict:
    return await refresh_views(RefreshCadence.NIGHTLY.value)


@flow(name="anomaly_detection", description="Detect anomalies and raise system alerts")
async def anomaly_detection(types: Optional[List[str]] = None) -> dict:
    run = await detect_anomalies(types)
    alerts = await check_alerts()
    return {"detection": run, "alerts": alerts}


@flow(name="retention_purge", description="Purge aged facts and operational rows", retries=1, retry_delay_seconds=300)
async def retention_purge(retention_months: Optional[int] = None) -> dict:
    logger = get_run_logger()
    scheduler = await _scheduler()

    result = await run_retention_purge(
        get_session_factory(),
        scheduler,
        retention_months=retention_months,
        actor=WORKFLOW_ACTOR,
        settings=settings,
    )
    logger.info(
        f"Purged {result.deleted_transactions} transactions older than {result.cutoff.date()}"
    )
    return result.to_dict()


@flow(name="grant_sweep", description="Deactivate expired store grants")
async def grant_sweep() -> int:
    logger = get_run_logger()
    await _scheduler()

    async with get_db(actor=WORKFLOW_ACTOR, origin="grant_sweep") as db:
        swept = await sweep_expired_grants(db)
    logger.info(f"Deactivated {swept} expired grants")
    return swept


@flow(name="fmcg_flagging", description="Flag transactions containing FMCG products")
async def fmcg_flagging() -> int:
    logger = get_run_logger()
    await _scheduler()

    async with get_db(actor=WORKFLOW_ACTOR, origin="fmcg_flagging") as db:
        updated = await flag_fmcg_transactions(db)
    logger.info(f"Flagged {updated} FMCG transactions")
    return updated


# =============================================================================
# DEPLOYMENT CONFIGURATION
# =============================================================================

if __name__ == "__main__":
    refresh = settings.refresh
    serve(
        hourly_view_refresh.to_deployment(name="hourly-view-refresh", cron=refresh.hourly_cron),
        nightly_view_refresh.to_deployment(name="nightly-view-refresh", cron=refresh.nightly_cron),
        anomaly_detection.to_deployment(name="anomaly-detection", cron=refresh.detection_cron),
        retention_purge.to_deployment(name="retention-purge", cron=refresh.purge_cron),
        grant_sweep.to_deployment(name="grant-sweep", cron=refresh.grant_sweep_cron),
        fmcg_flagging.to_deployment(name="fmcg-flagging", cron=refresh.fmcg_flag_cron),
    )
