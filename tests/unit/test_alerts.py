"""
Unit Tests - Operational Alerts
"""
from datetime import timedelta

import pytest
from sqlalchemy import insert

from scout_analytics.config.settings import AnomalySettings, Settings
from scout_analytics.database.models import (
    Anomaly,
    AnomalySeverity,
    AnomalyStatus,
    AnomalyType,
    RefreshLogEntry,
    RefreshStatus,
)
from scout_analytics.quality.alerts import (
    AlertType,
    check_system_alerts,
    health_score,
    system_health,
)


async def _add_high_anomaly(session_factory, as_of, key="a1", status=AnomalyStatus.ACTIVE):
    async with session_factory() as session:
        async with session.begin():
            await session.execute(insert(Anomaly), [{
                "anomaly_key": key,
                "anomaly_type": AnomalyType.SUSPICIOUS_TRANSACTION,
                "severity": AnomalySeverity.HIGH,
                "status": status,
                "store_id": 1,
                "first_detected_at": as_of,
                "last_detected_at": as_of,
            }])


class TestSystemAlerts:
    """Tests for check_system_alerts"""

    async def test_stale_device(self, seeded_session_factory, test_settings, as_of):
        """Test a device unseen for more than a day raises a connectivity alert"""
        async with seeded_session_factory() as session:
            alerts = await check_system_alerts(session, now=as_of, settings=test_settings)

        assert [a.alert_type for a in alerts] == [AlertType.DEVICE_CONNECTIVITY]
        assert alerts[0].affected_count == 1
        assert alerts[0].severity == AnomalySeverity.HIGH

    async def test_zero_revenue_stores(self, seeded_session_factory, as_of):
        """Test stores without sales today count against the limit"""
        settings = Settings(app_env="testing", anomaly=AnomalySettings(zero_revenue_store_limit=2))
        async with seeded_session_factory() as session:
            alerts = await check_system_alerts(session, now=as_of, settings=settings)

        revenue = next(a for a in alerts if a.alert_type == AlertType.REVENUE_ANOMALY)
        assert revenue.affected_count == 3
        assert revenue.severity == AnomalySeverity.MEDIUM

    async def test_sales_today_reduce_count(self, seeded_session_factory, add_facts, transaction_factory, as_of):
        """Test a store with a sale today is not counted"""
        await add_facts(
            [transaction_factory("today", 1, as_of - timedelta(hours=1))],
            [{"line_item_id": 50, "transaction_id": "today", "product_id": 1, "quantity": 1}],
        )
        settings = Settings(app_env="testing", anomaly=AnomalySettings(zero_revenue_store_limit=1))
        async with seeded_session_factory() as session:
            alerts = await check_system_alerts(session, now=as_of, settings=settings)

        revenue = next(a for a in alerts if a.alert_type == AlertType.REVENUE_ANOMALY)
        assert revenue.affected_count == 2

    async def test_anomaly_count(self, seeded_session_factory, as_of):
        """Test active high severity anomalies above the limit"""
        await _add_high_anomaly(seeded_session_factory, as_of, "a1")
        await _add_high_anomaly(seeded_session_factory, as_of, "a2", status=AnomalyStatus.RESOLVED)
        settings = Settings(app_env="testing", anomaly=AnomalySettings(high_severity_limit=0))

        async with seeded_session_factory() as session:
            alerts = await check_system_alerts(session, now=as_of, settings=settings)

        count_alert = next(a for a in alerts if a.alert_type == AlertType.ANOMALY_COUNT)
        assert count_alert.affected_count == 1
        assert count_alert.to_dict()["alert_type"] == "ANOMALY_COUNT"


class TestSystemHealth:
    """Tests for system_health"""

    async def test_health_snapshot(self, seeded_session_factory, test_settings, as_of):
        """Test device, transaction and score figures"""
        async with seeded_session_factory() as session:
            health = await system_health(session, now=as_of, settings=test_settings)

        assert health["devices"] == {
            "total": 2,
            "active": 1,
            "maintenance": 1,
            "offline": 0,
            "stale": 1,
            "uptime_percent": 50.0,
        }
        assert health["transactions_today"] == {"total": 0, "zero_amount": 0, "avg_amount": None}
        assert health["anomalies"]["total"] == 0
        assert health["refresh"]["failed_views_latest_run"] == 0
        assert health["health_score"] == 80.0

    async def test_failed_views_lower_score(self, seeded_session_factory, test_settings, as_of):
        """Test failures in the latest refresh run cost points"""
        async with seeded_session_factory() as session:
            async with session.begin():
                await session.execute(insert(RefreshLogEntry), [
                    {"run_id": "old", "view_name": "daily_sales", "trigger": "scheduled",
                     "status": RefreshStatus.FAILED, "started_at": as_of - timedelta(hours=2)},
                    {"run_id": "new", "view_name": "daily_sales", "trigger": "scheduled",
                     "status": RefreshStatus.SUCCEEDED, "started_at": as_of - timedelta(hours=1)},
                    {"run_id": "new", "view_name": "hourly_patterns", "trigger": "scheduled",
                     "status": RefreshStatus.TIMED_OUT, "started_at": as_of - timedelta(hours=1)},
                ])
        await _add_high_anomaly(seeded_session_factory, as_of)

        async with seeded_session_factory() as session:
            health = await system_health(session, now=as_of, settings=test_settings)

        assert health["refresh"]["failed_views_latest_run"] == 1
        assert health["anomalies"]["high_severity_active"] == 1
        assert health["anomalies"]["detected_today"] == 1
        assert health["health_score"] == 60.0

    @pytest.mark.parametrize("args,expected", [
        ((10, 10, 0, 0), 100.0),
        ((0, 0, 5, 5), 0.0),
        ((3, 4, 1, 0), 80.0),
        ((1, 2, 0, 4), 50.0),
    ])
    def test_health_score(self, args, expected):
        """Test score components and their floors"""
        assert health_score(*args) == expected
