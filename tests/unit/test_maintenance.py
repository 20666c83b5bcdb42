"""
Unit Tests - Retention and Housekeeping
"""
from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, insert, select

from scout_analytics.database.models import (
    Anomaly,
    AnomalySeverity,
    AnomalyStatus,
    AnomalyType,
    AuditAction,
    AuditEntry,
    LineItem,
    Transaction,
)
from scout_analytics.maintenance import (
    flag_fmcg_transactions,
    purge_old_data,
    run_retention_purge,
    subtract_months,
)
from scout_analytics.refresh import RefreshScheduler, ViewStore


async def _count(session_factory, model, *where):
    async with session_factory() as session:
        query = select(func.count()).select_from(model)
        if where:
            query = query.where(*where)
        return (await session.execute(query)).scalar_one()


class TestSubtractMonths:
    """Tests for calendar month arithmetic"""

    @pytest.mark.parametrize("value,months,expected", [
        (datetime(2025, 3, 31), 1, datetime(2025, 2, 28)),
        (datetime(2024, 3, 31), 1, datetime(2024, 2, 29)),
        (datetime(2025, 1, 15), 1, datetime(2024, 12, 15)),
        (datetime(2025, 6, 18), 12, datetime(2024, 6, 18)),
        (datetime(2025, 6, 18), 2, datetime(2025, 4, 18)),
    ])
    def test_subtract_months(self, value, months, expected):
        """Test day clamping and year rollover"""
        assert subtract_months(value, months) == expected


class TestPurgeOldData:
    """Tests for purge_old_data"""

    async def _purge(self, session_factory, test_settings, **kwargs):
        async with session_factory() as session:
            async with session.begin():
                return await purge_old_data(session, settings=test_settings, **kwargs)

    async def test_purge_old_transactions(self, seeded_session_factory, test_settings, as_of):
        """Test facts older than the cutoff are deleted with their line items"""
        result = await self._purge(seeded_session_factory, test_settings, retention_months=2, as_of=as_of)

        assert result.cutoff == datetime(2025, 4, 18)
        assert result.deleted_transactions == 1
        assert result.deleted_line_items == 1

        async with seeded_session_factory() as session:
            remaining = (await session.execute(select(Transaction.transaction_id))).scalars().all()
        assert sorted(remaining) == ["t1", "t2", "t3", "t4"]
        assert await _count(seeded_session_factory, LineItem, LineItem.transaction_id == "t5") == 0

    async def test_default_retention_keeps_recent_data(self, seeded_session_factory, test_settings, as_of):
        """Test the twelve month default deletes nothing from the fixture"""
        result = await self._purge(seeded_session_factory, test_settings, as_of=as_of)

        assert result.retention_months == 12
        assert result.deleted_transactions == 0
        assert await _count(seeded_session_factory, Transaction) == 5

    async def test_invalid_retention(self, session_factory, test_settings, as_of):
        """Test retention below one month is rejected"""
        with pytest.raises(ValueError):
            await self._purge(session_factory, test_settings, retention_months=0, as_of=as_of)

    async def test_purge_audit_and_anomalies(self, session_factory, test_settings, as_of):
        """Test aged audit entries and long-resolved anomalies are removed"""
        async with session_factory() as session:
            async with session.begin():
                await session.execute(insert(AuditEntry), [
                    {"table_name": "transactions", "action": AuditAction.INSERT,
                     "recorded_at": as_of - timedelta(days=200)},
                    {"table_name": "transactions", "action": AuditAction.INSERT,
                     "recorded_at": as_of - timedelta(days=10)},
                ])
                await session.execute(insert(Anomaly), [
                    {"anomaly_key": "old", "anomaly_type": AnomalyType.UNUSUAL_PATTERN,
                     "severity": AnomalySeverity.MEDIUM, "status": AnomalyStatus.RESOLVED,
                     "first_detected_at": datetime(2025, 1, 1), "last_detected_at": datetime(2025, 1, 5),
                     "resolved_at": datetime(2025, 2, 1)},
                    {"anomaly_key": "recent", "anomaly_type": AnomalyType.UNUSUAL_PATTERN,
                     "severity": AnomalySeverity.MEDIUM, "status": AnomalyStatus.RESOLVED,
                     "first_detected_at": datetime(2025, 5, 1), "last_detected_at": datetime(2025, 5, 5),
                     "resolved_at": datetime(2025, 6, 1)},
                    {"anomaly_key": "active", "anomaly_type": AnomalyType.UNUSUAL_PATTERN,
                     "severity": AnomalySeverity.MEDIUM, "status": AnomalyStatus.ACTIVE,
                     "first_detected_at": datetime(2024, 1, 1), "last_detected_at": datetime(2024, 1, 5)},
                ])

        result = await self._purge(session_factory, test_settings, as_of=as_of)

        assert result.deleted_audit_entries == 1
        assert result.deleted_anomalies == 1
        async with session_factory() as session:
            keys = (await session.execute(select(Anomaly.anomaly_key))).scalars().all()
        assert sorted(keys) == ["active", "recent"]

    async def test_purge_is_audited(self, seeded_session_factory, test_settings, as_of):
        """Test the purge records a summary entry"""
        await self._purge(seeded_session_factory, test_settings, retention_months=2, as_of=as_of)

        async with seeded_session_factory() as session:
            entry = (await session.execute(
                select(AuditEntry).where(AuditEntry.action == AuditAction.PURGE_COMPLETE)
            )).scalar_one()
        assert entry.table_name == "data_cleanup"
        assert entry.new_data["deleted_transactions"] == 1
        assert entry.new_data["cutoff"] == "2025-04-18T00:00:00"


class TestRetentionRun:
    """Tests for the quiesced purge"""

    async def test_run_retention_purge(self, seeded_session_factory, test_settings, as_of):
        """Test the purge runs under the scheduler and records the actor"""
        scheduler = RefreshScheduler(seeded_session_factory, view_store=ViewStore(), settings=test_settings)

        result = await run_retention_purge(
            seeded_session_factory,
            scheduler,
            retention_months=2,
            as_of=as_of,
            actor="ops",
            settings=test_settings,
        )

        assert result.deleted_transactions == 1
        async with seeded_session_factory() as session:
            entry = (await session.execute(select(AuditEntry))).scalar_one()
        assert entry.actor == "ops"
        assert entry.origin == "retention_purge"


class TestHousekeeping:
    """Tests for flag_fmcg_transactions"""

    async def test_flag_fmcg(self, seeded_session_factory):
        """Test transactions with FMCG products are flagged once"""
        async with seeded_session_factory() as session:
            async with session.begin():
                first = await flag_fmcg_transactions(session)
        async with seeded_session_factory() as session:
            async with session.begin():
                second = await flag_fmcg_transactions(session)

        assert first == 5
        assert second == 0
        assert await _count(seeded_session_factory, Transaction, Transaction.is_fmcg.is_(True)) == 5
        assert await _count(
            seeded_session_factory, AuditEntry, AuditEntry.action == AuditAction.FMCG_FLAGGED
        ) == 2

    async def test_non_fmcg_transaction(self, seed_reference, add_facts, session_factory,
                                        transaction_factory, as_of):
        """Test a basket with only non-FMCG products stays unflagged"""
        await seed_reference()
        await add_facts(
            [transaction_factory("n1", 1, as_of - timedelta(hours=2))],
            [{"line_item_id": 1, "transaction_id": "n1", "product_id": 4, "quantity": 1}],
        )

        async with session_factory() as session:
            async with session.begin():
                updated = await flag_fmcg_transactions(session)

        assert updated == 0
