"""
Unit Tests - Audit Trail
"""
from datetime import datetime

import pytest
from sqlalchemy import select

from scout_analytics.audit.recorder import (
    install_audit_listener,
    record_audit,
    remove_audit_listener,
)
from scout_analytics.database.models import (
    AuditAction,
    AuditEntry,
    Product,
    Transaction,
)
from scout_analytics.exceptions import ImmutableAuditError


@pytest.fixture
def audit_listener():
    install_audit_listener()
    yield
    remove_audit_listener()


async def _entries(session_factory):
    async with session_factory() as session:
        result = await session.execute(select(AuditEntry).order_by(AuditEntry.audit_id))
        return result.scalars().all()


class TestRecordAudit:
    """Tests for explicit audit entries"""

    async def test_defaults_from_session_info(self, session_factory):
        """Test actor and origin are taken from the session"""
        async with session_factory() as session:
            session.info["actor"] = "alice"
            session.info["origin"] = "maintenance"
            async with session.begin():
                await record_audit(
                    session,
                    "data_cleanup",
                    AuditAction.PURGE_COMPLETE,
                    new_data={"cutoff": datetime(2025, 1, 1), "deleted": 3},
                )

        entries = await _entries(session_factory)
        assert len(entries) == 1
        entry = entries[0]
        assert entry.actor == "alice"
        assert entry.origin == "maintenance"
        assert entry.new_data == {"cutoff": "2025-01-01T00:00:00", "deleted": 3}

    async def test_explicit_actor_wins(self, session_factory):
        """Test an explicit actor overrides the session value"""
        async with session_factory() as session:
            session.info["actor"] = "alice"
            async with session.begin():
                await record_audit(session, "anomalies", AuditAction.DETECTION_RUN, actor="bob")

        assert (await _entries(session_factory))[0].actor == "bob"


class TestAuditListener:
    """Tests for row-level capture"""

    async def test_transaction_insert(self, audit_listener, seed_reference, session_factory, as_of):
        """Test a new transaction produces an INSERT entry"""
        await seed_reference()
        async with session_factory() as session:
            session.info["actor"] = "ingest"
            async with session.begin():
                session.add(Transaction(transaction_id="tx1", store_id=1, transaction_ts=as_of))

        entries = await _entries(session_factory)
        assert [(e.table_name, e.action, e.record_id) for e in entries] == [
            ("transactions", AuditAction.INSERT, "tx1"),
        ]
        assert entries[0].new_data["store_id"] == 1
        assert entries[0].actor == "ingest"

    async def test_product_update(self, audit_listener, seed_reference, session_factory):
        """Test a price change records old and new values"""
        await seed_reference()
        async with session_factory() as session:
            async with session.begin():
                product = await session.get(Product, 1)
                product.unit_price = 27.0

        entries = await _entries(session_factory)
        assert len(entries) == 1
        entry = entries[0]
        assert entry.action == AuditAction.UPDATE
        assert entry.record_id == "1"
        assert entry.old_data["unit_price"] == 25.5
        assert entry.new_data["unit_price"] == 27.0

    async def test_product_insert_not_audited(self, audit_listener, session_factory):
        """Test inserts of reference data are not captured"""
        async with session_factory() as session:
            async with session.begin():
                session.add(Product(product_id=50, name="New", brand_id=1, category="Dairy", unit_price=1.0))

        assert await _entries(session_factory) == []

    async def test_transaction_delete(self, audit_listener, seeded_session_factory):
        """Test deleting a transaction produces a DELETE entry"""
        async with seeded_session_factory() as session:
            async with session.begin():
                transaction = await session.get(Transaction, "t4")
                await session.delete(transaction)

        entries = await _entries(seeded_session_factory)
        assert [(e.action, e.record_id) for e in entries] == [(AuditAction.DELETE, "t4")]
        assert entries[0].old_data["store_id"] == 3

    async def test_audit_entries_are_immutable(self, audit_listener, session_factory):
        """Test modifying an existing entry is refused at flush"""
        async with session_factory() as session:
            async with session.begin():
                await record_audit(session, "anomalies", AuditAction.DETECTION_RUN)

        async with session_factory() as session:
            entry = (await session.execute(select(AuditEntry))).scalar_one()
            entry.actor = "mallory"
            with pytest.raises(ImmutableAuditError):
                await session.flush()
            await session.rollback()

    async def test_audit_entries_cannot_be_deleted(self, audit_listener, session_factory):
        """Test deleting an entry is refused at flush"""
        async with session_factory() as session:
            async with session.begin():
                await record_audit(session, "anomalies", AuditAction.DETECTION_RUN)

        async with session_factory() as session:
            entry = (await session.execute(select(AuditEntry))).scalar_one()
            await session.delete(entry)
            with pytest.raises(ImmutableAuditError):
                await session.flush()
            await session.rollback()
