"""
Unit Tests - View Refresh and Publication
"""
import asyncio
import itertools
import time
from dataclasses import replace
from types import SimpleNamespace

import polars as pl
import pytest
from sqlalchemy import func, select

from scout_analytics.aggregation.registry import VIEW_REGISTRY, RefreshCadence
from scout_analytics.config.settings import RefreshSettings
from scout_analytics.database.models import (
    AggDailySales,
    RefreshLogEntry,
    RefreshStatus,
    ViewVersion,
)
from scout_analytics.exceptions import UnknownViewError, ViewNotReadyError
from scout_analytics.refresh import (
    RefreshScheduler,
    RefreshTrigger,
    ViewPublisher,
    ViewStore,
)


@pytest.fixture
def view_store():
    return ViewStore()


@pytest.fixture
def scheduler(seeded_session_factory, view_store, test_settings):
    return RefreshScheduler(seeded_session_factory, view_store=view_store, settings=test_settings)


async def _log_rows(session_factory):
    async with session_factory() as session:
        result = await session.execute(select(RefreshLogEntry).order_by(RefreshLogEntry.log_id))
        return result.scalars().all()


class TestViewStore:
    """Tests for the in-memory published views"""

    def test_get_unknown_view(self, view_store):
        """Test unknown names are rejected"""
        with pytest.raises(UnknownViewError):
            view_store.get("no_such_view")

    def test_get_unpublished_view(self, view_store):
        """Test a registered view without a publication is not ready"""
        with pytest.raises(ViewNotReadyError):
            view_store.get("daily_sales")

    def test_stale_publish_is_ignored(self, view_store, as_of):
        """Test an older version never replaces a newer one"""
        newer = pl.DataFrame({"x": [1, 2]})
        older = pl.DataFrame({"x": [1]})
        view_store.publish("daily_sales", newer, as_of, as_of, version=3)
        view_store.publish("daily_sales", older, as_of, as_of, version=2)

        published = view_store.get("daily_sales")
        assert published.version == 3
        assert published.row_count == 2

    def test_list_views(self, view_store, as_of):
        """Test the listing covers every registered view"""
        view_store.publish("daily_sales", pl.DataFrame(), as_of, as_of, version=1)
        listing = {entry["name"]: entry for entry in view_store.list_views()}

        assert set(listing) == set(VIEW_REGISTRY)
        assert listing["daily_sales"]["published"]["version"] == 1
        assert listing["customer_segments"]["published"] is None
        assert listing["daily_sales"]["store_scoped"] is True


class TestViewPublisher:
    """Tests for persisting view frames"""

    async def test_publish_replaces_rows(self, session_factory, prepared, as_of, aggregation_settings):
        """Test each publish swaps the table content and bumps the version"""
        definition = VIEW_REGISTRY["daily_sales"]
        frame = definition.build(prepared, as_of, aggregation_settings)
        publisher = ViewPublisher(batch_size=2)

        for _ in range(2):
            async with session_factory() as session:
                async with session.begin():
                    version = await publisher.publish(session, definition, frame, as_of, as_of)

        assert version == 2
        async with session_factory() as session:
            count = (await session.execute(select(func.count()).select_from(AggDailySales))).scalar_one()
            persisted = await session.get(ViewVersion, "daily_sales")
        assert count == frame.height
        assert persisted.row_count == frame.height
        assert persisted.as_of == as_of

    async def _publish_twice(self, session_factory, prepared, as_of, aggregation_settings):
        definition = VIEW_REGISTRY["daily_sales"]
        frame = definition.build(prepared, as_of, aggregation_settings)
        for _ in range(2):
            async with session_factory() as session:
                async with session.begin():
                    await ViewPublisher().publish(session, definition, frame, as_of, as_of)
        return frame

    async def test_sync_retries_when_version_moves(self, session_factory, prepared, as_of,
                                                   aggregation_settings, monkeypatch):
        """Test rows read across a concurrent publish are reloaded under the new version"""
        frame = await self._publish_twice(session_factory, prepared, as_of, aggregation_settings)
        versions = iter([1, 2, 2, 2])

        async def moving_version(session, name):
            return SimpleNamespace(version=next(versions), as_of=as_of, refreshed_at=as_of)

        store = ViewStore()
        monkeypatch.setattr(store, "_persisted_version", moving_version)
        async with session_factory() as session:
            changed = await store.sync_view(session, "daily_sales")

        assert changed
        assert store.get("daily_sales").version == 2
        assert store.get("daily_sales").row_count == frame.height

    async def test_sync_gives_up_under_constant_publishing(self, session_factory, prepared, as_of,
                                                           aggregation_settings, monkeypatch):
        """Test sync leaves the view untouched when the version never settles"""
        await self._publish_twice(session_factory, prepared, as_of, aggregation_settings)
        versions = itertools.count(1)

        async def moving_version(session, name):
            return SimpleNamespace(version=next(versions), as_of=as_of, refreshed_at=as_of)

        store = ViewStore()
        monkeypatch.setattr(store, "_persisted_version", moving_version)
        async with session_factory() as session:
            assert await store.sync_view(session, "daily_sales") is False
        assert store.peek("daily_sales") is None


class TestRefreshScheduler:
    """Tests for RefreshScheduler"""

    async def test_refresh_all(self, scheduler, view_store, seeded_session_factory, as_of):
        """Test every view is built from one snapshot and logged"""
        report = await scheduler.refresh_all(as_of=as_of)

        assert report.success
        assert len(report.outcomes) == len(VIEW_REGISTRY)
        names = [o.view_name for o in report.outcomes]
        assert names.index("daily_sales") < names.index("product_performance")
        assert names.index("product_performance") < names.index("brand_competition")

        daily = view_store.get("daily_sales")
        assert daily.row_count == 4
        assert daily.version == 1
        assert daily.as_of == as_of

        logs = await _log_rows(seeded_session_factory)
        assert len(logs) == len(VIEW_REGISTRY)
        assert {log.run_id for log in logs} == {report.run_id}
        assert all(log.status == RefreshStatus.SUCCEEDED for log in logs)
        assert all(log.excluded_rows == 2 for log in logs)
        assert all(log.trigger == "scheduled" for log in logs)

    async def test_refresh_by_cadence(self, scheduler, as_of):
        """Test the hourly cadence selects the hourly views only"""
        report = await scheduler.refresh_all(cadence=RefreshCadence.HOURLY, as_of=as_of)
        assert sorted(o.view_name for o in report.outcomes) == [
            "daily_sales",
            "hourly_patterns",
            "store_performance",
        ]

    async def test_refresh_single_view(self, scheduler, view_store, as_of):
        """Test a manual single-view refresh"""
        outcome = await scheduler.refresh_view("store_performance", as_of=as_of)

        assert outcome.succeeded
        assert outcome.row_count == 3
        assert outcome.version == 1
        assert view_store.get("store_performance").row_count == 3
        assert view_store.peek("daily_sales") is None

    async def test_failure_keeps_previous_version(self, scheduler, view_store, seeded_session_factory,
                                                  as_of, monkeypatch):
        """Test a failing builder does not affect other views or its last version"""
        await scheduler.refresh_all(as_of=as_of)

        def boom(facts, as_of, settings):
            raise RuntimeError("builder exploded")

        monkeypatch.setitem(
            VIEW_REGISTRY,
            "brand_competition",
            replace(VIEW_REGISTRY["brand_competition"], builder=boom),
        )
        report = await scheduler.refresh_all(as_of=as_of)

        assert report.failed == ["brand_competition"]
        assert len(report.succeeded) == len(VIEW_REGISTRY) - 1
        failed = next(o for o in report.outcomes if o.view_name == "brand_competition")
        assert failed.status == RefreshStatus.FAILED
        assert "builder exploded" in failed.error

        assert view_store.get("brand_competition").version == 1
        assert view_store.get("daily_sales").version == 2
        async with seeded_session_factory() as session:
            persisted = await session.get(ViewVersion, "brand_competition")
        assert persisted.version == 1

    async def test_timeout(self, seeded_session_factory, view_store, test_settings, as_of, monkeypatch):
        """Test a slow rebuild is abandoned and nothing is published"""
        def slow(facts, as_of, settings):
            time.sleep(0.5)
            return pl.DataFrame()

        monkeypatch.setitem(
            VIEW_REGISTRY,
            "hourly_patterns",
            replace(VIEW_REGISTRY["hourly_patterns"], builder=slow),
        )
        settings = test_settings.model_copy(update={
            "refresh": RefreshSettings(view_timeout_seconds=0.05),
        })
        scheduler = RefreshScheduler(seeded_session_factory, view_store=view_store, settings=settings)

        outcome = await scheduler.refresh_view("hourly_patterns", as_of=as_of)

        assert outcome.status == RefreshStatus.TIMED_OUT
        assert view_store.peek("hourly_patterns") is None
        logs = await _log_rows(seeded_session_factory)
        assert [log.status for log in logs] == [RefreshStatus.TIMED_OUT]

    async def test_concurrent_requests_share_rebuild(self, scheduler, seeded_session_factory, as_of):
        """Test a second request joins the in-flight rebuild"""
        first, second = await asyncio.gather(
            scheduler.refresh_view("daily_sales", as_of=as_of),
            scheduler.refresh_view("daily_sales", as_of=as_of),
        )

        assert first is second
        assert len(await _log_rows(seeded_session_factory)) == 1

    async def test_quiesce_blocks_rebuilds(self, scheduler, as_of):
        """Test no rebuild completes while quiesced"""
        async with scheduler.quiesce():
            task = asyncio.create_task(
                scheduler.refresh_view("daily_sales", as_of=as_of, trigger=RefreshTrigger.MANUAL)
            )
            await asyncio.sleep(0.05)
            assert not task.done()
            assert scheduler.is_refreshing("daily_sales")

        outcome = await task
        assert outcome.succeeded

    async def test_other_process_syncs_views(self, scheduler, seeded_session_factory, as_of):
        """Test a fresh store loads every published view from the database"""
        await scheduler.refresh_all(as_of=as_of)

        other = ViewStore()
        async with seeded_session_factory() as session:
            changed = await other.sync_all(session)
            unchanged = await other.sync_all(session)

        assert sorted(changed) == sorted(VIEW_REGISTRY)
        assert unchanged == []
        daily = other.get("daily_sales")
        assert daily.row_count == 4
        assert daily.frame["sale_date"].to_list() == scheduler.view_store.get("daily_sales").frame["sale_date"].to_list()

    async def test_report_to_dict(self, scheduler, as_of):
        """Test the run report serializes its outcomes"""
        report = await scheduler.refresh_all(cadence=RefreshCadence.HOURLY, as_of=as_of,
                                             trigger=RefreshTrigger.MANUAL)
        data = report.to_dict()

        assert data["trigger"] == "manual"
        assert data["failed"] == []
        assert len(data["outcomes"]) == 3
        assert data["outcomes"][0]["status"] == "succeeded"
