"""
Refresh Scheduler

Rebuilds and publishes derived views:
- One fact snapshot per run, so every view of a run agrees
- Dependency order within a run, failures isolated per view
- At most one in-flight rebuild per view; concurrent callers join it
- Computation off the event loop under a timeout; nothing is published on
  failure or timeout and the previous version keeps serving
- Every outcome written to refresh_log
"""

import asyncio
import time
import uuid
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import AsyncIterator, Dict, List, Optional, Tuple

import polars as pl
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scout_analytics.aggregation.integrity import IntegrityReport, PreparedFacts, prepare_facts
from scout_analytics.aggregation.registry import (
    VIEW_REGISTRY,
    RefreshCadence,
    ViewDefinition,
    get_view_definition,
    max_lookback_days,
    resolve_refresh_order,
    views_for_cadence,
)
from scout_analytics.aggregation.snapshot import FactSnapshot, load_fact_snapshot
from scout_analytics.config.logging import bind_run_context, clear_run_context
from scout_analytics.config.settings import Settings, get_settings
from scout_analytics.database.models import RefreshLogEntry, RefreshStatus
from scout_analytics.exceptions import RefreshTimeoutError
from .publisher import ViewPublisher
from .view_store import ViewStore, get_view_store

logger = structlog.get_logger(__name__)


class RefreshTrigger(str, Enum):
    """What started a refresh"""
    SCHEDULED = "scheduled"
    MANUAL = "manual"
    STARTUP = "startup"


@dataclass
class ViewRefreshOutcome:
    """Result of refreshing a single view"""
    view_name: str
    status: RefreshStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    row_count: Optional[int] = None
    excluded_rows: int = 0
    version: Optional[int] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == RefreshStatus.SUCCEEDED

    @property
    def duration_ms(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        return round((self.completed_at - self.started_at).total_seconds() * 1000, 2)

    def to_dict(self) -> dict:
        return {
            "view_name": self.view_name,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "row_count": self.row_count,
            "excluded_rows": self.excluded_rows,
            "version": self.version,
            "error": self.error,
        }


@dataclass
class RefreshRunReport:
    """Outcome of a refresh run across several views"""
    run_id: str
    trigger: RefreshTrigger
    as_of: datetime
    started_at: datetime
    completed_at: Optional[datetime] = None
    outcomes: List[ViewRefreshOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> List[str]:
        return [o.view_name for o in self.outcomes if o.succeeded]

    @property
    def failed(self) -> List[str]:
        return [o.view_name for o in self.outcomes if not o.succeeded]

    @property
    def success(self) -> bool:
        return not self.failed

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "trigger": self.trigger.value,
            "as_of": self.as_of.isoformat(),
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


Prepared = Tuple[PreparedFacts, IntegrityReport]


class RefreshScheduler:
    """
    Coordinates view rebuilds for one process.

    Per-view asyncio locks serialize rebuilds of the same view; an
    in-flight task map lets concurrent requests for a view share a single
    rebuild instead of queueing a second one.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        view_store: Optional[ViewStore] = None,
        settings: Optional[Settings] = None,
        publisher: Optional[ViewPublisher] = None,
    ):
        self.session_factory = session_factory
        self.view_store = view_store or get_view_store()
        self.settings = settings or get_settings()
        self.publisher = publisher or ViewPublisher()
        self._locks: Dict[str, asyncio.Lock] = {name: asyncio.Lock() for name in VIEW_REGISTRY}
        self._in_flight: Dict[str, asyncio.Task] = {}

    @property
    def timeout_seconds(self) -> float:
        return self.settings.refresh.view_timeout_seconds

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def refresh_view(
        self,
        name: str,
        as_of: Optional[datetime] = None,
        snapshot: Optional[FactSnapshot] = None,
        trigger: RefreshTrigger = RefreshTrigger.MANUAL,
        run_id: Optional[str] = None,
    ) -> ViewRefreshOutcome:
        """
        Rebuild and publish one view.

        If a rebuild of the view is already running, waits for it and
        returns its outcome instead of starting another.
        """
        task = self._start_or_join(
            get_view_definition(name),
            run_id=run_id or str(uuid.uuid4()),
            trigger=trigger,
            as_of=as_of,
            snapshot=snapshot,
        )
        return await asyncio.shield(task)

    async def refresh_all(
        self,
        cadence: Optional[RefreshCadence] = None,
        trigger: RefreshTrigger = RefreshTrigger.SCHEDULED,
        as_of: Optional[datetime] = None,
        names: Optional[List[str]] = None,
    ) -> RefreshRunReport:
        """
        Refresh every view of a cadence (all views when None) from a single
        fact snapshot, in dependency order.
        """
        run_id = str(uuid.uuid4())
        started_at = datetime.utcnow()
        as_of = as_of or started_at
        selected = resolve_refresh_order(names if names is not None else views_for_cadence(cadence))

        report = RefreshRunReport(run_id=run_id, trigger=trigger, as_of=as_of, started_at=started_at)
        bind_run_context(refresh_run_id=run_id)
        logger.info(
            "Refresh run started",
            trigger=trigger.value,
            cadence=cadence.value if cadence else "all",
            views=selected,
            as_of=as_of.isoformat(),
        )

        try:
            prepared: Optional[Prepared] = None
            preparation_error: Optional[str] = None
            try:
                prepared = await self._load_and_prepare(selected, as_of)
            except Exception as e:
                preparation_error = f"{type(e).__name__}: {e}"
                logger.error("Snapshot preparation failed", error=preparation_error, exc_info=True)

            for name in selected:
                if prepared is None:
                    outcome = await self._record_failure(
                        get_view_definition(name), run_id, trigger, preparation_error
                    )
                else:
                    task = self._start_or_join(
                        get_view_definition(name),
                        run_id=run_id,
                        trigger=trigger,
                        as_of=as_of,
                        prepared=prepared,
                    )
                    outcome = await asyncio.shield(task)
                report.outcomes.append(outcome)
        finally:
            clear_run_context("refresh_run_id")

        report.completed_at = datetime.utcnow()
        log = logger.info if report.success else logger.warning
        log(
            "Refresh run completed",
            run_id=run_id,
            succeeded=len(report.succeeded),
            failed=report.failed,
            duration_seconds=report.duration_seconds,
        )
        return report

    @asynccontextmanager
    async def quiesce(self) -> AsyncIterator[None]:
        """
        Hold every view lock, acquired in name order, so no rebuild runs
        while the caller mutates facts.
        """
        async with AsyncExitStack() as stack:
            for name in sorted(self._locks):
                await stack.enter_async_context(self._locks[name])
            logger.info("Refreshes quiesced")
            yield
        logger.info("Refreshes resumed")

    def is_refreshing(self, name: str) -> bool:
        task = self._in_flight.get(name)
        return task is not None and not task.done()

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _forget(self, name: str, task: asyncio.Task) -> None:
        if self._in_flight.get(name) is task:
            del self._in_flight[name]

    def _start_or_join(self, definition: ViewDefinition, **kwargs) -> asyncio.Task:
        in_flight = self._in_flight.get(definition.name)
        if in_flight is not None and not in_flight.done():
            logger.info("Joining in-flight refresh", view=definition.name)
            return in_flight

        task = asyncio.create_task(self._refresh(definition, **kwargs))
        self._in_flight[definition.name] = task
        task.add_done_callback(lambda t, n=definition.name: self._forget(n, t))
        return task

    async def _bounded(self, target: str, func, *args):
        """Run a blocking computation in a worker thread under the view timeout."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise RefreshTimeoutError(target, self.timeout_seconds) from None

    async def _load_and_prepare(self, names: List[str], as_of: datetime) -> Prepared:
        lookback = max_lookback_days(names, self.settings.aggregation)
        async with self.session_factory() as session:
            snapshot = await load_fact_snapshot(session, as_of, lookback)
        return await self._bounded("prepare_facts", prepare_facts, snapshot)

    def _compute(self, definition: ViewDefinition, prepared: Prepared, as_of: datetime) -> pl.DataFrame:
        facts, _ = prepared
        return definition.build(facts, as_of, self.settings.aggregation)

    async def _refresh(
        self,
        definition: ViewDefinition,
        run_id: str,
        trigger: RefreshTrigger,
        as_of: Optional[datetime] = None,
        snapshot: Optional[FactSnapshot] = None,
        prepared: Optional[Prepared] = None,
    ) -> ViewRefreshOutcome:
        async with self._locks[definition.name]:
            started_at = datetime.utcnow()
            outcome = ViewRefreshOutcome(
                view_name=definition.name,
                status=RefreshStatus.STARTED,
                started_at=started_at,
            )
            log_id = await self._log_start(run_id, trigger, outcome)
            start = time.perf_counter()

            try:
                if prepared is None:
                    if snapshot is None:
                        as_of = as_of or started_at
                        snapshot = await self._load_snapshot(definition, as_of)
                    prepared = await self._bounded(definition.name, prepare_facts, snapshot)
                as_of = prepared[0].as_of
                outcome.excluded_rows = prepared[1].excluded_rows

                frame = await self._bounded(
                    definition.name, self._compute, definition, prepared, as_of
                )

                refreshed_at = datetime.utcnow()
                async with self.session_factory() as session:
                    async with session.begin():
                        version = await self.publisher.publish(
                            session, definition, frame, as_of, refreshed_at
                        )
                # Only visible in memory once the database holds it
                self.view_store.publish(definition.name, frame, as_of, refreshed_at, version)

                outcome.status = RefreshStatus.SUCCEEDED
                outcome.row_count = frame.height
                outcome.version = version

            except RefreshTimeoutError as e:
                outcome.status = RefreshStatus.TIMED_OUT
                outcome.error = str(e)
                logger.error("View refresh timed out", view=definition.name, timeout_seconds=e.timeout_seconds)

            except Exception as e:
                outcome.status = RefreshStatus.FAILED
                outcome.error = f"{type(e).__name__}: {e}"
                logger.error(
                    "View refresh failed",
                    view=definition.name,
                    error=outcome.error,
                    exc_info=True,
                )

            outcome.completed_at = datetime.utcnow()
            logger.info(
                "View refresh finished",
                view=definition.name,
                status=outcome.status.value,
                rows=outcome.row_count,
                excluded_rows=outcome.excluded_rows,
                elapsed_ms=round((time.perf_counter() - start) * 1000, 2),
            )
            await self._log_finish(log_id, outcome)
            return outcome

    async def _load_snapshot(self, definition: ViewDefinition, as_of: datetime) -> FactSnapshot:
        async with self.session_factory() as session:
            return await load_fact_snapshot(
                session, as_of, definition.lookback_days(self.settings.aggregation)
            )

    async def _record_failure(
        self,
        definition: ViewDefinition,
        run_id: str,
        trigger: RefreshTrigger,
        error: Optional[str],
    ) -> ViewRefreshOutcome:
        now = datetime.utcnow()
        outcome = ViewRefreshOutcome(
            view_name=definition.name,
            status=RefreshStatus.FAILED,
            started_at=now,
            completed_at=now,
            error=error,
        )
        log_id = await self._log_start(run_id, trigger, outcome)
        await self._log_finish(log_id, outcome)
        return outcome

    # =========================================================================
    # REFRESH LOG
    # =========================================================================

    async def _log_start(
        self,
        run_id: str,
        trigger: RefreshTrigger,
        outcome: ViewRefreshOutcome,
    ) -> Optional[int]:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    entry = RefreshLogEntry(
                        run_id=run_id,
                        view_name=outcome.view_name,
                        trigger=trigger.value,
                        status=RefreshStatus.STARTED,
                        started_at=outcome.started_at,
                    )
                    session.add(entry)
                    await session.flush()
                    return entry.log_id
        except Exception as e:
            logger.error("Failed to write refresh log", view=outcome.view_name, error=str(e))
            return None

    async def _log_finish(self, log_id: Optional[int], outcome: ViewRefreshOutcome) -> None:
        if log_id is None:
            return
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    entry = await session.get(RefreshLogEntry, log_id)
                    entry.status = outcome.status
                    entry.completed_at = outcome.completed_at
                    entry.duration_ms = outcome.duration_ms
                    entry.row_count = outcome.row_count
                    entry.excluded_rows = outcome.excluded_rows
                    entry.error = outcome.error
        except Exception as e:
            logger.error("Failed to write refresh log", view=outcome.view_name, error=str(e))


# Global scheduler
_scheduler: Optional[RefreshScheduler] = None


def init_refresh_scheduler(
    session_factory: async_sessionmaker[AsyncSession],
    view_store: Optional[ViewStore] = None,
    settings: Optional[Settings] = None,
) -> RefreshScheduler:
    """Create the process-wide scheduler (idempotent)."""
    global _scheduler
    if _scheduler is None:
        _scheduler = RefreshScheduler(session_factory, view_store=view_store, settings=settings)
    return _scheduler
