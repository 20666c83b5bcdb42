"""
Published View Store

In-memory serving snapshots of every derived view:
- Immutable PublishedView records, swapped atomically on publish
- Readers never block and never observe a partially built frame
- Version-checked sync from the aggregate tables, so a process that did
  not run the refresh (API worker, other scheduler) still serves the
  latest published state
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

import polars as pl
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from scout_analytics.aggregation.registry import VIEW_REGISTRY, get_view_definition
from scout_analytics.aggregation.snapshot import frame_from_records
from scout_analytics.database.models import ViewVersion
from scout_analytics.exceptions import ViewNotReadyError

logger = structlog.get_logger(__name__)

SYNC_ATTEMPTS = 3


@dataclass(frozen=True)
class PublishedView:
    """One immutable published version of a view"""
    name: str
    frame: pl.DataFrame
    as_of: datetime
    refreshed_at: datetime
    version: int

    @property
    def row_count(self) -> int:
        return self.frame.height

    def summary(self) -> dict:
        return {
            "name": self.name,
            "version": self.version,
            "as_of": self.as_of.isoformat(),
            "refreshed_at": self.refreshed_at.isoformat(),
            "row_count": self.row_count,
        }


class ViewStore:
    """
    Latest published version of each view.

    Publishing replaces a single dict entry; a reader holding the previous
    PublishedView keeps a consistent frame until it lets go of it.
    """

    def __init__(self):
        self._views: Dict[str, PublishedView] = {}

    def publish(
        self,
        name: str,
        frame: pl.DataFrame,
        as_of: datetime,
        refreshed_at: datetime,
        version: int,
    ) -> PublishedView:
        definition = get_view_definition(name)
        current = self._views.get(name)
        if current is not None and current.version > version:
            logger.debug("Ignoring stale publish", view=name, version=version, current=current.version)
            return current

        published = PublishedView(
            name=definition.name,
            frame=frame,
            as_of=as_of,
            refreshed_at=refreshed_at,
            version=version,
        )
        self._views[name] = published
        logger.info("View published", **published.summary())
        return published

    def get(self, name: str) -> PublishedView:
        """Latest version; raises UnknownViewError or ViewNotReadyError."""
        definition = get_view_definition(name)
        published = self._views.get(definition.name)
        if published is None:
            raise ViewNotReadyError(name)
        return published

    def peek(self, name: str) -> Optional[PublishedView]:
        return self._views.get(name)

    def list_views(self) -> List[dict]:
        """Every registered view with its publication state."""
        listing = []
        for name, definition in VIEW_REGISTRY.items():
            published = self._views.get(name)
            listing.append({
                "name": name,
                "description": definition.description,
                "cadence": definition.cadence.value,
                "store_scoped": definition.store_scoped,
                "published": published.summary() if published else None,
            })
        return listing

    def clear(self) -> None:
        self._views.clear()

    async def _persisted_version(self, session: AsyncSession, name: str) -> Optional[ViewVersion]:
        result = await session.execute(
            select(ViewVersion)
            .where(ViewVersion.view_name == name)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def sync_view(self, session: AsyncSession, name: str) -> bool:
        """
        Reload a view from its aggregate table if the persisted version is
        newer than the one held in memory.

        The version row is read again after the aggregate rows; if a
        publish landed in between, the read is retried so rows are never
        labelled with an older version.

        Returns:
            True when the in-memory view changed
        """
        definition = get_view_definition(name)
        columns = [getattr(definition.table, column) for column in definition.schema]

        for attempt in range(1, SYNC_ATTEMPTS + 1):
            persisted = await self._persisted_version(session, name)
            if persisted is None:
                return False

            current = self._views.get(name)
            if current is not None and current.version >= persisted.version:
                return False
            version, as_of, refreshed_at = persisted.version, persisted.as_of, persisted.refreshed_at

            result = await session.execute(select(*columns).order_by(definition.table.id))
            records = [dict(row._mapping) for row in result]

            confirmed = await self._persisted_version(session, name)
            if confirmed is None or confirmed.version != version:
                logger.info("View republished during sync, retrying", view=name, attempt=attempt)
                continue

            self.publish(
                name,
                frame_from_records(records, definition.schema),
                as_of=as_of,
                refreshed_at=refreshed_at,
                version=version,
            )
            return True

        logger.warning("View sync gave up after concurrent publishes", view=name, attempts=SYNC_ATTEMPTS)
        return False

    async def sync_all(self, session: AsyncSession) -> List[str]:
        """Sync every registered view; returns the names that changed."""
        changed = []
        for name in VIEW_REGISTRY:
            if await self.sync_view(session, name):
                changed.append(name)
        if changed:
            logger.info("Views synced from database", views=changed)
        return changed


# Process-wide store used by the API and the workflows
_view_store: Optional[ViewStore] = None


def get_view_store() -> ViewStore:
    global _view_store
    if _view_store is None:
        _view_store = ViewStore()
    return _view_store
