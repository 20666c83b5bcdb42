"""
View Publisher

Persists a rebuilt view: replaces the rows of its aggregate table and
bumps its view_versions row inside the caller's transaction, so readers of
the database see either the previous version or the new one.
"""

from datetime import datetime

import polars as pl
import structlog
from sqlalchemy import delete, insert
from sqlalchemy.ext.asyncio import AsyncSession

from scout_analytics.aggregation.registry import ViewDefinition
from scout_analytics.database.models import ViewVersion

logger = structlog.get_logger(__name__)

INSERT_BATCH_SIZE = 5000


class ViewPublisher:
    """Writes view frames to their aggregate tables"""

    def __init__(self, batch_size: int = INSERT_BATCH_SIZE):
        self.batch_size = batch_size

    async def publish(
        self,
        session: AsyncSession,
        definition: ViewDefinition,
        frame: pl.DataFrame,
        as_of: datetime,
        refreshed_at: datetime,
    ) -> int:
        """
        Replace the view's rows and record the new version.

        Does not commit. Returns the new version number.
        """
        table = definition.table
        await session.execute(delete(table))

        rows = frame.select(list(definition.schema)).to_dicts()
        for start in range(0, len(rows), self.batch_size):
            await session.execute(insert(table), rows[start:start + self.batch_size])

        current = await session.get(ViewVersion, definition.name, with_for_update=True)
        if current is None:
            current = ViewVersion(
                view_name=definition.name,
                version=1,
                as_of=as_of,
                refreshed_at=refreshed_at,
                row_count=len(rows),
            )
            session.add(current)
        else:
            current.version += 1
            current.as_of = as_of
            current.refreshed_at = refreshed_at
            current.row_count = len(rows)

        await session.flush()
        logger.debug(
            "View rows replaced",
            view=definition.name,
            table=table.__tablename__,
            rows=len(rows),
            version=current.version,
        )
        return current.version
