"""
Store Access Grants

Management of user_store_access rows. Grants are upserted on
(user_id, store_id) and revoked with a soft flag; every change is audited.
Expiry is enforced when grants are read, so the sweep only tidies rows.
"""

from datetime import datetime
from typing import Optional, Tuple

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from scout_analytics.audit.recorder import record_audit, row_snapshot
from scout_analytics.database.models import (
    AccessLevel,
    AuditAction,
    Store,
    StoreAccessGrant,
)
from scout_analytics.exceptions import AccessDenied
from .context import CallerContext, Role, StoreGrant, to_naive_utc

logger = structlog.get_logger(__name__)

GRANT_TABLE = StoreAccessGrant.__tablename__


def _grant_record_id(user_id: str, store_id: int) -> str:
    return f"{user_id}:{store_id}"


async def load_store_grants(session: AsyncSession, user_id: str) -> Tuple[StoreGrant, ...]:
    """All grant rows of a user, active or not; validity is checked per read."""
    result = await session.execute(
        select(StoreAccessGrant)
        .where(StoreAccessGrant.user_id == user_id)
        .order_by(StoreAccessGrant.store_id)
    )
    return tuple(
        StoreGrant(
            store_id=row.store_id,
            access_level=row.access_level,
            expires_at=row.expires_at,
            is_active=row.is_active,
        )
        for row in result.scalars()
    )


async def build_caller_context(
    session: AsyncSession,
    user_id: str,
    role: Role,
    now: Optional[datetime] = None,
) -> CallerContext:
    grants = await load_store_grants(session, user_id)
    return CallerContext(role=role, user_id=user_id, store_grants=grants, now=now or datetime.utcnow())


def _authorize_grant_change(actor: CallerContext, store_id: int) -> None:
    if actor.is_admin:
        return
    if actor.has_store_level(store_id, AccessLevel.ADMIN):
        return
    raise AccessDenied(
        "grant_not_permitted",
        f"user {actor.user_id} cannot manage access to store {store_id}",
    )


async def grant_store_access(
    session: AsyncSession,
    actor: CallerContext,
    user_id: str,
    store_id: int,
    access_level: AccessLevel = AccessLevel.READ,
    expires_at: Optional[datetime] = None,
) -> StoreAccessGrant:
    """
    Grant (or re-grant) a user access to a store.

    Idempotent: an existing row for (user_id, store_id) is updated and
    reactivated rather than duplicated.

    Raises:
        AccessDenied: actor is neither admin nor an admin of the store
        LookupError: the store does not exist
    """
    _authorize_grant_change(actor, store_id)
    expires_at = to_naive_utc(expires_at)

    if await session.get(Store, store_id) is None:
        raise LookupError(f"Store {store_id} does not exist")

    existing = (await session.execute(
        select(StoreAccessGrant).where(
            StoreAccessGrant.user_id == user_id,
            StoreAccessGrant.store_id == store_id,
        )
    )).scalar_one_or_none()

    old_data = row_snapshot(existing) if existing is not None else None
    if existing is None:
        grant = StoreAccessGrant(
            user_id=user_id,
            store_id=store_id,
            access_level=access_level,
            granted_by=actor.user_id,
            granted_at=actor.now,
            expires_at=expires_at,
            is_active=True,
        )
        session.add(grant)
    else:
        grant = existing
        grant.access_level = access_level
        grant.granted_by = actor.user_id
        grant.granted_at = actor.now
        grant.expires_at = expires_at
        grant.is_active = True
    await session.flush()

    await record_audit(
        session,
        GRANT_TABLE,
        AuditAction.GRANT_ACCESS,
        old_data=old_data,
        new_data=row_snapshot(grant),
        record_id=_grant_record_id(user_id, store_id),
        actor=actor.user_id,
    )
    logger.info(
        "Store access granted",
        user_id=user_id,
        store_id=store_id,
        access_level=access_level.value,
        granted_by=actor.user_id,
        regranted=existing is not None,
    )
    return grant


async def revoke_store_access(
    session: AsyncSession,
    actor: CallerContext,
    user_id: str,
    store_id: int,
) -> bool:
    """
    Deactivate a grant.

    Returns:
        False when there was no active grant to revoke
    """
    _authorize_grant_change(actor, store_id)

    grant = (await session.execute(
        select(StoreAccessGrant).where(
            StoreAccessGrant.user_id == user_id,
            StoreAccessGrant.store_id == store_id,
        )
    )).scalar_one_or_none()
    if grant is None or not grant.is_active:
        return False

    old_data = row_snapshot(grant)
    grant.is_active = False
    await session.flush()

    await record_audit(
        session,
        GRANT_TABLE,
        AuditAction.REVOKE_ACCESS,
        old_data=old_data,
        new_data=row_snapshot(grant),
        record_id=_grant_record_id(user_id, store_id),
        actor=actor.user_id,
    )
    logger.info("Store access revoked", user_id=user_id, store_id=store_id, revoked_by=actor.user_id)
    return True


async def sweep_expired_grants(session: AsyncSession, now: Optional[datetime] = None) -> int:
    """Deactivate grants whose expiry has passed. Returns rows changed."""
    now = now or datetime.utcnow()
    result = await session.execute(
        update(StoreAccessGrant)
        .where(
            StoreAccessGrant.is_active.is_(True),
            StoreAccessGrant.expires_at.is_not(None),
            StoreAccessGrant.expires_at <= now,
        )
        .values(is_active=False)
        .execution_options(synchronize_session=False)
    )
    swept = result.rowcount or 0

    await record_audit(
        session,
        GRANT_TABLE,
        AuditAction.GRANT_SWEEP,
        new_data={"swept": swept, "as_of": now},
    )
    logger.info("Expired grants swept", swept=swept)
    return swept
