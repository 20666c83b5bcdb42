"""
Audit Recorder

Append-only audit trail:
- record_audit() for explicit operational events (grants, detection runs,
  purges)
- An ORM before_flush listener that captures row-level mutations of facts
  and reference data, with actor and origin taken from session.info
- Flushes that would modify or delete an existing audit entry are refused

Bulk Core statements (insert()/update() executed directly) bypass the
listener; seeding and maintenance jobs record their own summary entries.
"""

import decimal
import uuid
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import event, inspect
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from scout_analytics.database.models import (
    AuditAction,
    AuditEntry,
    Brand,
    Product,
    Store,
    Transaction,
)
from scout_analytics.exceptions import ImmutableAuditError

logger = structlog.get_logger(__name__)

# Model -> actions captured by the flush listener
AUDITED_MODELS = {
    Transaction: {AuditAction.INSERT, AuditAction.UPDATE, AuditAction.DELETE},
    Product: {AuditAction.UPDATE, AuditAction.DELETE},
    Store: {AuditAction.UPDATE, AuditAction.DELETE},
    Brand: {AuditAction.UPDATE, AuditAction.DELETE},
}

_listener_installed = False


def _json_safe(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, decimal.Decimal):
        return float(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    return value


def row_snapshot(obj: Any) -> Dict[str, Any]:
    """Column values of a mapped instance as JSON-safe data."""
    mapper = inspect(obj).mapper
    return {
        attr.key: _json_safe(getattr(obj, attr.key))
        for attr in mapper.column_attrs
    }


def _previous_snapshot(obj: Any) -> Dict[str, Any]:
    """Column values before the pending changes of a dirty instance."""
    state = inspect(obj)
    snapshot = {}
    for attr in state.mapper.column_attrs:
        history = state.attrs[attr.key].history
        if history.deleted:
            snapshot[attr.key] = _json_safe(history.deleted[0])
        elif history.unchanged:
            snapshot[attr.key] = _json_safe(history.unchanged[0])
        else:
            snapshot[attr.key] = _json_safe(getattr(obj, attr.key))
    return snapshot


def _record_id(obj: Any) -> Optional[str]:
    identity = inspect(obj).identity
    if identity:
        return ",".join(str(part) for part in identity)
    primary_key = inspect(obj).mapper.primary_key
    values = [getattr(obj, column.key, None) for column in primary_key]
    if any(v is not None for v in values):
        return ",".join(str(v) for v in values)
    return None


def build_audit_entry(
    table_name: str,
    action: AuditAction,
    old_data: Optional[Dict[str, Any]] = None,
    new_data: Optional[Dict[str, Any]] = None,
    record_id: Optional[str] = None,
    actor: Optional[str] = None,
    origin: Optional[str] = None,
) -> AuditEntry:
    return AuditEntry(
        table_name=table_name,
        action=action,
        record_id=record_id,
        old_data={k: _json_safe(v) for k, v in old_data.items()} if old_data is not None else None,
        new_data={k: _json_safe(v) for k, v in new_data.items()} if new_data is not None else None,
        actor=actor,
        origin=origin,
        recorded_at=datetime.utcnow(),
    )


async def record_audit(
    session: AsyncSession,
    table_name: str,
    action: AuditAction,
    old_data: Optional[Dict[str, Any]] = None,
    new_data: Optional[Dict[str, Any]] = None,
    record_id: Optional[str] = None,
    actor: Optional[str] = None,
    origin: Optional[str] = None,
) -> AuditEntry:
    """
    Append an audit entry in the caller's transaction.

    actor and origin default to the values stored in session.info.
    """
    entry = build_audit_entry(
        table_name,
        action,
        old_data=old_data,
        new_data=new_data,
        record_id=record_id,
        actor=actor if actor is not None else session.info.get("actor"),
        origin=origin if origin is not None else session.info.get("origin"),
    )
    session.add(entry)
    await session.flush()
    logger.debug("Audit entry recorded", table=table_name, action=action.value, record_id=record_id)
    return entry


def _audit_before_flush(session: Session, flush_context, instances) -> None:
    for obj in list(session.dirty) + list(session.deleted):
        if isinstance(obj, AuditEntry):
            raise ImmutableAuditError(
                f"Audit entry {obj.audit_id} cannot be modified or deleted"
            )

    actor = session.info.get("actor")
    origin = session.info.get("origin")
    entries = []

    for obj in session.new:
        actions = AUDITED_MODELS.get(type(obj))
        if actions and AuditAction.INSERT in actions:
            entries.append(build_audit_entry(
                type(obj).__tablename__,
                AuditAction.INSERT,
                new_data=row_snapshot(obj),
                record_id=_record_id(obj),
                actor=actor,
                origin=origin,
            ))

    for obj in session.dirty:
        actions = AUDITED_MODELS.get(type(obj))
        if not actions or AuditAction.UPDATE not in actions:
            continue
        if not session.is_modified(obj, include_collections=False):
            continue
        entries.append(build_audit_entry(
            type(obj).__tablename__,
            AuditAction.UPDATE,
            old_data=_previous_snapshot(obj),
            new_data=row_snapshot(obj),
            record_id=_record_id(obj),
            actor=actor,
            origin=origin,
        ))

    for obj in session.deleted:
        actions = AUDITED_MODELS.get(type(obj))
        if actions and AuditAction.DELETE in actions:
            entries.append(build_audit_entry(
                type(obj).__tablename__,
                AuditAction.DELETE,
                old_data=_previous_snapshot(obj),
                record_id=_record_id(obj),
                actor=actor,
                origin=origin,
            ))

    for entry in entries:
        session.add(entry)


def install_audit_listener() -> None:
    """Register the flush listener on every ORM session (idempotent)."""
    global _listener_installed
    if _listener_installed:
        return
    event.listen(Session, "before_flush", _audit_before_flush)
    _listener_installed = True
    logger.info("Audit listener installed", models=[m.__tablename__ for m in AUDITED_MODELS])


def remove_audit_listener() -> None:
    global _listener_installed
    if _listener_installed:
        event.remove(Session, "before_flush", _audit_before_flush)
        _listener_installed = False
