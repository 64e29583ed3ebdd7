from __future__ import annotations

import enum
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence

from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _jsonable(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def record(
    db: Session,
    *,
    entity_type: str,
    entity_id: str,
    field: str,
    old_value: Any,
    new_value: Any,
    reason: Optional[str],
    actor_user_id: Optional[str],
    occurred_at: Optional[datetime] = None,
) -> models.AuditLogEntry:
    """
    Append one audit entry in the caller's unit of work.

    Must be called alongside the state change it describes. Failures
    propagate: a change that cannot be audited is not committed.
    """
    entry = models.AuditLogEntry(
        entity_type=entity_type,
        entity_id=str(entity_id),
        field=field,
        old_value=_jsonable(old_value),
        new_value=_jsonable(new_value),
        reason=reason,
        actor_user_id=actor_user_id,
        occurred_at=occurred_at or _utcnow(),
    )
    db.add(entry)
    db.flush()
    logger.debug(
        "Audit entry recorded",
        extra={"entity_type": entity_type, "entity_id": str(entity_id), "field": field},
    )
    return entry


def record_changes(
    db: Session,
    *,
    entity_type: str,
    entity_id: str,
    before: Mapping[str, Any],
    after: Mapping[str, Any],
    reason: Optional[str],
    actor_user_id: Optional[str],
) -> list[models.AuditLogEntry]:
    """Write one entry per field whose value differs between `before` and `after`."""
    occurred_at = _utcnow()
    entries = []
    for field, new_value in after.items():
        old_value = before.get(field)
        if _jsonable(old_value) == _jsonable(new_value):
            continue
        entries.append(
            record(
                db,
                entity_type=entity_type,
                entity_id=entity_id,
                field=field,
                old_value=old_value,
                new_value=new_value,
                reason=reason,
                actor_user_id=actor_user_id,
                occurred_at=occurred_at,
            )
        )
    return entries


def list_entries(
    db: Session,
    *,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    field: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> Sequence[models.AuditLogEntry]:
    query = db.query(models.AuditLogEntry)
    if entity_type:
        query = query.filter(models.AuditLogEntry.entity_type == entity_type)
    if entity_id:
        query = query.filter(models.AuditLogEntry.entity_id == str(entity_id))
    if field:
        query = query.filter(models.AuditLogEntry.field == field)
    if start:
        query = query.filter(models.AuditLogEntry.occurred_at >= start)
    if end:
        query = query.filter(models.AuditLogEntry.occurred_at <= end)
    return query.order_by(models.AuditLogEntry.occurred_at.asc(), models.AuditLogEntry.id.asc()).all()
