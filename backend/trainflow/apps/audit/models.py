from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Index, JSON, String, Text, desc, event

from ...database import Base
from ...utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditLogEntry(Base):
    """
    Append-only field-level audit trail for requests, approvals, sessions
    and enrollments.
    """

    __tablename__ = "audit_log_entries"
    __table_args__ = (
        Index("ix_audit_log_entity", "entity_type", "entity_id"),
        Index("ix_audit_log_entity_field", "entity_id", "field"),
        Index("ix_audit_log_time_desc", desc("occurred_at")),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    entity_type = Column(String(64), nullable=False, index=True)
    entity_id = Column(String(64), nullable=False, index=True)
    field = Column(String(64), nullable=False)
    old_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)
    reason = Column(Text, nullable=True)
    actor_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    occurred_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)

    def __repr__(self) -> str:
        return f"<AuditLogEntry {self.entity_type}:{self.entity_id} {self.field} {self.old_value!r}->{self.new_value!r}>"


@event.listens_for(AuditLogEntry, "before_update")
def _block_audit_update(mapper, connection, target):
    raise RuntimeError("Audit log entries are append-only and cannot be updated.")


@event.listens_for(AuditLogEntry, "before_delete")
def _block_audit_delete(mapper, connection, target):
    raise RuntimeError("Audit log entries are append-only and cannot be deleted.")
