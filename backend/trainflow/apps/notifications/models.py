from __future__ import annotations

from datetime import datetime, timezone
import enum

from sqlalchemy import Boolean, Column, DateTime, Enum as SAEnum, ForeignKey, Index, String, Text

from trainflow.database import Base
from trainflow.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationType(str, enum.Enum):
    APPROVAL_REQUIRED = "approval_required"
    REQUEST_APPROVED = "request_approved"
    REQUEST_REJECTED = "request_rejected"
    ENROLLMENT_CONFIRMED = "enrollment_confirmed"
    SESSION_CANCELLED = "session_cancelled"
    SESSION_SCHEDULED = "session_scheduled"
    TRAINING_COMPLETED = "training_completed"


class DeliveryStatus(str, enum.Enum):
    QUEUED = "QUEUED"
    SENT = "SENT"
    FAILED = "FAILED"
    SKIPPED_NO_PROVIDER = "SKIPPED_NO_PROVIDER"


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user_created", "user_id", "created_at"),
        Index("ix_notifications_user_unread", "user_id", "is_read"),
        Index("ix_notifications_reference", "reference_type", "reference_id"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(
        SAEnum(NotificationType, name="notification_type_enum", native_enum=False),
        nullable=False,
        index=True,
    )
    reference_type = Column(String(64), nullable=True)
    reference_id = Column(String(64), nullable=True)

    delivery_status = Column(
        SAEnum(DeliveryStatus, name="notification_delivery_status_enum", native_enum=False),
        nullable=False,
        default=DeliveryStatus.QUEUED,
    )
    error = Column(Text, nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Notification id={self.id} user={self.user_id} type={self.type} status={self.delivery_status}>"
