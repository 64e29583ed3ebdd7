from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from . import models, providers

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _deliver(notification: models.Notification) -> None:
    provider, configured = providers.get_notification_provider()
    if not configured:
        notification.delivery_status = models.DeliveryStatus.SKIPPED_NO_PROVIDER
        return
    try:
        provider.deliver(
            user_id=notification.user_id,
            title=notification.title,
            message=notification.message,
            notification_type=notification.type.value,
            reference_type=notification.reference_type,
            reference_id=notification.reference_id,
        )
        notification.delivery_status = models.DeliveryStatus.SENT
        notification.sent_at = _utcnow()
    except Exception as exc:
        notification.delivery_status = models.DeliveryStatus.FAILED
        notification.error = str(exc)
        logger.warning(
            "Notification delivery failed",
            extra={"notification_id": notification.id, "user_id": notification.user_id},
        )


def create(
    db: Session,
    *,
    user_id: Optional[str],
    title: str,
    message: str,
    notification_type: models.NotificationType,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
) -> Optional[models.Notification]:
    """
    Fire-and-forget notification.

    Runs in a savepoint so a failure here never rolls back or fails the
    workflow operation that triggered it. Returns None when nothing was
    recorded.
    """
    if not user_id:
        logger.info("Notification skipped: no recipient", extra={"title": title, "reference_id": reference_id})
        return None
    try:
        with db.begin_nested():
            notification = models.Notification(
                user_id=user_id,
                title=title,
                message=message,
                type=notification_type,
                reference_type=reference_type,
                reference_id=str(reference_id) if reference_id is not None else None,
                delivery_status=models.DeliveryStatus.QUEUED,
            )
            db.add(notification)
            db.flush()
            _deliver(notification)
            db.flush()
        return notification
    except Exception:
        logger.warning(
            "Failed to record notification",
            extra={
                "user_id": user_id,
                "notification_type": getattr(notification_type, "value", notification_type),
                "reference_type": reference_type,
                "reference_id": reference_id,
            },
            exc_info=True,
        )
        return None


def list_for_user(db: Session, *, user_id: str, unread_only: bool = False) -> list[models.Notification]:
    query = db.query(models.Notification).filter(models.Notification.user_id == user_id)
    if unread_only:
        query = query.filter(models.Notification.is_read.is_(False))
    return query.order_by(models.Notification.created_at.desc()).all()
