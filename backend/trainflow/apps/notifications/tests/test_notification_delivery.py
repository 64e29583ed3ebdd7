from __future__ import annotations

import pytest
from fastapi import HTTPException

from trainflow.apps.accounts import models as account_models
from trainflow.apps.notifications import models as notification_models
from trainflow.apps.notifications import providers as notification_providers
from trainflow.apps.notifications import router as notification_router
from trainflow.apps.notifications import service as notification_service


def _create_user(db, email: str = "notify@example.com") -> account_models.User:
    user = account_models.User(email=email, full_name="Notify User", role=account_models.AccountRole.EMPLOYEE)
    db.add(user)
    db.commit()
    return user


def _notify(db, user_id):
    return notification_service.create(
        db,
        user_id=user_id,
        title="Enrollment Confirmed",
        message="You have been enrolled.",
        notification_type=notification_models.NotificationType.ENROLLMENT_CONFIRMED,
        reference_type="session",
        reference_id="session-1",
    )


def test_without_provider_notification_is_recorded_but_skipped(db_session, monkeypatch):
    monkeypatch.delenv("NOTIFICATIONS_PROVIDER", raising=False)
    user = _create_user(db_session)

    notification = _notify(db_session, user.id)
    db_session.commit()

    assert notification.delivery_status == notification_models.DeliveryStatus.SKIPPED_NO_PROVIDER
    assert notification.is_read is False


def test_log_provider_marks_notification_sent(db_session, monkeypatch):
    monkeypatch.setenv("NOTIFICATIONS_PROVIDER", "log")
    user = _create_user(db_session)

    notification = _notify(db_session, user.id)

    assert notification.delivery_status == notification_models.DeliveryStatus.SENT
    assert notification.sent_at is not None


def test_delivery_failure_is_recorded_not_raised(db_session, monkeypatch):
    class _FailingProvider(notification_providers.NotificationProvider):
        def deliver(self, **kwargs):
            raise ConnectionError("smtp down")

    monkeypatch.setattr(notification_providers, "get_notification_provider", lambda: (_FailingProvider(), True))
    user = _create_user(db_session)

    notification = _notify(db_session, user.id)
    db_session.commit()

    assert notification.delivery_status == notification_models.DeliveryStatus.FAILED
    assert notification.error == "smtp down"


def test_missing_recipient_is_skipped(db_session):
    assert _notify(db_session, None) is None
    assert db_session.query(notification_models.Notification).count() == 0


def test_unknown_provider_is_a_configuration_error(monkeypatch):
    monkeypatch.setenv("NOTIFICATIONS_PROVIDER", "carrier-pigeon")

    with pytest.raises(ValueError):
        notification_providers.get_notification_provider()


def test_list_and_mark_read(db_session):
    user = _create_user(db_session)
    other = _create_user(db_session, "other@example.com")
    first = _notify(db_session, user.id)
    _notify(db_session, user.id)
    _notify(db_session, other.id)
    db_session.commit()

    assert len(notification_service.list_for_user(db_session, user_id=user.id)) == 2

    notification_router.mark_read(first.id, db=db_session, current_user=user)
    unread = notification_router.list_my_notifications(unread_only=True, db=db_session, current_user=user)
    assert len(unread) == 1
    assert first.id not in {n.id for n in unread}

    with pytest.raises(HTTPException) as excinfo:
        notification_router.mark_read(first.id, db=db_session, current_user=other)
    assert excinfo.value.status_code == 404
