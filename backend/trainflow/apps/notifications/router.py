from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from trainflow.apps.accounts.models import User
from trainflow.database import get_db, get_read_db
from trainflow.security import get_current_active_user

from . import models, schemas, service


router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("/my", response_model=List[schemas.NotificationRead])
def list_my_notifications(
    unread_only: bool = False,
    db: Session = Depends(get_read_db),
    current_user: User = Depends(get_current_active_user),
):
    return service.list_for_user(db, user_id=current_user.id, unread_only=unread_only)


@router.post("/{notification_id}/read", response_model=schemas.NotificationRead)
def mark_read(
    notification_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    notification = (
        db.query(models.Notification)
        .filter(models.Notification.id == notification_id, models.Notification.user_id == current_user.id)
        .first()
    )
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    notification.is_read = True
    db.commit()
    db.refresh(notification)
    return notification
