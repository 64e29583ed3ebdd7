from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from .models import DeliveryStatus, NotificationType


class NotificationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    title: str
    message: str
    type: NotificationType
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    delivery_status: DeliveryStatus
    error: Optional[str] = None
    is_read: bool
    created_at: datetime
    sent_at: Optional[datetime] = None
