from __future__ import annotations

import logging
import os
from typing import Tuple

logger = logging.getLogger(__name__)


class NotificationProvider:
    def deliver(
        self,
        *,
        user_id: str,
        title: str,
        message: str,
        notification_type: str,
        reference_type: str | None,
        reference_id: str | None,
    ) -> None:
        raise NotImplementedError


class NoopProvider(NotificationProvider):
    def deliver(self, **kwargs) -> None:
        return None


class LoggingProvider(NotificationProvider):
    """Writes each delivery to the application log; useful on staging."""

    def deliver(
        self,
        *,
        user_id: str,
        title: str,
        message: str,
        notification_type: str,
        reference_type: str | None,
        reference_id: str | None,
    ) -> None:
        logger.info(
            "Notification delivered",
            extra={
                "user_id": user_id,
                "title": title,
                "notification_type": notification_type,
                "reference_type": reference_type,
                "reference_id": reference_id,
            },
        )


def get_notification_provider() -> Tuple[NotificationProvider, bool]:
    provider_name = (os.getenv("NOTIFICATIONS_PROVIDER") or "").strip().lower()
    if not provider_name or provider_name in {"none", "noop", "disabled"}:
        return NoopProvider(), False
    if provider_name == "log":
        return LoggingProvider(), True
    raise ValueError(f"Unsupported notification provider: {provider_name}")
