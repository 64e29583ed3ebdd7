from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger(__name__)


def request_certificate(
    db: Session,
    *,
    enrollment_id: str,
    participant_id: str,
    session_id: str,
    course_id: str,
    requested_by_user_id: Optional[str],
) -> models.CertificateRequest:
    existing = (
        db.query(models.CertificateRequest)
        .filter(models.CertificateRequest.enrollment_id == enrollment_id)
        .first()
    )
    if existing:
        return existing

    request = models.CertificateRequest(
        enrollment_id=enrollment_id,
        participant_id=participant_id,
        session_id=session_id,
        course_id=course_id,
        requested_by_user_id=requested_by_user_id,
        status=models.CertificateRequestStatus.QUEUED,
    )
    db.add(request)
    db.flush()
    logger.info(
        "Certificate issuance requested",
        extra={"enrollment_id": enrollment_id, "participant_id": participant_id, "course_id": course_id},
    )
    return request
