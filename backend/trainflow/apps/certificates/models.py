from __future__ import annotations

from datetime import datetime, timezone
import enum

from sqlalchemy import Column, DateTime, Enum as SAEnum, ForeignKey, String, UniqueConstraint

from trainflow.database import Base
from trainflow.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CertificateRequestStatus(str, enum.Enum):
    QUEUED = "QUEUED"
    ISSUED = "ISSUED"
    FAILED = "FAILED"


class CertificateRequest(Base):
    """
    Outbox row asking the certificate generator to issue a certificate.

    The generator itself lives outside this service; it picks up QUEUED rows.
    """

    __tablename__ = "certificate_requests"
    __table_args__ = (
        UniqueConstraint("enrollment_id", name="uq_certificate_requests_enrollment"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    enrollment_id = Column(
        String(36),
        ForeignKey("session_enrollments.id", ondelete="CASCADE"),
        nullable=False,
    )
    participant_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    session_id = Column(String(36), ForeignKey("training_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    course_id = Column(String(36), ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)

    status = Column(
        SAEnum(CertificateRequestStatus, name="certificate_request_status_enum", native_enum=False),
        nullable=False,
        default=CertificateRequestStatus.QUEUED,
        index=True,
    )
    requested_by_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<CertificateRequest id={self.id} enrollment={self.enrollment_id} status={self.status}>"
