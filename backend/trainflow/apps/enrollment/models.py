# backend/trainflow/apps/enrollment/models.py

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import relationship

from ...database import Base
from ...utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# ENUMS
# ---------------------------------------------------------------------------


class SessionStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    OPEN = "open"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


CLOSED_SESSION_STATUSES = frozenset({SessionStatus.COMPLETED, SessionStatus.CANCELLED})


class EnrollmentStatus(str, enum.Enum):
    CONFIRMED = "confirmed"
    WAITLISTED = "waitlisted"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    ABSENT = "absent"
    PARTIAL = "partial"


# Statuses that hold a seat. Marking attendance never frees one.
SEATED_STATUSES = (
    EnrollmentStatus.CONFIRMED,
    EnrollmentStatus.COMPLETED,
    EnrollmentStatus.ABSENT,
    EnrollmentStatus.PARTIAL,
)

ATTENDANCE_STATUSES = SEATED_STATUSES


class CompletionStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    NOT_COMPLETED = "not_completed"
    FAILED = "failed"


class CompletionSource(str, enum.Enum):
    RULES = "rules"
    OVERRIDE = "override"


# ---------------------------------------------------------------------------
# SESSION
# ---------------------------------------------------------------------------


class TrainingSession(Base):
    """
    A scheduled run of a course with a fixed number of seats.

    `enrolled_count` / `waitlist_count` are derived from the enrollment rows
    and recomputed in the same unit of work as every enrollment change.
    """

    __tablename__ = "training_sessions"
    __table_args__ = (
        CheckConstraint("capacity >= 1", name="ck_training_sessions_capacity_positive"),
        CheckConstraint("enrolled_count <= capacity", name="ck_training_sessions_within_capacity"),
        CheckConstraint("enrolled_count >= 0 AND waitlist_count >= 0", name="ck_training_sessions_counts_non_negative"),
        Index("idx_training_sessions_course_start", "course_id", "starts_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    course_id = Column(String(36), ForeignKey("courses.id", ondelete="RESTRICT"), nullable=False, index=True)
    session_code = Column(String(64), nullable=False, unique=True)
    location = Column(String(255), nullable=True)
    starts_at = Column(DateTime(timezone=True), nullable=True)
    ends_at = Column(DateTime(timezone=True), nullable=True)

    capacity = Column(Integer, nullable=False)
    enrolled_count = Column(Integer, nullable=False, default=0)
    waitlist_count = Column(Integer, nullable=False, default=0)

    status = Column(
        Enum(SessionStatus, name="training_session_status_enum", native_enum=False),
        nullable=False,
        default=SessionStatus.SCHEDULED,
        index=True,
    )
    cancelled_reason = Column(Text, nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    course = relationship("Course", lazy="joined")
    enrollments = relationship(
        "SessionEnrollment",
        back_populates="session",
        order_by="SessionEnrollment.enrolled_at",
        lazy="select",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<TrainingSession {self.session_code} status={self.status} "
            f"seats={self.enrolled_count}/{self.capacity} waitlist={self.waitlist_count}>"
        )


# ---------------------------------------------------------------------------
# ENROLLMENT
# ---------------------------------------------------------------------------


class SessionEnrollment(Base):
    __tablename__ = "session_enrollments"
    __table_args__ = (
        CheckConstraint("waitlist_position IS NULL OR waitlist_position >= 1", name="ck_session_enrollments_position"),
        Index("idx_session_enrollments_session_status", "session_id", "status"),
        Index("idx_session_enrollments_participant", "participant_id", "status"),
        # One live enrollment per participant and session.
        Index(
            "uq_session_enrollments_active_participant",
            "session_id",
            "participant_id",
            unique=True,
            postgresql_where=text("status <> 'CANCELLED'"),
            sqlite_where=text("status <> 'CANCELLED'"),
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    session_id = Column(String(36), ForeignKey("training_sessions.id", ondelete="CASCADE"), nullable=False)
    participant_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    request_id = Column(String(36), ForeignKey("training_requests.id", ondelete="SET NULL"), nullable=True, index=True)

    status = Column(
        Enum(EnrollmentStatus, name="enrollment_status_enum", native_enum=False),
        nullable=False,
        default=EnrollmentStatus.CONFIRMED,
    )
    waitlist_position = Column(Integer, nullable=True)

    # Attendance
    attendance_minutes = Column(Integer, nullable=True)
    is_attendance_final = Column(Boolean, nullable=False, default=False)
    attendance_finalized_at = Column(DateTime(timezone=True), nullable=True)
    attendance_finalized_by_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Completion
    assessment_score = Column(Float, nullable=True)
    completion_status = Column(
        Enum(CompletionStatus, name="completion_status_enum", native_enum=False),
        nullable=False,
        default=CompletionStatus.PENDING,
    )
    completion_source = Column(
        Enum(CompletionSource, name="completion_source_enum", native_enum=False),
        nullable=True,
        doc="NULL until the rules or a manual override have set a result.",
    )
    passed = Column(Boolean, nullable=True)
    completion_date = Column(DateTime(timezone=True), nullable=True)
    is_completion_final = Column(Boolean, nullable=False, default=False)
    completion_finalized_at = Column(DateTime(timezone=True), nullable=True)
    completion_finalized_by_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    enrolled_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    session = relationship("TrainingSession", back_populates="enrollments")
    participant = relationship("User", foreign_keys=[participant_id], lazy="select")

    def __repr__(self) -> str:
        return (
            f"<SessionEnrollment session={self.session_id} participant={self.participant_id} "
            f"status={self.status} position={self.waitlist_position}>"
        )
