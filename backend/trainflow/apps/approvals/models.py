# backend/trainflow/apps/approvals/models.py

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import relationship

from ...database import Base
from ...utils.identifiers import generate_request_number, generate_uuid7
from ..accounts.models import AccountRole
from ..catalog.rules import WorkflowTier


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# ENUMS
# ---------------------------------------------------------------------------


class RequestStatus(str, enum.Enum):
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


TERMINAL_REQUEST_STATUSES = frozenset(
    {
        RequestStatus.APPROVED,
        RequestStatus.REJECTED,
        RequestStatus.CANCELLED,
        RequestStatus.COMPLETED,
    }
)


class RequestPriority(str, enum.Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class ApprovalStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    DELEGATED = "delegated"
    # Closed because the requester withdrew the request.
    CANCELLED = "cancelled"


class ApprovalDecision(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"


# ---------------------------------------------------------------------------
# TRAINING REQUEST
# ---------------------------------------------------------------------------


class TrainingRequest(Base):
    """
    An employee's request (or a manager's nomination) for a course.

    (status, current_approval_level, current_approver_id) is only ever
    written by the approval router, through a compare-and-set on `version`.
    """

    __tablename__ = "training_requests"
    __table_args__ = (
        CheckConstraint("current_approval_level >= 1", name="ck_training_requests_level_positive"),
        Index("idx_training_requests_requester_status", "requester_id", "status"),
        Index("idx_training_requests_approver_status", "current_approver_id", "status"),
        Index("idx_training_requests_course_status", "course_id", "status"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    request_number = Column(String(32), nullable=False, unique=True, default=generate_request_number)

    requester_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    nominated_by_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    course_id = Column(String(36), ForeignKey("courses.id", ondelete="RESTRICT"), nullable=False)
    session_id = Column(String(36), ForeignKey("training_sessions.id", ondelete="SET NULL"), nullable=True)

    justification = Column(Text, nullable=False)
    priority = Column(
        Enum(RequestPriority, name="request_priority_enum", native_enum=False),
        nullable=False,
        default=RequestPriority.NORMAL,
    )
    estimated_cost = Column(Numeric(12, 2), nullable=True)

    status = Column(
        Enum(RequestStatus, name="request_status_enum", native_enum=False),
        nullable=False,
        default=RequestStatus.DRAFT,
        index=True,
    )
    workflow_tier = Column(
        Enum(WorkflowTier, name="workflow_tier_enum", native_enum=False),
        nullable=True,
    )
    current_approval_level = Column(Integer, nullable=False, default=1)
    current_approver_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)

    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    course = relationship("Course", lazy="joined")
    requester = relationship("User", foreign_keys=[requester_id], lazy="select")
    approvals = relationship(
        "Approval",
        back_populates="request",
        order_by="Approval.approval_level",
        lazy="select",
    )

    def __repr__(self) -> str:
        return (
            f"<TrainingRequest {self.request_number} status={self.status} "
            f"level={self.current_approval_level} approver={self.current_approver_id}>"
        )


# ---------------------------------------------------------------------------
# APPROVAL (one row per chain step decision)
# ---------------------------------------------------------------------------


class Approval(Base):
    __tablename__ = "approvals"
    __table_args__ = (
        CheckConstraint("approval_level >= 1", name="ck_approvals_level_positive"),
        Index("idx_approvals_approver_status", "approver_id", "status"),
        Index("idx_approvals_request_level", "request_id", "approval_level"),
        # At most one open approval per chain level.
        Index(
            "uq_approvals_one_pending_per_level",
            "request_id",
            "approval_level",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    request_id = Column(String(36), ForeignKey("training_requests.id", ondelete="CASCADE"), nullable=False, index=True)
    approver_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approval_level = Column(Integer, nullable=False)

    approver_role = Column(
        Enum(AccountRole, name="approver_role_enum", native_enum=False),
        nullable=False,
        doc="Capacity in which the approver signs (an L&D user may stand in for the HRBP).",
    )
    step_role = Column(
        Enum(AccountRole, name="approval_step_role_enum", native_enum=False),
        nullable=False,
        doc="The chain step this approval fulfils.",
    )

    status = Column(
        Enum(ApprovalStatus, name="approval_status_enum", native_enum=False),
        nullable=False,
        default=ApprovalStatus.PENDING,
        index=True,
    )
    decision_date = Column(DateTime(timezone=True), nullable=True)
    comments = Column(Text, nullable=True)
    delegated_from_id = Column(String(36), ForeignKey("approvals.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    request = relationship("TrainingRequest", back_populates="approvals")

    def __repr__(self) -> str:
        return f"<Approval request={self.request_id} level={self.approval_level} approver={self.approver_id} status={self.status}>"
