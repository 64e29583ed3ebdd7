# backend/trainflow/apps/catalog/models.py

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Enum, Float, Index, Integer, String

from ...database import Base
from ...utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TrainingLocation(str, enum.Enum):
    LOCAL = "local"
    ABROAD = "abroad"


class CostLevel(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Course(Base):
    """
    Catalogue course, read-only from the workflow engine's side.

    Only the policy fields are modelled here; descriptive catalogue data
    belongs to the catalogue screens.
    """

    __tablename__ = "courses"
    __table_args__ = (
        Index("idx_courses_location_cost", "training_location", "cost_level"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    code = Column(String(64), nullable=False, unique=True)
    name = Column(String(255), nullable=False)

    training_location = Column(
        Enum(TrainingLocation, name="training_location_enum", native_enum=False),
        nullable=False,
        default=TrainingLocation.LOCAL,
    )
    cost_level = Column(
        Enum(CostLevel, name="cost_level_enum", native_enum=False),
        nullable=False,
        default=CostLevel.LOW,
    )

    duration_hours = Column(Float, nullable=True, doc="Expected contact hours; NULL falls back to the default day.")
    min_attendance_percent = Column(Integer, nullable=True)
    pass_score = Column(Float, nullable=True)
    has_assessment = Column(Boolean, nullable=False, default=False)
    require_both_attendance_and_assessment = Column(Boolean, nullable=False, default=False)
    requires_chro_approval = Column(
        Boolean,
        nullable=False,
        default=False,
        doc="Extended-workflow courses that also need CHRO sign-off.",
    )

    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<Course {self.code} location={self.training_location} cost={self.cost_level}>"
