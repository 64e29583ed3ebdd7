from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from trainflow.apps.enrollment.models import CompletionStatus, EnrollmentStatus


class AttendanceUpdate(BaseModel):
    status: EnrollmentStatus
    attendance_minutes: Optional[int] = Field(default=None, ge=0)


class AttendanceOverride(AttendanceUpdate):
    reason: str = Field(min_length=1)


class ScoreUpdate(BaseModel):
    assessment_score: Optional[float] = Field(default=None, ge=0)


class CompletionOverride(BaseModel):
    completion_status: CompletionStatus
    passed: Optional[bool] = None
    reason: str = Field(min_length=1)


class EvaluationRead(BaseModel):
    enrollment_id: str
    completion_status: CompletionStatus
    passed: Optional[bool]
