from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import CompletionSource, CompletionStatus, EnrollmentStatus, SessionStatus


class SessionCreate(BaseModel):
    course_id: str
    session_code: str = Field(min_length=1, max_length=64)
    capacity: int = Field(ge=1)
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    location: Optional[str] = None


class SessionStatusUpdate(BaseModel):
    status: SessionStatus
    reason: Optional[str] = None


class SessionCancel(BaseModel):
    reason: Optional[str] = None


class EnrollPayload(BaseModel):
    participant_id: str


class EnrollBatchPayload(BaseModel):
    participant_ids: List[str] = Field(min_length=1)


class EnrollFromRequestPayload(BaseModel):
    request_id: str


class EnrollmentCancel(BaseModel):
    reason: Optional[str] = None


class SessionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    course_id: str
    session_code: str
    location: Optional[str]
    starts_at: Optional[datetime]
    ends_at: Optional[datetime]
    capacity: int
    enrolled_count: int
    waitlist_count: int
    status: SessionStatus
    cancelled_reason: Optional[str]
    cancelled_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime


class EnrollmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    session_id: str
    participant_id: str
    request_id: Optional[str]
    status: EnrollmentStatus
    waitlist_position: Optional[int]
    attendance_minutes: Optional[int]
    is_attendance_final: bool
    attendance_finalized_at: Optional[datetime]
    attendance_finalized_by_id: Optional[str]
    assessment_score: Optional[float]
    completion_status: CompletionStatus
    completion_source: Optional[CompletionSource]
    passed: Optional[bool]
    completion_date: Optional[datetime]
    is_completion_final: bool
    completion_finalized_at: Optional[datetime]
    completion_finalized_by_id: Optional[str]
    enrolled_at: datetime
    cancelled_at: Optional[datetime]
    cancellation_reason: Optional[str]
