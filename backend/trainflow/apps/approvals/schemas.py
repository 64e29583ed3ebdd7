from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..accounts.models import AccountRole
from ..catalog.rules import WorkflowTier
from .models import ApprovalDecision, ApprovalStatus, RequestPriority, RequestStatus


class TrainingRequestCreate(BaseModel):
    course_id: str
    justification: str = Field(min_length=1)
    priority: RequestPriority = RequestPriority.NORMAL
    estimated_cost: Optional[Decimal] = None
    session_id: Optional[str] = None
    submit: bool = True


class NominationCreate(TrainingRequestCreate):
    employee_id: str


class DecisionPayload(BaseModel):
    decision: ApprovalDecision
    comments: Optional[str] = None


class DelegatePayload(BaseModel):
    delegate_id: str
    comments: Optional[str] = None


class BulkApprovePayload(BaseModel):
    approval_ids: List[str] = Field(min_length=1)
    comments: Optional[str] = None


class WithdrawPayload(BaseModel):
    reason: Optional[str] = None


class ApprovalRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    request_id: str
    approver_id: Optional[str]
    approval_level: int
    approver_role: AccountRole
    step_role: AccountRole
    status: ApprovalStatus
    decision_date: Optional[datetime]
    comments: Optional[str]
    delegated_from_id: Optional[str]
    created_at: datetime


class TrainingRequestRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    request_number: str
    requester_id: str
    nominated_by_id: Optional[str]
    course_id: str
    session_id: Optional[str]
    justification: str
    priority: RequestPriority
    estimated_cost: Optional[Decimal]
    status: RequestStatus
    workflow_tier: Optional[WorkflowTier]
    current_approval_level: int
    current_approver_id: Optional[str]
    submitted_at: Optional[datetime]
    version: int
    created_at: datetime
    updated_at: datetime


class TrainingRequestDetail(TrainingRequestRead):
    approvals: List[ApprovalRead] = []


class BulkApprovalResultRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    approval_id: str
    ok: bool
    error_code: Optional[str] = None
    message: Optional[str] = None
