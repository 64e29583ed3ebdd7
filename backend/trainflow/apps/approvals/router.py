from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from trainflow.apps.accounts import models as account_models
from trainflow.database import atomic, get_db, get_read_db
from trainflow.security import get_current_active_user

from . import schemas, services


router = APIRouter(prefix="/approvals", tags=["approvals"])


def _ensure_requester_or_admin(request, current_user: account_models.User) -> None:
    if request.requester_id == current_user.id or current_user.role == account_models.AccountRole.ADMIN:
        return
    raise HTTPException(status_code=403, detail="Only the requester may change this request")


@router.post("/requests", response_model=schemas.TrainingRequestRead, status_code=201)
def create_request(
    payload: schemas.TrainingRequestCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    with atomic(db):
        request = services.create_request(
            db,
            requester_id=current_user.id,
            course_id=payload.course_id,
            justification=payload.justification,
            priority=payload.priority,
            estimated_cost=payload.estimated_cost,
            session_id=payload.session_id,
            submit_now=payload.submit,
            actor_user_id=current_user.id,
        )
    return request


@router.post("/requests/nominations", response_model=schemas.TrainingRequestRead, status_code=201)
def nominate(
    payload: schemas.NominationCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    with atomic(db):
        request = services.nominate(
            db,
            nominator_id=current_user.id,
            employee_id=payload.employee_id,
            course_id=payload.course_id,
            justification=payload.justification,
            priority=payload.priority,
            estimated_cost=payload.estimated_cost,
            session_id=payload.session_id,
        )
    return request


@router.get("/requests/{request_id}", response_model=schemas.TrainingRequestDetail)
def get_request(
    request_id: str,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return services.get_request(db, request_id)


@router.post("/requests/{request_id}/submit", response_model=schemas.TrainingRequestRead)
def submit_request(
    request_id: str,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    with atomic(db):
        request = services.get_request(db, request_id)
        _ensure_requester_or_admin(request, current_user)
        services.submit(db, request, actor_user_id=current_user.id)
    return request


@router.post("/requests/{request_id}/withdraw", response_model=schemas.TrainingRequestRead)
def withdraw_request(
    request_id: str,
    payload: schemas.WithdrawPayload,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    with atomic(db):
        request = services.get_request(db, request_id)
        _ensure_requester_or_admin(request, current_user)
        services.withdraw(db, request, payload.reason, actor_user_id=current_user.id)
    return request


@router.get("/my", response_model=List[schemas.ApprovalRead])
def list_my_pending_approvals(
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return services.list_pending_for_approver(db, current_user.id)


@router.post("/bulk-approve", response_model=List[schemas.BulkApprovalResultRead])
def bulk_approve(
    payload: schemas.BulkApprovePayload,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    with atomic(db):
        results = services.bulk_approve(
            db,
            payload.approval_ids,
            actor_user_id=current_user.id,
            comments=payload.comments,
            enforce_assignee=True,
        )
    return results


@router.post("/{approval_id}/decision", response_model=schemas.TrainingRequestRead)
def decide(
    approval_id: str,
    payload: schemas.DecisionPayload,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    with atomic(db):
        request = services.decide(
            db,
            approval_id,
            payload.decision,
            payload.comments,
            actor_user_id=current_user.id,
            enforce_assignee=True,
        )
    return request


@router.post("/{approval_id}/delegate", response_model=schemas.ApprovalRead)
def delegate(
    approval_id: str,
    payload: schemas.DelegatePayload,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    with atomic(db):
        approval = services.delegate(
            db,
            approval_id,
            payload.delegate_id,
            payload.comments,
            actor_user_id=current_user.id,
            enforce_assignee=True,
        )
    return approval
