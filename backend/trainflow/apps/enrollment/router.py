from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from trainflow.apps.accounts import models as account_models
from trainflow.database import atomic, get_db, get_read_db
from trainflow.security import TRAINING_ADMIN_ROLES, get_current_active_user, require_roles

from . import schemas, services


router = APIRouter(prefix="/enrollment", tags=["enrollment"])

_training_admin = require_roles(*TRAINING_ADMIN_ROLES)


@router.post("/sessions", response_model=schemas.SessionRead, status_code=201)
def create_session(
    payload: schemas.SessionCreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(_training_admin),
):
    with atomic(db):
        session = services.create_session(
            db,
            course_id=payload.course_id,
            session_code=payload.session_code,
            capacity=payload.capacity,
            starts_at=payload.starts_at,
            ends_at=payload.ends_at,
            location=payload.location,
            actor_user_id=current_user.id,
        )
    return session


@router.get("/sessions/{session_id}", response_model=schemas.SessionRead)
def get_session(
    session_id: str,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return services.get_session(db, session_id)


@router.get("/sessions/{session_id}/enrollments", response_model=List[schemas.EnrollmentRead])
def list_enrollments(
    session_id: str,
    include_cancelled: bool = False,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(_training_admin),
):
    services.get_session(db, session_id)
    return services.list_enrollments(db, session_id, include_cancelled=include_cancelled)


@router.post("/sessions/{session_id}/status", response_model=schemas.SessionRead)
def change_session_status(
    session_id: str,
    payload: schemas.SessionStatusUpdate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(_training_admin),
):
    with atomic(db):
        session = services.change_session_status(
            db,
            session_id,
            payload.status,
            actor_user_id=current_user.id,
            reason=payload.reason,
        )
    return session


@router.post("/sessions/{session_id}/cancel", response_model=schemas.SessionRead)
def cancel_session(
    session_id: str,
    payload: schemas.SessionCancel,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(_training_admin),
):
    with atomic(db):
        session = services.cancel_session(db, session_id, payload.reason, actor_user_id=current_user.id)
    return session


@router.post("/sessions/{session_id}/enrollments", response_model=schemas.EnrollmentRead, status_code=201)
def enroll(
    session_id: str,
    payload: schemas.EnrollPayload,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(_training_admin),
):
    with atomic(db):
        enrollment = services.enroll(db, session_id, payload.participant_id, actor_user_id=current_user.id)
    return enrollment


@router.post("/sessions/{session_id}/enrollments/batch", response_model=List[schemas.EnrollmentRead], status_code=201)
def enroll_batch(
    session_id: str,
    payload: schemas.EnrollBatchPayload,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(_training_admin),
):
    with atomic(db):
        enrollments = services.enroll_batch(db, session_id, payload.participant_ids, actor_user_id=current_user.id)
    return enrollments


@router.post("/sessions/{session_id}/enrollments/from-request", response_model=schemas.EnrollmentRead, status_code=201)
def enroll_from_request(
    session_id: str,
    payload: schemas.EnrollFromRequestPayload,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(_training_admin),
):
    with atomic(db):
        enrollment = services.enroll_from_request(db, session_id, payload.request_id, actor_user_id=current_user.id)
    return enrollment


@router.post("/enrollments/{enrollment_id}/cancel", response_model=schemas.EnrollmentRead)
def cancel_enrollment(
    enrollment_id: str,
    payload: schemas.EnrollmentCancel,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    with atomic(db):
        enrollment = services.get_enrollment(db, enrollment_id)
        is_admin = current_user.role in TRAINING_ADMIN_ROLES or current_user.role == account_models.AccountRole.ADMIN
        if enrollment.participant_id != current_user.id and not is_admin:
            raise HTTPException(status_code=403, detail="Not authorized to cancel this enrollment")
        services.cancel(db, enrollment_id, payload.reason, actor_user_id=current_user.id)
    return enrollment
