from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from trainflow.apps.accounts import models as account_models
from trainflow.apps.enrollment.schemas import EnrollmentRead
from trainflow.database import atomic, get_db, get_read_db
from trainflow.security import TRAINING_ADMIN_ROLES, require_roles

from . import schemas, services


router = APIRouter(prefix="/completion", tags=["completion"])

_training_admin = require_roles(*TRAINING_ADMIN_ROLES)


@router.get("/sessions/{session_id}/preview", response_model=List[schemas.EvaluationRead])
def preview_session(
    session_id: str,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(_training_admin),
):
    return [
        schemas.EvaluationRead(enrollment_id=enrollment.id, completion_status=status, passed=passed)
        for enrollment, status, passed in services.preview(db, session_id)
    ]


@router.post("/sessions/{session_id}/apply", response_model=List[EnrollmentRead])
def apply_rules(
    session_id: str,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(_training_admin),
):
    with atomic(db):
        changed = services.apply_to_session(db, session_id, actor_user_id=current_user.id)
    return changed


@router.post("/sessions/{session_id}/finalize", response_model=List[EnrollmentRead])
def finalize_completion(
    session_id: str,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(_training_admin),
):
    with atomic(db):
        enrollments = services.finalize(db, session_id, actor_user_id=current_user.id)
    return enrollments


@router.post("/sessions/{session_id}/attendance/finalize", response_model=List[EnrollmentRead])
def finalize_attendance(
    session_id: str,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(_training_admin),
):
    with atomic(db):
        enrollments = services.finalize_attendance(db, session_id, actor_user_id=current_user.id)
    return enrollments


@router.put("/enrollments/{enrollment_id}/attendance", response_model=EnrollmentRead)
def record_attendance(
    enrollment_id: str,
    payload: schemas.AttendanceUpdate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(_training_admin),
):
    with atomic(db):
        enrollment = services.record_attendance(
            db,
            enrollment_id,
            payload.status,
            payload.attendance_minutes,
            actor_user_id=current_user.id,
        )
    return enrollment


@router.post("/enrollments/{enrollment_id}/attendance/override", response_model=EnrollmentRead)
def override_attendance(
    enrollment_id: str,
    payload: schemas.AttendanceOverride,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(_training_admin),
):
    with atomic(db):
        enrollment = services.override_attendance(
            db,
            enrollment_id,
            payload.status,
            payload.attendance_minutes,
            reason=payload.reason,
            actor_user_id=current_user.id,
        )
    return enrollment


@router.put("/enrollments/{enrollment_id}/score", response_model=EnrollmentRead)
def record_score(
    enrollment_id: str,
    payload: schemas.ScoreUpdate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(_training_admin),
):
    with atomic(db):
        enrollment = services.record_score(
            db,
            enrollment_id,
            payload.assessment_score,
            actor_user_id=current_user.id,
        )
    return enrollment


@router.post("/enrollments/{enrollment_id}/override", response_model=EnrollmentRead)
def override_completion(
    enrollment_id: str,
    payload: schemas.CompletionOverride,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(_training_admin),
):
    with atomic(db):
        enrollment = services.override_completion(
            db,
            enrollment_id,
            payload.completion_status,
            reason=payload.reason,
            passed=payload.passed,
            actor_user_id=current_user.id,
        )
    return enrollment
