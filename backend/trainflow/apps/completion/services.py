"""
Completion rule evaluator plus the attendance and completion screens it
feeds.

`evaluate()` is pure: the same attendance status, minutes, score and course
policy always give the same (status, passed). Everything else here applies
its result to a session, records attendance, finalizes (locks) the data,
and handles audited overrides of locked data.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

from sqlalchemy.orm import Session

from trainflow.apps.approvals import models as approval_models
from trainflow.apps.approvals import services as approval_services
from trainflow.apps.audit import services as audit_services
from trainflow.apps.catalog.rules import completion_policy_for
from trainflow.apps.certificates import services as certificate_services
from trainflow.apps.enrollment import services as enrollment_services
from trainflow.apps.enrollment.models import (
    ATTENDANCE_STATUSES,
    SEATED_STATUSES,
    CompletionSource,
    CompletionStatus,
    EnrollmentStatus,
    SessionEnrollment,
)
from trainflow.apps.notifications import service as notification_service
from trainflow.apps.notifications.models import NotificationType
from trainflow.apps.workflow import apply_transition
from trainflow.errors import AlreadyFinalizedError, ValidationError

logger = logging.getLogger(__name__)

ENROLLMENT_ENTITY = "session_enrollment"

CompletionResult = Tuple[CompletionStatus, Optional[bool]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _get_value(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


# ---------------------------------------------------------------------------
# RULES
# ---------------------------------------------------------------------------


def evaluate(enrollment: Any, course: Any) -> CompletionResult:
    """
    Completion status and pass flag for one enrollment under the course policy.

    Absence beats every other signal. Under the "both" policy attendance
    and (when required) a passing score must both be met; otherwise either
    one suffices. Inconclusive inputs stay pending.
    """
    policy = completion_policy_for(course)
    status = EnrollmentStatus(_get_value(enrollment, "status"))
    minutes = _get_value(enrollment, "attendance_minutes") or 0
    score = _get_value(enrollment, "assessment_score")

    if status == EnrollmentStatus.ABSENT:
        return CompletionStatus.NOT_COMPLETED, False

    is_present = status in (EnrollmentStatus.CONFIRMED, EnrollmentStatus.COMPLETED)
    is_partial = status == EnrollmentStatus.PARTIAL
    attendance_met = is_present or (is_partial and minutes >= policy.min_attendance_minutes)

    scored = policy.has_assessment and score is not None
    score_passes = scored and float(score) >= policy.pass_score
    score_fails = scored and not score_passes

    if policy.require_both:
        assessment_met = not policy.has_assessment or score_passes
        if attendance_met and assessment_met:
            return CompletionStatus.COMPLETED, True
        if not attendance_met:
            return CompletionStatus.NOT_COMPLETED, False
        if score_fails:
            return CompletionStatus.FAILED, False
        return CompletionStatus.PENDING, None

    if attendance_met or score_passes:
        return CompletionStatus.COMPLETED, True
    if score_fails:
        return CompletionStatus.FAILED, False
    return CompletionStatus.PENDING, None


def _default_passed(status: CompletionStatus) -> Optional[bool]:
    if status == CompletionStatus.COMPLETED:
        return True
    if status in (CompletionStatus.FAILED, CompletionStatus.NOT_COMPLETED):
        return False
    return None


def _completion_snapshot(enrollment: SessionEnrollment) -> dict:
    return {
        "completion_status": enrollment.completion_status,
        "passed": enrollment.passed,
        "completion_source": enrollment.completion_source,
    }


def seated_enrollments(db: Session, session_id: str) -> List[SessionEnrollment]:
    return [
        enrollment
        for enrollment in enrollment_services.list_enrollments(db, session_id)
        if enrollment.status in SEATED_STATUSES
    ]


def preview(db: Session, session_id: str) -> List[Tuple[SessionEnrollment, CompletionStatus, Optional[bool]]]:
    """What the rules would give each seated enrollment right now. Writes nothing."""
    session = enrollment_services.get_session(db, session_id)
    return [(enrollment, *evaluate(enrollment, session.course)) for enrollment in seated_enrollments(db, session.id)]


def _write_result(
    enrollment: SessionEnrollment,
    status: CompletionStatus,
    passed: Optional[bool],
    source: CompletionSource,
) -> None:
    enrollment.completion_status = status
    enrollment.passed = passed
    enrollment.completion_source = source
    if status == CompletionStatus.COMPLETED:
        enrollment.completion_date = enrollment.completion_date or _utcnow()
    else:
        enrollment.completion_date = None


# ---------------------------------------------------------------------------
# COMPLETION
# ---------------------------------------------------------------------------


def apply_to_session(db: Session, session_id: str, *, actor_user_id: Optional[str]) -> List[SessionEnrollment]:
    """
    Run the rules over every seated, unlocked enrollment of the session.

    Finalized enrollments and results set by a manual override are left
    alone. Returns the enrollments whose result changed.
    """
    session = enrollment_services.lock_session(db, session_id)
    changed: List[SessionEnrollment] = []
    for enrollment in seated_enrollments(db, session.id):
        if enrollment.is_completion_final or enrollment.completion_source == CompletionSource.OVERRIDE:
            continue
        status, passed = evaluate(enrollment, session.course)
        before = _completion_snapshot(enrollment)
        _write_result(enrollment, status, passed, CompletionSource.RULES)
        entries = audit_services.record_changes(
            db,
            entity_type=ENROLLMENT_ENTITY,
            entity_id=enrollment.id,
            before=before,
            after=_completion_snapshot(enrollment),
            reason="Completion updated",
            actor_user_id=actor_user_id,
        )
        if entries:
            changed.append(enrollment)
    db.flush()
    logger.info(
        "Completion rules applied",
        extra={"session_id": session.id, "changed": len(changed)},
    )
    return changed


def _issue_outcome(db: Session, enrollment: SessionEnrollment, session, *, actor_user_id: Optional[str]) -> None:
    """Notification, certificate request and request closure for a passed enrollment."""
    notification_service.create(
        db,
        user_id=enrollment.participant_id,
        title="Training Completed",
        message=f"You have successfully completed {session.course.name}. Congratulations!",
        notification_type=NotificationType.TRAINING_COMPLETED,
        reference_type="session",
        reference_id=session.id,
    )
    certificate_services.request_certificate(
        db,
        enrollment_id=enrollment.id,
        participant_id=enrollment.participant_id,
        session_id=session.id,
        course_id=session.course_id,
        requested_by_user_id=actor_user_id,
    )
    if enrollment.request_id:
        request = (
            db.query(approval_models.TrainingRequest)
            .filter(approval_models.TrainingRequest.id == enrollment.request_id)
            .first()
        )
        if request and request.status == approval_models.RequestStatus.APPROVED:
            approval_services.mark_completed(db, request, actor_user_id=actor_user_id)


def finalize(db: Session, session_id: str, *, actor_user_id: Optional[str]) -> List[SessionEnrollment]:
    """
    Lock completion data for the whole session.

    Every seated enrollment must carry a result from the rules or an
    override. Completed and passed participants are notified and get a
    certificate request.
    """
    session = enrollment_services.lock_session(db, session_id)
    enrollments = seated_enrollments(db, session.id)
    if not enrollments:
        raise ValidationError(
            f"Session {session.session_code} has no enrollments to finalize",
            detail=[{"field": "session_id", "reason": "no seated enrollments"}],
        )
    if any(enrollment.is_completion_final for enrollment in enrollments):
        raise AlreadyFinalizedError(f"Completion for session {session.session_code} is already finalized")

    unset = [enrollment.id for enrollment in enrollments if enrollment.completion_source is None]
    if unset:
        raise ValidationError(
            "Apply the completion rules or record an override for every participant before finalizing",
            detail=[{"field": "completion_status", "reason": f"enrollment {enrollment_id} has no result"} for enrollment_id in unset],
        )

    now = _utcnow()
    for enrollment in enrollments:
        audit_services.record(
            db,
            entity_type=ENROLLMENT_ENTITY,
            entity_id=enrollment.id,
            field="is_completion_final",
            old_value=False,
            new_value=True,
            reason="Completion finalized",
            actor_user_id=actor_user_id,
            occurred_at=now,
        )
        enrollment.is_completion_final = True
        enrollment.completion_finalized_at = now
        enrollment.completion_finalized_by_id = actor_user_id
    db.flush()

    passed = [
        enrollment
        for enrollment in enrollments
        if enrollment.completion_status == CompletionStatus.COMPLETED and enrollment.passed
    ]
    for enrollment in passed:
        _issue_outcome(db, enrollment, session, actor_user_id=actor_user_id)

    logger.info(
        "Completion finalized",
        extra={"session_id": session.id, "enrollments": len(enrollments), "passed": len(passed)},
    )
    return enrollments


def _require_reason(reason: Optional[str]) -> str:
    text = (reason or "").strip()
    if not text:
        raise ValidationError(
            "A reason is required for a manual override",
            detail=[{"field": "reason", "reason": "reason required"}],
        )
    return text


def override_completion(
    db: Session,
    enrollment_id: str,
    status: CompletionStatus,
    *,
    reason: Optional[str],
    actor_user_id: Optional[str],
    passed: Optional[bool] = None,
) -> SessionEnrollment:
    """
    Manually set an enrollment's result, including after finalization.

    The audit entry carrying the reason is written before the result changes.
    """
    note = _require_reason(reason)
    target = CompletionStatus(status)
    if passed is None:
        passed = _default_passed(target)

    enrollment = enrollment_services.get_enrollment(db, enrollment_id)
    if enrollment.status not in SEATED_STATUSES:
        raise ValidationError(
            "Only seated participants have a completion result",
            detail=[{"field": "status", "reason": f"enrollment is {enrollment.status.value}"}],
        )

    was_passed = enrollment.completion_status == CompletionStatus.COMPLETED and enrollment.passed
    audit_services.record_changes(
        db,
        entity_type=ENROLLMENT_ENTITY,
        entity_id=enrollment.id,
        before=_completion_snapshot(enrollment),
        after={"completion_status": target, "passed": passed, "completion_source": CompletionSource.OVERRIDE},
        reason=note,
        actor_user_id=actor_user_id,
    )
    _write_result(enrollment, target, passed, CompletionSource.OVERRIDE)
    db.flush()
    logger.info(
        "Completion overridden",
        extra={"enrollment_id": enrollment.id, "status": target.value, "finalized": enrollment.is_completion_final},
    )

    if enrollment.is_completion_final and passed and target == CompletionStatus.COMPLETED and not was_passed:
        session = enrollment_services.get_session(db, enrollment.session_id)
        _issue_outcome(db, enrollment, session, actor_user_id=actor_user_id)
    return enrollment


# ---------------------------------------------------------------------------
# ATTENDANCE
# ---------------------------------------------------------------------------


def _validate_attendance(status: EnrollmentStatus, minutes: Optional[int]) -> EnrollmentStatus:
    try:
        target = EnrollmentStatus(status)
    except ValueError:
        target = None
    if target not in ATTENDANCE_STATUSES:
        raise ValidationError(
            f"{status!r} is not an attendance status",
            detail=[{"field": "status", "reason": "must be confirmed, completed, absent or partial"}],
        )
    if minutes is not None and minutes < 0:
        raise ValidationError(
            "Attendance minutes cannot be negative",
            detail=[{"field": "attendance_minutes", "reason": "must be >= 0"}],
        )
    return target


def _set_attendance(
    db: Session,
    enrollment: SessionEnrollment,
    target: EnrollmentStatus,
    minutes: Optional[int],
    *,
    reason: str,
    actor_user_id: Optional[str],
    override: bool = False,
) -> None:
    if enrollment.status not in SEATED_STATUSES:
        raise ValidationError(
            "Only seated participants can have attendance recorded",
            detail=[{"field": "status", "reason": f"enrollment is {enrollment.status.value}"}],
        )
    if enrollment.status != target:
        apply_transition(
            db,
            actor_user_id=actor_user_id,
            entity_type=ENROLLMENT_ENTITY,
            entity_id=enrollment.id,
            from_state=enrollment.status,
            to_state=target,
            obj=enrollment,
            reason=reason,
            context={"override": override},
        )
        enrollment.status = target
    if minutes is not None and minutes != enrollment.attendance_minutes:
        audit_services.record(
            db,
            entity_type=ENROLLMENT_ENTITY,
            entity_id=enrollment.id,
            field="attendance_minutes",
            old_value=enrollment.attendance_minutes,
            new_value=minutes,
            reason=reason,
            actor_user_id=actor_user_id,
        )
        enrollment.attendance_minutes = minutes
    db.flush()


def record_attendance(
    db: Session,
    enrollment_id: str,
    status: EnrollmentStatus,
    minutes: Optional[int] = None,
    *,
    actor_user_id: Optional[str],
) -> SessionEnrollment:
    target = _validate_attendance(status, minutes)
    enrollment = enrollment_services.get_enrollment(db, enrollment_id)
    if enrollment.is_attendance_final:
        raise AlreadyFinalizedError(
            "Attendance is finalized; use an override with a reason",
            detail=[{"field": "is_attendance_final", "reason": "attendance is finalized"}],
        )
    if enrollment.is_completion_final:
        raise AlreadyFinalizedError(
            "Completion is finalized for this enrollment",
            detail=[{"field": "is_completion_final", "reason": "completion is finalized"}],
        )
    _set_attendance(db, enrollment, target, minutes, reason="Attendance updated", actor_user_id=actor_user_id)
    return enrollment


def record_score(
    db: Session,
    enrollment_id: str,
    score: Optional[float],
    *,
    actor_user_id: Optional[str],
) -> SessionEnrollment:
    if score is not None and score < 0:
        raise ValidationError(
            "Assessment score cannot be negative",
            detail=[{"field": "assessment_score", "reason": "must be >= 0"}],
        )
    enrollment = enrollment_services.get_enrollment(db, enrollment_id)
    if enrollment.is_completion_final:
        raise AlreadyFinalizedError(
            "Completion is finalized; use an override with a reason",
            detail=[{"field": "is_completion_final", "reason": "completion is finalized"}],
        )
    if enrollment.status not in SEATED_STATUSES:
        raise ValidationError(
            "Only seated participants can be scored",
            detail=[{"field": "status", "reason": f"enrollment is {enrollment.status.value}"}],
        )
    if score != enrollment.assessment_score:
        audit_services.record(
            db,
            entity_type=ENROLLMENT_ENTITY,
            entity_id=enrollment.id,
            field="assessment_score",
            old_value=enrollment.assessment_score,
            new_value=score,
            reason="Score recorded",
            actor_user_id=actor_user_id,
        )
        enrollment.assessment_score = score
        db.flush()
    return enrollment


def finalize_attendance(db: Session, session_id: str, *, actor_user_id: Optional[str]) -> List[SessionEnrollment]:
    session = enrollment_services.lock_session(db, session_id)
    enrollments = seated_enrollments(db, session.id)
    if any(enrollment.is_attendance_final for enrollment in enrollments):
        raise AlreadyFinalizedError(f"Attendance for session {session.session_code} is already finalized")

    now = _utcnow()
    for enrollment in enrollments:
        audit_services.record(
            db,
            entity_type=ENROLLMENT_ENTITY,
            entity_id=enrollment.id,
            field="is_attendance_final",
            old_value=False,
            new_value=True,
            reason="Attendance finalized",
            actor_user_id=actor_user_id,
            occurred_at=now,
        )
        enrollment.is_attendance_final = True
        enrollment.attendance_finalized_at = now
        enrollment.attendance_finalized_by_id = actor_user_id
    db.flush()
    logger.info("Attendance finalized", extra={"session_id": session.id, "enrollments": len(enrollments)})
    return enrollments


def override_attendance(
    db: Session,
    enrollment_id: str,
    status: EnrollmentStatus,
    minutes: Optional[int] = None,
    *,
    reason: Optional[str],
    actor_user_id: Optional[str],
) -> SessionEnrollment:
    """Correct finalized attendance. Blocked once completion is finalized."""
    note = _require_reason(reason)
    target = _validate_attendance(status, minutes)
    enrollment = enrollment_services.get_enrollment(db, enrollment_id)
    if enrollment.is_completion_final:
        raise AlreadyFinalizedError(
            "Completion is finalized; override the completion result instead",
            detail=[{"field": "is_completion_final", "reason": "completion is finalized"}],
        )
    _set_attendance(
        db,
        enrollment,
        target,
        minutes,
        reason=note,
        actor_user_id=actor_user_id,
        override=True,
    )
    logger.info("Attendance overridden", extra={"enrollment_id": enrollment.id, "status": target.value})
    return enrollment
