"""
Enrollment capacity manager.

Seats are handed out first come, first served in the order callers pass
participants. Once a session is full, participants join an ordered
waitlist and are promoted from its head when a confirmed seat frees up.

The session row is locked for the duration of every operation and its
counters are recomputed from the enrollment rows before the unit of work
ends, so two concurrent cancellations cannot both promote the same person.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from trainflow.apps.accounts import directory
from trainflow.apps.approvals import models as approval_models
from trainflow.apps.audit import services as audit_services
from trainflow.apps.catalog.models import Course
from trainflow.apps.notifications import service as notification_service
from trainflow.apps.notifications.models import NotificationType
from trainflow.apps.workflow import apply_transition
from trainflow.errors import (
    DuplicateEnrollmentError,
    InvalidTransitionError,
    InvariantViolation,
    NotFoundError,
    SessionClosedError,
    ValidationError,
)

from . import models
from .waitlist import PositionChange, WaitlistQueue

logger = logging.getLogger(__name__)

SESSION_ENTITY = "training_session"
ENROLLMENT_ENTITY = "session_enrollment"
SESSION_CANCELLED_REASON = "Session cancelled"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# LOADERS
# ---------------------------------------------------------------------------


def get_session(db: Session, session_id: str) -> models.TrainingSession:
    session = db.query(models.TrainingSession).filter(models.TrainingSession.id == session_id).first()
    if not session:
        raise NotFoundError(f"Training session {session_id} not found")
    return session


def lock_session(db: Session, session_id: str) -> models.TrainingSession:
    """
    Load the session row with a write lock held until the unit of work ends.

    SQLite has no row locks and serialises writers instead; the dialect
    drops the FOR UPDATE clause.
    """
    session = (
        db.query(models.TrainingSession)
        .filter(models.TrainingSession.id == session_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if not session:
        raise NotFoundError(f"Training session {session_id} not found")
    return session


def get_enrollment(db: Session, enrollment_id: str) -> models.SessionEnrollment:
    enrollment = (
        db.query(models.SessionEnrollment)
        .filter(models.SessionEnrollment.id == enrollment_id)
        .first()
    )
    if not enrollment:
        raise NotFoundError(f"Enrollment {enrollment_id} not found")
    return enrollment


def list_enrollments(
    db: Session,
    session_id: str,
    *,
    include_cancelled: bool = False,
) -> List[models.SessionEnrollment]:
    query = db.query(models.SessionEnrollment).filter(models.SessionEnrollment.session_id == session_id)
    if not include_cancelled:
        query = query.filter(models.SessionEnrollment.status != models.EnrollmentStatus.CANCELLED)
    return query.order_by(
        models.SessionEnrollment.enrolled_at.asc(),
        models.SessionEnrollment.id.asc(),
    ).all()


# ---------------------------------------------------------------------------
# DERIVED COUNTERS
# ---------------------------------------------------------------------------


def count_by_status(db: Session, session_id: str) -> Dict[models.EnrollmentStatus, int]:
    rows = (
        db.query(models.SessionEnrollment.status, func.count(models.SessionEnrollment.id))
        .filter(models.SessionEnrollment.session_id == session_id)
        .group_by(models.SessionEnrollment.status)
        .all()
    )
    return {models.EnrollmentStatus(status): count for status, count in rows}


def seat_counts(db: Session, session_id: str) -> Tuple[int, int]:
    """(seated, waitlisted) as stored right now."""
    db.flush()
    counts = count_by_status(db, session_id)
    seated = sum(counts.get(status, 0) for status in models.SEATED_STATUSES)
    return seated, counts.get(models.EnrollmentStatus.WAITLISTED, 0)


def _sync_session_counters(db: Session, session: models.TrainingSession) -> None:
    seated, waitlisted = seat_counts(db, session.id)
    if seated > session.capacity:
        raise InvariantViolation(
            f"Session {session.session_code} has {seated} seated enrollments for {session.capacity} seats"
        )
    if session.enrolled_count != seated or session.waitlist_count != waitlisted:
        session.enrolled_count = seated
        session.waitlist_count = waitlisted
        db.flush()


def check_invariants(db: Session, session: models.TrainingSession) -> None:
    """
    Raise InvariantViolation if the session's derived state drifted:
    seats over capacity, counters out of step with the rows, or waitlist
    positions other than exactly 1..waitlist_count.
    """
    seated, waitlisted = seat_counts(db, session.id)
    problems: List[str] = []
    if session.enrolled_count > session.capacity:
        problems.append(f"enrolled_count {session.enrolled_count} exceeds capacity {session.capacity}")
    if session.enrolled_count != seated:
        problems.append(f"enrolled_count {session.enrolled_count} != {seated} seated enrollments")
    if session.waitlist_count != waitlisted:
        problems.append(f"waitlist_count {session.waitlist_count} != {waitlisted} waitlisted enrollments")

    positions = sorted(entry.waitlist_position or 0 for entry in WaitlistQueue.load(db, session.id))
    if positions != list(range(1, waitlisted + 1)):
        problems.append(f"waitlist positions {positions} are not 1..{waitlisted}")

    stray = (
        db.query(func.count(models.SessionEnrollment.id))
        .filter(
            models.SessionEnrollment.session_id == session.id,
            models.SessionEnrollment.status != models.EnrollmentStatus.WAITLISTED,
            models.SessionEnrollment.waitlist_position.is_not(None),
        )
        .scalar()
    )
    if stray:
        problems.append(f"{stray} enrollments outside the waitlist still carry a position")

    if problems:
        logger.error(
            "Session invariants violated",
            extra={"session_id": session.id, "problems": problems},
        )
        raise InvariantViolation(f"Session {session.session_code}: " + "; ".join(problems))


# ---------------------------------------------------------------------------
# AUDIT / NOTIFICATION HELPERS
# ---------------------------------------------------------------------------


def _audit_positions(db: Session, changes: Iterable[PositionChange], *, reason: str, actor_user_id: Optional[str]) -> None:
    for enrollment, old, new in changes:
        audit_services.record(
            db,
            entity_type=ENROLLMENT_ENTITY,
            entity_id=enrollment.id,
            field="waitlist_position",
            old_value=old,
            new_value=new,
            reason=reason,
            actor_user_id=actor_user_id,
        )


def _notify_enrolled(db: Session, enrollment: models.SessionEnrollment, session: models.TrainingSession) -> None:
    confirmed = enrollment.status == models.EnrollmentStatus.CONFIRMED
    if confirmed:
        title = "Enrollment Confirmed"
        message = f"You have been enrolled in {session.course.name} ({session.session_code})."
    else:
        title = "Added to Waitlist"
        message = (
            f"You have been added to the waitlist for {session.course.name} "
            f"({session.session_code}) at position {enrollment.waitlist_position}."
        )
    notification_service.create(
        db,
        user_id=enrollment.participant_id,
        title=title,
        message=message,
        notification_type=NotificationType.ENROLLMENT_CONFIRMED,
        reference_type="session",
        reference_id=session.id,
    )


def _notify_promoted(db: Session, enrollment: models.SessionEnrollment, session: models.TrainingSession) -> None:
    notification_service.create(
        db,
        user_id=enrollment.participant_id,
        title="Enrollment Confirmed",
        message="A spot opened up! You have been moved from the waitlist to confirmed.",
        notification_type=NotificationType.ENROLLMENT_CONFIRMED,
        reference_type="session",
        reference_id=session.id,
    )


# ---------------------------------------------------------------------------
# SESSIONS
# ---------------------------------------------------------------------------


def create_session(
    db: Session,
    *,
    course_id: str,
    session_code: str,
    capacity: int,
    starts_at: Optional[datetime] = None,
    ends_at: Optional[datetime] = None,
    location: Optional[str] = None,
    actor_user_id: Optional[str] = None,
) -> models.TrainingSession:
    if capacity is None or capacity < 1:
        raise ValidationError(
            "Session capacity must be at least 1",
            detail=[{"field": "capacity", "reason": "must be >= 1"}],
        )
    if starts_at and ends_at and ends_at < starts_at:
        raise ValidationError(
            "Session cannot end before it starts",
            detail=[{"field": "ends_at", "reason": "must be after starts_at"}],
        )
    course = db.query(Course).filter(Course.id == course_id).first()
    if not course:
        raise NotFoundError(f"Course {course_id} not found")

    session = models.TrainingSession(
        course_id=course.id,
        session_code=session_code.strip(),
        capacity=capacity,
        starts_at=starts_at,
        ends_at=ends_at,
        location=location,
        status=models.SessionStatus.SCHEDULED,
        enrolled_count=0,
        waitlist_count=0,
    )
    session.course = course
    db.add(session)
    db.flush()
    audit_services.record(
        db,
        entity_type=SESSION_ENTITY,
        entity_id=session.id,
        field="status",
        old_value=None,
        new_value=models.SessionStatus.SCHEDULED,
        reason="Session scheduled",
        actor_user_id=actor_user_id,
    )
    logger.info("Training session created", extra={"session_id": session.id, "capacity": capacity})
    return session


def change_session_status(
    db: Session,
    session_id: str,
    status: models.SessionStatus,
    *,
    actor_user_id: Optional[str],
    reason: Optional[str] = None,
) -> models.TrainingSession:
    """Move a session forward (open, confirmed, in progress, completed). Use cancel_session to cancel."""
    target = models.SessionStatus(status)
    if target == models.SessionStatus.CANCELLED:
        raise ValidationError(
            "Use the cancel operation to cancel a session",
            detail=[{"field": "status", "reason": "cancellation requires cancel_session"}],
        )
    session = lock_session(db, session_id)
    old_status = session.status
    apply_transition(
        db,
        actor_user_id=actor_user_id,
        entity_type=SESSION_ENTITY,
        entity_id=session.id,
        from_state=old_status,
        to_state=target,
        obj=session,
        reason=reason,
    )
    session.status = target
    db.flush()

    if target == models.SessionStatus.CONFIRMED:
        for enrollment in list_enrollments(db, session.id):
            if enrollment.status != models.EnrollmentStatus.CONFIRMED:
                continue
            notification_service.create(
                db,
                user_id=enrollment.participant_id,
                title="Session Scheduled",
                message=(
                    f"{session.course.name} ({session.session_code}) is confirmed"
                    + (f" for {session.starts_at:%Y-%m-%d %H:%M}." if session.starts_at else ".")
                ),
                notification_type=NotificationType.SESSION_SCHEDULED,
                reference_type="session",
                reference_id=session.id,
            )
    return session


def cancel_session(
    db: Session,
    session_id: str,
    reason: Optional[str],
    *,
    actor_user_id: Optional[str],
) -> models.TrainingSession:
    """
    Cancel the session and every live enrollment in it.

    Refused once attendance has been recorded for anyone; those records
    belong to a session that took place.
    """
    session = lock_session(db, session_id)
    note = (reason or "").strip() or None
    attended = [
        enrollment
        for enrollment in list_enrollments(db, session.id)
        if enrollment.status
        in (models.EnrollmentStatus.COMPLETED, models.EnrollmentStatus.ABSENT, models.EnrollmentStatus.PARTIAL)
    ]
    if attended:
        raise InvalidTransitionError(
            f"Session {session.session_code} already has attendance recorded and cannot be cancelled",
            detail=[{"field": "status", "reason": f"{len(attended)} enrollments have attendance"}],
        )

    old_status = session.status
    apply_transition(
        db,
        actor_user_id=actor_user_id,
        entity_type=SESSION_ENTITY,
        entity_id=session.id,
        from_state=old_status,
        to_state=models.SessionStatus.CANCELLED,
        obj=session,
        reason=note,
    )

    affected: List[models.SessionEnrollment] = []
    now = _utcnow()
    for enrollment in list_enrollments(db, session.id):
        _cancel_row(db, enrollment, reason=SESSION_CANCELLED_REASON, actor_user_id=actor_user_id, now=now)
        affected.append(enrollment)

    session.status = models.SessionStatus.CANCELLED
    session.cancelled_reason = note
    session.cancelled_at = now
    _sync_session_counters(db, session)
    check_invariants(db, session)

    logger.info(
        "Training session cancelled",
        extra={"session_id": session.id, "affected_enrollments": len(affected)},
    )
    for enrollment in affected:
        notification_service.create(
            db,
            user_id=enrollment.participant_id,
            title="Session Cancelled",
            message="The training session has been cancelled." + (f" Reason: {note}" if note else ""),
            notification_type=NotificationType.SESSION_CANCELLED,
            reference_type="session",
            reference_id=session.id,
        )
    return session


# ---------------------------------------------------------------------------
# ENROLLMENT
# ---------------------------------------------------------------------------


def _ensure_open(session: models.TrainingSession) -> None:
    if session.status in models.CLOSED_SESSION_STATUSES:
        raise SessionClosedError(
            f"Session {session.session_code} is {models.SessionStatus(session.status).value} and no longer takes enrollments",
            detail=[{"field": "session_id", "reason": f"session is {models.SessionStatus(session.status).value}"}],
        )


def _ensure_not_enrolled(db: Session, session: models.TrainingSession, participant_id: str) -> None:
    existing = (
        db.query(models.SessionEnrollment)
        .filter(
            models.SessionEnrollment.session_id == session.id,
            models.SessionEnrollment.participant_id == participant_id,
            models.SessionEnrollment.status != models.EnrollmentStatus.CANCELLED,
        )
        .first()
    )
    if existing:
        raise DuplicateEnrollmentError(
            f"Participant {participant_id} is already enrolled in session {session.session_code}",
            detail=[{"field": "participant_id", "reason": f"existing enrollment is {existing.status.value}"}],
        )


def _enroll_locked(
    db: Session,
    session: models.TrainingSession,
    participant_id: str,
    *,
    request_id: Optional[str],
    actor_user_id: Optional[str],
) -> models.SessionEnrollment:
    participant = directory.get_user(db, participant_id)
    if not participant:
        raise NotFoundError(f"Participant {participant_id} not found")
    _ensure_not_enrolled(db, session, participant.id)

    seated, _ = seat_counts(db, session.id)
    queue = WaitlistQueue.load(db, session.id) if seated >= session.capacity else None
    enrollment = models.SessionEnrollment(
        session_id=session.id,
        participant_id=participant.id,
        request_id=request_id,
        completion_status=models.CompletionStatus.PENDING,
        enrolled_at=_utcnow(),
    )
    if queue is None:
        enrollment.status = models.EnrollmentStatus.CONFIRMED
    else:
        enrollment.status = models.EnrollmentStatus.WAITLISTED
        queue.insert_at_end(enrollment)
    db.add(enrollment)
    db.flush()

    audit_services.record(
        db,
        entity_type=ENROLLMENT_ENTITY,
        entity_id=enrollment.id,
        field="status",
        old_value=None,
        new_value=enrollment.status,
        reason="Enrolled" if enrollment.status == models.EnrollmentStatus.CONFIRMED else "Session full; waitlisted",
        actor_user_id=actor_user_id,
    )
    _sync_session_counters(db, session)
    logger.info(
        "Participant enrolled",
        extra={
            "session_id": session.id,
            "participant_id": participant.id,
            "status": enrollment.status.value,
            "waitlist_position": enrollment.waitlist_position,
        },
    )
    return enrollment


def enroll(
    db: Session,
    session_id: str,
    participant_id: str,
    *,
    actor_user_id: Optional[str],
    request_id: Optional[str] = None,
) -> models.SessionEnrollment:
    session = lock_session(db, session_id)
    _ensure_open(session)
    enrollment = _enroll_locked(db, session, participant_id, request_id=request_id, actor_user_id=actor_user_id)
    check_invariants(db, session)
    _notify_enrolled(db, enrollment, session)
    return enrollment


def enroll_batch(
    db: Session,
    session_id: str,
    participant_ids: Sequence[str],
    *,
    actor_user_id: Optional[str],
) -> List[models.SessionEnrollment]:
    """
    Enroll participants strictly in list order, so the caller's ordering
    decides who gets the remaining seats. Any failure aborts the batch.
    """
    session = lock_session(db, session_id)
    _ensure_open(session)
    enrollments = [
        _enroll_locked(db, session, participant_id, request_id=None, actor_user_id=actor_user_id)
        for participant_id in participant_ids
    ]
    check_invariants(db, session)
    for enrollment in enrollments:
        _notify_enrolled(db, enrollment, session)
    return enrollments


def enroll_from_request(
    db: Session,
    session_id: str,
    request_id: str,
    *,
    actor_user_id: Optional[str],
) -> models.SessionEnrollment:
    """Seat the requester of an approved request and link the request to the session."""
    request = (
        db.query(approval_models.TrainingRequest)
        .filter(approval_models.TrainingRequest.id == request_id)
        .first()
    )
    if not request:
        raise NotFoundError(f"Training request {request_id} not found")
    session = lock_session(db, session_id)
    _ensure_open(session)

    if request.status != approval_models.RequestStatus.APPROVED:
        raise ValidationError(
            f"Request {request.request_number} is not approved",
            detail=[{"field": "request_id", "reason": f"request is {request.status.value}"}],
        )
    if request.course_id != session.course_id:
        raise ValidationError(
            f"Request {request.request_number} is for a different course",
            detail=[{"field": "request_id", "reason": "course does not match the session"}],
        )

    enrollment = _enroll_locked(
        db,
        session,
        request.requester_id,
        request_id=request.id,
        actor_user_id=actor_user_id,
    )
    if request.session_id != session.id:
        audit_services.record(
            db,
            entity_type="training_request",
            entity_id=request.id,
            field="session_id",
            old_value=request.session_id,
            new_value=session.id,
            reason="Enrolled from approved request",
            actor_user_id=actor_user_id,
        )
        request.session_id = session.id
        db.flush()
    check_invariants(db, session)
    _notify_enrolled(db, enrollment, session)
    return enrollment


def _cancel_row(
    db: Session,
    enrollment: models.SessionEnrollment,
    *,
    reason: str,
    actor_user_id: Optional[str],
    now: Optional[datetime] = None,
) -> None:
    apply_transition(
        db,
        actor_user_id=actor_user_id,
        entity_type=ENROLLMENT_ENTITY,
        entity_id=enrollment.id,
        from_state=enrollment.status,
        to_state=models.EnrollmentStatus.CANCELLED,
        obj=enrollment,
        reason=reason,
    )
    if enrollment.waitlist_position is not None:
        audit_services.record(
            db,
            entity_type=ENROLLMENT_ENTITY,
            entity_id=enrollment.id,
            field="waitlist_position",
            old_value=enrollment.waitlist_position,
            new_value=None,
            reason=reason,
            actor_user_id=actor_user_id,
        )
    enrollment.status = models.EnrollmentStatus.CANCELLED
    enrollment.waitlist_position = None
    enrollment.cancelled_at = now or _utcnow()
    enrollment.cancellation_reason = reason


def _promote_waitlisted(
    db: Session,
    session: models.TrainingSession,
    queue: WaitlistQueue,
    *,
    actor_user_id: Optional[str],
) -> List[models.SessionEnrollment]:
    promoted: List[models.SessionEnrollment] = []
    seated, _ = seat_counts(db, session.id)
    while seated < session.capacity and len(queue):
        head, changes = queue.pop_front()
        apply_transition(
            db,
            actor_user_id=actor_user_id,
            entity_type=ENROLLMENT_ENTITY,
            entity_id=head.id,
            from_state=models.EnrollmentStatus.WAITLISTED,
            to_state=models.EnrollmentStatus.CONFIRMED,
            obj=head,
            reason="Promoted from waitlist",
        )
        audit_services.record(
            db,
            entity_type=ENROLLMENT_ENTITY,
            entity_id=head.id,
            field="waitlist_position",
            old_value=1,
            new_value=None,
            reason="Promoted from waitlist",
            actor_user_id=actor_user_id,
        )
        head.status = models.EnrollmentStatus.CONFIRMED
        _audit_positions(db, changes, reason="Waitlist renumbered", actor_user_id=actor_user_id)
        promoted.append(head)
        seated += 1
        logger.info(
            "Waitlisted participant promoted",
            extra={"session_id": session.id, "enrollment_id": head.id, "participant_id": head.participant_id},
        )
    return promoted


def cancel(
    db: Session,
    enrollment_id: str,
    reason: Optional[str],
    *,
    actor_user_id: Optional[str],
) -> models.SessionEnrollment:
    """
    Cancel one enrollment.

    A freed confirmed seat goes to the head of the waitlist; a cancelled
    waitlist entry closes its gap in the queue.
    """
    enrollment = get_enrollment(db, enrollment_id)
    session = lock_session(db, enrollment.session_id)
    db.refresh(enrollment)
    was = models.EnrollmentStatus(enrollment.status)
    note = (reason or "").strip() or "Cancelled"

    queue = WaitlistQueue.load(db, session.id)
    _cancel_row(db, enrollment, reason=note, actor_user_id=actor_user_id)

    promoted: List[models.SessionEnrollment] = []
    if was == models.EnrollmentStatus.WAITLISTED:
        changes = queue.remove(enrollment)
        _audit_positions(db, changes, reason="Waitlist renumbered", actor_user_id=actor_user_id)
    elif was == models.EnrollmentStatus.CONFIRMED:
        promoted = _promote_waitlisted(db, session, queue, actor_user_id=actor_user_id)

    _sync_session_counters(db, session)
    check_invariants(db, session)
    logger.info(
        "Enrollment cancelled",
        extra={"session_id": session.id, "enrollment_id": enrollment.id, "was": was.value},
    )
    for entry in promoted:
        _notify_promoted(db, entry, session)
    return enrollment
