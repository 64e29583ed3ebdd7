from __future__ import annotations

import pytest

from trainflow.apps.accounts import models as account_models
from trainflow.apps.accounts.models import AccountRole
from trainflow.apps.approvals import models as approval_models
from trainflow.apps.approvals import services as approval_services
from trainflow.apps.audit import services as audit_services
from trainflow.apps.catalog import models as catalog_models
from trainflow.apps.certificates import models as certificate_models
from trainflow.apps.completion import services
from trainflow.apps.enrollment import services as enrollment_services
from trainflow.apps.enrollment.models import CompletionSource, CompletionStatus, EnrollmentStatus
from trainflow.apps.notifications import models as notification_models
from trainflow.database import atomic
from trainflow.errors import AlreadyFinalizedError, ValidationError


def _create_user(db_session, email: str, role: AccountRole = AccountRole.EMPLOYEE, **kwargs):
    user = account_models.User(email=email, full_name=email.split("@")[0], role=role, is_active=True, **kwargs)
    db_session.add(user)
    db_session.commit()
    return user


def _setup_session(db_session, *, capacity: int = 5, **course_kwargs):
    trainer = _create_user(db_session, "ld@example.com", AccountRole.L_AND_D)
    course = catalog_models.Course(code="FORKLIFT", name="Forklift Operation", **course_kwargs)
    db_session.add(course)
    db_session.commit()
    with atomic(db_session):
        session = enrollment_services.create_session(
            db_session,
            course_id=course.id,
            session_code="FORK-01",
            capacity=capacity,
            actor_user_id=trainer.id,
        )
    return trainer, course, session


def _enroll(db_session, session, email: str):
    person = _create_user(db_session, email)
    with atomic(db_session):
        return enrollment_services.enroll(db_session, session.id, person.id, actor_user_id=None)


def _attend(db_session, enrollment, status: EnrollmentStatus, minutes=None, actor=None):
    with atomic(db_session):
        services.record_attendance(db_session, enrollment.id, status, minutes, actor_user_id=actor)


def test_apply_writes_rule_results_and_is_idempotent(db_session):
    trainer, _, session = _setup_session(db_session)
    present = _enroll(db_session, session, "present@example.com")
    absent = _enroll(db_session, session, "absent@example.com")
    _attend(db_session, present, EnrollmentStatus.COMPLETED, 480)
    _attend(db_session, absent, EnrollmentStatus.ABSENT)

    with atomic(db_session):
        changed = services.apply_to_session(db_session, session.id, actor_user_id=trainer.id)

    assert {e.id for e in changed} == {present.id, absent.id}
    assert (present.completion_status, present.passed, present.completion_source) == (
        CompletionStatus.COMPLETED,
        True,
        CompletionSource.RULES,
    )
    assert present.completion_date is not None
    assert (absent.completion_status, absent.passed) == (CompletionStatus.NOT_COMPLETED, False)

    with atomic(db_session):
        assert services.apply_to_session(db_session, session.id, actor_user_id=trainer.id) == []


def test_preview_writes_nothing(db_session):
    _, _, session = _setup_session(db_session)
    enrollment = _enroll(db_session, session, "p@example.com")

    [(previewed, status, passed)] = services.preview(db_session, session.id)

    assert previewed.id == enrollment.id
    assert (status, passed) == (CompletionStatus.COMPLETED, True)
    assert enrollment.completion_source is None


def test_rules_leave_manual_overrides_alone(db_session):
    trainer, _, session = _setup_session(db_session)
    enrollment = _enroll(db_session, session, "o@example.com")
    _attend(db_session, enrollment, EnrollmentStatus.ABSENT)

    with atomic(db_session):
        services.override_completion(
            db_session,
            enrollment.id,
            CompletionStatus.COMPLETED,
            reason="Attended the make-up session",
            actor_user_id=trainer.id,
        )
    with atomic(db_session):
        services.apply_to_session(db_session, session.id, actor_user_id=trainer.id)

    assert enrollment.completion_status == CompletionStatus.COMPLETED
    assert enrollment.passed is True
    assert enrollment.completion_source == CompletionSource.OVERRIDE


def test_override_requires_a_reason(db_session):
    trainer, _, session = _setup_session(db_session)
    enrollment = _enroll(db_session, session, "r@example.com")

    with pytest.raises(ValidationError):
        services.override_completion(
            db_session,
            enrollment.id,
            CompletionStatus.FAILED,
            reason="  ",
            actor_user_id=trainer.id,
        )


def test_finalize_requires_a_result_for_everyone(db_session):
    trainer, _, session = _setup_session(db_session)
    _enroll(db_session, session, "u@example.com")

    with pytest.raises(ValidationError):
        with atomic(db_session):
            services.finalize(db_session, session.id, actor_user_id=trainer.id)


def test_finalize_locks_results_and_issues_outcomes(db_session):
    trainer, course, session = _setup_session(db_session)
    manager = _create_user(db_session, "mgr@example.com", AccountRole.MANAGER)
    employee = _create_user(db_session, "emp@example.com", manager_id=manager.id)
    with atomic(db_session):
        request = approval_services.create_request(
            db_session,
            requester_id=employee.id,
            course_id=course.id,
            justification="Site certification",
            actor_user_id=employee.id,
        )
    pending = approval_services.list_pending_for_approver(db_session, manager.id)[0]
    with atomic(db_session):
        approval_services.decide(db_session, pending.id, "approve", None, actor_user_id=manager.id)
    with atomic(db_session):
        linked = enrollment_services.enroll_from_request(db_session, session.id, request.id, actor_user_id=trainer.id)
    dropout = _enroll(db_session, session, "dropout@example.com")

    _attend(db_session, linked, EnrollmentStatus.COMPLETED, 480)
    _attend(db_session, dropout, EnrollmentStatus.ABSENT)
    with atomic(db_session):
        services.apply_to_session(db_session, session.id, actor_user_id=trainer.id)
    with atomic(db_session):
        finalized = services.finalize(db_session, session.id, actor_user_id=trainer.id)

    assert {e.id for e in finalized} == {linked.id, dropout.id}
    assert all(e.is_completion_final for e in finalized)
    assert linked.completion_finalized_by_id == trainer.id

    certificates = db_session.query(certificate_models.CertificateRequest).all()
    assert [c.enrollment_id for c in certificates] == [linked.id]
    assert certificates[0].status == certificate_models.CertificateRequestStatus.QUEUED

    completed_notes = (
        db_session.query(notification_models.Notification)
        .filter(notification_models.Notification.type == notification_models.NotificationType.TRAINING_COMPLETED)
        .all()
    )
    assert [note.user_id for note in completed_notes] == [employee.id]

    assert approval_services.get_request(db_session, request.id).status == approval_models.RequestStatus.COMPLETED

    with pytest.raises(AlreadyFinalizedError):
        with atomic(db_session):
            services.finalize(db_session, session.id, actor_user_id=trainer.id)


def test_override_after_finalization_issues_the_certificate(db_session):
    trainer, _, session = _setup_session(db_session)
    enrollment = _enroll(db_session, session, "late@example.com")
    _attend(db_session, enrollment, EnrollmentStatus.ABSENT)
    with atomic(db_session):
        services.apply_to_session(db_session, session.id, actor_user_id=trainer.id)
    with atomic(db_session):
        services.finalize(db_session, session.id, actor_user_id=trainer.id)
    assert db_session.query(certificate_models.CertificateRequest).count() == 0

    with atomic(db_session):
        services.override_completion(
            db_session,
            enrollment.id,
            CompletionStatus.COMPLETED,
            reason="Sign-in sheet was lost",
            actor_user_id=trainer.id,
        )

    assert enrollment.is_completion_final is True
    assert db_session.query(certificate_models.CertificateRequest).count() == 1
    reasons = {
        entry.reason
        for entry in audit_services.list_entries(db_session, entity_id=enrollment.id, field="completion_status")
    }
    assert "Sign-in sheet was lost" in reasons


def test_finalized_attendance_needs_an_override(db_session):
    trainer, _, session = _setup_session(db_session)
    enrollment = _enroll(db_session, session, "a@example.com")
    _attend(db_session, enrollment, EnrollmentStatus.PARTIAL, 120)
    with atomic(db_session):
        services.finalize_attendance(db_session, session.id, actor_user_id=trainer.id)

    assert enrollment.is_attendance_final is True
    with pytest.raises(AlreadyFinalizedError):
        _attend(db_session, enrollment, EnrollmentStatus.COMPLETED, 480)
    with pytest.raises(ValidationError):
        services.override_attendance(
            db_session,
            enrollment.id,
            EnrollmentStatus.COMPLETED,
            480,
            reason="",
            actor_user_id=trainer.id,
        )

    with atomic(db_session):
        services.override_attendance(
            db_session,
            enrollment.id,
            EnrollmentStatus.COMPLETED,
            480,
            reason="Trainer corrected the register",
            actor_user_id=trainer.id,
        )

    assert (enrollment.status, enrollment.attendance_minutes) == (EnrollmentStatus.COMPLETED, 480)
    entries = audit_services.list_entries(db_session, entity_id=enrollment.id, field="attendance_minutes")
    assert [(e.old_value, e.new_value, e.reason) for e in entries][-1] == (120, 480, "Trainer corrected the register")

    with pytest.raises(AlreadyFinalizedError):
        with atomic(db_session):
            services.finalize_attendance(db_session, session.id, actor_user_id=trainer.id)


def test_attendance_marking_never_frees_a_seat(db_session):
    _, _, session = _setup_session(db_session, capacity=1)
    seated = _enroll(db_session, session, "seat@example.com")
    waiting = _enroll(db_session, session, "wait@example.com")

    _attend(db_session, seated, EnrollmentStatus.ABSENT)

    refreshed = enrollment_services.get_session(db_session, session.id)
    assert enrollment_services.seat_counts(db_session, session.id) == (1, 1)
    assert refreshed.enrolled_count == 1
    assert waiting.status == EnrollmentStatus.WAITLISTED


def test_attendance_cannot_seat_a_waitlisted_participant(db_session):
    _, _, session = _setup_session(db_session, capacity=1)
    _enroll(db_session, session, "seat@example.com")
    waiting = _enroll(db_session, session, "wait@example.com")

    with pytest.raises(ValidationError):
        _attend(db_session, waiting, EnrollmentStatus.CONFIRMED, 480)
    with pytest.raises(ValidationError):
        with atomic(db_session):
            services.override_attendance(
                db_session, waiting.id, EnrollmentStatus.COMPLETED, 480, reason="Sat in anyway", actor_user_id=None
            )

    waiting = enrollment_services.get_enrollment(db_session, waiting.id)
    assert (waiting.status, waiting.waitlist_position) == (EnrollmentStatus.WAITLISTED, 1)
    assert enrollment_services.seat_counts(db_session, session.id) == (1, 1)
    enrollment_services.check_invariants(db_session, enrollment_services.get_session(db_session, session.id))


def test_attendance_status_must_be_a_seated_status(db_session):
    _, _, session = _setup_session(db_session)
    enrollment = _enroll(db_session, session, "x@example.com")

    with pytest.raises(ValidationError):
        services.record_attendance(db_session, enrollment.id, EnrollmentStatus.WAITLISTED, actor_user_id=None)
    with pytest.raises(ValidationError):
        services.record_attendance(db_session, enrollment.id, EnrollmentStatus.PARTIAL, -5, actor_user_id=None)


def test_scores_feed_the_rules(db_session):
    trainer, _, session = _setup_session(db_session, has_assessment=True, pass_score=75.0)
    enrollment = _enroll(db_session, session, "s@example.com")
    _attend(db_session, enrollment, EnrollmentStatus.PARTIAL, 30)

    with pytest.raises(ValidationError):
        services.record_score(db_session, enrollment.id, -1, actor_user_id=trainer.id)

    with atomic(db_session):
        services.record_score(db_session, enrollment.id, 90, actor_user_id=trainer.id)
    with atomic(db_session):
        services.apply_to_session(db_session, session.id, actor_user_id=trainer.id)

    assert enrollment.assessment_score == 90
    assert (enrollment.completion_status, enrollment.passed) == (CompletionStatus.COMPLETED, True)
