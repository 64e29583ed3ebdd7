from __future__ import annotations

import pytest

from trainflow.apps.accounts import models as account_models
from trainflow.apps.accounts.models import AccountRole
from trainflow.apps.approvals import models as approval_models
from trainflow.apps.approvals import services as approval_services
from trainflow.apps.audit import services as audit_services
from trainflow.apps.catalog import models as catalog_models
from trainflow.apps.completion import services as completion_services
from trainflow.apps.enrollment import models, services
from trainflow.apps.notifications import models as notification_models
from trainflow.database import atomic
from trainflow.errors import (
    DuplicateEnrollmentError,
    InvalidTransitionError,
    InvariantViolation,
    SessionClosedError,
    ValidationError,
)


def _create_user(db_session, email: str, role: AccountRole = AccountRole.EMPLOYEE, **kwargs):
    user = account_models.User(email=email, full_name=email.split("@")[0], role=role, is_active=True, **kwargs)
    db_session.add(user)
    db_session.commit()
    return user


def _create_course(db_session, code: str = "FIRST-AID"):
    course = catalog_models.Course(code=code, name=f"Course {code}")
    db_session.add(course)
    db_session.commit()
    return course


def _create_session(db_session, course, capacity: int, code: str = "S-1"):
    with atomic(db_session):
        return services.create_session(
            db_session,
            course_id=course.id,
            session_code=code,
            capacity=capacity,
        )


def _enroll(db_session, session, user):
    with atomic(db_session):
        return services.enroll(db_session, session.id, user.id, actor_user_id=None)


def _people(db_session, count: int):
    return [_create_user(db_session, f"person-{i}@example.com") for i in range(count)]


def test_full_session_puts_participants_on_the_waitlist(db_session):
    session = _create_session(db_session, _create_course(db_session), capacity=2)
    a, b, c, d = _people(db_session, 4)

    first = _enroll(db_session, session, a)
    second = _enroll(db_session, session, b)
    third = _enroll(db_session, session, c)
    fourth = _enroll(db_session, session, d)

    assert [e.status for e in (first, second)] == [models.EnrollmentStatus.CONFIRMED] * 2
    assert (third.status, third.waitlist_position) == (models.EnrollmentStatus.WAITLISTED, 1)
    assert (fourth.status, fourth.waitlist_position) == (models.EnrollmentStatus.WAITLISTED, 2)

    session = services.get_session(db_session, session.id)
    assert (session.enrolled_count, session.waitlist_count) == (2, 2)


def test_cancelling_a_confirmed_seat_promotes_the_head_of_the_waitlist(db_session):
    session = _create_session(db_session, _create_course(db_session), capacity=2)
    a, b, c, d = _people(db_session, 4)
    first = _enroll(db_session, session, a)
    _enroll(db_session, session, b)
    third = _enroll(db_session, session, c)
    fourth = _enroll(db_session, session, d)

    with atomic(db_session):
        services.cancel(db_session, first.id, "Schedule clash", actor_user_id=a.id)

    assert first.status == models.EnrollmentStatus.CANCELLED
    assert first.cancellation_reason == "Schedule clash"
    assert (third.status, third.waitlist_position) == (models.EnrollmentStatus.CONFIRMED, None)
    assert fourth.waitlist_position == 1

    session = services.get_session(db_session, session.id)
    assert (session.enrolled_count, session.waitlist_count) == (2, 1)

    promoted_note = (
        db_session.query(notification_models.Notification)
        .filter(
            notification_models.Notification.user_id == c.id,
            notification_models.Notification.message.like("A spot opened up!%"),
        )
        .one()
    )
    assert promoted_note.type == notification_models.NotificationType.ENROLLMENT_CONFIRMED

    moves = audit_services.list_entries(
        db_session,
        entity_type=services.ENROLLMENT_ENTITY,
        entity_id=fourth.id,
        field="waitlist_position",
    )
    assert [(entry.old_value, entry.new_value) for entry in moves][-1] == (2, 1)


def test_cancelling_a_waitlisted_entry_renumbers_the_queue(db_session):
    session = _create_session(db_session, _create_course(db_session), capacity=1)
    people = _people(db_session, 4)
    enrollments = [_enroll(db_session, session, person) for person in people]

    with atomic(db_session):
        services.cancel(db_session, enrollments[2].id, None, actor_user_id=None)

    assert enrollments[2].status == models.EnrollmentStatus.CANCELLED
    assert enrollments[2].waitlist_position is None
    assert [enrollments[1].waitlist_position, enrollments[3].waitlist_position] == [1, 2]
    assert enrollments[0].status == models.EnrollmentStatus.CONFIRMED

    session = services.get_session(db_session, session.id)
    assert (session.enrolled_count, session.waitlist_count) == (1, 2)


def test_duplicate_enrollment_is_refused_until_cancelled(db_session):
    session = _create_session(db_session, _create_course(db_session), capacity=3)
    [person] = _people(db_session, 1)
    enrollment = _enroll(db_session, session, person)

    with pytest.raises(DuplicateEnrollmentError):
        _enroll(db_session, session, person)

    with atomic(db_session):
        services.cancel(db_session, enrollment.id, "Oops", actor_user_id=None)
    again = _enroll(db_session, session, person)

    assert again.status == models.EnrollmentStatus.CONFIRMED
    assert again.id != enrollment.id


def test_batch_enrollment_follows_caller_order(db_session):
    session = _create_session(db_session, _create_course(db_session), capacity=2)
    people = _people(db_session, 3)
    ordered = [people[2], people[0], people[1]]

    with atomic(db_session):
        enrollments = services.enroll_batch(
            db_session,
            session.id,
            [person.id for person in ordered],
            actor_user_id=None,
        )

    assert [(e.participant_id, e.status) for e in enrollments] == [
        (people[2].id, models.EnrollmentStatus.CONFIRMED),
        (people[0].id, models.EnrollmentStatus.CONFIRMED),
        (people[1].id, models.EnrollmentStatus.WAITLISTED),
    ]


def test_batch_enrollment_is_all_or_nothing(db_session):
    session = _create_session(db_session, _create_course(db_session), capacity=5)
    person = _people(db_session, 1)[0]

    with pytest.raises(DuplicateEnrollmentError):
        with atomic(db_session):
            services.enroll_batch(db_session, session.id, [person.id, person.id], actor_user_id=None)

    assert services.list_enrollments(db_session, session.id) == []
    assert services.get_session(db_session, session.id).enrolled_count == 0


def test_closed_session_takes_no_enrollments(db_session):
    session = _create_session(db_session, _create_course(db_session), capacity=2)
    with atomic(db_session):
        services.cancel_session(db_session, session.id, "Trainer unavailable", actor_user_id=None)

    with pytest.raises(SessionClosedError):
        _enroll(db_session, session, _people(db_session, 1)[0])


def test_cancel_session_cancels_every_live_enrollment(db_session):
    session = _create_session(db_session, _create_course(db_session), capacity=1)
    people = _people(db_session, 3)
    enrollments = [_enroll(db_session, session, person) for person in people]

    with atomic(db_session):
        cancelled = services.cancel_session(db_session, session.id, "Venue flooded", actor_user_id=None)

    assert cancelled.status == models.SessionStatus.CANCELLED
    assert cancelled.cancelled_reason == "Venue flooded"
    assert (cancelled.enrolled_count, cancelled.waitlist_count) == (0, 0)
    assert {e.status for e in enrollments} == {models.EnrollmentStatus.CANCELLED}
    assert all(e.waitlist_position is None for e in enrollments)

    notes = (
        db_session.query(notification_models.Notification)
        .filter(notification_models.Notification.type == notification_models.NotificationType.SESSION_CANCELLED)
        .all()
    )
    assert {note.user_id for note in notes} == {person.id for person in people}
    assert all("Venue flooded" in note.message for note in notes)


def test_cancel_session_refused_once_attendance_is_recorded(db_session):
    session = _create_session(db_session, _create_course(db_session), capacity=2)
    [person] = _people(db_session, 1)
    enrollment = _enroll(db_session, session, person)
    with atomic(db_session):
        completion_services.record_attendance(
            db_session,
            enrollment.id,
            models.EnrollmentStatus.COMPLETED,
            actor_user_id=None,
        )

    with pytest.raises(InvalidTransitionError):
        with atomic(db_session):
            services.cancel_session(db_session, session.id, "Too late", actor_user_id=None)

    assert services.get_session(db_session, session.id).status == models.SessionStatus.SCHEDULED


def test_confirming_a_session_notifies_confirmed_participants(db_session):
    session = _create_session(db_session, _create_course(db_session), capacity=1)
    seated, waiting = _people(db_session, 2)
    _enroll(db_session, session, seated)
    _enroll(db_session, session, waiting)

    with atomic(db_session):
        services.change_session_status(db_session, session.id, models.SessionStatus.CONFIRMED, actor_user_id=None)

    notes = (
        db_session.query(notification_models.Notification)
        .filter(notification_models.Notification.type == notification_models.NotificationType.SESSION_SCHEDULED)
        .all()
    )
    assert [note.user_id for note in notes] == [seated.id]


def test_session_status_cannot_be_cancelled_through_change_status(db_session):
    session = _create_session(db_session, _create_course(db_session), capacity=1)

    with pytest.raises(ValidationError):
        services.change_session_status(db_session, session.id, models.SessionStatus.CANCELLED, actor_user_id=None)


def test_invalid_capacity_is_rejected(db_session):
    course = _create_course(db_session)

    with pytest.raises(ValidationError):
        services.create_session(db_session, course_id=course.id, session_code="S-0", capacity=0)


def test_enroll_from_request_requires_an_approved_request(db_session):
    manager = _create_user(db_session, "mgr@example.com", AccountRole.MANAGER)
    employee = _create_user(db_session, "emp@example.com", manager_id=manager.id)
    course = _create_course(db_session)
    session = _create_session(db_session, course, capacity=2)

    with atomic(db_session):
        request = approval_services.create_request(
            db_session,
            requester_id=employee.id,
            course_id=course.id,
            justification="Required for role",
            actor_user_id=employee.id,
        )

    with pytest.raises(ValidationError):
        with atomic(db_session):
            services.enroll_from_request(db_session, session.id, request.id, actor_user_id=None)

    approval = approval_services.list_pending_for_approver(db_session, manager.id)[0]
    with atomic(db_session):
        approval_services.decide(db_session, approval.id, "approve", None, actor_user_id=manager.id)
    with atomic(db_session):
        enrollment = services.enroll_from_request(db_session, session.id, request.id, actor_user_id=None)

    assert enrollment.participant_id == employee.id
    assert enrollment.request_id == request.id
    assert enrollment.status == models.EnrollmentStatus.CONFIRMED
    assert approval_services.get_request(db_session, request.id).session_id == session.id
    assert request.status == approval_models.RequestStatus.APPROVED


def test_check_invariants_detects_counter_drift(db_session):
    session = _create_session(db_session, _create_course(db_session), capacity=2)
    _enroll(db_session, session, _people(db_session, 1)[0])

    session = services.get_session(db_session, session.id)
    services.check_invariants(db_session, session)

    session.enrolled_count = 0
    with pytest.raises(InvariantViolation):
        services.check_invariants(db_session, session)
    db_session.rollback()
