from __future__ import annotations

from types import SimpleNamespace

import pytest
from sqlalchemy import text

from trainflow.apps.accounts import models as account_models
from trainflow.apps.accounts.models import AccountRole
from trainflow.apps.approvals import models, services
from trainflow.apps.audit import services as audit_services
from trainflow.apps.catalog import models as catalog_models
from trainflow.apps.catalog import rules
from trainflow.apps.notifications import models as notification_models
from trainflow.apps.notifications import providers
from trainflow.database import atomic
from trainflow.errors import (
    AlreadyDecidedError,
    ConcurrentModificationError,
    MissingApproverError,
    NoApproverAvailableError,
    PermissionDeniedError,
    ValidationError,
)


def _create_user(db_session, email: str, role: AccountRole, **kwargs):
    user = account_models.User(
        email=email,
        full_name=email.split("@")[0].replace("-", " ").title(),
        role=role,
        is_active=True,
        **kwargs,
    )
    db_session.add(user)
    db_session.commit()
    return user


def _create_org(db_session, *, hrbp: bool = True, l_and_d: bool = True, chro: bool = False):
    entity = account_models.Entity(code="HQ", name="Head Office")
    db_session.add(entity)
    db_session.commit()

    org = SimpleNamespace(entity=entity)
    org.manager = _create_user(db_session, "line-manager@example.com", AccountRole.MANAGER, entity_id=entity.id)
    org.employee = _create_user(
        db_session,
        "employee@example.com",
        AccountRole.EMPLOYEE,
        entity_id=entity.id,
        manager_id=org.manager.id,
    )
    org.hrbp = _create_user(db_session, "hrbp@example.com", AccountRole.HRBP, entity_id=entity.id) if hrbp else None
    org.l_and_d = _create_user(db_session, "learning@example.com", AccountRole.L_AND_D) if l_and_d else None
    org.chro = _create_user(db_session, "chro@example.com", AccountRole.CHRO) if chro else None
    org.admin = _create_user(db_session, "admin@example.com", AccountRole.ADMIN)
    return org


def _create_course(db_session, code: str = "LOCAL-101", *, location: str = "local", cost: str = "low", **kwargs):
    course = catalog_models.Course(
        code=code,
        name=f"Course {code}",
        training_location=catalog_models.TrainingLocation(location),
        cost_level=catalog_models.CostLevel(cost),
        **kwargs,
    )
    db_session.add(course)
    db_session.commit()
    return course


def _submit(db_session, org, course, **kwargs):
    with atomic(db_session):
        return services.create_request(
            db_session,
            requester_id=org.employee.id,
            course_id=course.id,
            justification=kwargs.pop("justification", "Needed for the new project"),
            actor_user_id=org.employee.id,
            **kwargs,
        )


def _pending_approval(db_session, request):
    return (
        db_session.query(models.Approval)
        .filter(
            models.Approval.request_id == request.id,
            models.Approval.status == models.ApprovalStatus.PENDING,
        )
        .one()
    )


def _approve(db_session, request, actor_id: str, comments: str | None = None):
    approval = _pending_approval(db_session, request)
    with atomic(db_session):
        services.decide(db_session, approval.id, "approve", comments, actor_user_id=actor_id)
    return approval


def test_standard_request_is_approved_by_the_manager(db_session):
    org = _create_org(db_session)
    course = _create_course(db_session)

    request = _submit(db_session, org, course)

    assert request.status == models.RequestStatus.PENDING
    assert request.workflow_tier == rules.WorkflowTier.STANDARD
    assert request.current_approval_level == 1
    assert request.current_approver_id == org.manager.id
    assert request.submitted_at is not None
    assert request.request_number.startswith("TR-")

    _approve(db_session, request, org.manager.id, "Go ahead")
    refreshed = services.get_request(db_session, request.id)

    assert refreshed.status == models.RequestStatus.APPROVED
    assert refreshed.current_approval_level == 1
    assert refreshed.current_approver_id is None
    assert [a.status for a in refreshed.approvals] == [models.ApprovalStatus.APPROVED]

    statuses = {
        (entry.old_value, entry.new_value)
        for entry in audit_services.list_entries(
            db_session, entity_type=services.REQUEST_ENTITY, entity_id=request.id, field="status"
        )
    }
    assert statuses == {(None, "draft"), ("draft", "pending"), ("pending", "approved")}

    approved_notes = (
        db_session.query(notification_models.Notification)
        .filter(
            notification_models.Notification.user_id == org.employee.id,
            notification_models.Notification.type == notification_models.NotificationType.REQUEST_APPROVED,
        )
        .all()
    )
    assert len(approved_notes) == 1


def test_submitted_request_in_memory_matches_stored_row(db_session):
    org = _create_org(db_session)
    course = _create_course(db_session)

    request = _submit(db_session, org, course)
    row = db_session.execute(
        text(
            "SELECT status, current_approval_level, current_approver_id, version "
            "FROM training_requests WHERE id = :id"
        ),
        {"id": request.id},
    ).one()

    assert tuple(row) == ("PENDING", 1, org.manager.id, request.version)
    assert (request.status, request.current_approver_id) == (models.RequestStatus.PENDING, org.manager.id)

    approval = _pending_approval(db_session, request)
    with atomic(db_session):
        services.delegate(
            db_session, approval.id, org.hrbp.id, "Covering while away", actor_user_id=org.manager.id
        )

    assert request.current_approver_id == org.hrbp.id


def test_extended_request_walks_manager_hrbp_and_l_and_d(db_session):
    org = _create_org(db_session)
    course = _create_course(db_session, "ABROAD-1", location="abroad")

    request = _submit(db_session, org, course)
    assert request.workflow_tier == rules.WorkflowTier.EXTENDED

    _approve(db_session, request, org.manager.id)
    assert request.status == models.RequestStatus.PENDING
    assert request.current_approval_level == 2
    assert request.current_approver_id == org.hrbp.id

    _approve(db_session, request, org.hrbp.id)
    assert request.current_approval_level == 3
    assert request.current_approver_id == org.l_and_d.id

    _approve(db_session, request, org.l_and_d.id)
    refreshed = services.get_request(db_session, request.id)
    assert refreshed.status == models.RequestStatus.APPROVED
    assert refreshed.current_approval_level == 3
    assert [(a.approval_level, a.step_role) for a in refreshed.approvals] == [
        (1, AccountRole.MANAGER),
        (2, AccountRole.HRBP),
        (3, AccountRole.L_AND_D),
    ]


def test_chro_course_adds_a_fourth_level(db_session):
    org = _create_org(db_session, chro=True)
    course = _create_course(db_session, "EXEC-1", cost="high", requires_chro_approval=True)

    request = _submit(db_session, org, course)
    for approver in (org.manager, org.hrbp, org.l_and_d):
        _approve(db_session, request, approver.id)

    assert request.current_approval_level == 4
    assert request.current_approver_id == org.chro.id

    _approve(db_session, request, org.chro.id)
    assert request.status == models.RequestStatus.APPROVED


def test_hrbp_of_requester_entity_is_preferred(db_session):
    org = _create_org(db_session)
    other = account_models.Entity(code="BR", name="Branch")
    db_session.add(other)
    db_session.commit()
    branch_hrbp = _create_user(db_session, "branch-hr@example.com", AccountRole.HRBP, entity_id=other.id)
    org.employee.entity_id = other.id
    db_session.commit()

    course = _create_course(db_session, "ABROAD-2", location="abroad")
    request = _submit(db_session, org, course)
    _approve(db_session, request, org.manager.id)

    assert request.current_approver_id == branch_hrbp.id


def test_l_and_d_stands_in_for_missing_hrbp_and_covers_its_own_step(db_session):
    org = _create_org(db_session, hrbp=False)
    course = _create_course(db_session, "ABROAD-3", location="abroad")

    request = _submit(db_session, org, course)
    _approve(db_session, request, org.manager.id)

    stand_in = _pending_approval(db_session, request)
    assert request.current_approval_level == 2
    assert request.current_approver_id == org.l_and_d.id
    assert stand_in.step_role == AccountRole.HRBP
    assert stand_in.approver_role == AccountRole.L_AND_D

    _approve(db_session, request, org.l_and_d.id)
    assert request.status == models.RequestStatus.APPROVED
    assert request.current_approval_level == 2


def test_no_approver_available_leaves_request_untouched(db_session):
    org = _create_org(db_session, hrbp=False, l_and_d=False)
    course = _create_course(db_session, "ABROAD-4", location="abroad")
    request = _submit(db_session, org, course)
    approval = _pending_approval(db_session, request)
    audit_before = len(audit_services.list_entries(db_session))

    with pytest.raises(NoApproverAvailableError):
        with atomic(db_session):
            services.decide(db_session, approval.id, "approve", None, actor_user_id=org.manager.id)

    refreshed = services.get_request(db_session, request.id)
    assert refreshed.status == models.RequestStatus.PENDING
    assert refreshed.current_approval_level == 1
    assert refreshed.current_approver_id == org.manager.id
    assert refreshed.version == request.version
    assert services.get_approval(db_session, approval.id).status == models.ApprovalStatus.PENDING
    assert len(audit_services.list_entries(db_session)) == audit_before


def test_submit_without_manager_fails_and_creates_nothing(db_session):
    org = _create_org(db_session)
    org.employee.manager_id = None
    db_session.commit()
    course = _create_course(db_session)

    with pytest.raises(MissingApproverError):
        _submit(db_session, org, course)

    assert db_session.query(models.TrainingRequest).count() == 0


def test_draft_can_be_submitted_later(db_session):
    org = _create_org(db_session)
    course = _create_course(db_session)

    request = _submit(db_session, org, course, submit_now=False)
    assert request.status == models.RequestStatus.DRAFT
    assert request.current_approver_id is None

    with atomic(db_session):
        services.submit(db_session, request, actor_user_id=org.employee.id)
    assert request.status == models.RequestStatus.PENDING
    assert request.current_approver_id == org.manager.id


def test_blank_justification_is_rejected(db_session):
    org = _create_org(db_session)
    course = _create_course(db_session)

    with pytest.raises(ValidationError):
        _submit(db_session, org, course, justification="   ")


def test_rejection_requires_comments_and_closes_the_request(db_session):
    org = _create_org(db_session)
    course = _create_course(db_session, "ABROAD-5", location="abroad")
    request = _submit(db_session, org, course)
    approval = _pending_approval(db_session, request)

    with pytest.raises(ValidationError):
        with atomic(db_session):
            services.decide(db_session, approval.id, "reject", "  ", actor_user_id=org.manager.id)

    with atomic(db_session):
        services.decide(db_session, approval.id, "rejected", "Budget frozen", actor_user_id=org.manager.id)

    refreshed = services.get_request(db_session, request.id)
    assert refreshed.status == models.RequestStatus.REJECTED
    assert refreshed.current_approver_id is None
    assert services.get_approval(db_session, approval.id).comments == "Budget frozen"

    rejected_note = (
        db_session.query(notification_models.Notification)
        .filter(notification_models.Notification.type == notification_models.NotificationType.REQUEST_REJECTED)
        .one()
    )
    assert rejected_note.user_id == org.employee.id
    assert "Budget frozen" in rejected_note.message


def test_unknown_decision_is_a_validation_error(db_session):
    org = _create_org(db_session)
    request = _submit(db_session, org, _create_course(db_session))
    approval = _pending_approval(db_session, request)

    with pytest.raises(ValidationError):
        services.decide(db_session, approval.id, "maybe", None, actor_user_id=org.manager.id)


def test_deciding_twice_raises_already_decided(db_session):
    org = _create_org(db_session)
    request = _submit(db_session, org, _create_course(db_session))
    approval = _approve(db_session, request, org.manager.id)

    with pytest.raises(AlreadyDecidedError):
        with atomic(db_session):
            services.decide(db_session, approval.id, "approve", None, actor_user_id=org.manager.id)


def test_stale_request_version_is_a_concurrent_modification(db_session):
    org = _create_org(db_session)
    course = _create_course(db_session, "ABROAD-6", location="abroad")
    request = _submit(db_session, org, course)
    approval = _pending_approval(db_session, request)

    # Another worker advanced the row behind this session's back.
    db_session.execute(
        text("UPDATE training_requests SET version = version + 1 WHERE id = :id"),
        {"id": request.id},
    )
    db_session.commit()

    with pytest.raises(ConcurrentModificationError):
        with atomic(db_session):
            services.decide(db_session, approval.id, "approve", None, actor_user_id=org.manager.id)

    assert services.get_approval(db_session, approval.id).status == models.ApprovalStatus.PENDING
    pending = (
        db_session.query(models.Approval)
        .filter(models.Approval.request_id == request.id)
        .count()
    )
    assert pending == 1


def test_delegation_keeps_the_level_and_hands_over(db_session):
    org = _create_org(db_session)
    deputy = _create_user(db_session, "deputy@example.com", AccountRole.MANAGER)
    request = _submit(db_session, org, _create_course(db_session))
    original = _pending_approval(db_session, request)

    with atomic(db_session):
        delegated = services.delegate(
            db_session,
            original.id,
            deputy.id,
            "On leave",
            actor_user_id=org.manager.id,
        )

    assert services.get_approval(db_session, original.id).status == models.ApprovalStatus.DELEGATED
    assert delegated.status == models.ApprovalStatus.PENDING
    assert delegated.approval_level == 1
    assert delegated.delegated_from_id == original.id
    assert delegated.step_role == AccountRole.MANAGER
    assert request.current_approver_id == deputy.id
    assert request.current_approval_level == 1

    with atomic(db_session):
        services.decide(db_session, delegated.id, "approve", None, actor_user_id=deputy.id)
    assert request.status == models.RequestStatus.APPROVED


def test_delegating_to_the_same_approver_is_refused(db_session):
    org = _create_org(db_session)
    request = _submit(db_session, org, _create_course(db_session))
    approval = _pending_approval(db_session, request)

    with pytest.raises(ValidationError):
        services.delegate(db_session, approval.id, org.manager.id, None, actor_user_id=org.manager.id)


def test_only_the_assignee_or_an_admin_may_decide(db_session):
    org = _create_org(db_session)
    request = _submit(db_session, org, _create_course(db_session))
    approval = _pending_approval(db_session, request)

    with pytest.raises(PermissionDeniedError):
        services.decide(
            db_session,
            approval.id,
            "approve",
            None,
            actor_user_id=org.hrbp.id,
            enforce_assignee=True,
        )

    with atomic(db_session):
        services.decide(
            db_session,
            approval.id,
            "approve",
            None,
            actor_user_id=org.admin.id,
            enforce_assignee=True,
        )
    assert request.status == models.RequestStatus.APPROVED


def test_bulk_approve_reports_each_item(db_session):
    org = _create_org(db_session)
    course = _create_course(db_session)
    first = _submit(db_session, org, course)
    second = _submit(db_session, org, course)
    done = _approve(db_session, second, org.manager.id)
    open_approval = _pending_approval(db_session, first)

    with atomic(db_session):
        results = services.bulk_approve(
            db_session,
            [open_approval.id, done.id, "missing-approval"],
            actor_user_id=org.manager.id,
        )

    assert [(r.approval_id, r.ok, r.error_code) for r in results] == [
        (open_approval.id, True, None),
        (done.id, False, "already_decided"),
        ("missing-approval", False, "not_found"),
    ]
    assert services.get_request(db_session, first.id).status == models.RequestStatus.APPROVED


def test_manager_nomination_of_standard_course_is_approved_at_once(db_session):
    org = _create_org(db_session)
    course = _create_course(db_session)

    with atomic(db_session):
        request = services.nominate(
            db_session,
            nominator_id=org.manager.id,
            employee_id=org.employee.id,
            course_id=course.id,
            justification="Team upskilling",
        )

    assert request.status == models.RequestStatus.APPROVED
    assert request.nominated_by_id == org.manager.id
    assert request.requester_id == org.employee.id
    [approval] = services.get_request(db_session, request.id).approvals
    assert approval.status == models.ApprovalStatus.APPROVED
    assert approval.approver_id == org.manager.id
    assert approval.approval_level == 1


def test_hrbp_nomination_skips_steps_the_nominator_outranks(db_session):
    org = _create_org(db_session)
    course = _create_course(db_session, "ABROAD-7", location="abroad")

    with atomic(db_session):
        request = services.nominate(
            db_session,
            nominator_id=org.hrbp.id,
            employee_id=org.employee.id,
            course_id=course.id,
            justification="Regulatory requirement",
        )

    assert request.status == models.RequestStatus.PENDING
    assert request.current_approval_level == 2
    assert request.current_approver_id == org.l_and_d.id

    nominee_notes = (
        db_session.query(notification_models.Notification)
        .filter(notification_models.Notification.user_id == org.employee.id)
        .count()
    )
    assert nominee_notes == 1

    _approve(db_session, request, org.l_and_d.id)
    assert request.status == models.RequestStatus.APPROVED


def test_employee_nomination_goes_through_the_manager(db_session):
    org = _create_org(db_session)
    colleague = _create_user(db_session, "peer@example.com", AccountRole.EMPLOYEE)
    course = _create_course(db_session)

    with atomic(db_session):
        request = services.nominate(
            db_session,
            nominator_id=colleague.id,
            employee_id=org.employee.id,
            course_id=course.id,
            justification="Would benefit",
        )

    assert request.status == models.RequestStatus.PENDING
    assert request.current_approver_id == org.manager.id
    assert request.current_approval_level == 1


def test_withdraw_cancels_request_and_open_approval(db_session):
    org = _create_org(db_session)
    request = _submit(db_session, org, _create_course(db_session))
    approval = _pending_approval(db_session, request)

    with atomic(db_session):
        services.withdraw(db_session, request, "Changed my mind", actor_user_id=org.employee.id)

    assert request.status == models.RequestStatus.CANCELLED
    assert request.current_approver_id is None
    assert services.get_approval(db_session, approval.id).status == models.ApprovalStatus.CANCELLED
    assert services.list_pending_for_approver(db_session, org.manager.id) == []


def test_pending_list_for_approver(db_session):
    org = _create_org(db_session)
    course = _create_course(db_session)
    first = _submit(db_session, org, course)
    second = _submit(db_session, org, course)

    pending = services.list_pending_for_approver(db_session, org.manager.id)

    assert {approval.request_id for approval in pending} == {first.id, second.id}


def test_notification_failure_does_not_fail_the_decision(db_session, monkeypatch):
    org = _create_org(db_session)
    request = _submit(db_session, org, _create_course(db_session))
    before = db_session.query(notification_models.Notification).count()

    def _broken_provider():
        raise RuntimeError("provider unreachable")

    monkeypatch.setattr(providers, "get_notification_provider", _broken_provider)
    _approve(db_session, request, org.manager.id)

    assert services.get_request(db_session, request.id).status == models.RequestStatus.APPROVED
    assert db_session.query(notification_models.Notification).count() == before


def test_next_step_treats_higher_signatures_as_covering():
    tier = rules.WorkflowTier.EXTENDED_CHRO

    assert services.next_step(tier, []).role == AccountRole.MANAGER
    assert services.next_step(tier, [(AccountRole.MANAGER, AccountRole.MANAGER)]).role == AccountRole.HRBP
    assert services.next_step(tier, [(AccountRole.MANAGER, AccountRole.L_AND_D)]).role == AccountRole.CHRO
    assert services.next_step(tier, [(AccountRole.MANAGER, AccountRole.ADMIN)]) is None
