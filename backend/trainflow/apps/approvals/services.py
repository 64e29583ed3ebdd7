"""
Approval router.

Moves a training request through its approval chain. The chain is chosen
by the rule catalog from the course attributes; each step is resolved to a
person through the directory, falling back as the step allows. Every state
change is audited in the same unit of work and every approver or requester
hand-off emits a notification.

Services flush but never commit; callers wrap each operation in
`trainflow.database.atomic`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from trainflow.apps.accounts import directory
from trainflow.apps.accounts.models import ROLE_RANK, AccountRole, User
from trainflow.apps.audit import services as audit_services
from trainflow.apps.catalog import rules
from trainflow.apps.catalog.models import Course
from trainflow.apps.notifications import service as notification_service
from trainflow.apps.notifications.models import NotificationType
from trainflow.apps.workflow import check_transition
from trainflow.errors import (
    AlreadyDecidedError,
    ConcurrentModificationError,
    MissingApproverError,
    NoApproverAvailableError,
    NotFoundError,
    PermissionDeniedError,
    StateConflictError,
    ValidationError,
    WorkflowError,
)

from . import models
from .transitions import (
    Delegated,
    FinallyApproved,
    Rejected,
    RequestSnapshot,
    Routed,
    Withdrawn,
    transition,
)

logger = logging.getLogger(__name__)

REQUEST_ENTITY = "training_request"
APPROVAL_ENTITY = "approval"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# DIRECTORY RESOLUTION
# ---------------------------------------------------------------------------

Resolver = Callable[[Session, User], Optional[str]]

RESOLVERS: Dict[str, Resolver] = {
    "manager": lambda db, requester: directory.manager_of(db, requester.id),
    "entity_hrbp": lambda db, requester: directory.hrbp_for_entity(db, requester.entity_id),
    "any_hrbp": lambda db, requester: directory.any_hrbp(db),
    "any_l_and_d": lambda db, requester: directory.any_l_and_d(db),
    "any_chro": lambda db, requester: directory.any_chro(db),
}


@dataclass(frozen=True)
class ResolvedApprover:
    user_id: str
    role: AccountRole
    step: rules.ApprovalStep


def resolve_step(db: Session, step: rules.ApprovalStep, requester: User) -> Optional[ResolvedApprover]:
    """Try the step's resolvers in order; None when every fallback comes up empty."""
    for name in step.resolvers:
        user_id = RESOLVERS[name](db, requester)
        if user_id:
            return ResolvedApprover(user_id=user_id, role=rules.RESOLVER_ROLE[name], step=step)
        logger.info(
            "Approver lookup found nobody",
            extra={"resolver": name, "step_role": step.role.value, "requester_id": requester.id},
        )
    return None


def _step_covered(step: rules.ApprovalStep, signed: Iterable[Tuple[AccountRole, AccountRole]]) -> bool:
    """
    A step is covered once an approval fulfilled it, or once somebody signed
    in a capacity ranking at or above it (an L&D user standing in for the
    HRBP also covers the L&D step; a nominating HRBP covers manager and HRBP).
    """
    for step_role, approver_role in signed:
        if step_role == step.role or ROLE_RANK[approver_role] >= ROLE_RANK[step.role]:
            return True
    return False


def next_step(
    tier: rules.WorkflowTier,
    signed: Iterable[Tuple[AccountRole, AccountRole]],
) -> Optional[rules.ApprovalStep]:
    signed = list(signed)
    for step in rules.chain_for(tier):
        if not _step_covered(step, signed):
            return step
    return None


def _signed_roles(request: models.TrainingRequest) -> List[Tuple[AccountRole, AccountRole]]:
    return [
        (approval.step_role, approval.approver_role)
        for approval in request.approvals
        if approval.status == models.ApprovalStatus.APPROVED
    ]


def _resolve_next(
    db: Session,
    request: models.TrainingRequest,
    signed: List[Tuple[AccountRole, AccountRole]],
) -> Optional[ResolvedApprover]:
    """
    Resolve the approver for the next uncovered step, or None when the chain
    is complete. Raises NoApproverAvailableError before anything is mutated.
    """
    step = next_step(request.workflow_tier, signed)
    if step is None:
        return None
    resolved = resolve_step(db, step, _requester(db, request))
    if resolved is None:
        logger.warning(
            "No approver available for chain step",
            extra={
                "request_id": request.id,
                "step_role": step.role.value,
                "level": request.current_approval_level,
            },
        )
        raise NoApproverAvailableError(
            f"No {step.role.value.replace('_', ' ').upper()} approver is available for "
            f"request {request.request_number}. Contact HR to assign one.",
            detail=[{"field": "approver", "reason": f"no active user for step {step.role.value}"}],
        )
    return resolved


# ---------------------------------------------------------------------------
# LOADERS
# ---------------------------------------------------------------------------


def get_request(db: Session, request_id: str) -> models.TrainingRequest:
    request = db.query(models.TrainingRequest).filter(models.TrainingRequest.id == request_id).first()
    if not request:
        raise NotFoundError(f"Training request {request_id} not found")
    return request


def get_approval(db: Session, approval_id: str) -> models.Approval:
    approval = db.query(models.Approval).filter(models.Approval.id == approval_id).first()
    if not approval:
        raise NotFoundError(f"Approval {approval_id} not found")
    return approval


def _requester(db: Session, request: models.TrainingRequest) -> User:
    requester = directory.get_user(db, request.requester_id)
    if not requester:
        raise NotFoundError(f"Requester {request.requester_id} not found")
    return requester


def _course(db: Session, course_id: str) -> Course:
    course = db.query(Course).filter(Course.id == course_id).first()
    if not course:
        raise NotFoundError(f"Course {course_id} not found")
    return course


def _ensure_assignee(db: Session, approval: models.Approval, actor_user_id: Optional[str]) -> None:
    if actor_user_id and actor_user_id == approval.approver_id:
        return
    if directory.role_of(db, actor_user_id) == AccountRole.ADMIN:
        return
    raise PermissionDeniedError(
        f"Approval {approval.id} is assigned to someone else",
        detail=[{"field": "approver_id", "reason": "only the assigned approver or an admin may act"}],
    )


def list_pending_for_approver(db: Session, approver_id: str) -> List[models.Approval]:
    return (
        db.query(models.Approval)
        .filter(
            models.Approval.approver_id == approver_id,
            models.Approval.status == models.ApprovalStatus.PENDING,
        )
        .order_by(models.Approval.created_at.asc())
        .all()
    )


# ---------------------------------------------------------------------------
# PERSISTENCE (compare-and-set)
# ---------------------------------------------------------------------------


def _store_snapshot(
    db: Session,
    request: models.TrainingRequest,
    new: RequestSnapshot,
    *,
    actor_user_id: Optional[str],
    reason: Optional[str],
) -> None:
    """
    Persist `new` only if the request still holds the snapshot we read.

    The UPDATE is conditioned on (status, level, version); a concurrent
    decision or delegation that got there first leaves zero rows matched.
    """
    old = RequestSnapshot.of(request)
    if new.status != old.status:
        check_transition(db, entity_type=REQUEST_ENTITY, from_state=old.status, to_state=new.status, obj=request)

    db.flush()
    matched = (
        db.query(models.TrainingRequest)
        .filter(
            models.TrainingRequest.id == request.id,
            models.TrainingRequest.version == request.version,
            models.TrainingRequest.status == old.status,
            models.TrainingRequest.current_approval_level == old.level,
        )
        .update(
            {
                models.TrainingRequest.status: new.status,
                models.TrainingRequest.current_approval_level: new.level,
                models.TrainingRequest.current_approver_id: new.approver_id,
                models.TrainingRequest.version: request.version + 1,
                models.TrainingRequest.updated_at: _utcnow(),
            },
            synchronize_session="evaluate",
        )
    )
    if matched != 1:
        logger.info(
            "Lost race advancing request",
            extra={"request_id": request.id, "level": old.level, "version": request.version},
        )
        raise ConcurrentModificationError(
            f"Request {request.request_number} was changed by someone else. Refresh and try again."
        )

    audit_services.record_changes(
        db,
        entity_type=REQUEST_ENTITY,
        entity_id=request.id,
        before={
            "status": old.status,
            "current_approval_level": old.level,
            "current_approver_id": old.approver_id,
        },
        after={
            "status": new.status,
            "current_approval_level": new.level,
            "current_approver_id": new.approver_id,
        },
        reason=reason,
        actor_user_id=actor_user_id,
    )


def _close_approval(
    db: Session,
    approval: models.Approval,
    status: models.ApprovalStatus,
    *,
    comments: Optional[str],
    actor_user_id: Optional[str],
    reason: Optional[str] = None,
) -> None:
    """Conditional close: only a still-pending approval can be closed."""
    check_transition(db, entity_type=APPROVAL_ENTITY, from_state=approval.status, to_state=status, obj=approval)
    decided_at = _utcnow()
    matched = (
        db.query(models.Approval)
        .filter(
            models.Approval.id == approval.id,
            models.Approval.status == models.ApprovalStatus.PENDING,
        )
        .update(
            {
                models.Approval.status: status,
                models.Approval.comments: comments,
                models.Approval.decision_date: decided_at,
            },
            synchronize_session="evaluate",
        )
    )
    if matched != 1:
        raise AlreadyDecidedError(f"Approval {approval.id} has already been decided")

    audit_services.record(
        db,
        entity_type=APPROVAL_ENTITY,
        entity_id=approval.id,
        field="status",
        old_value=models.ApprovalStatus.PENDING,
        new_value=status,
        reason=reason or comments,
        actor_user_id=actor_user_id,
        occurred_at=decided_at,
    )


def _open_approval(
    db: Session,
    request: models.TrainingRequest,
    *,
    approver_id: str,
    level: int,
    approver_role: AccountRole,
    step_role: AccountRole,
    actor_user_id: Optional[str],
    status: models.ApprovalStatus = models.ApprovalStatus.PENDING,
    comments: Optional[str] = None,
    delegated_from_id: Optional[str] = None,
) -> models.Approval:
    approval = models.Approval(
        request=request,
        approver_id=approver_id,
        approval_level=level,
        approver_role=approver_role,
        step_role=step_role,
        status=status,
        comments=comments,
        delegated_from_id=delegated_from_id,
        decision_date=_utcnow() if status != models.ApprovalStatus.PENDING else None,
    )
    db.add(approval)
    db.flush()
    audit_services.record(
        db,
        entity_type=APPROVAL_ENTITY,
        entity_id=approval.id,
        field="status",
        old_value=None,
        new_value=status,
        reason=comments,
        actor_user_id=actor_user_id,
    )
    return approval


# ---------------------------------------------------------------------------
# NOTIFICATIONS
# ---------------------------------------------------------------------------


def _notify_approver(db: Session, request: models.TrainingRequest, approver_id: str, level: int) -> None:
    notification_service.create(
        db,
        user_id=approver_id,
        title="Training request awaiting your approval",
        message=(
            f"Request {request.request_number} for {request.course.name} needs your "
            f"decision (level {level})."
        ),
        notification_type=NotificationType.APPROVAL_REQUIRED,
        reference_type=REQUEST_ENTITY,
        reference_id=request.id,
    )


def _notify_approved(db: Session, request: models.TrainingRequest) -> None:
    notification_service.create(
        db,
        user_id=request.requester_id,
        title="Training request approved",
        message=f"Your request {request.request_number} for {request.course.name} has been approved.",
        notification_type=NotificationType.REQUEST_APPROVED,
        reference_type=REQUEST_ENTITY,
        reference_id=request.id,
    )


def _notify_rejected(db: Session, request: models.TrainingRequest, comments: str) -> None:
    notification_service.create(
        db,
        user_id=request.requester_id,
        title="Training request rejected",
        message=f"Your request {request.request_number} for {request.course.name} was rejected: {comments}",
        notification_type=NotificationType.REQUEST_REJECTED,
        reference_type=REQUEST_ENTITY,
        reference_id=request.id,
    )


# ---------------------------------------------------------------------------
# ROUTING
# ---------------------------------------------------------------------------


def _route_onward(
    db: Session,
    request: models.TrainingRequest,
    resolved: Optional[ResolvedApprover],
    *,
    level: int,
    actor_user_id: Optional[str],
    reason: Optional[str],
) -> None:
    """Open `level` for the resolved approver, or finish the chain when there is none."""
    snapshot = RequestSnapshot.of(request)
    if resolved is None:
        _store_snapshot(
            db,
            request,
            transition(snapshot, FinallyApproved()),
            actor_user_id=actor_user_id,
            reason=reason,
        )
        logger.info("Training request approved", extra={"request_id": request.id, "level": request.current_approval_level})
        _notify_approved(db, request)
        return

    _store_snapshot(
        db,
        request,
        transition(snapshot, Routed(approver_id=resolved.user_id, level=level)),
        actor_user_id=actor_user_id,
        reason=reason,
    )
    _open_approval(
        db,
        request,
        approver_id=resolved.user_id,
        level=level,
        approver_role=resolved.role,
        step_role=resolved.step.role,
        actor_user_id=actor_user_id,
    )
    logger.info(
        "Training request routed",
        extra={"request_id": request.id, "level": level, "approver_id": resolved.user_id},
    )
    _notify_approver(db, request, resolved.user_id, level)


# ---------------------------------------------------------------------------
# OPERATIONS
# ---------------------------------------------------------------------------


def _require_justification(justification: Optional[str]) -> str:
    text = (justification or "").strip()
    if not text:
        raise ValidationError(
            "A justification is required for a training request.",
            detail=[{"field": "justification", "reason": "justification required"}],
        )
    return text


def _new_draft(
    db: Session,
    *,
    requester: User,
    course: Course,
    justification: str,
    priority: models.RequestPriority,
    estimated_cost: Optional[Decimal],
    session_id: Optional[str],
    nominated_by_id: Optional[str],
    actor_user_id: Optional[str],
) -> models.TrainingRequest:
    request = models.TrainingRequest(
        requester_id=requester.id,
        course_id=course.id,
        session_id=session_id,
        justification=justification,
        priority=models.RequestPriority(priority),
        estimated_cost=estimated_cost,
        nominated_by_id=nominated_by_id,
        status=models.RequestStatus.DRAFT,
        current_approval_level=1,
        current_approver_id=None,
        workflow_tier=rules.workflow_tier_for(course),
        version=1,
    )
    request.course = course
    db.add(request)
    db.flush()
    audit_services.record(
        db,
        entity_type=REQUEST_ENTITY,
        entity_id=request.id,
        field="status",
        old_value=None,
        new_value=models.RequestStatus.DRAFT,
        reason="Request created",
        actor_user_id=actor_user_id,
    )
    return request


def create_request(
    db: Session,
    *,
    requester_id: str,
    course_id: str,
    justification: Optional[str],
    priority: models.RequestPriority = models.RequestPriority.NORMAL,
    estimated_cost: Optional[Decimal] = None,
    session_id: Optional[str] = None,
    submit_now: bool = True,
    actor_user_id: Optional[str] = None,
) -> models.TrainingRequest:
    text = _require_justification(justification)
    requester = directory.get_user(db, requester_id)
    if not requester:
        raise NotFoundError(f"Requester {requester_id} not found")
    course = _course(db, course_id)

    request = _new_draft(
        db,
        requester=requester,
        course=course,
        justification=text,
        priority=priority,
        estimated_cost=estimated_cost,
        session_id=session_id,
        nominated_by_id=None,
        actor_user_id=actor_user_id or requester_id,
    )
    if submit_now:
        submit(db, request, actor_user_id=actor_user_id or requester_id)
    return request


def submit(db: Session, request: models.TrainingRequest, *, actor_user_id: Optional[str]) -> models.TrainingRequest:
    """Open level 1 for the requester's manager."""
    if request.status != models.RequestStatus.DRAFT:
        raise StateConflictError(
            f"Request {request.request_number} has already been submitted",
            detail=[{"field": "status", "reason": f"request is {models.RequestStatus(request.status).value}"}],
        )
    check_transition(
        db,
        entity_type=REQUEST_ENTITY,
        from_state=request.status,
        to_state=models.RequestStatus.PENDING,
        obj=request,
    )

    requester = _requester(db, request)
    resolved = resolve_step(db, rules.MANAGER_STEP, requester)
    if resolved is None:
        raise MissingApproverError(
            "No manager is assigned to the requester. Contact HR to assign a line manager.",
            detail=[{"field": "manager_id", "reason": "requester has no active manager"}],
        )

    if request.workflow_tier is None:
        request.workflow_tier = rules.workflow_tier_for(request.course)
    request.submitted_at = _utcnow()
    _route_onward(db, request, resolved, level=1, actor_user_id=actor_user_id, reason="Request submitted")
    return request


def nominate(
    db: Session,
    *,
    nominator_id: str,
    employee_id: str,
    course_id: str,
    justification: Optional[str],
    priority: models.RequestPriority = models.RequestPriority.NORMAL,
    estimated_cost: Optional[Decimal] = None,
    session_id: Optional[str] = None,
) -> models.TrainingRequest:
    """
    A nomination raised on an employee's behalf.

    A nominator of manager rank or higher signs level 1 on submission; the
    chain then skips every step the nominator already outranks.
    """
    text = _require_justification(justification)
    nominator = directory.get_user(db, nominator_id)
    if not nominator or not nominator.is_active:
        raise NotFoundError(f"Nominator {nominator_id} not found")
    employee = directory.get_user(db, employee_id)
    if not employee:
        raise NotFoundError(f"Employee {employee_id} not found")
    course = _course(db, course_id)

    request = _new_draft(
        db,
        requester=employee,
        course=course,
        justification=text,
        priority=priority,
        estimated_cost=estimated_cost,
        session_id=session_id,
        nominated_by_id=nominator.id,
        actor_user_id=nominator.id,
    )

    if nominator.role_rank < ROLE_RANK[AccountRole.MANAGER]:
        return submit(db, request, actor_user_id=nominator.id)

    check_transition(
        db,
        entity_type=REQUEST_ENTITY,
        from_state=request.status,
        to_state=models.RequestStatus.PENDING,
        obj=request,
    )
    signed = [(AccountRole.MANAGER, nominator.role)]
    resolved = _resolve_next(db, request, signed)

    request.submitted_at = _utcnow()
    _open_approval(
        db,
        request,
        approver_id=nominator.id,
        level=1,
        approver_role=nominator.role,
        step_role=AccountRole.MANAGER,
        status=models.ApprovalStatus.APPROVED,
        comments=f"Auto-approved on nomination by {nominator.full_name}",
        actor_user_id=nominator.id,
    )
    _route_onward(
        db,
        request,
        resolved,
        level=2,
        actor_user_id=nominator.id,
        reason="Nominated",
    )

    if request.status == models.RequestStatus.PENDING:
        notification_service.create(
            db,
            user_id=employee.id,
            title="You have been nominated for training",
            message=f"{nominator.full_name} nominated you for {course.name} ({request.request_number}).",
            notification_type=NotificationType.APPROVAL_REQUIRED,
            reference_type=REQUEST_ENTITY,
            reference_id=request.id,
        )
    return request


def _parse_decision(decision) -> models.ApprovalDecision:
    value = getattr(decision, "value", decision)
    normalized = str(value or "").strip().lower()
    aliases = {"approved": "approve", "rejected": "reject"}
    try:
        return models.ApprovalDecision(aliases.get(normalized, normalized))
    except ValueError:
        raise ValidationError(
            f"Unknown decision {value!r}; expected approve or reject",
            detail=[{"field": "decision", "reason": "must be approve or reject"}],
        ) from None


def decide(
    db: Session,
    approval_id: str,
    decision,
    comments: Optional[str],
    *,
    actor_user_id: Optional[str],
    enforce_assignee: bool = False,
) -> models.TrainingRequest:
    action = _parse_decision(decision)
    approval = get_approval(db, approval_id)
    if enforce_assignee:
        _ensure_assignee(db, approval, actor_user_id)
    if approval.status != models.ApprovalStatus.PENDING:
        raise AlreadyDecidedError(
            f"Approval {approval.id} is already {models.ApprovalStatus(approval.status).value}",
            detail=[{"field": "status", "reason": f"approval is {models.ApprovalStatus(approval.status).value}"}],
        )
    comments = (comments or "").strip() or None
    if action == models.ApprovalDecision.REJECT and not comments:
        raise ValidationError(
            "A comment is required when rejecting a request.",
            detail=[{"field": "comments", "reason": "comments required for rejection"}],
        )

    request = approval.request
    if (
        request.status != models.RequestStatus.PENDING
        or request.current_approval_level != approval.approval_level
        or request.current_approver_id != approval.approver_id
    ):
        raise ConcurrentModificationError(
            f"Approval {approval.id} no longer matches the request's current level. Refresh and try again."
        )

    if action == models.ApprovalDecision.REJECT:
        new = transition(RequestSnapshot.of(request), Rejected())
        _close_approval(
            db,
            approval,
            models.ApprovalStatus.REJECTED,
            comments=comments,
            actor_user_id=actor_user_id,
        )
        _store_snapshot(db, request, new, actor_user_id=actor_user_id, reason=comments)
        logger.info(
            "Training request rejected",
            extra={"request_id": request.id, "level": approval.approval_level},
        )
        _notify_rejected(db, request, comments)
        return request

    signed = _signed_roles(request) + [(approval.step_role, approval.approver_role)]
    resolved = _resolve_next(db, request, signed)

    _close_approval(
        db,
        approval,
        models.ApprovalStatus.APPROVED,
        comments=comments,
        actor_user_id=actor_user_id,
        reason=comments or "Approved",
    )
    _route_onward(
        db,
        request,
        resolved,
        level=approval.approval_level + 1,
        actor_user_id=actor_user_id,
        reason=f"Approved at level {approval.approval_level}",
    )
    return request


def delegate(
    db: Session,
    approval_id: str,
    delegate_id: str,
    comments: Optional[str],
    *,
    actor_user_id: Optional[str],
    enforce_assignee: bool = False,
) -> models.Approval:
    """Hand a pending approval to someone else at the same level."""
    approval = get_approval(db, approval_id)
    if enforce_assignee:
        _ensure_assignee(db, approval, actor_user_id)
    if approval.status != models.ApprovalStatus.PENDING:
        raise ValidationError(
            f"Approval {approval.id} is not pending and cannot be delegated",
            detail=[{"field": "status", "reason": f"approval is {models.ApprovalStatus(approval.status).value}"}],
        )
    if not delegate_id or delegate_id == approval.approver_id:
        raise ValidationError(
            "Choose someone other than the current approver to delegate to.",
            detail=[{"field": "delegate_id", "reason": "delegate must differ from the current approver"}],
        )
    delegate_user = directory.get_user(db, delegate_id)
    if not delegate_user or not delegate_user.is_active:
        raise ValidationError(
            f"Delegate {delegate_id} is not an active user",
            detail=[{"field": "delegate_id", "reason": "unknown or inactive user"}],
        )

    request = approval.request
    if request.current_approver_id != approval.approver_id or request.current_approval_level != approval.approval_level:
        raise ConcurrentModificationError(
            f"Approval {approval.id} no longer matches the request's current level. Refresh and try again."
        )
    new = transition(RequestSnapshot.of(request), Delegated(delegate_id=delegate_user.id))
    note = (comments or "").strip() or None

    _close_approval(
        db,
        approval,
        models.ApprovalStatus.DELEGATED,
        comments=note,
        actor_user_id=actor_user_id,
        reason=note or f"Delegated to {delegate_user.full_name}",
    )
    _store_snapshot(
        db,
        request,
        new,
        actor_user_id=actor_user_id,
        reason=note or f"Delegated to {delegate_user.full_name}",
    )
    delegated = _open_approval(
        db,
        request,
        approver_id=delegate_user.id,
        level=approval.approval_level,
        approver_role=approval.approver_role,
        step_role=approval.step_role,
        delegated_from_id=approval.id,
        comments=note,
        actor_user_id=actor_user_id,
    )
    logger.info(
        "Approval delegated",
        extra={"approval_id": approval.id, "delegate_id": delegate_user.id, "level": approval.approval_level},
    )
    _notify_approver(db, request, delegate_user.id, approval.approval_level)
    return delegated


@dataclass(frozen=True)
class BulkApprovalResult:
    approval_id: str
    ok: bool
    error_code: Optional[str] = None
    message: Optional[str] = None


def bulk_approve(
    db: Session,
    approval_ids: Iterable[str],
    *,
    actor_user_id: Optional[str],
    comments: Optional[str] = None,
    enforce_assignee: bool = False,
) -> List[BulkApprovalResult]:
    """
    Approve each id independently.

    Each item runs in its own savepoint, so one failure rolls back only that
    item and the remaining ids are still processed.
    """
    results: List[BulkApprovalResult] = []
    for approval_id in approval_ids:
        try:
            with db.begin_nested():
                decide(
                    db,
                    approval_id,
                    models.ApprovalDecision.APPROVE,
                    comments,
                    actor_user_id=actor_user_id,
                    enforce_assignee=enforce_assignee,
                )
        except WorkflowError as exc:
            logger.info(
                "Bulk approval item failed",
                extra={"approval_id": approval_id, "error_code": exc.code},
            )
            results.append(
                BulkApprovalResult(approval_id=approval_id, ok=False, error_code=exc.code, message=exc.message)
            )
            continue
        results.append(BulkApprovalResult(approval_id=approval_id, ok=True))
    return results


def withdraw(
    db: Session,
    request: models.TrainingRequest,
    reason: Optional[str],
    *,
    actor_user_id: Optional[str],
) -> models.TrainingRequest:
    """Requester pulls back a draft or pending request."""
    new = transition(RequestSnapshot.of(request), Withdrawn())
    note = (reason or "").strip() or "Withdrawn by requester"
    for approval in list(request.approvals):
        if approval.status == models.ApprovalStatus.PENDING:
            _close_approval(
                db,
                approval,
                models.ApprovalStatus.CANCELLED,
                comments=approval.comments,
                actor_user_id=actor_user_id,
                reason=note,
            )
    _store_snapshot(db, request, new, actor_user_id=actor_user_id, reason=note)
    logger.info("Training request withdrawn", extra={"request_id": request.id})
    return request


def mark_completed(
    db: Session,
    request: models.TrainingRequest,
    *,
    actor_user_id: Optional[str],
    reason: Optional[str] = None,
) -> models.TrainingRequest:
    """Close an approved request once its training has been completed."""
    old_status = request.status
    check_transition(
        db,
        entity_type=REQUEST_ENTITY,
        from_state=old_status,
        to_state=models.RequestStatus.COMPLETED,
        obj=request,
    )
    request.status = models.RequestStatus.COMPLETED
    request.version = request.version + 1
    audit_services.record(
        db,
        entity_type=REQUEST_ENTITY,
        entity_id=request.id,
        field="status",
        old_value=old_status,
        new_value=models.RequestStatus.COMPLETED,
        reason=reason or "Training completed",
        actor_user_id=actor_user_id,
    )
    db.flush()
    return request

