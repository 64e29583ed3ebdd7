"""
Request state machine.

A request's routing state is the triple (status, level, approver). It is
only ever changed by `transition()`, a pure function from one snapshot and
an event to the next snapshot. The service layer persists the result with a
compare-and-set so two racing callers cannot both advance the same level.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Union

from trainflow.errors import InvalidTransitionError

from .models import RequestStatus


@dataclass(frozen=True)
class RequestSnapshot:
    status: RequestStatus
    level: int
    approver_id: Optional[str]

    def __post_init__(self) -> None:
        if self.level < 1:
            raise InvalidTransitionError(f"Approval level must be >= 1, got {self.level}")
        if (self.status == RequestStatus.PENDING) != (self.approver_id is not None):
            raise InvalidTransitionError(
                "A request has a current approver exactly when it is pending "
                f"(status={self.status.value}, approver={self.approver_id})"
            )

    @classmethod
    def of(cls, request: Any) -> "RequestSnapshot":
        return cls(
            status=RequestStatus(request.status),
            level=request.current_approval_level or 1,
            approver_id=request.current_approver_id,
        )


# ---------------------------------------------------------------------------
# EVENTS
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Routed:
    """A new approver was resolved for `level` (submission or advancement)."""

    approver_id: str
    level: int


@dataclass(frozen=True)
class Delegated:
    delegate_id: str


@dataclass(frozen=True)
class FinallyApproved:
    level: Optional[int] = None


@dataclass(frozen=True)
class Rejected:
    pass


@dataclass(frozen=True)
class Withdrawn:
    pass


Event = Union[Routed, Delegated, FinallyApproved, Rejected, Withdrawn]

_OPEN = (RequestStatus.DRAFT, RequestStatus.PENDING)


def _refuse(snapshot: RequestSnapshot, event: Event) -> InvalidTransitionError:
    return InvalidTransitionError(
        f"{type(event).__name__} is not allowed while the request is {snapshot.status.value}",
        detail=[{"field": "status", "reason": f"request is {snapshot.status.value}"}],
    )


def _check_level(snapshot: RequestSnapshot, level: int) -> int:
    if level < snapshot.level:
        raise InvalidTransitionError(
            f"Approval level cannot move backwards ({snapshot.level} -> {level})",
            detail=[{"field": "current_approval_level", "reason": "level is monotonic"}],
        )
    return level


def transition(snapshot: RequestSnapshot, event: Event) -> RequestSnapshot:
    if isinstance(event, Routed):
        if snapshot.status not in _OPEN:
            raise _refuse(snapshot, event)
        if not event.approver_id:
            raise InvalidTransitionError("Routing requires an approver")
        return RequestSnapshot(
            status=RequestStatus.PENDING,
            level=_check_level(snapshot, event.level),
            approver_id=event.approver_id,
        )

    if isinstance(event, Delegated):
        if snapshot.status != RequestStatus.PENDING:
            raise _refuse(snapshot, event)
        return RequestSnapshot(
            status=RequestStatus.PENDING,
            level=snapshot.level,
            approver_id=event.delegate_id,
        )

    if isinstance(event, FinallyApproved):
        if snapshot.status not in _OPEN:
            raise _refuse(snapshot, event)
        level = snapshot.level if event.level is None else _check_level(snapshot, event.level)
        return RequestSnapshot(status=RequestStatus.APPROVED, level=level, approver_id=None)

    if isinstance(event, Rejected):
        if snapshot.status != RequestStatus.PENDING:
            raise _refuse(snapshot, event)
        return RequestSnapshot(status=RequestStatus.REJECTED, level=snapshot.level, approver_id=None)

    if isinstance(event, Withdrawn):
        if snapshot.status not in _OPEN:
            raise _refuse(snapshot, event)
        return RequestSnapshot(status=RequestStatus.CANCELLED, level=snapshot.level, approver_id=None)

    raise TypeError(f"Unknown request event: {event!r}")
