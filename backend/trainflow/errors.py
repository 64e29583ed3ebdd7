# backend/trainflow/errors.py
"""
Error taxonomy shared by the workflow services.

Every error carries a machine-readable `code` and a human message so the
API layer can render it without inspecting the exception type further.
"""

from __future__ import annotations

from typing import Dict, List, Optional


class WorkflowError(Exception):
    code = "workflow_error"

    def __init__(
        self,
        message: str,
        *,
        detail: Optional[List[Dict[str, str]]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or []

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "detail": self.detail}


# ---------------------------------------------------------------------------
# Caller input
# ---------------------------------------------------------------------------


class ValidationError(WorkflowError):
    """Missing or malformed caller input. Raised before any mutation."""

    code = "validation_error"


# ---------------------------------------------------------------------------
# Entity not in the expected state
# ---------------------------------------------------------------------------


class StateConflictError(WorkflowError):
    code = "state_conflict"


class AlreadyDecidedError(StateConflictError):
    code = "already_decided"


class AlreadyFinalizedError(StateConflictError):
    code = "already_finalized"


class DuplicateEnrollmentError(StateConflictError):
    code = "duplicate_enrollment"


class SessionClosedError(StateConflictError):
    code = "session_closed"


class InvalidTransitionError(StateConflictError):
    code = "invalid_transition"


class ConcurrentModificationError(StateConflictError):
    code = "concurrent_modification"


# ---------------------------------------------------------------------------
# Routing dependencies
# ---------------------------------------------------------------------------


class ResolutionError(WorkflowError):
    code = "resolution_error"


class MissingApproverError(ResolutionError):
    code = "missing_approver"


class NoApproverAvailableError(ResolutionError):
    code = "no_approver_available"


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------


class TransientError(WorkflowError):
    """Store/network failure. Retry the whole operation."""

    code = "transient_error"


class NotFoundError(WorkflowError):
    code = "not_found"


class PermissionDeniedError(WorkflowError):
    code = "permission_denied"


class InvariantViolation(RuntimeError):
    """Derived state drifted from its source rows. Indicates a bug, not bad input."""
