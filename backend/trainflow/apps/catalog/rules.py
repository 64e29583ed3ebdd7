"""
Rule catalog: policy data consulted by the workflow services.

Everything here is a pure function of course attributes. Nothing in this
module touches the database, so the routing table and completion policy can
be tested without a session.
"""

from __future__ import annotations

import enum
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from trainflow.apps.accounts.models import AccountRole

from .models import CostLevel, TrainingLocation


DEFAULT_MIN_ATTENDANCE_PERCENT = int(os.getenv("TRAINFLOW_DEFAULT_MIN_ATTENDANCE_PERCENT", "80"))
DEFAULT_DURATION_HOURS = float(os.getenv("TRAINFLOW_DEFAULT_DURATION_HOURS", "8"))


def _get_value(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def _as_enum(enum_cls, value):
    if value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# WORKFLOW TIERS
# ---------------------------------------------------------------------------


class WorkflowTier(str, enum.Enum):
    STANDARD = "standard"
    EXTENDED = "extended"
    EXTENDED_CHRO = "extended_chro"


@dataclass(frozen=True)
class ApprovalStep:
    """
    One position in an approval chain.

    `resolvers` names directory lookups tried in order; the first one that
    returns somebody wins. `role` is the label the opened Approval carries
    when the first resolver matched.
    """

    role: AccountRole
    resolvers: Tuple[str, ...]


MANAGER_STEP = ApprovalStep(role=AccountRole.MANAGER, resolvers=("manager",))
HRBP_STEP = ApprovalStep(role=AccountRole.HRBP, resolvers=("entity_hrbp", "any_hrbp", "any_l_and_d"))
L_AND_D_STEP = ApprovalStep(role=AccountRole.L_AND_D, resolvers=("any_l_and_d",))
CHRO_STEP = ApprovalStep(role=AccountRole.CHRO, resolvers=("any_chro",))

# Role label carried by an Approval when a resolver other than the step's
# primary one matched (e.g. an L&D user standing in for the HRBP).
RESOLVER_ROLE: Dict[str, AccountRole] = {
    "manager": AccountRole.MANAGER,
    "entity_hrbp": AccountRole.HRBP,
    "any_hrbp": AccountRole.HRBP,
    "any_l_and_d": AccountRole.L_AND_D,
    "any_chro": AccountRole.CHRO,
}

WORKFLOW_CHAINS: Dict[WorkflowTier, Tuple[ApprovalStep, ...]] = {
    WorkflowTier.STANDARD: (MANAGER_STEP,),
    WorkflowTier.EXTENDED: (MANAGER_STEP, HRBP_STEP, L_AND_D_STEP),
    WorkflowTier.EXTENDED_CHRO: (MANAGER_STEP, HRBP_STEP, L_AND_D_STEP, CHRO_STEP),
}


def requires_extended_workflow(course: Any) -> bool:
    location = _as_enum(TrainingLocation, _get_value(course, "training_location"))
    cost_level = _as_enum(CostLevel, _get_value(course, "cost_level"))
    return location == TrainingLocation.ABROAD or cost_level == CostLevel.HIGH


def workflow_tier_for(course: Any) -> WorkflowTier:
    if not requires_extended_workflow(course):
        return WorkflowTier.STANDARD
    if _get_value(course, "requires_chro_approval"):
        return WorkflowTier.EXTENDED_CHRO
    return WorkflowTier.EXTENDED


def chain_for(tier: WorkflowTier) -> Tuple[ApprovalStep, ...]:
    return WORKFLOW_CHAINS[WorkflowTier(tier)]


# ---------------------------------------------------------------------------
# COMPLETION POLICY
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CompletionPolicy:
    min_attendance_percent: int
    expected_minutes: float
    pass_score: Optional[float]
    has_assessment: bool
    require_both: bool

    @property
    def min_attendance_minutes(self) -> float:
        return self.expected_minutes * self.min_attendance_percent / 100


def completion_policy_for(course: Any) -> CompletionPolicy:
    duration_hours = _get_value(course, "duration_hours") or DEFAULT_DURATION_HOURS
    min_percent = _get_value(course, "min_attendance_percent") or DEFAULT_MIN_ATTENDANCE_PERCENT
    pass_score = _get_value(course, "pass_score")
    # An assessment without a pass score cannot be graded, so it does not count.
    has_assessment = bool(_get_value(course, "has_assessment")) and pass_score is not None
    return CompletionPolicy(
        min_attendance_percent=int(min_percent),
        expected_minutes=float(duration_hours) * 60,
        pass_score=float(pass_score) if pass_score is not None else None,
        has_assessment=has_assessment,
        require_both=bool(_get_value(course, "require_both_attendance_and_assessment")),
    )
