from __future__ import annotations

import enum
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from trainflow.apps.audit import services as audit_services
from trainflow.errors import InvalidTransitionError, ValidationError

from .registry import WORKFLOWS


def _state(value: Any) -> str:
    return value.value if isinstance(value, enum.Enum) else str(value)


def check_transition(
    db: Session,
    *,
    entity_type: str,
    from_state: Any,
    to_state: Any,
    obj: Any = None,
    context: Optional[dict] = None,
) -> None:
    """Raise unless `from_state -> to_state` is registered and every guard passes."""
    workflow = WORKFLOWS.get(entity_type)
    if not workflow:
        raise InvalidTransitionError(
            f"No workflow registered for {entity_type}",
            detail=[{"field": "entity_type", "reason": f"No workflow registered for {entity_type}"}],
        )

    source, target = _state(from_state), _state(to_state)
    guards = workflow.get("transitions", {}).get(source, {}).get(target)
    if guards is None:
        raise InvalidTransitionError(
            f"Cannot move {entity_type} from {source} to {target}",
            detail=[{"field": "status", "reason": f"Cannot transition from {source} to {target}"}],
        )

    failures: List[Dict[str, str]] = []
    for guard in guards:
        failures.extend(
            guard(
                db,
                obj=obj,
                from_state=source,
                to_state=target,
                context=context,
            )
        )
    if failures:
        raise ValidationError(
            f"Requirements not met to move {entity_type} to {target}",
            detail=failures,
        )


def apply_transition(
    db: Session,
    *,
    actor_user_id: Optional[str],
    entity_type: str,
    entity_id: str,
    from_state: Any,
    to_state: Any,
    obj: Any = None,
    reason: Optional[str] = None,
    context: Optional[dict] = None,
) -> None:
    """
    Validate a status change and write its audit entry.

    Callers assign the new status themselves, in the same unit of work.
    """
    check_transition(
        db,
        entity_type=entity_type,
        from_state=from_state,
        to_state=to_state,
        obj=obj,
        context=context,
    )
    audit_services.record(
        db,
        entity_type=entity_type,
        entity_id=entity_id,
        field="status",
        old_value=_state(from_state),
        new_value=_state(to_state),
        reason=reason,
        actor_user_id=actor_user_id,
    )
