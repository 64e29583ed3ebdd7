from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

GuardResult = List[Dict[str, str]]


def _get_value(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def guard_request_submittable(
    db: Session,
    *,
    obj: Any,
    from_state: str,
    to_state: str,
    context: Optional[dict] = None,
) -> GuardResult:
    missing = []
    if not (_get_value(obj, "justification") or "").strip():
        missing.append({"field": "justification", "reason": "justification required"})
    if not _get_value(obj, "course_id"):
        missing.append({"field": "course_id", "reason": "course required"})
    return missing


def guard_attendance_unlocked(
    db: Session,
    *,
    obj: Any,
    from_state: str,
    to_state: str,
    context: Optional[dict] = None,
) -> GuardResult:
    if not _get_value(obj, "is_attendance_final"):
        return []
    if context and context.get("override"):
        return []
    return [{"field": "is_attendance_final", "reason": "attendance is finalized; use an audited override"}]


def guard_enrollment_not_completion_final(
    db: Session,
    *,
    obj: Any,
    from_state: str,
    to_state: str,
    context: Optional[dict] = None,
) -> GuardResult:
    if _get_value(obj, "is_completion_final"):
        return [{"field": "is_completion_final", "reason": "completion is finalized"}]
    return []
