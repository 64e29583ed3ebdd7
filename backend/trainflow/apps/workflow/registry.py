from __future__ import annotations

from .guards import (
    guard_attendance_unlocked,
    guard_enrollment_not_completion_final,
    guard_request_submittable,
)

_ATTENDANCE_GUARDS = [guard_attendance_unlocked, guard_enrollment_not_completion_final]

WORKFLOWS = {
    "training_request": {
        "transitions": {
            "draft": {
                "pending": [guard_request_submittable],
                "approved": [guard_request_submittable],
                "cancelled": [],
            },
            "pending": {
                "approved": [],
                "rejected": [],
                "cancelled": [],
            },
            "approved": {"completed": []},
            "rejected": {},
            "cancelled": {},
            "completed": {},
        }
    },
    "approval": {
        "transitions": {
            "pending": {
                "approved": [],
                "rejected": [],
                "delegated": [],
                "cancelled": [],
            },
            "approved": {},
            "rejected": {},
            "delegated": {},
            "cancelled": {},
        }
    },
    "session_enrollment": {
        "transitions": {
            "confirmed": {
                "cancelled": [guard_enrollment_not_completion_final],
                "completed": _ATTENDANCE_GUARDS,
                "absent": _ATTENDANCE_GUARDS,
                "partial": _ATTENDANCE_GUARDS,
            },
            "waitlisted": {
                "confirmed": [],
                "cancelled": [],
            },
            "completed": {
                "confirmed": _ATTENDANCE_GUARDS,
                "absent": _ATTENDANCE_GUARDS,
                "partial": _ATTENDANCE_GUARDS,
            },
            "absent": {
                "confirmed": _ATTENDANCE_GUARDS,
                "completed": _ATTENDANCE_GUARDS,
                "partial": _ATTENDANCE_GUARDS,
            },
            "partial": {
                "confirmed": _ATTENDANCE_GUARDS,
                "completed": _ATTENDANCE_GUARDS,
                "absent": _ATTENDANCE_GUARDS,
            },
            "cancelled": {},
        }
    },
    "training_session": {
        "transitions": {
            "scheduled": {"open": [], "confirmed": [], "in_progress": [], "cancelled": []},
            "open": {"confirmed": [], "in_progress": [], "cancelled": []},
            "confirmed": {"in_progress": [], "completed": [], "cancelled": []},
            "in_progress": {"completed": [], "cancelled": []},
            "completed": {},
            "cancelled": {},
        }
    },
}
