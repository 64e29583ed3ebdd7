"""
Ordered waitlist for one session.

Positions are 1-based and always contiguous. Every mutation goes through
this class so callers never filter and renumber enrollment lists by hand.
"""

from __future__ import annotations

from typing import Iterator, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from . import models

# (enrollment, old position, new position)
PositionChange = Tuple[models.SessionEnrollment, Optional[int], Optional[int]]


def _queue_key(enrollment: models.SessionEnrollment):
    return (enrollment.waitlist_position or 0, enrollment.enrolled_at, enrollment.id)


class WaitlistQueue:
    def __init__(self, entries: Sequence[models.SessionEnrollment] = ()) -> None:
        self._entries: List[models.SessionEnrollment] = sorted(entries, key=_queue_key)

    @classmethod
    def load(cls, db: Session, session_id: str) -> "WaitlistQueue":
        entries = (
            db.query(models.SessionEnrollment)
            .filter(
                models.SessionEnrollment.session_id == session_id,
                models.SessionEnrollment.status == models.EnrollmentStatus.WAITLISTED,
            )
            .order_by(
                models.SessionEnrollment.waitlist_position.asc(),
                models.SessionEnrollment.enrolled_at.asc(),
                models.SessionEnrollment.id.asc(),
            )
            .all()
        )
        return cls(entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[models.SessionEnrollment]:
        return iter(list(self._entries))

    def positions(self) -> List[Optional[int]]:
        return [entry.waitlist_position for entry in self._entries]

    def insert_at_end(self, enrollment: models.SessionEnrollment) -> int:
        position = len(self._entries) + 1
        enrollment.waitlist_position = position
        self._entries.append(enrollment)
        return position

    def pop_front(self) -> Tuple[Optional[models.SessionEnrollment], List[PositionChange]]:
        """Take the head of the queue; returns it plus the renumbering of the rest."""
        if not self._entries:
            return None, []
        head = self._entries.pop(0)
        head.waitlist_position = None
        return head, self.renumber()

    def remove(self, enrollment: models.SessionEnrollment) -> List[PositionChange]:
        self._entries = [entry for entry in self._entries if entry.id != enrollment.id]
        enrollment.waitlist_position = None
        return self.renumber()

    def renumber(self) -> List[PositionChange]:
        changes: List[PositionChange] = []
        for position, entry in enumerate(self._entries, start=1):
            if entry.waitlist_position != position:
                changes.append((entry, entry.waitlist_position, position))
                entry.waitlist_position = position
        return changes
