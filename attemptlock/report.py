"""Read-only per-attempt view: lock state and most recent unlock."""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from .models import Attempt, AttemptState
from .store import SessionStorage
from .util import utc_rfc3339


@dataclass(frozen=True)
class AttemptReportRow:
    attempt_id: int
    user_id: int
    state: AttemptState
    locked: bool
    can_unlock: bool
    last_unlocked_by: Optional[int] = None
    last_unlocked_at: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt_id": self.attempt_id,
            "user_id": self.user_id,
            "state": self.state.value,
            "locked": self.locked,
            "can_unlock": self.can_unlock,
            "last_unlocked_by": self.last_unlocked_by,
            "last_unlocked_at": utc_rfc3339(self.last_unlocked_at),
        }


def build_report(quiz_id: int, attempts: Iterable[Attempt], storage: SessionStorage) -> List[AttemptReportRow]:
    """
    One row per attempt of the quiz, ordered by user then attempt.

    Preview attempts are left out; they are never locked.
    """
    locked = set(storage.locks.locked_attempt_ids(quiz_id))

    latest = {}
    for entry in storage.audit.entries_for_quiz(quiz_id):
        latest[entry.attempt_id] = entry  # entries come oldest first

    rows = []
    for attempt in sorted(attempts, key=lambda a: (a.user_id, a.attempt_id)):
        if attempt.quiz_id != quiz_id or attempt.preview:
            continue
        entry = latest.get(attempt.attempt_id)
        rows.append(AttemptReportRow(
            attempt_id=attempt.attempt_id,
            user_id=attempt.user_id,
            state=attempt.state,
            locked=attempt.attempt_id in locked,
            can_unlock=attempt.state.unlockable,
            last_unlocked_by=entry.unlocked_by if entry else None,
            last_unlocked_at=entry.time_unlocked if entry else None,
        ))
    return rows
