"""
Record types for attemptlock.

Each persisted entity has an explicit dataclass whose constructor checks
the required fields, so a half-built record never reaches a store.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict

from .util import utc_rfc3339


class AttemptState(str, Enum):
    """Attempt lifecycle states as reported by the host quiz engine."""
    IN_PROGRESS = "inprogress"
    OVERDUE = "overdue"
    FINISHED = "finished"
    ABANDONED = "abandoned"

    @property
    def unlockable(self) -> bool:
        return self in UNLOCKABLE_STATES


UNLOCKABLE_STATES = frozenset({AttemptState.IN_PROGRESS, AttemptState.OVERDUE})


def _require_id(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"{field_name} must be a positive integer, got {value!r}")
    return value


@dataclass(frozen=True)
class Attempt:
    """One learner's attempt, as seen by the access rule."""
    attempt_id: int
    quiz_id: int
    user_id: int
    state: AttemptState = AttemptState.IN_PROGRESS
    preview: bool = False

    def __post_init__(self):
        _require_id(self.attempt_id, "attempt_id")
        _require_id(self.quiz_id, "quiz_id")
        _require_id(self.user_id, "user_id")
        # Accept the raw state string from a host row.
        if not isinstance(self.state, AttemptState):
            object.__setattr__(self, "state", AttemptState(self.state))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt_id": self.attempt_id,
            "quiz_id": self.quiz_id,
            "user_id": self.user_id,
            "state": self.state.value,
            "preview": self.preview,
        }


@dataclass(frozen=True)
class AttemptLock:
    """
    Binding of an attempt to the fingerprint that first opened it.

    session_hash is the stored form "<hex secret>|<hex HMAC-SHA256>".
    Use validator.issue_lock() to create one.
    """
    attempt_id: int
    quiz_id: int
    session_hash: str

    def __post_init__(self):
        _require_id(self.attempt_id, "attempt_id")
        _require_id(self.quiz_id, "quiz_id")
        if not isinstance(self.session_hash, str):
            raise ValueError("session_hash must be a string")

    @property
    def secret(self) -> bytes:
        """Raw secret bytes. Raises MalformedLockRecord on corrupt data."""
        from .validator import parse_lock_value
        return parse_lock_value(self.session_hash, self.attempt_id)[0]

    @property
    def fingerprint_mac(self) -> str:
        """Stored HMAC (hex). Raises MalformedLockRecord on corrupt data."""
        from .validator import parse_lock_value
        return parse_lock_value(self.session_hash, self.attempt_id)[1]


@dataclass(frozen=True)
class UnlockAuditEntry:
    """Append-only record of a supervisor releasing a lock."""
    id: int
    quiz_id: int
    attempt_id: int
    unlocked_by: int
    time_unlocked: int

    def __post_init__(self):
        _require_id(self.id, "id")
        _require_id(self.quiz_id, "quiz_id")
        _require_id(self.attempt_id, "attempt_id")
        _require_id(self.unlocked_by, "unlocked_by")
        if not isinstance(self.time_unlocked, int) or self.time_unlocked < 0:
            raise ValueError("time_unlocked must be a non-negative epoch")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "quiz_id": self.quiz_id,
            "attempt_id": self.attempt_id,
            "unlocked_by": self.unlocked_by,
            "time_unlocked": self.time_unlocked,
            "time_unlocked_utc": utc_rfc3339(self.time_unlocked),
        }


@dataclass(frozen=True)
class QuizSettings:
    """Per-quiz switch for a rule."""
    quiz_id: int
    enabled: bool

    def __post_init__(self):
        _require_id(self.quiz_id, "quiz_id")
        object.__setattr__(self, "enabled", bool(self.enabled))
